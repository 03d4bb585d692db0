"""Analysis service interface and transports."""

from activity_pipeline.analysis.base import AnalysisRequest, AnalysisResult, BaseAnalyzer
from activity_pipeline.analysis.http import HttpAnalyzer
from activity_pipeline.analysis.recording import RecordingAnalyzer

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "BaseAnalyzer",
    "HttpAnalyzer",
    "RecordingAnalyzer",
]
