"""Offline analyzer that records requests instead of calling a service."""

import threading
from collections import Counter

from activity_pipeline.analysis.base import AnalysisRequest, AnalysisResult, BaseAnalyzer


class RecordingAnalyzer(BaseAnalyzer):
    """Analyzer that keeps every request and answers with local counts.

    Used by ``activity-pipeline replay`` when no endpoint is configured,
    and as a stand-in for the analysis service in tests.
    """

    def __init__(self) -> None:
        self.requests: list[AnalysisRequest] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return True

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        with self._lock:
            self.requests.append(request)
        breakdown = Counter(event.type for event in request.events)
        return AnalysisResult(
            success=True,
            payload={
                "summary_text": (
                    f"Chunk {request.chunk_number}: {len(request.events)} events "
                    f"from {request.raw_event_count} raw"
                ),
                "event_breakdown": dict(breakdown),
                "app_usage": dict(request.app_usage),
            },
        )

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.requests)
