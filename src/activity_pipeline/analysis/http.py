"""JSON-over-HTTP analysis transport."""

import logging

import httpx

from activity_pipeline.analysis.base import AnalysisRequest, AnalysisResult, BaseAnalyzer
from activity_pipeline.constants import DEFAULT_ANALYZER_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class HttpAnalyzer(BaseAnalyzer):
    """Analyzer that POSTs each chunk to an HTTP endpoint.

    The endpoint receives ``AnalysisRequest.to_dict()`` as JSON and answers
    with a JSON object. A response containing ``"success": false`` is a
    failed analysis; anything else is passed through as the payload.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_ANALYZER_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ):
        """Initialize the HTTP analyzer.

        Args:
            endpoint: URL of the analysis service.
            api_key: Bearer token (optional).
            timeout: Request timeout in seconds.
            client: Preconfigured client (tests inject a mock transport).
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with optional auth."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def is_available(self) -> bool:
        return bool(self.endpoint)

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        try:
            response = self._client.post(
                self.endpoint,
                json=request.to_dict(),
                headers=self._get_headers(),
            )

            if response.status_code != 200:
                logger.warning(f"Analysis request failed: {response.status_code}")
                logger.debug(f"Response body: {response.text[:500]}")
                return AnalysisResult(
                    success=False,
                    error=f"API returned {response.status_code}",
                )

            data = response.json()
            if not isinstance(data, dict):
                return AnalysisResult(success=False, error="Response is not a JSON object")
            if data.get("success") is False:
                return AnalysisResult(
                    success=False,
                    payload=data,
                    error=str(data.get("error") or "Analysis service reported failure"),
                )
            return AnalysisResult(success=True, payload=data)

        except httpx.TimeoutException:
            logger.warning(f"Analysis of chunk {request.chunk_number} timed out")
            return AnalysisResult(success=False, error="Analysis timed out")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Analysis of chunk {request.chunk_number} failed: {e}")
            return AnalysisResult(success=False, error=str(e))

    def close(self) -> None:
        self._client.close()
