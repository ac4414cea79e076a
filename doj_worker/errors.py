from typing import Optional


class WorkerError(Exception):
    """Error that maps directly onto an HTTP response `{"error": message, **body}`."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        body: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = str(message)
        self.status_code = int(status_code)
        self.body = dict(body or {})
        self.headers = dict(headers or {})

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        payload.update(self.body)
        return payload


class InputValidationError(WorkerError):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message, status_code=status_code)


class UpstreamError(WorkerError):
    """Non-success response from justice.gov, observed through an in-page fetch."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, status_code=500)
        self.upstream_status = status
