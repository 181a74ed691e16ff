from typing import Any, Optional


class StorageError(Exception):
    """Raised when the link collection cannot be read or written."""


class StreamError(Exception):
    status_code = 500
    message = "Failed to fetch stream"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidIdFormat(StreamError):
    status_code = 400
    message = "Invalid ID format"


class LinkNotFound(StreamError):
    status_code = 404

    def __init__(self, link_id):
        super().__init__(f"Link with ID {link_id} not found or invalid.")


class CategoryMismatch(StreamError):
    status_code = 400

    def __init__(self, expected: str, got: str):
        self.expected = expected
        self.got = got
        super().__init__(f"Category mismatch. Expected {expected}, got {got}")


class MissingOriginalUrl(StreamError):
    status_code = 404
    message = "Original URL not found"


class RedirectMissingLocation(StreamError):
    status_code = 502

    def __init__(self, url: str, status: int):
        super().__init__(
            "Upstream redirect without Location header",
            details={"url": url, "status": status},
        )


class TooManyRedirects(StreamError):
    status_code = 502

    def __init__(self, url: str, limit: int):
        super().__init__(
            f"Too many redirects (limit {limit})",
            details={"url": url},
        )


class UpstreamError(StreamError):
    status_code = 502

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Failed to fetch stream: upstream returned {status}", details=body or None)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["status"] = self.status
        return body


class UnknownFailure(StreamError):
    status_code = 500
