"""Error types shared by the Waymark handlers."""

from typing import Optional


class WaymarkError(Exception):
    """Base error. ``status`` is the HTTP status the server should answer with."""

    status = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(WaymarkError):
    """Bad or missing input, raised before any external call is made."""

    status = 400


class UpstreamError(WaymarkError):
    """An external API could not be reached or answered with an HTTP error."""

    status = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None,
                 status: Optional[int] = None):
        super().__init__(message, status=status)
        self.upstream_status = upstream_status

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.upstream_status is not None:
            data["upstream_status"] = self.upstream_status
        return data


class ExtractionError(WaymarkError):
    """The model response did not contain the structured result we asked for."""

    status = 500


class NotFoundError(WaymarkError):
    status = 404


class AuthError(WaymarkError):
    status = 401
