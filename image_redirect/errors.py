"""Error types shared by the image API.

Every error carries the HTTP status it maps to when it is returned to the
client before any response bytes were streamed.
"""

from typing import Optional

from fastapi import status


class ImageApiError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        # In-stream error code, if the backend reported one
        self.code = code


class InvalidParameterError(ImageApiError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ImageApiError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ImageApiError):
    status_code = status.HTTP_409_CONFLICT


class BackendError(ImageApiError):
    """Failure reported by the image backend, including in-stream pull errors."""


class MissingImageError(InvalidParameterError):
    def __init__(self):
        super().__init__("image name cannot be blank")


def error_for_status(status_code: int, message: str) -> ImageApiError:
    """Map an upstream HTTP status onto the matching error type."""
    if status_code == status.HTTP_400_BAD_REQUEST:
        return InvalidParameterError(message)
    if status_code == status.HTTP_404_NOT_FOUND:
        return NotFoundError(message)
    if status_code == status.HTTP_409_CONFLICT:
        return ConflictError(message)
    return BackendError(message, status_code=status_code)
