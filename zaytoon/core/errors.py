"""Error variants raised while handling a request.

Each ``RelayError`` carries the message sent to the client and the HTTP
status it maps to. ``zaytoon.main`` renders them as ``{"error": message}``.
"""


class ConfigError(Exception):
    """Startup configuration is missing or invalid."""
    pass


class RelayError(Exception):
    """Base class for errors with a client-facing message and status."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputValidationError(RelayError):
    """Missing or malformed client input (prompt, file, multipart body)."""
    status_code = 400


class UploadTooLargeError(RelayError):
    """Uploaded file is over the size cap."""
    status_code = 400

    def __init__(self, message: str = "File too large"):
        super().__init__(message)


class UploadStorageError(RelayError):
    """Disk failure while writing an upload to scratch storage."""
    status_code = 500


class ExternalServiceError(RelayError):
    """The model call failed or returned no usable text."""
    status_code = 500
