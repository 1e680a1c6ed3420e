"""Classified failures raised by the conversion pipeline.

Each error carries a stable ``code`` and the HTTP status the web layer
should answer with. Messages are meant for humans; any engine output
attached to them is for diagnosis only.
"""


class ConversionError(Exception):
    code = "conversion_error"
    status_code = 500

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class SizeExceeded(ConversionError):
    code = "size_exceeded"
    status_code = 400


class UnsupportedFileType(ConversionError):
    code = "unsupported_file_type"
    status_code = 400


class MalformedUpload(ConversionError):
    code = "malformed_upload"
    status_code = 400


class InsufficientDiskSpace(ConversionError):
    code = "insufficient_disk_space"

    def __init__(self, free: str, required: str) -> None:
        super().__init__(f"Insufficient disk space. Available: {free}, required: {required}")
        self.free = free
        self.required = required


class ConversionTimeout(ConversionError):
    code = "conversion_timeout"


class ConversionFailed(ConversionError):
    code = "conversion_failed"


class ArtifactNotFound(ConversionError):
    code = "artifact_not_found"


class EmptyArtifact(ConversionError):
    code = "empty_artifact"


class CleanupFailure(ConversionError):
    """Only ever logged; never raised to callers."""

    code = "cleanup_failure"
