from __future__ import annotations


class PipelineError(Exception):
    pass


class ValidationError(PipelineError):
    """Missing or conflicting request fields."""


class AuthError(PipelineError):
    """No Dropbox credential configured for a call that needs one."""


class DownloadError(PipelineError):
    pass


class UpstreamError(PipelineError):
    """Dropbox answered a temporary-link request with a failure."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MergeError(PipelineError):
    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message)


class UploadError(PipelineError):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
