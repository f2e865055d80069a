"""Exception types raised by the context client and its collaborators."""


class ContextClientError(Exception):
    """Base class for every error the client reports."""


class CaptureError(ContextClientError):
    """No capturable surface this tick. Transient; the tick is skipped."""


class ClassifyError(ContextClientError):
    """Classification call failed (network, HTTP status, or unparsable reply)."""


class SubmitError(ContextClientError):
    """Generation request was rejected or never reached the backend."""


class PollTransportError(ContextClientError):
    """A status poll failed at the transport/HTTP level."""


class JobError(ContextClientError):
    """Terminal failure of one generation attempt."""

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class JobFailedError(JobError):
    """Backend reported an explicit failure status."""


class JobTimeoutError(JobError):
    """No result before the poll budget ran out."""
