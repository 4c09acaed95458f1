class PipelineError(Exception):
    pass


class AuthenticationError(PipelineError):
    """Missing or invalid webhook signature."""


class ValidationError(PipelineError):
    """Payload is structurally invalid; retrying cannot fix it."""


class TransientHandlerError(PipelineError):
    """A dependency of a handler failed and may recover."""


class PermanentHandlerError(PipelineError):
    """Business-rule rejection.

    Retried like any other failure unless raised with ``retryable=False``.
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class QueueUnavailableError(PipelineError):
    pass


class JobNotFoundError(PipelineError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(PipelineError):
    def __init__(self, job_id: str, target: str) -> None:
        super().__init__(f"Job {job_id} cannot move to {target}")
        self.job_id = job_id
        self.target = target
