"""Exceptions raised by the job queue."""


class JobQueueError(Exception):
    """Base exception for job queue errors."""


class InvalidPayload(JobQueueError, ValueError):
    """A payload cannot be enqueued: it has no `perform`, its type is not
    registered, or it cannot be encoded."""


class DeserializationError(JobQueueError):
    """A stored handler could not be turned back into a runnable payload."""


class PayloadTypeNotFound(DeserializationError):
    """The handler names a payload type that is not in the registry."""


class MalformedPayload(DeserializationError):
    """The handler text is not a valid encoded payload."""


class ExecutionFault(JobQueueError):
    """A payload failed while performing."""


class JobTimeout(ExecutionFault):
    """A payload ran past its deadline and was aborted."""


class UnknownCommand(JobQueueError, LookupError):
    """A command job references a command that was never registered."""
