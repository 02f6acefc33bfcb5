"""Error taxonomy for the scheduling core."""


class SchedulingError(Exception):
    """Base class for every error raised by taskcadence."""


class ValidationError(SchedulingError):
    """Malformed time config, recurrence rule or template.

    Raised before any generation happens. ``problems`` holds
    ``(field, message)`` pairs so callers can show all of them at once.
    """

    def __init__(self, problems: list[tuple[str, str]] | str):
        if isinstance(problems, str):
            problems = [("", problems)]
        self.problems = problems
        super().__init__("; ".join(
            f"{field}: {message}" if field else message for field, message in problems
        ))


class TransitionError(SchedulingError):
    """Illegal state-machine edge. Fatal, never retried."""

    def __init__(self, current: str, event: str, subject: str = "instance"):
        self.current = current
        self.event = event
        self.subject = subject
        super().__init__(f"Cannot {event} {subject} in state '{current}'")


class PolicyViolation(SchedulingError):
    """The operation is legal in principle but the configured policy forbids it."""


class NotFoundError(SchedulingError):
    """Unknown template, instance or alert id."""


class ExternalCollaboratorError(SchedulingError):
    """Persistence or trigger failure surfaced as a typed error.

    The core never retries; retry/backoff belongs to whoever calls the service.
    """

    def __init__(self, collaborator: str, message: str, cause: BaseException | None = None):
        self.collaborator = collaborator
        self.cause = cause
        super().__init__(f"{collaborator}: {message}")
