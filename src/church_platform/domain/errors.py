"""Domain errors raised by the service layer.

Routes translate these into HTTP responses; nothing below the route layer
knows about status codes.
"""


class DomainError(Exception):
    """Base class for caller-facing errors. No mutation has been performed."""


class NotFoundError(DomainError):
    """A referenced visitor, team or user does not exist."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class UnauthorizedError(DomainError):
    """The caller lacks the caretaker/team relationship required."""

    def __init__(self, message: str = "Not authorized for this visitor"):
        super().__init__(message)


class InvalidInputError(DomainError):
    """A request field is missing, malformed or out of range."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")
