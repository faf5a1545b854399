"""Error taxonomy for the element graph.

Every store operation either returns data or raises one ``MbeeError``
subclass. The HTTP layer (not part of this package) maps ``status_code``
and ``body()`` onto its responses.
"""
import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Transport-independent error category."""

    BAD_REQUEST = "BadRequest"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"


class MbeeError(Exception):
    """Base class for all element graph errors."""

    kind: ErrorKind = ErrorKind.BAD_REQUEST
    status_code: int = 400

    def __init__(self, message: str, element_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.element_id = element_id

    def with_element(self, element_id: Optional[str]) -> "MbeeError":
        """Attach the offending element id (first one wins)."""
        if element_id is not None and self.element_id is None:
            self.element_id = element_id
            self.message = f"Element [{element_id}]: {self.message}"
            self.args = (self.message,)
        return self

    def body(self) -> dict:
        return {
            "status": self.status_code,
            "kind": self.kind.value,
            "message": self.message,
            "element": self.element_id,
        }


class ValidationError(MbeeError):
    """Malformed input: bad ids or names, disallowed fields, inconsistent references."""


class MalformedIdError(ValidationError):
    """A compound id has the wrong shape."""


class JMIConversionError(ValidationError):
    """Data cannot be converted between JMI representations."""


class NotFoundError(MbeeError):
    """A referenced organization, project, branch or element does not exist."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ForbiddenError(MbeeError):
    """The operation is not allowed on the target."""

    kind = ErrorKind.FORBIDDEN
    status_code = 403


class PermissionDeniedError(ForbiddenError):
    """The requesting user lacks the required permission."""


class ArchivedError(ForbiddenError):
    """The target is archived and must be unarchived first."""


class BranchImmutableError(ForbiddenError):
    """The branch is a tag; its elements cannot change."""

    def __init__(self, branch_id: str, action: str):
        super().__init__(
            f"Branch [{branch_id}] is a tag. Tags are immutable; "
            f"{action} elements on a tag is not allowed."
        )
        self.branch_id = branch_id
        self.action = action


class ConflictError(ForbiddenError):
    """An object with the same id already exists."""

    def __init__(self, message: str, conflicting_ids: Optional[list[str]] = None):
        super().__init__(message)
        self.conflicting_ids = conflicting_ids or []
