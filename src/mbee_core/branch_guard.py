"""Branch mutability checks.

A branch flagged as a tag is an immutable snapshot: its elements can be
read but never created, updated or deleted.
"""
import enum
import logging

from sqlalchemy.orm import Session

from . import models
from .errors import ArchivedError, BranchImmutableError, NotFoundError
from .identifiers import local_id

logger = logging.getLogger("mbee-core.branch_guard")


class BranchAction(str, enum.Enum):
    """Element write operations, worded for error messages."""

    CREATE = "creating"
    UPDATE = "updating"
    DELETE = "deleting"


def get_branch_or_404(db: Session, branch_id: str) -> models.Branch:
    branch = db.query(models.Branch).filter(models.Branch.id == branch_id).first()
    if not branch:
        logger.warning(f"Branch {branch_id} not found")
        raise NotFoundError(f"The branch [{local_id(branch_id)}] was not found.")
    return branch


def assert_mutable(db: Session, branch_id: str, action: BranchAction) -> models.Branch:
    """
    Ensure elements on ``branch_id`` may be written.

    Args:
        db: Database session
        branch_id: Compound branch id (org:project:branch)
        action: The attempted operation

    Returns:
        The branch

    Raises:
        NotFoundError: If the branch does not exist
        BranchImmutableError: If the branch is a tag
        ArchivedError: If the branch is archived
    """
    branch = get_branch_or_404(db, branch_id)
    action = BranchAction(action)

    if branch.tag:
        logger.warning(f"Rejected {action.value} elements on tag {branch_id}")
        raise BranchImmutableError(local_id(branch_id), action.value)

    if branch.archived:
        logger.warning(f"Rejected {action.value} elements on archived branch {branch_id}")
        raise ArchivedError(
            f"The branch [{local_id(branch_id)}] is archived. "
            "It must first be unarchived before performing this operation."
        )

    return branch
