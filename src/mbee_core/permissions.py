"""Authorization context and permission lookups.

Authentication is external: callers build an ``AuthContext`` for the
requesting user and pass it to every store operation. Permission levels
come from the membership tables.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from . import models
from .errors import PermissionDeniedError

logger = logging.getLogger("mbee-core.permissions")

# Each level implies the ones before it
PERMISSION_RANK = {
    models.Permission.READ: 1,
    models.Permission.WRITE: 2,
    models.Permission.ADMIN: 3,
}


@dataclass(frozen=True)
class AuthContext:
    """The requesting user, as supplied by the identity provider."""

    user_id: str
    admin: bool = False

    @classmethod
    def for_user(cls, user: models.User) -> "AuthContext":
        return cls(user_id=user.id, admin=bool(user.admin))


def get_project_permission(db: Session, user_id: str, project_id: str) -> Optional[models.Permission]:
    member = (
        db.query(models.ProjectMember)
        .filter(
            models.ProjectMember.project_id == project_id,
            models.ProjectMember.user_id == user_id,
        )
        .first()
    )
    return member.permission if member else None


def get_organization_permission(db: Session, user_id: str, organization_id: str) -> Optional[models.Permission]:
    member = (
        db.query(models.OrganizationMember)
        .filter(
            models.OrganizationMember.organization_id == organization_id,
            models.OrganizationMember.user_id == user_id,
        )
        .first()
    )
    return member.permission if member else None


def has_permission(granted: Optional[models.Permission], required: models.Permission) -> bool:
    return granted is not None and PERMISSION_RANK[granted] >= PERMISSION_RANK[required]


def can_read_project(db: Session, auth: AuthContext, project: models.Project) -> bool:
    """
    Check read access to a project.

    Admins and project members can read. Internal projects are also
    readable by every member of the owning organization.
    """
    if auth.admin:
        return True
    if has_permission(get_project_permission(db, auth.user_id, project.id), models.Permission.READ):
        return True
    if project.visibility == models.ProjectVisibility.INTERNAL:
        return get_organization_permission(db, auth.user_id, project.organization_id) is not None
    return False


def can_write_project(db: Session, auth: AuthContext, project: models.Project) -> bool:
    if auth.admin:
        return True
    return has_permission(get_project_permission(db, auth.user_id, project.id), models.Permission.WRITE)


def require_project_permission(
    db: Session,
    auth: AuthContext,
    project: models.Project,
    required: models.Permission,
    action: str,
) -> None:
    """
    Raise unless ``auth`` holds ``required`` on ``project``.

    Args:
        db: Database session
        auth: Requesting user
        project: Project being accessed
        required: Minimum permission level
        action: Verb for the error message (e.g. "create elements")

    Raises:
        PermissionDeniedError: If the user lacks the permission
    """
    if required == models.Permission.READ:
        allowed = can_read_project(db, auth, project)
    elif required == models.Permission.WRITE:
        allowed = can_write_project(db, auth, project)
    else:
        allowed = auth.admin or has_permission(
            get_project_permission(db, auth.user_id, project.id), models.Permission.ADMIN
        )

    if not allowed:
        logger.warning(f"Permission denied: user {auth.user_id} cannot {action} on project {project.id}")
        raise PermissionDeniedError(
            f"User [{auth.user_id}] does not have permission to {action} on the project [{project.id}]."
        )


def require_organization_permission(
    db: Session,
    auth: AuthContext,
    organization_id: str,
    required: models.Permission,
    action: str,
) -> None:
    if auth.admin:
        return
    if not has_permission(get_organization_permission(db, auth.user_id, organization_id), required):
        logger.warning(f"Permission denied: user {auth.user_id} cannot {action} in org {organization_id}")
        raise PermissionDeniedError(
            f"User [{auth.user_id}] does not have permission to {action} in the organization [{organization_id}]."
        )
