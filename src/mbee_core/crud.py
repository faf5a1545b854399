"""CRUD operations for users, organizations, projects and branches.

Elements live in ``elements``; the operations here set up the scope they
live in. Creating a project creates its ``master`` branch with the root
elements, and creating a branch copies every element of its source branch.
"""
import copy
import logging
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .branch_guard import get_branch_or_404
from .bulk import chunked
from .config import get_settings
from .elements import get_project_or_404
from .errors import ConflictError, ForbiddenError, NotFoundError, PermissionDeniedError
from .identifiers import compose, extend_id, local_id, parse_id
from .permissions import AuthContext, require_organization_permission, require_project_permission
from .validators import check_branch_id, check_org_id, check_project_id, parse_model

logger = logging.getLogger("mbee-core.crud")


def _commit(db: Session, action: str, conflict_message: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        logger.warning(f"Integrity error {action}: {e.orig}")
        db.rollback()
        raise ConflictError(conflict_message) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error {action}: {e}", exc_info=True)
        db.rollback()
        raise


# ============================================================================
# User CRUD
# ============================================================================

def create_user(db: Session, user: Union[schemas.UserCreate, dict]) -> models.User:
    """
    Create a user record.

    Users are provisioned from the identity provider; there is no
    permission check here.

    Raises:
        ValidationError: If the payload is invalid
        ConflictError: If the user already exists
    """
    if not isinstance(user, schemas.UserCreate):
        user = parse_model(schemas.UserCreate, user, "user")

    if get_user(db, user.id):
        logger.warning(f"User {user.id} already exists")
        raise ConflictError(f"User [{user.id}] already exists.", conflicting_ids=[user.id])

    db_user = models.User(**user.model_dump())
    db.add(db_user)
    _commit(db, "creating user", f"User [{user.id}] already exists.")
    db.refresh(db_user)
    logger.info(f"Created user {db_user.id}")
    return db_user


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


# ============================================================================
# Organization CRUD
# ============================================================================

def get_organization(db: Session, organization_id: str) -> Optional[models.Organization]:
    return db.query(models.Organization).filter(models.Organization.id == organization_id).first()


def create_organization(
    db: Session,
    auth: AuthContext,
    organization: Union[schemas.OrganizationCreate, dict],
) -> models.Organization:
    """
    Create an organization. Only admins may do this.

    The creator is added as an organization admin.

    Raises:
        PermissionDeniedError: If the user is not an admin
        ValidationError: If the id is invalid
        ConflictError: If the organization already exists
    """
    if not auth.admin:
        logger.warning(f"Non-admin user {auth.user_id} attempted to create an organization")
        raise PermissionDeniedError(f"User [{auth.user_id}] does not have permission to create organizations.")

    if not isinstance(organization, schemas.OrganizationCreate):
        organization = parse_model(schemas.OrganizationCreate, organization, "organization")
    check_org_id(organization.id)

    if get_organization(db, organization.id):
        logger.warning(f"Organization {organization.id} already exists")
        raise ConflictError(f"Organization [{organization.id}] already exists.", conflicting_ids=[organization.id])

    db_org = models.Organization(
        id=organization.id,
        name=organization.name,
        custom=copy.deepcopy(organization.custom),
    )
    db.add(db_org)
    db.flush()
    db.add(models.OrganizationMember(
        organization_id=organization.id,
        user_id=auth.user_id,
        permission=models.Permission.ADMIN,
    ))
    _commit(db, "creating organization", f"Organization [{organization.id}] already exists.")
    db.refresh(db_org)
    logger.info(f"User {auth.user_id} created organization {db_org.id}")
    return db_org


def add_organization_member(
    db: Session,
    auth: AuthContext,
    organization_id: str,
    grant: Union[schemas.MemberGrant, dict],
) -> models.OrganizationMember:
    """
    Grant a user a permission level in an organization.

    An existing membership is updated to the new level.

    Raises:
        NotFoundError: If the organization or user does not exist
        PermissionDeniedError: If the requester is not an organization admin
    """
    if not isinstance(grant, schemas.MemberGrant):
        grant = parse_model(schemas.MemberGrant, grant, "member")

    if not get_organization(db, organization_id):
        logger.warning(f"Organization {organization_id} not found")
        raise NotFoundError(f"The organization [{organization_id}] was not found.")
    require_organization_permission(db, auth, organization_id, models.Permission.ADMIN, "add members")
    if not get_user(db, grant.user_id):
        logger.warning(f"User {grant.user_id} not found")
        raise NotFoundError(f"The user [{grant.user_id}] was not found.")

    member = (
        db.query(models.OrganizationMember)
        .filter(
            models.OrganizationMember.organization_id == organization_id,
            models.OrganizationMember.user_id == grant.user_id,
        )
        .first()
    )
    if member:
        member.permission = grant.permission
    else:
        member = models.OrganizationMember(
            organization_id=organization_id,
            user_id=grant.user_id,
            permission=grant.permission,
        )
        db.add(member)

    _commit(db, "adding organization member", f"User [{grant.user_id}] is already a member.")
    logger.info(f"Granted {grant.permission.value} on org {organization_id} to {grant.user_id}")
    return member


# ============================================================================
# Project CRUD
# ============================================================================

def root_elements(project_id: str, branch_id: str, user_id: Optional[str]) -> list[models.Element]:
    """Build the four reserved elements every branch starts with."""
    now = datetime.utcnow()

    def element(local: str, name: str, parent: Optional[str]) -> models.Element:
        return models.Element(
            id=extend_id(branch_id, local),
            project_id=project_id,
            branch_id=branch_id,
            name=name,
            parent=extend_id(branch_id, parent) if parent else None,
            custom={},
            created_by=user_id,
            last_modified_by=user_id,
            created_on=now,
            updated_on=now,
        )

    return [
        element(models.ROOT_ELEMENT, "Model", None),
        element(models.MBEE_ELEMENT, "__mbee__", models.ROOT_ELEMENT),
        element(models.HOLDING_BIN_ELEMENT, "holding bin", models.MBEE_ELEMENT),
        element(models.UNDEFINED_ELEMENT, "undefined element", models.MBEE_ELEMENT),
    ]


def create_project(
    db: Session,
    auth: AuthContext,
    organization_id: str,
    project: Union[schemas.ProjectCreate, dict],
) -> models.Project:
    """
    Create a project with its default branch and root elements.

    Args:
        db: Database session
        auth: Requesting user; needs write permission in the organization
        organization_id: Owning organization
        project: Project payload; ``id`` is the local project id

    Returns:
        The created project; the creator is a project admin

    Raises:
        NotFoundError: If the organization does not exist
        PermissionDeniedError: If the user cannot write to the organization
        ConflictError: If the project already exists
    """
    if not isinstance(project, schemas.ProjectCreate):
        project = parse_model(schemas.ProjectCreate, project, "project")
    check_project_id(project.id)

    if not get_organization(db, organization_id):
        logger.warning(f"Organization {organization_id} not found for new project")
        raise NotFoundError(f"The organization [{organization_id}] was not found.")
    require_organization_permission(db, auth, organization_id, models.Permission.WRITE, "create projects")

    project_id = compose(organization_id, project.id)
    if db.query(models.Project).filter(models.Project.id == project_id).first():
        logger.warning(f"Project {project_id} already exists")
        raise ConflictError(f"Project [{project.id}] already exists.", conflicting_ids=[project.id])

    branch_id = extend_id(project_id, get_settings().default_branch)
    db_project = models.Project(
        id=project_id,
        organization_id=organization_id,
        name=project.name,
        visibility=project.visibility,
        custom=copy.deepcopy(project.custom),
        created_by=auth.user_id,
    )
    db.add(db_project)
    db.flush()
    db.add(models.ProjectMember(project_id=project_id, user_id=auth.user_id, permission=models.Permission.ADMIN))
    db.add(models.Branch(
        id=branch_id,
        project_id=project_id,
        name="Master",
        source=None,
        custom={},
        created_by=auth.user_id,
    ))
    # Parent rows must exist before the elements are inserted
    db.flush()
    db.add_all(root_elements(project_id, branch_id, auth.user_id))
    _commit(db, "creating project", f"Project [{project.id}] already exists.")
    db.refresh(db_project)
    logger.info(f"User {auth.user_id} created project {project_id}")
    return db_project


def add_project_member(
    db: Session,
    auth: AuthContext,
    project_id: str,
    grant: Union[schemas.MemberGrant, dict],
) -> models.ProjectMember:
    """Grant a user a permission level on a project (project admins only)."""
    if not isinstance(grant, schemas.MemberGrant):
        grant = parse_model(schemas.MemberGrant, grant, "member")

    db_project = get_project_or_404(db, project_id)
    require_project_permission(db, auth, db_project, models.Permission.ADMIN, "add members")
    if not get_user(db, grant.user_id):
        logger.warning(f"User {grant.user_id} not found")
        raise NotFoundError(f"The user [{grant.user_id}] was not found.")

    member = (
        db.query(models.ProjectMember)
        .filter(
            models.ProjectMember.project_id == project_id,
            models.ProjectMember.user_id == grant.user_id,
        )
        .first()
    )
    if member:
        member.permission = grant.permission
    else:
        member = models.ProjectMember(project_id=project_id, user_id=grant.user_id, permission=grant.permission)
        db.add(member)

    _commit(db, "adding project member", f"User [{grant.user_id}] is already a member.")
    logger.info(f"Granted {grant.permission.value} on project {project_id} to {grant.user_id}")
    return member


# ============================================================================
# Branch CRUD
# ============================================================================

def _rewrite_reference(value: Optional[str], source_branch_id: str, branch_id: str) -> Optional[str]:
    # References into other branches or projects are kept as they are
    if value is None:
        return None
    parts = parse_id(value)
    if compose(*parts[:3]) != source_branch_id:
        return value
    return extend_id(branch_id, parts[-1])


def _copy_elements(db: Session, source_branch_id: str, branch_id: str, project_id: str) -> int:
    batch_size = get_settings().query_batch_size
    source_ids = [
        row[0]
        for row in db.query(models.Element.id)
        .filter(models.Element.branch_id == source_branch_id)
        .order_by(models.Element.id)
        .all()
    ]
    for chunk in chunked(source_ids, batch_size):
        for element in db.query(models.Element).filter(models.Element.id.in_(chunk)).all():
            db.add(models.Element(
                id=extend_id(branch_id, local_id(element.id)),
                project_id=project_id,
                branch_id=branch_id,
                name=element.name,
                type=element.type,
                documentation=element.documentation,
                parent=_rewrite_reference(element.parent, source_branch_id, branch_id),
                source=_rewrite_reference(element.source, source_branch_id, branch_id),
                target=_rewrite_reference(element.target, source_branch_id, branch_id),
                custom=copy.deepcopy(element.custom) if element.custom else {},
                archived=element.archived,
                archived_on=element.archived_on,
                archived_by=element.archived_by,
                created_by=element.created_by,
                last_modified_by=element.last_modified_by,
                created_on=element.created_on,
                updated_on=element.updated_on,
            ))
    return len(source_ids)


def create_branch(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: Union[schemas.BranchCreate, dict[str, Any]],
) -> models.Branch:
    """
    Create a branch by copying every element of its source branch.

    Element ids and same-branch references are rewritten to the new branch;
    references into other projects are kept. With ``tag=True`` the new
    branch is an immutable snapshot.

    Raises:
        NotFoundError: If the project or source branch does not exist
        PermissionDeniedError: If the user cannot write to the project
        ConflictError: If the branch already exists
    """
    if not isinstance(branch, schemas.BranchCreate):
        branch = parse_model(schemas.BranchCreate, branch, "branch")
    check_branch_id(branch.id)

    project_id = compose(org, project)
    db_project = get_project_or_404(db, project_id)
    require_project_permission(db, auth, db_project, models.Permission.WRITE, "create branches")

    source_branch_id = extend_id(project_id, branch.source)
    get_branch_or_404(db, source_branch_id)

    branch_id = extend_id(project_id, branch.id)
    if db.query(models.Branch).filter(models.Branch.id == branch_id).first():
        logger.warning(f"Branch {branch_id} already exists")
        raise ConflictError(f"Branch [{branch.id}] already exists.", conflicting_ids=[branch.id])

    db_branch = models.Branch(
        id=branch_id,
        project_id=project_id,
        name=branch.name,
        source=source_branch_id,
        tag=branch.tag,
        custom=copy.deepcopy(branch.custom),
        created_by=auth.user_id,
    )
    db.add(db_branch)
    db.flush()
    copied = _copy_elements(db, source_branch_id, branch_id, project_id)
    _commit(db, "creating branch", f"Branch [{branch.id}] already exists.")
    db.refresh(db_branch)
    logger.info(
        f"User {auth.user_id} created {'tag' if branch.tag else 'branch'} {branch_id} "
        f"from {source_branch_id} with {copied} elements"
    )
    return db_branch


def get_branch(db: Session, auth: AuthContext, org: str, project: str, branch: str) -> models.Branch:
    db_project = get_project_or_404(db, compose(org, project))
    require_project_permission(db, auth, db_project, models.Permission.READ, "read branches")
    return get_branch_or_404(db, compose(org, project, branch))


def find_branches(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    archived: bool = False,
) -> list[models.Branch]:
    """List the branches of a project, optionally including archived ones."""
    db_project = get_project_or_404(db, compose(org, project))
    require_project_permission(db, auth, db_project, models.Permission.READ, "read branches")

    query = db.query(models.Branch).filter(models.Branch.project_id == db_project.id)
    if not archived:
        query = query.filter(models.Branch.archived.is_(False))
    return query.order_by(models.Branch.id).all()


def remove_branch(db: Session, auth: AuthContext, org: str, project: str, branch: str) -> str:
    """
    Delete a branch and all of its elements.

    Returns:
        The compound id of the deleted branch

    Raises:
        ForbiddenError: If the branch is the default branch
        PermissionDeniedError: If the user is not a project admin
    """
    db_project = get_project_or_404(db, compose(org, project))
    require_project_permission(db, auth, db_project, models.Permission.ADMIN, "delete branches")

    if branch == get_settings().default_branch:
        logger.warning(f"Rejected delete of default branch on {db_project.id}")
        raise ForbiddenError(f"The branch [{branch}] cannot be deleted.")

    db_branch = get_branch_or_404(db, compose(org, project, branch))
    branch_id = db_branch.id
    try:
        removed = (
            db.query(models.Element)
            .filter(models.Element.branch_id == branch_id)
            .delete(synchronize_session=False)
        )
        db.delete(db_branch)
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting branch {branch_id}: {e}", exc_info=True)
        db.rollback()
        raise

    logger.info(f"User {auth.user_id} deleted branch {branch_id} with {removed} elements")
    return branch_id
