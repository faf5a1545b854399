"""SQLAlchemy database models."""
from datetime import datetime
import enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


# Reserved elements present on every branch
ROOT_ELEMENT = "model"
MBEE_ELEMENT = "__mbee__"
HOLDING_BIN_ELEMENT = "holding_bin"
UNDEFINED_ELEMENT = "undefined"
RESERVED_ELEMENTS = (ROOT_ELEMENT, MBEE_ELEMENT, HOLDING_BIN_ELEMENT, UNDEFINED_ELEMENT)


class ProjectVisibility(str, enum.Enum):
    """Project visibility enum.

    Internal projects are readable by every member of the organization and
    may be referenced from other projects. Private projects are readable by
    project members only.
    """

    PRIVATE = "private"
    INTERNAL = "internal"


class Permission(str, enum.Enum):
    """Membership permission level (each level implies the lower ones)."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class User(Base):
    """
    User model.

    Users are provisioned by the external identity provider; ``id`` is the
    username. ``admin`` users bypass membership checks.
    """

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    fname = Column(String(255), default="")
    lname = Column(String(255), default="")
    email = Column(String(255))
    admin = Column(Boolean, nullable=False, default=False)
    created_on = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<User {self.id}{' (admin)' if self.admin else ''}>"


class Organization(Base):
    """Organization model; the outermost scope of every id."""

    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    custom = Column(JSON, nullable=False, default=dict)
    archived = Column(Boolean, nullable=False, default=False)
    created_on = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_on = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("OrganizationMember", back_populates="organization", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="organization", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Organization {self.id}: {self.name}>"


class OrganizationMember(Base):
    """Junction table linking users to organizations with a permission level."""

    __tablename__ = "organization_members"

    organization_id = Column(String(64), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    permission = Column(
        Enum(Permission, values_callable=_enum_values),
        nullable=False,
        default=Permission.READ,
    )

    organization = relationship("Organization", back_populates="members")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<OrganizationMember {self.user_id}@{self.organization_id} {self.permission.value}>"


class Project(Base):
    """
    Project model.

    ``id`` is the compound ``org:project`` id. A project owns its branches and,
    through them, its elements.
    """

    __tablename__ = "projects"

    id = Column(String(130), primary_key=True)
    organization_id = Column(String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    visibility = Column(
        Enum(ProjectVisibility, values_callable=_enum_values),
        nullable=False,
        default=ProjectVisibility.PRIVATE,
        index=True,
    )
    custom = Column(JSON, nullable=False, default=dict)
    archived = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"))
    created_on = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_on = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization = relationship("Organization", back_populates="projects")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    branches = relationship("Branch", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class ProjectMember(Base):
    """Junction table linking users to projects with a permission level."""

    __tablename__ = "project_members"

    project_id = Column(String(130), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    permission = Column(
        Enum(Permission, values_callable=_enum_values),
        nullable=False,
        default=Permission.READ,
    )

    project = relationship("Project", back_populates="members")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<ProjectMember {self.user_id}@{self.project_id} {self.permission.value}>"


class Branch(Base):
    """
    Branch model.

    ``id`` is the compound ``org:project:branch`` id. ``source`` is the branch
    the elements were copied from. A ``tag`` branch is an immutable snapshot.
    """

    __tablename__ = "branches"

    id = Column(String(200), primary_key=True)
    project_id = Column(String(130), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    source = Column(String(200), nullable=True)
    tag = Column(Boolean, nullable=False, default=False)
    custom = Column(JSON, nullable=False, default=dict)
    archived = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"))
    created_on = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_on = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="branches")

    def __repr__(self) -> str:
        return f"<Branch {self.id}{' (tag)' if self.tag else ''}>"


class Element(Base):
    """
    Element model: one node of a branch's model graph.

    ``parent`` is the containment edge (``None`` only for the branch root);
    ``source``/``target`` form an independent relationship edge and may point
    into another project. All three hold compound element ids and are
    resolved through view-only relationships rather than foreign keys, so a
    reference can be repointed without cascading.
    """

    __tablename__ = "elements"

    id = Column(String(512), primary_key=True)
    project_id = Column(String(130), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(String(200), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False, default="")
    type = Column(String(255), nullable=False, default="")
    documentation = Column(Text, nullable=False, default="")

    parent = Column(String(512), nullable=True, index=True)
    source = Column(String(512), nullable=True, index=True)
    target = Column(String(512), nullable=True, index=True)

    custom = Column(JSON, nullable=False, default=dict)

    archived = Column(Boolean, nullable=False, default=False, index=True)
    archived_on = Column(DateTime, nullable=True)
    archived_by = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_by = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_modified_by = Column(String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_on = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_on = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships (view-only, loaded on demand by the "populate" option)
    project = relationship("Project", viewonly=True)
    branch = relationship("Branch", viewonly=True)
    parent_element = relationship(
        "Element",
        primaryjoin="foreign(Element.parent) == remote(Element.id)",
        viewonly=True,
        uselist=False,
    )
    source_element = relationship(
        "Element",
        primaryjoin="foreign(Element.source) == remote(Element.id)",
        viewonly=True,
        uselist=False,
    )
    target_element = relationship(
        "Element",
        primaryjoin="foreign(Element.target) == remote(Element.id)",
        viewonly=True,
        uselist=False,
    )
    created_by_user = relationship("User", foreign_keys=[created_by], viewonly=True)
    last_modified_by_user = relationship("User", foreign_keys=[last_modified_by], viewonly=True)
    archived_by_user = relationship("User", foreign_keys=[archived_by], viewonly=True)

    __table_args__ = (
        CheckConstraint("source IS NULL OR source != id", name="no_self_source"),
        CheckConstraint("target IS NULL OR target != id", name="no_self_target"),
        CheckConstraint(
            "(source IS NULL AND target IS NULL) OR (source IS NOT NULL AND target IS NOT NULL)",
            name="paired_source_target",
        ),
    )

    def __repr__(self) -> str:
        return f"<Element {self.id}: {self.name}>"


# Columns a caller may filter, sort or project on
ELEMENT_FIELDS = (
    "id",
    "name",
    "type",
    "documentation",
    "parent",
    "source",
    "target",
    "project_id",
    "branch_id",
    "custom",
    "archived",
    "archived_on",
    "archived_by",
    "created_by",
    "last_modified_by",
    "created_on",
    "updated_on",
)

# populate option name -> relationship attribute on Element
ELEMENT_POPULATE_FIELDS = {
    "parent": "parent_element",
    "source": "source_element",
    "target": "target_element",
    "project": "project",
    "branch": "branch",
    "created_by": "created_by_user",
    "last_modified_by": "last_modified_by_user",
    "archived_by": "archived_by_user",
}
