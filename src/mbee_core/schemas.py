"""Pydantic schemas for payload, option and record validation."""
from datetime import datetime
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)

from .models import ELEMENT_FIELDS, ELEMENT_POPULATE_FIELDS, Permission, ProjectVisibility


# Element payload schemas

class ElementNamespace(BaseModel):
    """Location of an element referenced from another project."""

    model_config = ConfigDict(extra="forbid")

    org: StrictStr = Field(..., min_length=1)
    project: StrictStr = Field(..., min_length=1)
    branch: StrictStr = Field("master", min_length=1)


class ElementCreate(BaseModel):
    """Schema for creating an element.

    Reference fields (``parent``, ``source``, ``target``) hold local element
    ids; ``source_namespace``/``target_namespace`` move the reference into
    another project.
    """

    model_config = ConfigDict(extra="forbid")

    id: StrictStr
    name: StrictStr = ""
    documentation: StrictStr = ""
    type: StrictStr = ""
    parent: Optional[StrictStr] = None
    source: Optional[StrictStr] = None
    target: Optional[StrictStr] = None
    source_namespace: Optional[ElementNamespace] = None
    target_namespace: Optional[ElementNamespace] = None
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: StrictBool = False


class ElementUpdate(BaseModel):
    """Schema for the updatable part of an element patch."""

    model_config = ConfigDict(extra="forbid")

    id: StrictStr
    name: Optional[StrictStr] = None
    documentation: Optional[StrictStr] = None
    type: Optional[StrictStr] = None
    parent: Optional[StrictStr] = None
    source: Optional[StrictStr] = None
    target: Optional[StrictStr] = None
    source_namespace: Optional[ElementNamespace] = None
    target_namespace: Optional[ElementNamespace] = None
    custom: Optional[dict[str, Any]] = None
    archived: Optional[StrictBool] = None


# Option schemas

def _check_populate(values: list[str]) -> list[str]:
    invalid = [v for v in values if v not in ELEMENT_POPULATE_FIELDS]
    if invalid:
        raise ValueError(
            f"Cannot populate {invalid}; populatable fields are {sorted(ELEMENT_POPULATE_FIELDS)}."
        )
    return values


def _check_fields(values: list[str]) -> list[str]:
    names = [v[1:] if v.startswith("-") else v for v in values]
    invalid = [n for n in names if n not in ELEMENT_FIELDS]
    if invalid:
        raise ValueError(f"Invalid fields {invalid}.")
    excluded = [v for v in values if v.startswith("-")]
    if excluded and len(excluded) != len(values):
        raise ValueError("Fields cannot mix included and excluded (-) names.")
    if "-id" in values:
        raise ValueError("The field id cannot be excluded.")
    return values


def _check_sort(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    name = value[1:] if value.startswith("-") else value
    if name not in ELEMENT_FIELDS or name == "custom":
        raise ValueError(f"Cannot sort on [{value}].")
    return value


class WriteOptions(BaseModel):
    """Options accepted by create and update."""

    model_config = ConfigDict(extra="forbid")

    populate: list[StrictStr] = Field(default_factory=list)
    fields: list[StrictStr] = Field(default_factory=list)
    lean: StrictBool = False

    @field_validator("populate")
    @classmethod
    def validate_populate(cls, v):
        return _check_populate(v)

    @field_validator("fields")
    @classmethod
    def validate_fields(cls, v):
        return _check_fields(v)


class SearchOptions(WriteOptions):
    """Options accepted by search."""

    archived: StrictBool = False
    limit: StrictInt = Field(0, ge=0, description="0 means no limit")
    skip: StrictInt = Field(0, ge=0)
    sort: Optional[StrictStr] = None

    @field_validator("sort")
    @classmethod
    def validate_sort(cls, v):
        return _check_sort(v)


class FindOptions(SearchOptions):
    """Options accepted by find."""

    subtree: StrictBool = False
    rootpath: StrictBool = False

    @model_validator(mode="after")
    def subtree_and_rootpath_are_exclusive(self):
        if self.subtree and self.rootpath:
            raise ValueError("The options subtree and rootpath cannot be used together.")
        return self


# Supporting payloads

class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: StrictStr = Field(..., min_length=1, max_length=255)
    fname: StrictStr = ""
    lname: StrictStr = ""
    email: Optional[StrictStr] = None
    admin: StrictBool = False


class OrganizationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: StrictStr
    name: StrictStr = ""
    custom: dict[str, Any] = Field(default_factory=dict)


class ProjectCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: StrictStr
    name: StrictStr = ""
    visibility: ProjectVisibility = ProjectVisibility.PRIVATE
    custom: dict[str, Any] = Field(default_factory=dict)


class BranchCreate(BaseModel):
    """Schema for creating a branch; elements are copied from ``source``."""

    model_config = ConfigDict(extra="forbid")

    id: StrictStr
    name: StrictStr = ""
    source: StrictStr = "master"
    tag: StrictBool = False
    custom: dict[str, Any] = Field(default_factory=dict)


class MemberGrant(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: StrictStr
    permission: Permission = Permission.READ


# Records (lean output)

class UserRecord(BaseModel):
    id: str
    fname: Optional[str] = None
    lname: Optional[str] = None
    email: Optional[str] = None
    admin: bool = False

    model_config = ConfigDict(from_attributes=True)


class ProjectRecord(BaseModel):
    id: str
    organization_id: str
    name: str
    visibility: ProjectVisibility
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class BranchRecord(BaseModel):
    id: str
    project_id: str
    name: str
    source: Optional[str] = None
    tag: bool = False
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False

    model_config = ConfigDict(from_attributes=True)


class ElementRecord(BaseModel):
    """Plain-data form of an element, as returned with ``lean=True``."""

    id: str
    name: str = ""
    type: str = ""
    documentation: str = ""
    parent: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    project_id: str
    branch_id: str
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False
    archived_on: Optional[datetime] = None
    archived_by: Optional[str] = None
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
