"""Validation of element payloads and options.

Create payloads are checked for shape (allowed keys, types, id/name
patterns). Update payloads are diffed against the stored element so that
only fields that actually change have to be updatable.
"""
import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel

from . import models, schemas
from .config import get_settings
from .errors import MalformedIdError, ValidationError
from .identifiers import ID_DELIMITER, compose, decompose, extend_id

logger = logging.getLogger("mbee-core.validators")

ModelT = TypeVar("ModelT", bound=BaseModel)

UPDATABLE_FIELDS = frozenset({
    "name",
    "documentation",
    "type",
    "custom",
    "archived",
    "parent",
    "source",
    "target",
    "source_namespace",
    "target_namespace",
})

# Stored fields a patch may echo back unchanged
READ_ONLY_FIELDS = frozenset({
    "project_id",
    "branch_id",
    "archived_by",
    "archived_on",
    "created_by",
    "created_on",
    "last_modified_by",
    "updated_on",
})

REFERENCE_FIELDS = ("parent", "source", "target")


@dataclass
class ValidatedPatch:
    """The effective changes of one update payload."""

    element_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    archive_transition: Optional[bool] = None
    # reference field -> namespace, for references into another project
    external_refs: dict[str, schemas.ElementNamespace] = field(default_factory=dict)

    @property
    def references_changed(self) -> bool:
        return "source" in self.changes or "target" in self.changes


def parse_model(schema_cls: Type[ModelT], raw: Any, noun: str) -> ModelT:
    """
    Validate ``raw`` against a pydantic schema.

    Raises:
        ValidationError: With every pydantic error flattened into one message
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(f"The {noun} must be an object, not {type(raw).__name__}.")
    try:
        return schema_cls.model_validate(raw)
    except pydantic.ValidationError as e:
        details = "; ".join(
            f"[{'.'.join(str(p) for p in err['loc']) or noun}] {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {noun}: {details}") from e


def _check_pattern(value: str, pattern: str, label: str) -> None:
    if ID_DELIMITER in value or not re.fullmatch(pattern, value):
        raise ValidationError(f"Invalid {label} [{value}].")


def check_element_id(value: str) -> None:
    _check_pattern(value, get_settings().element_id_pattern, "element ID")


def check_element_name(value: str) -> None:
    if not re.fullmatch(get_settings().element_name_pattern, value):
        raise ValidationError(f"Invalid element name [{value}].")


def check_org_id(value: str) -> None:
    _check_pattern(value, get_settings().org_id_pattern, "organization ID")


def check_project_id(value: str) -> None:
    _check_pattern(value, get_settings().project_id_pattern, "project ID")


def check_branch_id(value: str) -> None:
    _check_pattern(value, get_settings().branch_id_pattern, "branch ID")


def check_pairing(source: Optional[str], target: Optional[str]) -> None:
    """Source and target must be set together."""
    if source is not None and target is None:
        raise ValidationError("A target is required if source is provided.")
    if target is not None and source is None:
        raise ValidationError("A source is required if target is provided.")


def check_relationship(element_id: str, source: Optional[str], target: Optional[str]) -> None:
    """
    Check the final relationship state of an element.

    Pairing is checked before self-loops.

    Args:
        element_id: Compound id of the element
        source: Compound id of the source (or None)
        target: Compound id of the target (or None)
    """
    check_pairing(source, target)
    if source == element_id:
        raise ValidationError("An element's source cannot be itself.")
    if target == element_id:
        raise ValidationError("An element's target cannot be itself.")


def _check_namespaces(payload: BaseModel, present: set[str]) -> None:
    for ref in ("source", "target"):
        if f"{ref}_namespace" in present and getattr(payload, f"{ref}_namespace") is not None:
            if getattr(payload, ref) is None:
                raise ValidationError(f"A {ref} is required if {ref}_namespace is provided.")


def validate_create_payload(raw: Any) -> schemas.ElementCreate:
    """
    Validate one element create payload.

    Args:
        raw: The element object as supplied by the caller

    Returns:
        The parsed payload

    Raises:
        ValidationError: If the id is missing or invalid, the name is invalid,
            a key is unknown, custom is not an object, or source/target
            are not given together
    """
    if not isinstance(raw, dict):
        raise ValidationError("Element must be an object.")
    if "id" not in raw:
        raise ValidationError("Element does not have an id.")

    element = parse_model(schemas.ElementCreate, raw, "element")
    check_element_id(element.id)
    check_element_name(element.name)
    for ref in REFERENCE_FIELDS:
        value = getattr(element, ref)
        if value is not None:
            check_element_id(value)

    check_pairing(element.source, element.target)
    _check_namespaces(element, element.model_fields_set)
    return element


def merge_custom(base: Optional[dict], patch: dict) -> dict:
    """
    Deep-merge ``patch`` into a copy of ``base``.

    Nested objects are merged key by key; any other value replaces the
    stored one. The stored value is never mutated.
    """
    merged = copy.deepcopy(base) if base else {}
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_custom(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _same_value(stored: Any, supplied: Any) -> bool:
    if stored == supplied:
        return True
    # Timestamps may be echoed back as ISO strings
    if hasattr(stored, "isoformat") and isinstance(supplied, str):
        return stored.isoformat() == supplied
    if hasattr(stored, "value") and not isinstance(stored, dict):
        return stored.value == supplied
    return False


def _split_reference(
    ref: str, value: str, branch_id: str
) -> tuple[str, Optional[schemas.ElementNamespace]]:
    """Return a compound reference and, when it leaves ``branch_id``, its namespace."""
    try:
        org, project, branch, element = decompose(value)
    except MalformedIdError:
        raise ValidationError(f"Invalid element ID [{value}].")
    check_element_id(element)
    if compose(org, project, branch) == branch_id:
        return value, None
    if ref == "parent":
        raise ValidationError(f"The parent [{value}] must be on the branch [{branch_id}].")
    return value, schemas.ElementNamespace(org=org, project=project, branch=branch)


def validate_update_payload(raw: Any, existing: models.Element, branch_id: str) -> ValidatedPatch:
    """
    Validate one element patch against the stored element.

    Args:
        raw: The patch as supplied by the caller (must carry ``id``)
        existing: The stored element
        branch_id: Compound id of the branch local references resolve against

    Returns:
        The effective changes

    Raises:
        ValidationError: For unknown keys, changes to read-only fields,
            invalid values, or a namespace without its reference
    """
    if not isinstance(raw, dict):
        raise ValidationError("Element update must be an object.")
    if "id" not in raw:
        raise ValidationError("Element does not have an id.")

    unknown = sorted(k for k in raw if k != "id" and k not in UPDATABLE_FIELDS and k not in READ_ONLY_FIELDS)
    if unknown:
        raise ValidationError(f"Invalid element properties {unknown}.")

    for key in sorted(READ_ONLY_FIELDS & set(raw)):
        if not _same_value(getattr(existing, key), raw[key]):
            raise ValidationError(f"Element property [{key}] cannot be changed.")

    updatable = {k: v for k, v in raw.items() if k == "id" or k in UPDATABLE_FIELDS}
    patch = parse_model(schemas.ElementUpdate, updatable, "element update")
    present = patch.model_fields_set - {"id"}
    _check_namespaces(patch, present)

    result = ValidatedPatch(element_id=existing.id)

    for key in ("name", "documentation", "type"):
        if key in present:
            value = getattr(patch, key)
            if value is None:
                raise ValidationError(f"Element property [{key}] cannot be null.")
            if key == "name":
                check_element_name(value)
            if value != getattr(existing, key):
                result.changes[key] = value

    if "custom" in present:
        if patch.custom is None:
            raise ValidationError("Element property [custom] must be an object.")
        merged = merge_custom(existing.custom, patch.custom)
        if merged != (existing.custom or {}):
            result.changes["custom"] = merged

    if "archived" in present:
        if patch.archived is None:
            raise ValidationError("Element property [archived] cannot be null.")
        if patch.archived != existing.archived:
            result.changes["archived"] = patch.archived
            result.archive_transition = patch.archived

    for ref in REFERENCE_FIELDS:
        if ref not in present:
            continue
        value = getattr(patch, ref)
        if value is None:
            if ref == "parent":
                raise ValidationError("Element property [parent] cannot be null.")
            resolved = None
        else:
            namespace = getattr(patch, f"{ref}_namespace", None)
            if ID_DELIMITER in value and namespace is None:
                # Compound ids as returned by find
                resolved, namespace = _split_reference(ref, value, branch_id)
            else:
                check_element_id(value)
                if namespace is not None:
                    resolved = compose(namespace.org, namespace.project, namespace.branch, value)
                else:
                    resolved = extend_id(branch_id, value)
            if namespace is not None and resolved != getattr(existing, ref):
                result.external_refs[ref] = namespace
        if resolved != getattr(existing, ref):
            result.changes[ref] = resolved

    logger.debug(f"Update of {existing.id} changes {sorted(result.changes)}")
    return result


def validate_write_options(raw: Any) -> schemas.WriteOptions:
    return parse_model(schemas.WriteOptions, raw, "options")


def validate_search_options(raw: Any) -> schemas.SearchOptions:
    return parse_model(schemas.SearchOptions, raw, "options")


def validate_find_options(raw: Any) -> schemas.FindOptions:
    """Validate find options; unknown option names are rejected."""
    return parse_model(schemas.FindOptions, raw, "options")
