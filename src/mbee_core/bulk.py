"""Bulk input normalization for element operations.

Every element operation accepts a single object, a list of objects, a
single id or a list of ids. These helpers turn those shapes into one list
and keep every item inside the org/project/branch scope of the call.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence, TypeVar

from .errors import MbeeError, ValidationError
from .identifiers import compose

logger = logging.getLogger("mbee-core.bulk")

T = TypeVar("T")
R = TypeVar("R")

# Body keys that must agree with the call scope
SCOPE_FIELDS = ("org", "project", "branch")


@dataclass(frozen=True)
class ElementScope:
    """The org/project/branch triple every item of a call targets."""

    org: str
    project: str
    branch: str

    @property
    def project_id(self) -> str:
        return compose(self.org, self.project)

    @property
    def branch_id(self) -> str:
        return compose(self.org, self.project, self.branch)

    def element_id(self, local: str) -> str:
        return compose(self.org, self.project, self.branch, local)


def normalize_objects(data: Any, noun: str = "element") -> list[dict]:
    """
    Return ``data`` as a list of objects.

    Raises:
        ValidationError: If ``data`` is neither an object nor a list of objects
    """
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(item, dict) for item in data):
        return list(data)
    raise ValidationError(f"Invalid input: expected an {noun} object or a list of {noun} objects.")


def normalize_ids(data: Any, noun: str = "element") -> list[str]:
    """
    Return ``data`` as a list of ids.

    Objects are accepted too and contribute their ``id``.
    """
    if isinstance(data, str):
        return [data]
    if isinstance(data, dict):
        data = [data]
    if isinstance(data, list):
        ids = []
        for item in data:
            if isinstance(item, dict) and isinstance(item.get("id"), str):
                ids.append(item["id"])
            elif isinstance(item, str):
                ids.append(item)
            else:
                raise ValidationError(f"Invalid input: every {noun} must be an id or an object with an id.")
        return ids
    raise ValidationError(f"Invalid input: expected an {noun} id or a list of {noun} ids.")


def strip_scope_fields(item: dict, scope: ElementScope) -> dict:
    """
    Drop ``org``/``project``/``branch`` from a payload after checking them.

    Raises:
        ValidationError: If a body value disagrees with the call scope
    """
    cleaned = dict(item)
    for key in SCOPE_FIELDS:
        if key in cleaned:
            value = cleaned.pop(key)
            expected = getattr(scope, key)
            if value != expected:
                raise ValidationError(
                    f"Element {key} [{value}] does not match the {key} of the request [{expected}]."
                )
    return cleaned


def validate_each(items: Sequence[T], fn: Callable[[T], R]) -> list[R]:
    """
    Apply ``fn`` to every item, stopping at the first failure.

    The error is re-raised with the offending element id attached.
    """
    results = []
    for item in items:
        try:
            results.append(fn(item))
        except MbeeError as e:
            element_id = item.get("id") if isinstance(item, dict) else item
            raise e.with_element(element_id if isinstance(element_id, str) else None)
    return results


def check_duplicates(ids: Sequence[str], noun: str = "element") -> None:
    duplicates = sorted(i for i, count in Counter(ids).items() if count > 1)
    if duplicates:
        logger.warning(f"Duplicate {noun} ids in request: {duplicates}")
        raise ValidationError(f"Multiple {noun}s with the same ID [{', '.join(duplicates)}] exist in the request.")


def chunked(seq: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield successive slices of at most ``size`` items."""
    items = list(seq)
    for start in range(0, len(items), size):
        yield items[start:start + size]
