"""Compound identifiers of the form ``org:project:branch:element``.

Pure helpers, no database access.
"""
from typing import NamedTuple

from .errors import MalformedIdError

ID_DELIMITER = ":"


class ElementId(NamedTuple):
    """The four segments of an element id."""

    org: str
    project: str
    branch: str
    element: str

    @property
    def project_id(self) -> str:
        return compose(self.org, self.project)

    @property
    def branch_id(self) -> str:
        return compose(self.org, self.project, self.branch)

    def __str__(self) -> str:
        return compose(self.org, self.project, self.branch, self.element)


def compose(*parts: str) -> str:
    """
    Join id segments with the delimiter.

    Args:
        *parts: Segments, outermost first (org, project, branch, element)

    Returns:
        The compound id

    Raises:
        MalformedIdError: If there are no parts, or a part is empty,
            not a string, or contains the delimiter
    """
    if not parts:
        raise MalformedIdError("Cannot create an id from zero segments.")
    for part in parts:
        if not isinstance(part, str) or not part:
            raise MalformedIdError(f"Id segment [{part!r}] must be a non-empty string.")
        if ID_DELIMITER in part:
            raise MalformedIdError(
                f"Id segment [{part}] cannot contain the delimiter '{ID_DELIMITER}'."
            )
    return ID_DELIMITER.join(parts)


def parse_id(compound_id: str) -> list[str]:
    """Split a compound id into its segments."""
    if not isinstance(compound_id, str) or not compound_id:
        raise MalformedIdError(f"Id [{compound_id!r}] must be a non-empty string.")
    return compound_id.split(ID_DELIMITER)


def decompose(element_id: str) -> ElementId:
    """
    Split an element id into ``(org, project, branch, element)``.

    Raises:
        MalformedIdError: If the id does not have exactly four non-empty segments
    """
    parts = parse_id(element_id)
    if len(parts) != 4 or not all(parts):
        raise MalformedIdError(
            f"Element id [{element_id}] must have the form org:project:branch:element."
        )
    return ElementId(*parts)


def local_id(compound_id: str) -> str:
    """Return the last segment of a compound id."""
    return parse_id(compound_id)[-1]


def branch_of(element_id: str) -> str:
    """Return the branch id (``org:project:branch``) an element id belongs to."""
    return decompose(element_id).branch_id


def extend_id(prefix: str, *parts: str) -> str:
    """Append segments to a compound id (``extend_id("org:proj", "master")``)."""
    return compose(*parse_id(prefix), *parts)
