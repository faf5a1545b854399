"""JSON Model Interchange (JMI) conversions.

- Type 1: flat list of elements
- Type 2: dict of elements keyed by a field (usually ``id``)
- Type 3: nested tree; each node keeps its children under ``contains``
"""
import logging
from typing import Any, Iterable, Optional

from . import schemas
from .errors import JMIConversionError

logger = logging.getLogger("mbee-core.jmi")

CHILDREN_KEY = "contains"


def _as_dict(element: Any) -> dict:
    if isinstance(element, dict):
        return dict(element)
    return schemas.ElementRecord.model_validate(element).model_dump()


def _key_of(value: Any, key_field: str) -> Any:
    # Populated references are nested records
    if isinstance(value, dict):
        return value.get(key_field)
    return value


def to_jmi1(elements: Iterable[Any]) -> list[dict]:
    """Return the elements as a flat list of dicts."""
    return [_as_dict(e) for e in elements]


def to_jmi2(elements: Iterable[Any], key_field: str = "id") -> dict[Any, dict]:
    """
    Key elements by ``key_field``.

    Raises:
        JMIConversionError: If the input is not a list, an element lacks the
            key field, or two elements share a key
    """
    if isinstance(elements, (dict, str)):
        raise JMIConversionError("Data is not in JMI type 1.")

    result: dict[Any, dict] = {}
    for element in elements:
        data = _as_dict(element)
        if key_field not in data:
            raise JMIConversionError(f"Element is missing the key field [{key_field}].")
        key = data[key_field]
        if key in result:
            raise JMIConversionError(f"Invalid object, duplicate keys [{key}] exist.")
        result[key] = data
    return result


def to_jmi3(
    elements: Iterable[Any],
    key_field: str = "id",
    parent_field: str = "parent",
    root: Optional[str] = None,
) -> dict[Any, dict]:
    """
    Nest elements under their parents.

    Args:
        elements: Flat list of elements (dicts or ORM objects)
        key_field: Field identifying an element
        parent_field: Field holding the parent's key
        root: If given, the only key allowed at the top level

    Returns:
        Dict of top-level elements; each node holds its children, keyed the
        same way, under ``contains``

    Raises:
        JMIConversionError: On duplicate keys, when ``root`` is given and other
            elements have no parent in the input, or when elements form a
            containment cycle
    """
    nodes = to_jmi2(elements, key_field)
    for node in nodes.values():
        node[CHILDREN_KEY] = {}

    tree: dict[Any, dict] = {}
    for key, node in nodes.items():
        parent_key = _key_of(node.get(parent_field), key_field)
        if parent_key is not None and parent_key != key and parent_key in nodes:
            nodes[parent_key][CHILDREN_KEY][key] = node
        else:
            tree[key] = node

    if root is not None:
        orphans = sorted(str(k) for k in tree if k != root)
        if root not in tree or orphans:
            logger.warning(f"JMI3 tree rooted at {root} is broken; orphans: {orphans}")
            raise JMIConversionError(
                f"Elements do not form a tree rooted at [{root}]. "
                f"Elements without a parent in the data: {orphans}."
            )

    reached = set()
    stack = list(tree.values())
    while stack:
        node = stack.pop()
        reached.add(node[key_field])
        stack.extend(node[CHILDREN_KEY].values())
    unreachable = sorted(str(k) for k in nodes if k not in reached)
    if unreachable:
        raise JMIConversionError(f"Elements form a containment cycle: {unreachable}.")

    return tree


def flatten_jmi3(tree: dict[Any, dict]) -> list[dict]:
    """Inverse of ``to_jmi3``: depth-first list without ``contains``."""
    result = []
    stack = list(reversed(list(tree.values())))
    while stack:
        node = stack.pop()
        flat = {k: v for k, v in node.items() if k != CHILDREN_KEY}
        result.append(flat)
        stack.extend(reversed(list(node.get(CHILDREN_KEY, {}).values())))
    return result


def convert_jmi(from_type: int, to_type: int, data: Any, key_field: str = "id") -> Any:
    """
    Convert data between JMI types.

    Raises:
        JMIConversionError: For an unknown pair of types
    """
    if from_type == to_type:
        return data
    if from_type == 1 and to_type == 2:
        return to_jmi2(data, key_field)
    if from_type == 1 and to_type == 3:
        return to_jmi3(data, key_field)
    if from_type == 2 and to_type == 1:
        return list(data.values())
    if from_type == 2 and to_type == 3:
        return to_jmi3(list(data.values()), key_field)
    if from_type == 3 and to_type == 1:
        return flatten_jmi3(data)
    if from_type == 3 and to_type == 2:
        return to_jmi2(flatten_jmi3(data), key_field)
    raise JMIConversionError(f"Cannot convert JMI type {from_type} to type {to_type}.")
