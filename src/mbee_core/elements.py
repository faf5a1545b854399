"""Element graph store: find, create, update, remove and search elements.

Every operation takes the session first and the requesting user's
``AuthContext`` second, followed by the org/project/branch scope. Writes are
all-or-nothing: each element of a batch is validated and every reference
checked before anything is written, then the batch is committed at once.

Checks on element writes run in a fixed order:
1. payload shape
2. paired source/target
3. self-loop
4. namespace resolution
5. reference existence
6. containment cycles
"""
import copy
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, load_only, selectinload

from . import models, schemas
from .branch_guard import BranchAction, assert_mutable, get_branch_or_404
from .bulk import (
    ElementScope,
    check_duplicates,
    chunked,
    normalize_ids,
    normalize_objects,
    strip_scope_fields,
    validate_each,
)
from .config import get_settings
from .errors import (
    ArchivedError,
    ConflictError,
    ForbiddenError,
    MbeeError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .identifiers import ID_DELIMITER, compose, extend_id, local_id
from .permissions import AuthContext, can_read_project, require_project_permission
from .validators import (
    REFERENCE_FIELDS,
    check_relationship,
    validate_create_payload,
    validate_find_options,
    validate_search_options,
    validate_update_payload,
    validate_write_options,
)

logger = logging.getLogger("mbee-core.elements")

# Reason recorded when a reference is repointed at the sentinel
BROKEN_REASON = "Element deleted"

_RECORD_SCHEMAS = {
    models.Element: schemas.ElementRecord,
    models.Project: schemas.ProjectRecord,
    models.Branch: schemas.BranchRecord,
    models.User: schemas.UserRecord,
}


# ============================================================================
# Lookups
# ============================================================================

def _batch_size() -> int:
    return get_settings().query_batch_size


def get_project_or_404(db: Session, project_id: str) -> models.Project:
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if not project:
        logger.warning(f"Project {project_id} not found")
        raise NotFoundError(f"The project [{local_id(project_id)}] was not found.")
    return project


def get_element(db: Session, element_id: str) -> Optional[models.Element]:
    return db.query(models.Element).filter(models.Element.id == element_id).first()


def _load_elements(db: Session, element_ids: Iterable[str]) -> dict[str, models.Element]:
    found = {}
    for chunk in chunked(list(element_ids), _batch_size()):
        for element in db.query(models.Element).filter(models.Element.id.in_(chunk)).all():
            found[element.id] = element
    return found


def _existing_ids(db: Session, element_ids: Iterable[str]) -> set[str]:
    existing = set()
    for chunk in chunked(list(element_ids), _batch_size()):
        rows = db.query(models.Element.id).filter(models.Element.id.in_(chunk)).all()
        existing.update(row[0] for row in rows)
    return existing


def find_element_tree(db: Session, branch_id: str, element_ids: Iterable[str]) -> list[str]:
    """
    Find every descendant of the given elements.

    Walks ``parent`` edges breadth-first, one batched IN query per level.

    Args:
        db: Database session
        branch_id: Compound branch id
        element_ids: Compound ids of the subtree roots

    Returns:
        Compound ids of the descendants (the roots themselves excluded)
    """
    seen = set(element_ids)
    frontier = list(seen)
    descendants = []
    while frontier:
        children = []
        for chunk in chunked(frontier, _batch_size()):
            rows = (
                db.query(models.Element.id)
                .filter(models.Element.branch_id == branch_id, models.Element.parent.in_(chunk))
                .all()
            )
            for (child_id,) in rows:
                if child_id not in seen:
                    seen.add(child_id)
                    children.append(child_id)
        descendants.extend(children)
        frontier = children
    return descendants


def find_root_path(db: Session, element_id: str) -> list[str]:
    """Return the ancestors of an element, nearest first, up to the branch root."""
    path = []
    seen = {element_id}
    row = db.query(models.Element.parent).filter(models.Element.id == element_id).first()
    current = row[0] if row else None
    while current and current not in seen:
        seen.add(current)
        row = db.query(models.Element.parent).filter(models.Element.id == current).first()
        if row is None:
            break
        path.append(current)
        current = row[0]
    return path


# ============================================================================
# Output shaping
# ============================================================================

def _record(obj: Any) -> Optional[dict]:
    if obj is None:
        return None
    return _RECORD_SCHEMAS[type(obj)].model_validate(obj).model_dump()


def _project_fields(data: dict, fields: list[str], keep: Iterable[str] = ()) -> dict:
    if not fields:
        return data
    if fields[0].startswith("-"):
        excluded = {f[1:] for f in fields}
        return {k: v for k, v in data.items() if k not in excluded}
    included = {"id", *fields, *keep}
    return {k: v for k, v in data.items() if k in included}


def element_to_dict(
    element: models.Element,
    populate: Iterable[str] = (),
    fields: Optional[list[str]] = None,
) -> dict:
    """
    Convert an element to plain data.

    Populated references replace the stored id with the referenced record;
    ``project`` and ``branch`` are added as extra keys.
    """
    data = schemas.ElementRecord.model_validate(element).model_dump()
    populate = list(populate)
    for name in populate:
        related = getattr(element, models.ELEMENT_POPULATE_FIELDS[name])
        if related is not None:
            data[name] = _record(related)
        elif name in ("project", "branch"):
            data[name] = None
    return _project_fields(data, fields or [], keep=populate)


def _query_options(populate: list[str], fields: list[str], lean: bool) -> list:
    opts = [selectinload(getattr(models.Element, models.ELEMENT_POPULATE_FIELDS[p])) for p in populate]
    if fields and not lean:
        if fields[0].startswith("-"):
            excluded = {f[1:] for f in fields}
            names = [f for f in models.ELEMENT_FIELDS if f not in excluded]
        else:
            names = ["id", *[f for f in fields if f != "id"]]
        opts.append(load_only(*[getattr(models.Element, n) for n in names]))
    return opts


def _shape(elements: list[models.Element], options: schemas.WriteOptions) -> list:
    if not options.lean:
        return elements
    return [element_to_dict(e, options.populate, options.fields) for e in elements]


def _order(query, sort: Optional[str]):
    if not sort:
        return query.order_by(models.Element.id)
    column = getattr(models.Element, sort.lstrip("-"))
    return query.order_by(column.desc() if sort.startswith("-") else column.asc(), models.Element.id)


def _page(query, options: schemas.SearchOptions):
    query = _order(query, options.sort)
    if options.skip:
        query = query.offset(options.skip)
    if options.limit:
        query = query.limit(options.limit)
    return query.all()


def _page_in_memory(elements: list[models.Element], options: schemas.SearchOptions) -> list[models.Element]:
    elements = sorted(elements, key=lambda e: e.id)
    if options.sort:
        name = options.sort.lstrip("-")
        present = [e for e in elements if getattr(e, name) is not None]
        missing = [e for e in elements if getattr(e, name) is None]
        present.sort(key=lambda e: getattr(e, name), reverse=options.sort.startswith("-"))
        elements = missing + present if not options.sort.startswith("-") else present + missing
    end = options.skip + options.limit if options.limit else None
    return elements[options.skip:end]


def _base_query(db: Session, branch_id: str, options: schemas.WriteOptions, include_archived: bool):
    query = db.query(models.Element).filter(models.Element.branch_id == branch_id)
    if not include_archived:
        query = query.filter(models.Element.archived.is_(False))
    return query.options(*_query_options(options.populate, options.fields, options.lean))


def _fetch_ids(
    db: Session,
    branch_id: str,
    element_ids: list[str],
    options: schemas.WriteOptions,
    include_archived: bool = True,
) -> list[models.Element]:
    paging = options if isinstance(options, schemas.SearchOptions) else schemas.SearchOptions()
    if len(element_ids) <= _batch_size():
        query = _base_query(db, branch_id, options, include_archived)
        return _page(query.filter(models.Element.id.in_(element_ids)), paging)

    found = []
    for chunk in chunked(element_ids, _batch_size()):
        query = _base_query(db, branch_id, options, include_archived)
        found.extend(query.filter(models.Element.id.in_(chunk)).all())
    return _page_in_memory(found, paging)


# ============================================================================
# Scope and reference resolution
# ============================================================================

def _open_scope(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: str,
    required: models.Permission,
    action: str,
) -> ElementScope:
    scope = ElementScope(org, project, branch)
    # Composing validates every segment
    project_obj = get_project_or_404(db, scope.project_id)
    require_project_permission(db, auth, project_obj, required, action)
    return scope


def _resolve_reference(scope: ElementScope, value: Optional[str], namespace) -> Optional[str]:
    if value is None:
        return None
    if namespace is not None:
        return compose(namespace.org, namespace.project, namespace.branch, value)
    return scope.element_id(value)


def _check_namespace(
    db: Session,
    auth: AuthContext,
    scope: ElementScope,
    namespace: schemas.ElementNamespace,
) -> None:
    """
    Check that a reference namespace can be used from ``scope``.

    Another project must exist, be internal and be readable by the user.

    Raises:
        NotFoundError: If the project or branch does not exist
        PermissionDeniedError: If the project is private or not readable
    """
    project_id = compose(namespace.org, namespace.project)
    if project_id != scope.project_id:
        project = get_project_or_404(db, project_id)
        if project.visibility != models.ProjectVisibility.INTERNAL or not can_read_project(db, auth, project):
            logger.warning(f"User {auth.user_id} cannot reference elements of project {project_id}")
            raise PermissionDeniedError(
                f"User [{auth.user_id}] cannot reference elements of the project [{namespace.project}]; "
                "it must be internal and readable."
            )
    get_branch_or_404(db, extend_id(project_id, namespace.branch))


def _check_namespaces(
    db: Session,
    auth: AuthContext,
    scope: ElementScope,
    pending: list[tuple[str, schemas.ElementNamespace]],
) -> None:
    checked = set()
    for element_id, namespace in pending:
        key = (namespace.org, namespace.project, namespace.branch)
        if key in checked:
            continue
        try:
            _check_namespace(db, auth, scope, namespace)
        except MbeeError as e:
            raise e.with_element(local_id(element_id))
        checked.add(key)


def _check_references_exist(
    db: Session,
    references: list[tuple[str, str, str]],
    available: set[str],
) -> None:
    """
    Raise NotFound for the first reference that points at nothing.

    Args:
        references: ``(element_id, field, referenced_id)`` triples
        available: Ids that will exist after the write (e.g. the new batch)
    """
    wanted = {ref for _, _, ref in references if ref not in available}
    existing = _existing_ids(db, wanted)
    for element_id, field, ref in references:
        if ref not in available and ref not in existing:
            logger.warning(f"Element {element_id} references missing {field} {ref}")
            raise NotFoundError(
                f"The {field} element [{local_id(ref)}] was not found."
            ).with_element(local_id(element_id))


def _check_containment(proposed: dict[str, str], parent_of: Callable[[str], Optional[str]]) -> None:
    """
    Reject proposed parent edges that close a containment cycle.

    Args:
        proposed: element id -> new parent id
        parent_of: Parent lookup for ids outside ``proposed``
    """
    for element_id in proposed:
        seen = {element_id}
        current = proposed[element_id]
        while current is not None:
            if current in seen:
                logger.warning(f"Parent of {element_id} would create a containment cycle")
                raise ValidationError(
                    "A circular reference exists in the model; "
                    f"element [{local_id(element_id)}] cannot be its own ancestor."
                ).with_element(local_id(element_id))
            seen.add(current)
            current = proposed[current] if current in proposed else parent_of(current)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        logger.warning(f"Integrity error {action}: {e.orig}")
        db.rollback()
        raise ConflictError("Elements could not be saved; an element with the same ID already exists.") from e
    except SQLAlchemyError as e:
        logger.error(f"Database error {action}: {e}", exc_info=True)
        db.rollback()
        raise


# ============================================================================
# Public operations
# ============================================================================

_QUERY_COERCIONS = (
    (bool, lambda expr: expr.as_boolean()),
    (int, lambda expr: expr.as_integer()),
    (float, lambda expr: expr.as_float()),
    (str, lambda expr: expr.as_string()),
)


def _filter_query(query, filters: dict, scope: ElementScope):
    for key, value in filters.items():
        if key.startswith("custom."):
            path = key.split(".")[1:]
            expr = models.Element.custom[tuple(path)] if len(path) > 1 else models.Element.custom[path[0]]
            for kind, coerce in _QUERY_COERCIONS:
                if isinstance(value, kind):
                    query = query.filter(coerce(expr) == value)
                    break
            else:
                raise ValidationError(f"Cannot query [{key}] with a value of type {type(value).__name__}.")
        elif key in models.ELEMENT_FIELDS and key != "custom":
            if key in ("id", *REFERENCE_FIELDS) and isinstance(value, str) and ID_DELIMITER not in value:
                value = scope.element_id(value)
            column = getattr(models.Element, key)
            query = query.filter(column.is_(None) if value is None else column == value)
        else:
            raise ValidationError(f"Invalid query field [{key}].")
    return query


def find(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: str,
    elements: Any = None,
    options: Optional[dict] = None,
) -> list:
    """
    Find elements on a branch.

    Args:
        db: Database session
        auth: Requesting user
        org: Organization id
        project: Project id (local)
        branch: Branch id (local)
        elements: ``None`` or ``[]`` for every element, a local id, a list of
            local ids (or objects with ``id``), or a dict of field filters
        options: populate, archived, subtree, rootpath, fields, limit, skip,
            sort, lean

    Returns:
        Matching elements (ORM objects, or dicts when ``lean``); empty when
        nothing matches

    Raises:
        ValidationError: For invalid options, ids or query fields
        NotFoundError: If the project or branch does not exist
        PermissionDeniedError: If the user cannot read the project
    """
    opts = validate_find_options(options)
    scope = _open_scope(db, auth, org, project, branch, models.Permission.READ, "read elements")
    get_branch_or_404(db, scope.branch_id)

    if isinstance(elements, dict) and not opts.subtree and not opts.rootpath:
        query = _filter_query(_base_query(db, scope.branch_id, opts, opts.archived), elements, scope)
        return _shape(_page(query, opts), opts)

    if isinstance(elements, dict):
        query = _filter_query(db.query(models.Element.id).filter(models.Element.branch_id == scope.branch_id), elements, scope)
        ids = [row[0] for row in query.all()]
    elif elements is None or elements == []:
        if not opts.subtree and not opts.rootpath:
            query = _base_query(db, scope.branch_id, opts, opts.archived)
            return _shape(_page(query, opts), opts)
        ids = [scope.element_id(models.ROOT_ELEMENT)]
    else:
        ids = [scope.element_id(i) for i in normalize_ids(elements)]

    if opts.subtree:
        ids = ids + find_element_tree(db, scope.branch_id, ids)
    elif opts.rootpath:
        ancestors = []
        for element_id in ids:
            ancestors.extend(a for a in find_root_path(db, element_id) if a not in ancestors)
        ids = ids + [a for a in ancestors if a not in ids]

    found = _fetch_ids(db, scope.branch_id, list(dict.fromkeys(ids)), opts, include_archived=opts.archived)
    logger.debug(f"Found {len(found)} elements on {scope.branch_id}")
    return _shape(found, opts)


def create(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: str,
    elements: Any,
    options: Optional[dict] = None,
) -> list:
    """
    Create one or more elements.

    ``parent`` defaults to the branch root ``model`` and may name another
    element of the same batch, as may ``source`` and ``target``. With a
    ``source_namespace``/``target_namespace`` the reference points into
    another project, which must be internal and readable by the user.

    Args:
        db: Database session
        auth: Requesting user
        org: Organization id
        project: Project id (local)
        branch: Branch id (local)
        elements: An element object or a list of them
        options: populate, fields, lean

    Returns:
        The created elements

    Raises:
        ValidationError: Invalid payload, duplicate ids in the request,
            unpaired source/target, self-loop, containment cycle
        NotFoundError: Missing project, branch or referenced element
        ForbiddenError: Missing permission, tag or archived branch, or an
            element with the same id already exists (ConflictError)
    """
    opts = validate_write_options(options)
    scope = _open_scope(db, auth, org, project, branch, models.Permission.WRITE, "create elements")

    items = validate_each(normalize_objects(elements), lambda item: strip_scope_fields(item, scope))
    payloads = validate_each(items, validate_create_payload)
    assert_mutable(db, scope.branch_id, BranchAction.CREATE)
    check_duplicates([p.id for p in payloads])

    rows = []
    namespaces = []
    for payload in payloads:
        element_id = scope.element_id(payload.id)
        source = _resolve_reference(scope, payload.source, payload.source_namespace)
        target = _resolve_reference(scope, payload.target, payload.target_namespace)
        try:
            check_relationship(element_id, source, target)
        except MbeeError as e:
            raise e.with_element(payload.id)
        for namespace in (payload.source_namespace, payload.target_namespace):
            if namespace is not None:
                namespaces.append((element_id, namespace))
        rows.append({
            "payload": payload,
            "id": element_id,
            "parent": scope.element_id(payload.parent or models.ROOT_ELEMENT),
            "source": source,
            "target": target,
        })

    _check_namespaces(db, auth, scope, namespaces)

    new_ids = {row["id"] for row in rows}
    collisions = sorted(local_id(i) for i in _existing_ids(db, new_ids))
    if collisions:
        logger.warning(f"Element id collision on {scope.branch_id}: {collisions}")
        raise ConflictError(
            f"Elements with the following IDs already exist [{', '.join(collisions)}].",
            conflicting_ids=collisions,
        )

    references = []
    for row in rows:
        for field in REFERENCE_FIELDS:
            if row[field] is not None:
                references.append((row["id"], field, row[field]))
    _check_references_exist(db, references, new_ids)

    _check_containment({row["id"]: row["parent"] for row in rows}, lambda _: None)

    now = datetime.utcnow()
    db_elements = []
    for row in rows:
        payload = row["payload"]
        db_elements.append(models.Element(
            id=row["id"],
            project_id=scope.project_id,
            branch_id=scope.branch_id,
            name=payload.name,
            type=payload.type,
            documentation=payload.documentation,
            parent=row["parent"],
            source=row["source"],
            target=row["target"],
            custom=copy.deepcopy(payload.custom),
            archived=payload.archived,
            archived_by=auth.user_id if payload.archived else None,
            archived_on=now if payload.archived else None,
            created_by=auth.user_id,
            last_modified_by=auth.user_id,
            created_on=now,
            updated_on=now,
        ))

    db.add_all(db_elements)
    _commit(db, "creating elements")
    logger.info(f"User {auth.user_id} created {len(db_elements)} elements on {scope.branch_id}")

    return _shape(_fetch_ids(db, scope.branch_id, [e.id for e in db_elements], opts), opts)


def _require_id(item: dict) -> str:
    if not isinstance(item.get("id"), str):
        raise ValidationError("Element does not have an id.")
    return item["id"]


def update(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: str,
    elements: Any,
    options: Optional[dict] = None,
) -> list:
    """
    Update one or more elements.

    Only fields whose value actually changes must be updatable. ``custom``
    is deep-merged into the stored value. An archived element only accepts
    a patch that sets ``archived`` to ``False``. Archiving stamps
    ``archived_by``/``archived_on``; unarchiving clears them.

    Args:
        db: Database session
        auth: Requesting user
        org: Organization id
        project: Project id (local)
        branch: Branch id (local)
        elements: A patch object or a list of them; each carries ``id``
        options: populate, fields, lean

    Returns:
        The updated elements

    Raises:
        ValidationError: Invalid patch, duplicate ids, unpaired source/target,
            self-loop, containment cycle
        NotFoundError: Missing element or referenced element
        ForbiddenError: Missing permission, tag or archived branch, or an
            archived element (ArchivedError)
    """
    opts = validate_write_options(options)
    scope = _open_scope(db, auth, org, project, branch, models.Permission.WRITE, "update elements")

    items = validate_each(normalize_objects(elements), lambda item: strip_scope_fields(item, scope))
    local_ids = validate_each(items, _require_id)
    check_duplicates(local_ids)
    assert_mutable(db, scope.branch_id, BranchAction.UPDATE)

    element_ids = [scope.element_id(i) for i in local_ids]
    existing = _load_elements(db, element_ids)
    missing = [local_id(i) for i in element_ids if i not in existing]
    if missing:
        logger.warning(f"Update of missing elements on {scope.branch_id}: {missing}")
        raise NotFoundError(f"The following elements were not found: [{', '.join(missing)}].")

    patches = []
    namespaces = []
    for item, element_id in zip(items, element_ids):
        element = existing[element_id]
        try:
            patch = validate_update_payload(item, element, scope.branch_id)
            if element.archived and item.get("archived") is not False:
                logger.warning(f"Rejected update of archived element {element_id}")
                raise ArchivedError("Element is archived and must be unarchived before it can be updated.")
            if "parent" in patch.changes and local_id(element_id) == models.ROOT_ELEMENT:
                raise ValidationError("The parent of the root element cannot be changed.")
            if patch.references_changed:
                check_relationship(
                    element_id,
                    patch.changes.get("source", element.source),
                    patch.changes.get("target", element.target),
                )
        except MbeeError as e:
            raise e.with_element(item["id"])
        namespaces.extend((element_id, ns) for ns in patch.external_refs.values())
        patches.append(patch)

    _check_namespaces(db, auth, scope, namespaces)

    references = [
        (patch.element_id, field, patch.changes[field])
        for patch in patches
        for field in REFERENCE_FIELDS
        if patch.changes.get(field) is not None
    ]
    _check_references_exist(db, references, set())

    parents = {p.element_id: p.changes["parent"] for p in patches if "parent" in p.changes}
    if parents:
        cache = {e.id: e.parent for e in existing.values()}

        def parent_of(element_id: str) -> Optional[str]:
            if element_id not in cache:
                row = db.query(models.Element.parent).filter(models.Element.id == element_id).first()
                cache[element_id] = row[0] if row else None
            return cache[element_id]

        _check_containment(parents, parent_of)

    now = datetime.utcnow()
    changed = 0
    for patch in patches:
        if not patch.changes:
            continue
        element = existing[patch.element_id]
        for key, value in patch.changes.items():
            setattr(element, key, value)
        if patch.archive_transition is True:
            element.archived_by = auth.user_id
            element.archived_on = now
        elif patch.archive_transition is False:
            element.archived_by = None
            element.archived_on = None
        element.last_modified_by = auth.user_id
        element.updated_on = now
        changed += 1

    _commit(db, "updating elements")
    logger.info(f"User {auth.user_id} updated {changed} elements on {scope.branch_id}")

    return _shape(_fetch_ids(db, scope.branch_id, element_ids, opts), opts)


def _record_broken_relationship(element: models.Element, field: str, old_id: str, now: datetime) -> None:
    entry = {
        "date": now.isoformat(),
        "type": field,
        "element": old_id,
        "reason": BROKEN_REASON,
    }
    custom = copy.deepcopy(element.custom) if element.custom else {}
    mbee = custom.setdefault("mbee", {})
    mbee.setdefault("broken_relationships", []).append(entry)
    # Reassign so the JSON column is flagged dirty
    element.custom = custom


def remove(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: str,
    elements: Any,
) -> list[str]:
    """
    Delete elements and repair references to them.

    Every element still referencing a deleted element as ``parent``,
    ``source`` or ``target`` is repointed at the ``undefined`` element of its
    own branch, and the broken relationship is recorded under
    ``custom["mbee"]["broken_relationships"]``. Elements on tag branches are
    left untouched.

    Args:
        db: Database session
        auth: Requesting user
        org: Organization id
        project: Project id (local)
        branch: Branch id (local)
        elements: A local id, a list of ids, or objects with ``id``

    Returns:
        Compound ids of the deleted elements

    Raises:
        NotFoundError: If an element does not exist
        ForbiddenError: Missing permission, tag or archived branch, or an
            attempt to delete a root element
    """
    scope = _open_scope(db, auth, org, project, branch, models.Permission.WRITE, "delete elements")
    local_ids = normalize_ids(elements)
    check_duplicates(local_ids)
    assert_mutable(db, scope.branch_id, BranchAction.DELETE)

    reserved = [i for i in local_ids if i in models.RESERVED_ELEMENTS]
    if reserved:
        logger.warning(f"Rejected delete of root elements {reserved} on {scope.branch_id}")
        raise ForbiddenError(f"Root elements [{', '.join(reserved)}] cannot be deleted.")

    element_ids = [scope.element_id(i) for i in local_ids]
    existing = _existing_ids(db, element_ids)
    missing = [local_id(i) for i in element_ids if i not in existing]
    if missing:
        logger.warning(f"Delete of missing elements on {scope.branch_id}: {missing}")
        raise NotFoundError(f"The following elements were not found: [{', '.join(missing)}].")

    deleted = set(element_ids)
    dependents: dict[str, models.Element] = {}
    broken: list[tuple[str, str, str]] = []
    for field in REFERENCE_FIELDS:
        column = getattr(models.Element, field)
        for chunk in chunked(element_ids, _batch_size()):
            for element in db.query(models.Element).filter(column.in_(chunk)).all():
                if element.id in deleted:
                    continue
                dependents[element.id] = element
                broken.append((element.id, field, getattr(element, field)))

    tag_branches = set()
    branch_ids = {e.branch_id for e in dependents.values()}
    if branch_ids:
        rows = (
            db.query(models.Branch.id)
            .filter(models.Branch.id.in_(branch_ids), models.Branch.tag.is_(True))
            .all()
        )
        tag_branches = {row[0] for row in rows}

    now = datetime.utcnow()
    repointed = 0
    for element_id, field, old_id in broken:
        element = dependents[element_id]
        if element.branch_id in tag_branches:
            continue
        setattr(element, field, extend_id(element.branch_id, models.UNDEFINED_ELEMENT))
        _record_broken_relationship(element, field, old_id, now)
        element.updated_on = now
        repointed += 1

    try:
        for chunk in chunked(element_ids, _batch_size()):
            db.query(models.Element).filter(models.Element.id.in_(chunk)).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting elements: {e}", exc_info=True)
        db.rollback()
        raise

    logger.info(
        f"User {auth.user_id} deleted {len(element_ids)} elements on {scope.branch_id}; "
        f"repointed {repointed} references"
    )
    return element_ids


def search(
    db: Session,
    auth: AuthContext,
    org: str,
    project: str,
    branch: str,
    query: str,
    options: Optional[dict] = None,
) -> list:
    """
    Search element names and documentation.

    Every whitespace-separated term must appear (case-insensitive) in the
    name or the documentation.

    Args:
        db: Database session
        auth: Requesting user
        org: Organization id
        project: Project id (local)
        branch: Branch id (local)
        query: Search text
        options: archived, limit, skip, sort, lean, populate, fields

    Returns:
        Matching elements
    """
    opts = validate_search_options(options)
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("A search query is required.")
    scope = _open_scope(db, auth, org, project, branch, models.Permission.READ, "search elements")
    get_branch_or_404(db, scope.branch_id)

    db_query = _base_query(db, scope.branch_id, opts, opts.archived)
    for term in query.split():
        search_pattern = f"%{term}%"
        db_query = db_query.filter(
            or_(
                models.Element.name.ilike(search_pattern),
                models.Element.documentation.ilike(search_pattern),
            )
        )

    found = _page(db_query, opts)
    logger.debug(f"Search '{query}' on {scope.branch_id} matched {len(found)} elements")
    return _shape(found, opts)
