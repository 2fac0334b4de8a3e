"""Dense position management for ordered scopes.

A scope is the container whose members carry a ``position`` column: tasks
within a list, lists within a project, checklist items within a checklist.
After every committed mutation the positions in a scope are exactly
``0..N-1``.

Every writer first row-locks the scope's parent (the list, project or
checklist row), so appends, moves and reorders into one scope run one at
a time even when the scope is empty.

Functions here only flush; the caller owns the transaction and commits
once so that every shift and the move itself land together.
"""
import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import ValidationFailedError

logger = logging.getLogger("taskboard-core.ordering")


def lock_scopes(db: Session, scope_column: Any, *scope_ids: Optional[str]) -> None:
    """
    Row-lock the parent rows of the given scopes, in id order.

    The parent table is the target of ``scope_column``'s foreign key, e.g.
    ``task_lists`` for ``Task.list_id``. The ``None`` scope has no parent
    and is skipped.
    """
    ids = sorted({scope_id for scope_id in scope_ids if scope_id is not None})
    if not ids:
        return
    column = scope_column.property.columns[0]
    parent_id = next(iter(column.foreign_keys)).column
    db.execute(
        select(parent_id).where(parent_id.in_(ids)).order_by(parent_id).with_for_update()
    ).all()


def scope_members(
    db: Session,
    model: Any,
    scope_column: Any,
    scope_id: Optional[str],
    exclude_id: Optional[str] = None,
) -> list:
    """
    Load the members of a scope in position order, locking their rows.

    Args:
        db: Database session
        model: Mapped class with ``id`` and ``position`` columns
        scope_column: Column that identifies the scope (e.g. ``Task.list_id``)
        scope_id: Scope value
        exclude_id: Member to leave out (the one being moved or deleted)

    Returns:
        Members ordered by position, then creation time
    """
    query = db.query(model).filter(scope_column == scope_id)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return query.order_by(model.position, model.created_at).with_for_update().all()


def next_position(db: Session, model: Any, scope_column: Any, scope_id: Optional[str]) -> int:
    """Position for a member appended to the end of the scope (0 when empty)."""
    lock_scopes(db, scope_column, scope_id)
    max_position = db.query(func.max(model.position)).filter(scope_column == scope_id).scalar()
    return 0 if max_position is None else max_position + 1


def _write_positions(members: list) -> None:
    for index, member in enumerate(members):
        if member.position != index:
            member.position = index


def resequence_scope(
    db: Session,
    model: Any,
    scope_column: Any,
    scope_id: Optional[str],
    exclude_id: Optional[str] = None,
) -> list:
    """
    Rewrite positions in a scope to ``0..N-1``, keeping the current order.

    Used before deleting a member (pass it as ``exclude_id``) so the gap it
    leaves is closed in the same transaction.
    """
    lock_scopes(db, scope_column, scope_id)
    members = scope_members(db, model, scope_column, scope_id, exclude_id=exclude_id)
    _write_positions(members)
    db.flush()
    return members


def move_to_scope(
    db: Session,
    entity: Any,
    scope_attr: str,
    to_scope: Optional[str],
    position: Optional[int] = None,
) -> int:
    """
    Move ``entity`` to ``position`` within ``to_scope``.

    Without ``position`` the entity is appended. An explicit position is
    clamped to ``[0, len(target)]`` and every member at or after it shifts
    up by one. The source scope is closed up behind the entity. Moving
    inside the same scope is a remove-then-insert.

    Members of the ``None`` scope (e.g. tasks not on any list) are not
    ordered and always sit at position 0.

    Args:
        db: Database session
        entity: Mapped instance being moved
        scope_attr: Name of the scope attribute on the entity (e.g. ``"list_id"``)
        to_scope: Destination scope id
        position: Optional destination index

    Returns:
        The position the entity ended up at
    """
    model = type(entity)
    scope_column = getattr(model, scope_attr)
    from_scope = getattr(entity, scope_attr)
    lock_scopes(db, scope_column, from_scope, to_scope)

    if from_scope is not None and from_scope != to_scope:
        source = scope_members(db, model, scope_column, from_scope, exclude_id=entity.id)
        _write_positions(source)

    if to_scope is None:
        setattr(entity, scope_attr, None)
        entity.position = 0
        db.flush()
        return 0

    target = scope_members(db, model, scope_column, to_scope, exclude_id=entity.id)
    if position is None:
        index = len(target)
    else:
        index = max(0, min(position, len(target)))
    target.insert(index, entity)

    setattr(entity, scope_attr, to_scope)
    _write_positions(target)
    entity.position = index
    db.flush()

    logger.debug(f"Moved {model.__name__} {entity.id} from {from_scope} to {to_scope} at {index}")
    return index


def reorder_scope(
    db: Session,
    model: Any,
    scope_column: Any,
    scope_id: str,
    ordered_ids: list[str],
) -> list:
    """
    Apply a full ordering to a scope.

    ``ordered_ids`` must be exactly the current membership: same size, no
    duplicates, no foreign ids. Anything else is rejected before a single
    position is written.

    Raises:
        ValidationFailedError: Naming the missing, unexpected and duplicated ids
    """
    lock_scopes(db, scope_column, scope_id)
    members = scope_members(db, model, scope_column, scope_id)
    by_id = {member.id: member for member in members}

    seen: set[str] = set()
    duplicated: list[str] = []
    unexpected: list[str] = []
    for entity_id in ordered_ids:
        if entity_id in seen:
            if entity_id not in duplicated:
                duplicated.append(entity_id)
            continue
        seen.add(entity_id)
        if entity_id not in by_id:
            unexpected.append(entity_id)
    missing = [member.id for member in members if member.id not in seen]

    if missing or unexpected or duplicated or len(ordered_ids) != len(members):
        problems = []
        if missing:
            problems.append(f"missing ids: {', '.join(missing)}")
        if unexpected:
            problems.append(f"ids not in this {model.__tablename__} scope: {', '.join(unexpected)}")
        if duplicated:
            problems.append(f"duplicated ids: {', '.join(duplicated)}")
        if not problems:
            problems.append(f"expected {len(members)} ids, got {len(ordered_ids)}")
        raise ValidationFailedError(
            f"Reorder rejected: the id list must match the current members exactly ({'; '.join(problems)})"
        )

    ordered = [by_id[entity_id] for entity_id in ordered_ids]
    _write_positions(ordered)
    db.flush()
    logger.info(f"Reordered {len(ordered)} {model.__tablename__} in scope {scope_id}")
    return ordered
