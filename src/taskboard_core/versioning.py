"""Requirement versioning and change history.

Only significant fields move the version number. Every patch that changes
anything, significant or not, is written to the append-only history with
per-field ``{"from", "to"}`` diffs.
"""
import enum
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import ConflictError

logger = logging.getLogger("taskboard-core.versioning")


SIGNIFICANT_FIELDS = ("title", "description", "type", "acceptance_criteria", "dependencies")

# Changes to these fields make the stored quality score stale
ANALYZED_FIELDS = ("title", "description", "acceptance_criteria")


def normalize_value(value: Any) -> Any:
    """JSON-friendly form of a field value; enums become their values."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: normalize_value(v) for k, v in value.items()}
    return value


def is_significant_change(patch: dict) -> bool:
    """True when the patch carries any significant field, changed or not."""
    return any(field in patch for field in SIGNIFICANT_FIELDS)


def needs_reanalysis(changes: dict) -> bool:
    return any(field in changes for field in ANALYZED_FIELDS)


def compute_field_changes(requirement: models.Requirement, patch: dict) -> dict:
    """
    Diff every patched field against the requirement's current value.

    Values are compared structurally, so a re-sent identical list is not a
    change.

    Returns:
        ``{field: {"from": old, "to": new}}`` for fields that differ
    """
    changes = {}
    for field, new_value in patch.items():
        old = normalize_value(getattr(requirement, field))
        new = normalize_value(new_value)
        if old != new:
            changes[field] = {"from": old, "to": new}
    return changes


def next_version(requirement: models.Requirement, patch: dict) -> int:
    return requirement.version + 1 if is_significant_change(patch) else requirement.version


def check_expected_version(requirement: models.Requirement, expected_version: Optional[int]) -> None:
    """
    Optimistic concurrency guard.

    Raises:
        ConflictError: If the caller read a version that is no longer current
    """
    if expected_version is None:
        return
    if requirement.version != expected_version:
        logger.warning(
            f"Stale update on requirement {requirement.code}: "
            f"expected v{expected_version}, current v{requirement.version}"
        )
        raise ConflictError(
            f"Requirement {requirement.code} was modified concurrently: "
            f"you edited version {expected_version} but the current version is {requirement.version}. "
            f"Reload and retry."
        )


def create_history_entry(
    db: Session,
    requirement_id: str,
    version: int,
    action: str,
    changes: dict,
    changed_by: Optional[str] = None,
) -> models.RequirementHistory:
    """
    Append a history entry. The caller commits.

    Args:
        db: Database session
        requirement_id: Requirement the entry belongs to
        version: Requirement version after the change
        action: ``"created"`` or ``"updated"``
        changes: Field diffs (or creation snapshot)
        changed_by: Acting user
    """
    entry = models.RequirementHistory(
        requirement_id=requirement_id,
        version=version,
        changes={"action": action, **changes},
        changed_by_user_id=changed_by,
    )
    db.add(entry)
    logger.debug(f"History entry v{version} ({action}) for requirement {requirement_id}")
    return entry
