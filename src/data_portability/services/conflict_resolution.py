"""Conflict resolution policy applied per record during import.

Records are compared at the top level only: with ``merge`` each top-level
field of the incoming record replaces the same field of the existing one
(nested objects are replaced, not merged) and fields only the existing
record has are kept. Values that are not mappings cannot be merged field
by field, so the incoming value wins.
"""

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from data_portability.models.import_session import ConflictStrategy

logger = logging.getLogger(__name__)


class ResolutionAction(str, Enum):
    """What applying the policy did to the stored record."""

    INSERT = "insert"
    REPLACE = "replace"
    MERGE = "merge"
    KEEP = "keep"


def _coerce_strategy(strategy: ConflictStrategy | str) -> ConflictStrategy:
    try:
        return ConflictStrategy(strategy)
    except ValueError:
        # Unknown strategies keep existing data untouched.
        logger.warning("Unknown conflict strategy %r, falling back to skip", strategy)
        return ConflictStrategy.SKIP


def resolve_with_action(
    existing: Any | None,
    incoming: Any,
    strategy: ConflictStrategy | str,
) -> tuple[Any | None, ResolutionAction]:
    """Resolve one record and report which action was taken.

    Args:
        existing: Currently stored record, or None when absent
        incoming: Record from the import bundle
        strategy: Conflict strategy

    Returns:
        Tuple of (resolved record, action)
    """
    strategy = _coerce_strategy(strategy)

    if existing is None:
        return incoming, ResolutionAction.INSERT

    if strategy == ConflictStrategy.OVERWRITE:
        return incoming, ResolutionAction.REPLACE

    if strategy == ConflictStrategy.SKIP:
        return existing, ResolutionAction.KEEP

    if isinstance(existing, Mapping) and isinstance(incoming, Mapping):
        return {**existing, **incoming}, ResolutionAction.MERGE
    return incoming, ResolutionAction.REPLACE


def resolve(
    existing: Any | None,
    incoming: Any,
    strategy: ConflictStrategy | str,
) -> Any | None:
    """Resolve an incoming record against the existing one.

    - overwrite: the incoming record, existing discarded
    - merge: incoming fields override existing ones, existing-only fields kept
    - skip: the existing record when present, otherwise the incoming one

    Never raises and never mutates its arguments.
    """
    resolved, _ = resolve_with_action(existing, incoming, strategy)
    return resolved
