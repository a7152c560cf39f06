"""
Primary guardian selection.

One ordering is used everywhere a single guardian must be picked (invoice
snapshots, the invoice's guardian relation, direct-debit exports):

1. guardians explicitly flagged ``is_primary`` come first;
2. then by guardian type: biological parent, adoptive parent, legal
   guardian, other, unknown;
3. ties keep the enrollment order.
"""

from collections.abc import Sequence
from typing import Any, TypeVar

from src.modules.enrollments.models import GuardianType

G = TypeVar("G")

GUARDIAN_TYPE_PRIORITY: dict[str, int] = {
    GuardianType.BIOLOGICAL_PARENT.value: 0,
    GuardianType.ADOPTIVE_PARENT.value: 1,
    GuardianType.LEGAL_GUARDIAN.value: 2,
    GuardianType.OTHER.value: 3,
}
_UNKNOWN_TYPE_RANK = len(GUARDIAN_TYPE_PRIORITY)


def _field(guardian: Any, name: str) -> Any:
    if isinstance(guardian, dict):
        return guardian.get(name)
    return getattr(guardian, name, None)


def guardian_sort_key(guardian: Any) -> tuple[int, int]:
    """Sort key; combine with a stable sort to keep enrollment order on ties."""
    primary_rank = 0 if _field(guardian, "is_primary") else 1
    type_rank = GUARDIAN_TYPE_PRIORITY.get(str(_field(guardian, "guardian_type") or ""), _UNKNOWN_TYPE_RANK)
    return (primary_rank, type_rank)


def order_guardians(guardians: Sequence[G] | None) -> list[G]:
    """Guardians ordered by priority (stable)."""
    return sorted((g for g in (guardians or []) if g is not None), key=guardian_sort_key)


def primary_guardian(guardians: Sequence[G] | None) -> G | None:
    """The guardian billed for an enrollment, or None when there is none."""
    ordered = order_guardians(guardians)
    return ordered[0] if ordered else None
