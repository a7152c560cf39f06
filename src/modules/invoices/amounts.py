"""Canonical form of invoice amount lines."""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from src.shared.utils.money import to_decimal


def _entry_field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _iter_raw_entries(value: Any) -> Iterable[tuple[Any, Any, Any]]:
    """Yield (concept, amount, description) from a list of lines or a concept->amount map."""
    if isinstance(value, Mapping):
        for concept, amount in value.items():
            yield concept, amount, None
    elif isinstance(value, (list, tuple)):
        for entry in value:
            if entry is None:
                continue
            yield (
                _entry_field(entry, "concept"),
                _entry_field(entry, "amount"),
                _entry_field(entry, "description"),
            )


def normalize_invoice_amounts(value: Any) -> list[dict[str, Any]] | None:
    """
    Collapse amount input into a deduplicated, validated list.

    Accepts a list of ``{concept, amount, description?}`` (dicts or objects),
    a plain ``{concept: amount}`` map, or None. Concepts are trimmed and empty
    ones dropped; amounts must be finite numbers >= 0 (numeric strings are
    parsed), anything else is dropped silently. Concepts that match
    case-insensitively are merged: amounts summed, first casing and first
    non-empty description kept.

    Returns None when nothing valid remains. Never raises.

        >>> normalize_invoice_amounts([
        ...     {"concept": "Matricula", "amount": 100},
        ...     {"concept": "matricula", "amount": 50},
        ... ])
        [{'concept': 'Matricula', 'amount': 150.0}]
    """
    merged: dict[str, dict[str, Any]] = {}
    for concept, amount, description in _iter_raw_entries(value):
        if not isinstance(concept, str):
            concept = "" if concept is None else str(concept)
        concept = concept.strip()
        if not concept:
            continue
        parsed = to_decimal(amount)
        if parsed is None or parsed < 0:
            continue
        if isinstance(description, str):
            description = description.strip() or None
        else:
            description = None

        key = concept.lower()
        current = merged.get(key)
        if current is None:
            merged[key] = {"concept": concept, "amount": parsed, "description": description}
            continue
        current["amount"] += parsed
        if current["description"] is None and description:
            current["description"] = description

    if not merged:
        return None

    result: list[dict[str, Any]] = []
    for item in merged.values():
        line: dict[str, Any] = {"concept": item["concept"], "amount": float(item["amount"])}
        if item["description"]:
            line["description"] = item["description"]
        result.append(line)
    return result


def subtotal_from_amounts(amounts: Any) -> Decimal:
    """Sum of the normalized amounts (0 when there are none)."""
    normalized = normalize_invoice_amounts(amounts) or []
    return sum((Decimal(str(line["amount"])) for line in normalized), Decimal("0"))
