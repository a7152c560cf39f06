"""
Relation inputs.

Callers may reference a related record in several shapes: a raw internal id
(``12`` or ``"12"``), a stable document id (``"9f1c..."``), a reference object
(``{"id": 12}`` / ``{"documentId": "9f1c..."}``) or a connect list
(``{"connect": [...]}`` / ``{"set": [...]}``). They are parsed once into a
tagged union and resolved against the database in one place.
"""

from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class ByRawId:
    id: int


@dataclass(frozen=True)
class ByReference:
    document_id: str


@dataclass(frozen=True)
class ByConnectList:
    items: tuple[Union[ByRawId, ByReference], ...]

    @property
    def first(self) -> Union[ByRawId, ByReference, None]:
        return self.items[0] if self.items else None


RelationRef = Union[ByRawId, ByReference, ByConnectList]


def _parse_scalar(value: Any) -> Union[ByRawId, ByReference, None]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return ByRawId(value) if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return ByRawId(int(text))
        return ByReference(text)
    if isinstance(value, dict):
        if value.get("documentId") or value.get("document_id"):
            return ByReference(str(value.get("documentId") or value.get("document_id")))
        if value.get("id") is not None:
            return _parse_scalar(value.get("id"))
    return None


def parse_relation(value: Any) -> RelationRef | None:
    """Parse any accepted relation shape. Returns None when nothing usable is given."""
    if isinstance(value, dict):
        for key in ("connect", "set"):
            if key in value:
                raw = value.get(key) or []
                if not isinstance(raw, (list, tuple)):
                    raw = [raw]
                items = tuple(ref for ref in (_parse_scalar(v) for v in raw) if ref is not None)
                return ByConnectList(items) if items else None
    if isinstance(value, (list, tuple)):
        items = tuple(ref for ref in (_parse_scalar(v) for v in value) if ref is not None)
        return ByConnectList(items) if items else None
    return _parse_scalar(value)


async def resolve_relation_id(db: AsyncSession, model: Any, ref: RelationRef | None) -> int | None:
    """
    Resolve a parsed relation to the internal id of an existing ``model`` row.

    Connect lists resolve to their first entry (to-one relations). Returns None
    when the reference is empty or the target does not exist.
    """
    if isinstance(ref, ByConnectList):
        ref = ref.first
    if ref is None:
        return None
    if isinstance(ref, ByRawId):
        stmt = select(model.id).where(model.id == ref.id)
    else:
        stmt = select(model.id).where(model.document_id == ref.document_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
