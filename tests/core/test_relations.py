from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.enrollments.models import Student
from src.shared.utils.relations import (
    ByConnectList,
    ByRawId,
    ByReference,
    parse_relation,
    resolve_relation_id,
)


class TestParseRelation:
    """Every accepted relation shape parses to the same tagged union."""

    def test_raw_ids(self):
        assert parse_relation(12) == ByRawId(12)
        assert parse_relation("12") == ByRawId(12)
        assert parse_relation({"id": 12}) == ByRawId(12)

    def test_document_ids(self):
        assert parse_relation("9f1c2b") == ByReference("9f1c2b")
        assert parse_relation({"documentId": "9f1c2b"}) == ByReference("9f1c2b")
        assert parse_relation({"document_id": "9f1c2b"}) == ByReference("9f1c2b")

    def test_connect_lists(self):
        ref = parse_relation({"connect": [{"id": 3}, "abc"]})
        assert isinstance(ref, ByConnectList)
        assert ref.items == (ByRawId(3), ByReference("abc"))
        assert ref.first == ByRawId(3)
        assert parse_relation({"set": 5}) == ByConnectList((ByRawId(5),))

    def test_empty_inputs(self):
        assert parse_relation(None) is None
        assert parse_relation("") is None
        assert parse_relation(0) is None
        assert parse_relation(True) is None
        assert parse_relation({"connect": []}) is None
        assert parse_relation({}) is None


class TestResolveRelation:
    """Resolution against the database."""

    async def test_resolves_by_id_and_document_id(self, db_session: AsyncSession):
        student = Student(name="Lucía", lastname="García")
        db_session.add(student)
        await db_session.flush()

        assert await resolve_relation_id(db_session, Student, parse_relation(student.id)) == student.id
        assert (
            await resolve_relation_id(db_session, Student, parse_relation({"documentId": student.document_id}))
            == student.id
        )
        assert (
            await resolve_relation_id(db_session, Student, parse_relation({"connect": [student.document_id]}))
            == student.id
        )

    async def test_missing_target_resolves_to_none(self, db_session: AsyncSession):
        assert await resolve_relation_id(db_session, Student, parse_relation(999)) is None
        assert await resolve_relation_id(db_session, Student, parse_relation("missingdoc")) is None
        assert await resolve_relation_id(db_session, Student, None) is None
