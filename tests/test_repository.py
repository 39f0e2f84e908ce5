from datetime import timedelta

import pytest
from sqlalchemy import text, update

from facematch.config import EXPORT_FORMAT, EXPORT_VERSION, LOG_RETENTION_COUNT
from facematch.errors import StoreError, ValidationError
from facematch.models import AccessLogDB, FaceRecordDB, utcnow
from facematch.repository import (
    AccessLogRepository,
    FaceStoreRepository,
    decode_vector,
    page_bounds
)


class TestFaceStore:
    """Tests for face record CRUD"""

    def test_enroll_new_face(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                face_id, was_update = await FaceStoreRepository.enroll(session, "  Alice ", make_vector(1))
                faces = await FaceStoreRepository.list_all(session)
                return face_id, was_update, faces

        face_id, was_update, faces = run(scenario())
        assert was_update is False
        assert [f.name for f in faces] == ["Alice"]
        assert faces[0].id == face_id
        assert faces[0].created_at == faces[0].updated_at

    def test_reenroll_replaces_vector(self, session_maker, run, make_vector):
        first, second = make_vector(1), make_vector(2)

        async def scenario():
            async with session_maker() as session:
                id1, _ = await FaceStoreRepository.enroll(session, "Alice", first)
                count_before = await FaceStoreRepository.count(session)
                id2, was_update = await FaceStoreRepository.enroll(session, "Alice", second)
                faces = await FaceStoreRepository.list_all(session)
                return id1, id2, was_update, count_before, faces

        id1, id2, was_update, count_before, faces = run(scenario())
        assert was_update is True
        assert id1 == id2
        assert count_before == len(faces) == 1
        assert decode_vector(faces[0]) == second
        assert faces[0].updated_at >= faces[0].created_at

    def test_names_are_case_sensitive(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                await FaceStoreRepository.enroll(session, "alice", make_vector(1))
                await FaceStoreRepository.enroll(session, "Alice", make_vector(2))
                return await FaceStoreRepository.count(session)

        assert run(scenario()) == 2

    def test_list_sorted_by_name(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                for i, name in enumerate(["Charlie", "Alice", "Bob"]):
                    await FaceStoreRepository.enroll(session, name, make_vector(i))
                return [f.name for f in await FaceStoreRepository.list_all(session)]

        assert run(scenario()) == ["Alice", "Bob", "Charlie"]

    @pytest.mark.parametrize("name, vector, field", [
        ("Alice", [0.1] * 10, "vector"),
        ("Alice", None, "vector"),
        ("   ", [0.1] * 256, "name"),
        (None, [0.1] * 256, "name"),
    ])
    def test_invalid_enroll_writes_nothing(self, session_maker, run, name, vector, field):
        async def scenario():
            async with session_maker() as session:
                with pytest.raises(ValidationError) as exc_info:
                    await FaceStoreRepository.enroll(session, name, vector)
                return exc_info.value, await FaceStoreRepository.count(session)

        error, count = run(scenario())
        assert error.field == field
        assert count == 0

    def test_clear_all(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                await FaceStoreRepository.enroll(session, "Alice", make_vector(1))
                await FaceStoreRepository.enroll(session, "Bob", make_vector(2))
                for _ in range(3):
                    await AccessLogRepository.append(session, "search")
                counts = await FaceStoreRepository.clear_all(session)
                return (
                    counts,
                    await FaceStoreRepository.list_all(session),
                    await AccessLogRepository.count(session)
                )

        counts, faces, logs = run(scenario())
        assert counts == (2, 3)
        assert faces == []
        assert logs == 0

    def test_export_all(self, session_maker, run, make_vector):
        vector = make_vector(3)

        async def scenario():
            async with session_maker() as session:
                await FaceStoreRepository.enroll(session, "Bob", make_vector(4))
                await FaceStoreRepository.enroll(session, "Alice", vector)
                return await FaceStoreRepository.export_all(session)

        export = run(scenario())
        assert export["format"] == EXPORT_FORMAT == "LBP-256"
        assert export["version"] == EXPORT_VERSION == "1.0"
        assert export["count"] == 2
        assert export["exported_at"].utcoffset() == timedelta(0)
        assert [f.name for f in export["labels"]] == ["Alice", "Bob"]
        assert export["labels"][0].vector == vector

    def test_unparseable_vector_is_skipped(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                await FaceStoreRepository.enroll(session, "Alice", make_vector(1))
                session.add(FaceRecordDB(name="Broken", vector="{not json"))
                await session.commit()
                return await FaceStoreRepository.list_materialized(session)

        faces = run(scenario())
        assert [f.name for f in faces] == ["Alice"]

    def test_recent_newest_first(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                for i in range(7):
                    await FaceStoreRepository.enroll(session, f"person-{i}", make_vector(i))
                return [f.name for f in await FaceStoreRepository.recent(session, limit=5)]

        assert run(scenario()) == ["person-6", "person-5", "person-4", "person-3", "person-2"]

    def test_read_failure_is_store_error(self, session_maker, run, make_vector):
        async def scenario():
            async with session_maker() as session:
                await session.execute(text("DROP TABLE faces"))
                await session.commit()
                errors = []
                for read in (
                    FaceStoreRepository.list_all(session),
                    FaceStoreRepository.get_by_name(session, "Alice"),
                    FaceStoreRepository.count(session),
                    FaceStoreRepository.recent(session),
                    FaceStoreRepository.enroll(session, "Alice", make_vector(1)),
                ):
                    with pytest.raises(StoreError) as exc_info:
                        await read
                    errors.append(exc_info.value)
                return errors

        errors = run(scenario())
        assert len(errors) == 5
        assert all(e.status_code == 500 for e in errors)
        assert all("faces" in e.message for e in errors)


class TestAccessLog:
    """Tests for the access log and its retention"""

    def test_append_returns_handle(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                entry_id = await AccessLogRepository.append(
                    session, "search", face_id=7, name="Alice", confidence=0.42
                )
                entries, _, _ = await AccessLogRepository.list_entries(session)
                return entry_id, entries

        entry_id, entries = run(scenario())
        assert len(entries) == 1
        assert entries[0].id == entry_id
        assert entries[0].face_id == 7
        assert entries[0].confidence == pytest.approx(0.42)

    def test_unknown_action_rejected(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                with pytest.raises(ValueError):
                    await AccessLogRepository.append(session, "delete")

        run(scenario())

    def test_count_cap_keeps_newest(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                ids = []
                for _ in range(LOG_RETENTION_COUNT + 1):
                    ids.append(await AccessLogRepository.append(session, "search"))
                entries, total, _ = await AccessLogRepository.list_entries(session, limit=100)
                kept = await AccessLogRepository.count(session)
                oldest_page, _, has_more = await AccessLogRepository.list_entries(
                    session, limit=100, offset=LOG_RETENTION_COUNT - 100
                )
                return ids, entries, total, kept, oldest_page, has_more

        ids, newest_page, total, kept, oldest_page, has_more = run(scenario())
        assert kept == total == LOG_RETENTION_COUNT == 1000
        assert newest_page[0].id == ids[-1]
        assert oldest_page[-1].id == ids[1]
        assert has_more is False

    def test_prune_older_than(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                old_id = await AccessLogRepository.append(session, "enroll", name="Old")
                await AccessLogRepository.append(session, "enroll", name="New")
                await session.execute(
                    update(AccessLogDB)
                    .where(AccessLogDB.id == old_id)
                    .values(timestamp=utcnow() - timedelta(days=31))
                )
                await session.commit()

                first = await AccessLogRepository.prune_older_than(session)
                second = await AccessLogRepository.prune_older_than(session, timedelta(days=30))
                entries, _, _ = await AccessLogRepository.list_entries(session)
                return first, second, entries

        first, second, entries = run(scenario())
        assert first == 1
        assert second == 0
        assert [e.name for e in entries] == ["New"]

    def test_list_filter_and_pagination(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                for i in range(5):
                    await AccessLogRepository.append(session, "search", name=f"s{i}")
                await AccessLogRepository.append(session, "enroll", name="e0")

                page, total, has_more = await AccessLogRepository.list_entries(
                    session, action="search", limit=2, offset=1
                )
                last_page, _, last_has_more = await AccessLogRepository.list_entries(
                    session, action="search", limit=2, offset=4
                )
                return page, total, has_more, last_page, last_has_more

        page, total, has_more, last_page, last_has_more = run(scenario())
        assert total == 5
        assert [e.name for e in page] == ["s3", "s2"]
        assert has_more is True
        assert [e.name for e in last_page] == ["s0"]
        assert last_has_more is False

    def test_distinct_actions_only_present_tags(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                empty = await AccessLogRepository.distinct_actions(session)
                for action in ["search", "enroll", "search", "clear_all"]:
                    await AccessLogRepository.append(session, action)
                return empty, await AccessLogRepository.distinct_actions(session)

        empty, actions = run(scenario())
        assert empty == []
        assert actions == ["clear_all", "enroll", "search"]

    def test_read_failure_is_store_error(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                await session.execute(text("DROP TABLE access_logs"))
                await session.commit()
                errors = []
                for read in (
                    AccessLogRepository.list_entries(session),
                    AccessLogRepository.distinct_actions(session),
                    AccessLogRepository.count(session),
                ):
                    with pytest.raises(StoreError) as exc_info:
                        await read
                    errors.append(exc_info.value)
                return errors

        errors = run(scenario())
        assert len(errors) == 3
        assert all("access log" in e.message for e in errors)

    def test_retag_only_search_entries(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                search_id = await AccessLogRepository.append(session, "search", face_id=1)
                enroll_id = await AccessLogRepository.append(session, "enroll", face_id=1)
                retagged = await AccessLogRepository.retag(session, search_id)
                again = await AccessLogRepository.retag(session, search_id)
                not_search = await AccessLogRepository.retag(session, enroll_id)
                entries, _, _ = await AccessLogRepository.list_entries(session)
                return retagged, again, not_search, {e.id: e.action for e in entries}

        retagged, again, not_search, actions = run(scenario())
        assert retagged is True
        assert again is False
        assert not_search is False
        assert sorted(actions.values()) == ["enroll", "recognize"]

    def test_retag_latest_for_face(self, session_maker, run):
        async def scenario():
            async with session_maker() as session:
                await AccessLogRepository.append(session, "search", face_id=3)
                latest = await AccessLogRepository.append(session, "search", face_id=3)
                await AccessLogRepository.append(session, "search", face_id=4)
                await AccessLogRepository.append(session, "search")
                found = await AccessLogRepository.retag_latest_for_face(session, 3)
                missing = await AccessLogRepository.retag_latest_for_face(session, 99)
                no_face = await AccessLogRepository.retag_latest_for_face(session, None)
                entries, _, _ = await AccessLogRepository.list_entries(session)
                return latest, found, missing, no_face, entries

        latest, found, missing, no_face, entries = run(scenario())
        assert found is True
        assert missing is False
        assert no_face is False
        assert [e.id for e in entries if e.action == "recognize"] == [latest]


@pytest.mark.parametrize("limit, offset, expected", [
    (None, None, (50, 0)),
    (0, 0, (50, 0)),
    (-5, -3, (50, 0)),
    (20, 10, (20, 10)),
    (500, 0, (100, 0)),
])
def test_page_bounds(limit, offset, expected):
    assert page_bounds(limit, offset) == expected
