from datetime import datetime, timedelta, timezone

from phiscan.db.repositories import ScanCheckpointRepository

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_checkpoint_repository_upsert_and_list(session_factory):
    with session_factory() as db:
        repo = ScanCheckpointRepository(db)

        created = repo.upsert("a.txt", T0, T0 - timedelta(hours=1))
        repo.upsert("b.txt", T0)
        db.commit()

        assert created.object_id == "a.txt"
        assert {c.object_id for c in repo.list()} == {"a.txt", "b.txt"}
        assert repo.list(limit=1, offset=1)[0].object_id in {"a.txt", "b.txt"}

        updated = repo.upsert("a.txt", T0 + timedelta(hours=1))
        db.commit()

        assert updated is repo.get("a.txt")
        assert updated.source_last_modified is None
        assert len(repo.list()) == 2


def test_checkpoint_repository_get_missing(session_factory):
    with session_factory() as db:
        assert ScanCheckpointRepository(db).get("missing") is None
