import json

from property_import.adapters.repos.import_runs import ImportRunRepository
from property_import.models import RunStatus


def _summary(created=1, failed=0, errors=None):
    return {
        "duration_ms": 1500,
        "stats": {
            "total": created + failed,
            "processed": created + failed,
            "created": created,
            "duplicates": 0,
            "failed": failed,
            "errors": errors or [],
        },
    }


async def test_finish_run_records_stats(async_session_maker):
    async with async_session_maker() as session:
        repo = ImportRunRepository(session)
        run = await repo.start_run("manual")
        assert run.status == RunStatus.running

        err = {"type": "processing", "stage": "normalize", "property": "X", "external_id": None, "message": "m"}
        await repo.finish_run(run, _summary(created=2, failed=1, errors=[err]))
        await session.commit()

        assert run.status == RunStatus.succeeded
        assert run.created == 2
        assert run.failed == 1
        assert run.duration_ms == 1500
        assert run.last_error == "1 properties failed to import"
        assert json.loads(run.errors_json) == [err]


async def test_consecutive_failures_count_up_and_reset(async_session_maker):
    async with async_session_maker() as session:
        repo = ImportRunRepository(session)

        counts = []
        for _ in range(3):
            run = await repo.start_run("cron")
            await repo.fail_run(run, "feed down")
            counts.append(run.consecutive_failures)
        assert counts == [1, 2, 3]

        ok = await repo.start_run("cron")
        await repo.finish_run(ok, _summary())
        assert ok.consecutive_failures == 0

        again = await repo.start_run("cron")
        await repo.fail_run(again, RuntimeError("store down"))
        assert again.consecutive_failures == 1
        assert again.last_error == "store down"
        await session.commit()


async def test_history_filters_and_statistics(async_session_maker):
    async with async_session_maker() as session:
        repo = ImportRunRepository(session)
        a = await repo.start_run("cron")
        await repo.finish_run(a, _summary(created=3))
        b = await repo.start_run("api")
        await repo.fail_run(b, "boom", _summary(created=0, failed=2))
        await session.commit()

        rows, total = await repo.list_runs(limit=10)
        assert total == 2
        assert {r.id for r in rows} == {a.id, b.id}

        rows, total = await repo.list_runs(status=RunStatus.failed)
        assert total == 1 and rows[0].id == b.id

        rows, total = await repo.list_runs(triggered_by="cron")
        assert total == 1 and rows[0].id == a.id

        assert (await repo.get_run(a.id)).id == a.id
        assert (await repo.last_run()) is not None

        stats = await repo.statistics(days=7)
        assert stats["runs"] == 2
        assert stats["by_status"]["succeeded"] == 1
        assert stats["by_status"]["failed"] == 1
        assert stats["success_rate"] == 0.5
        assert stats["properties_created"] == 3
        assert stats["failed_properties"] == 2
