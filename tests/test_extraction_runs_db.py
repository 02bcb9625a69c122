"""Tests for extraction run lifecycle operations against the in-memory database."""

from uuid import UUID, uuid4

import pytest

from tracelayer.core.errors import ConcurrentRunError, NotFoundError, RunCancelledError, StageTransitionError
from tracelayer.db import extraction_runs
from tracelayer.db.projects import get_project


def _pid(project: dict) -> UUID:
    return UUID(project["id"])


def test_create_run_inserts_queued_run_with_zero_counters(fake_db, project):
    run_id = extraction_runs.create_run(_pid(project))

    run = extraction_runs.get_run(run_id)
    assert run["status"] == "queued"
    assert run["requirements_found"] == 0
    assert run["conflicts_found"] == 0
    assert run["completed_at"] is None
    assert get_project(_pid(project))["active_run_id"] == str(run_id)


def test_second_run_rejected_while_first_is_active(fake_db, project):
    first = extraction_runs.create_run(_pid(project))

    with pytest.raises(ConcurrentRunError) as exc:
        extraction_runs.create_run(_pid(project))

    assert exc.value.run_id == str(first)
    assert "already running" in str(exc.value)
    assert len(fake_db.rows("extraction_runs")) == 1


def test_create_run_unknown_project(fake_db):
    with pytest.raises(NotFoundError):
        extraction_runs.create_run(uuid4())
    assert fake_db.rows("extraction_runs") == []


def test_new_run_allowed_after_completion(fake_db, project):
    pid = _pid(project)
    first = extraction_runs.create_run(pid)
    extraction_runs.advance_run(first, "ingesting")
    extraction_runs.advance_run(first, "completed")

    second = extraction_runs.create_run(pid)

    assert second != first
    assert get_project(pid)["active_run_id"] == str(second)


def test_stale_claim_is_cleared(fake_db, project):
    """A claim left by a run that already finished does not block new runs."""
    pid = _pid(project)
    first = extraction_runs.create_run(pid)
    fake_db.tables["extraction_runs"][0]["status"] = "failed"

    second = extraction_runs.create_run(pid)

    assert get_project(pid)["active_run_id"] == str(second)


def test_run_without_claim_still_detected_by_scan(fake_db, project):
    pid = _pid(project)
    fake_db.table("extraction_runs").insert(
        {"project_id": str(pid), "status": "extracting_requirements", "started_at": "2026-01-01T00:00:00+00:00"}
    ).execute()

    with pytest.raises(ConcurrentRunError):
        extraction_runs.create_run(pid)

    assert get_project(pid)["active_run_id"] is None


def test_failed_insert_releases_claim(fake_db, project):
    pid = _pid(project)
    fake_db.fail_on.add(("extraction_runs", "insert"))

    with pytest.raises(RuntimeError):
        extraction_runs.create_run(pid)

    assert get_project(pid)["active_run_id"] is None


def test_advance_run_patches_only_supplied_counters(fake_db, project):
    run_id = extraction_runs.create_run(_pid(project))
    extraction_runs.advance_run(run_id, "ingesting", counters={"sources_processed": 3})
    extraction_runs.advance_run(run_id, "classifying", counters={"requirements_found": 7})

    run = extraction_runs.get_run(run_id)
    assert run["status"] == "classifying"
    assert run["sources_processed"] == 3
    assert run["requirements_found"] == 7
    assert run["stakeholders_found"] == 0


def test_advance_run_rejects_unknown_counter(fake_db, project):
    run_id = extraction_runs.create_run(_pid(project))
    with pytest.raises(ValueError, match="Unknown run counter"):
        extraction_runs.advance_run(run_id, "ingesting", counters={"widgets": 1})


def test_advance_run_is_monotonic(fake_db, project):
    run_id = extraction_runs.create_run(_pid(project))
    extraction_runs.advance_run(run_id, "extracting_decisions")

    with pytest.raises(StageTransitionError):
        extraction_runs.advance_run(run_id, "classifying")
    assert extraction_runs.get_run(run_id)["status"] == "extracting_decisions"


def test_terminal_stage_stamps_completion_and_releases_claim(fake_db, project):
    pid = _pid(project)
    run_id = extraction_runs.create_run(pid)

    extraction_runs.advance_run(run_id, "failed", error="Model returned garbage: {'x': 1}")

    run = extraction_runs.get_run(run_id)
    assert run["status"] == "failed"
    assert run["error"] == "Model returned garbage: {'x': 1}"
    assert run["completed_at"] is not None
    assert get_project(pid)["active_run_id"] is None


def test_advance_cancelled_run_raises(fake_db, project):
    run_id = extraction_runs.create_run(_pid(project))
    extraction_runs.cancel_runs(_pid(project))

    with pytest.raises(RunCancelledError):
        extraction_runs.advance_run(run_id, "ingesting")


def test_advance_missing_run(fake_db):
    with pytest.raises(NotFoundError):
        extraction_runs.advance_run(uuid4(), "ingesting")


def test_cancel_runs_resets_project(fake_db, project):
    pid = _pid(project)
    run_id = extraction_runs.create_run(pid)
    extraction_runs.advance_run(run_id, "classifying")
    fake_db.table("projects").update({"status": "processing", "progress": 25}).eq("id", str(pid)).execute()

    result = extraction_runs.cancel_runs(pid)

    assert result == {"cancelled_count": 1}
    run = extraction_runs.get_run(run_id)
    assert run["status"] == "cancelled"
    assert run["completed_at"] is not None
    updated = get_project(pid)
    assert updated["status"] == "draft"
    assert updated["progress"] == 0
    assert updated["active_run_id"] is None
    assert extraction_runs.is_running(pid) == {"is_running": False}


def test_cancel_with_nothing_running(fake_db, project):
    assert extraction_runs.cancel_runs(_pid(project)) == {"cancelled_count": 0}


def test_is_running_reports_stage(fake_db, project):
    pid = _pid(project)
    run_id = extraction_runs.create_run(pid)
    extraction_runs.advance_run(run_id, "extracting_timeline")

    status = extraction_runs.is_running(pid)

    assert status == {"is_running": True, "run_id": str(run_id), "stage": "extracting_timeline"}


def test_list_runs_keeps_failed_and_cancelled_history(fake_db, project):
    pid = _pid(project)
    for final in ("failed", "cancelled", "completed"):
        run_id = extraction_runs.create_run(pid)
        extraction_runs.advance_run(run_id, final)

    runs = extraction_runs.list_runs(pid)

    assert [r["status"] for r in runs] == ["completed", "cancelled", "failed"]
    assert extraction_runs.get_latest_run(pid)["status"] == "completed"


def test_clear_run_history_keeps_latest_and_deletes_logs(fake_db, project):
    from tracelayer.db import agent_logs

    pid = _pid(project)
    run_ids = []
    for _ in range(3):
        run_id = extraction_runs.create_run(pid)
        agent_logs.log(pid, run_id, "orchestrator", "queued", "info", "started")
        extraction_runs.advance_run(run_id, "completed")
        run_ids.append(run_id)

    result = extraction_runs.clear_run_history(pid, keep_latest=1)

    assert result == {"deleted": 2}
    remaining = extraction_runs.list_runs(pid)
    assert [r["id"] for r in remaining] == [str(run_ids[-1])]
    assert [log["extraction_run_id"] for log in fake_db.rows("agent_logs")] == [str(run_ids[-1])]


def test_clear_run_history_never_deletes_active_run(fake_db, project):
    pid = _pid(project)
    done = extraction_runs.create_run(pid)
    extraction_runs.advance_run(done, "completed")
    active = extraction_runs.create_run(pid)

    result = extraction_runs.clear_run_history(pid, keep_latest=0)

    assert result == {"deleted": 1}
    assert extraction_runs.get_run(active)["status"] == "queued"
