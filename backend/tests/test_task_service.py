from datetime import timedelta

import pytest

from noos.config import settings
from noos.exceptions import ConflictError, NotFoundError
from noos.models import SessionLocal, Task, TaskStatus, TaskType, utcnow
from noos.services import BUSY_MESSAGE, TaskService


def new_task(db, **kwargs):
    return TaskService(db).create(TaskType.ALGORITHM_RUN.value, parameters={"k": 1}, **kwargs)


def test_created_task_is_pending(db):
    task = new_task(db, total_steps=6)

    assert task.status == TaskStatus.PENDING
    assert task.progress_percentage == 0.0
    assert task.total_steps == 6
    assert task.start_time is None
    assert task.cancellation_requested is False


def test_progress_never_decreases_and_is_visible_to_other_sessions(db):
    service = TaskService(db)
    task_id = new_task(db).id
    service.mark_running(task_id, "INITIALIZING", 6, "go")

    service.update_progress(task_id, 40.0, phase="AGGREGATING", step=3)
    service.update_progress(task_id, 20.0, phase="LATE", step=1, message="stale")

    reader = SessionLocal()
    try:
        seen = reader.query(Task).filter(Task.id == task_id).one()
        assert seen.status == TaskStatus.RUNNING
        assert seen.progress_percentage == 40.0
        assert seen.current_step == 3
        assert seen.current_phase == "LATE"
        assert seen.progress_message == "stale"
    finally:
        reader.close()


def test_progress_is_capped_at_100(db):
    service = TaskService(db)
    task_id = new_task(db).id

    assert service.update_progress(task_id, 250.0).progress_percentage == 100.0


def test_terminal_transitions(db):
    service = TaskService(db)
    done_id = new_task(db).id
    failed_id = new_task(db).id
    service.mark_running(done_id, "INITIALIZING", 6, "go")
    service.mark_running(failed_id, "INITIALIZING", 6, "go")

    done = service.mark_completed(done_id, details={"total_styles": 3})
    failed = service.mark_failed(failed_id, "boom")

    assert done.status == TaskStatus.COMPLETED
    assert done.progress_percentage == 100.0
    assert done.current_step == 6
    assert done.details == {"total_styles": 3}
    assert done.end_time is not None
    assert failed.status == TaskStatus.FAILED
    assert failed.error_message == "boom"
    assert failed.end_time is not None


def test_rejected_task_never_started(db):
    service = TaskService(db)
    task = service.mark_rejected(new_task(db).id)

    assert task.status == TaskStatus.FAILED
    assert task.error_message == BUSY_MESSAGE
    assert task.start_time is None
    assert task.details == {"rejected": True}


def test_cancellation_requests(db):
    service = TaskService(db)
    live_id = new_task(db).id
    finished_id = new_task(db).id
    service.mark_completed(finished_id)

    assert service.request_cancellation(live_id).cancellation_requested is True
    assert service.is_cancellation_requested(live_id) is True

    with pytest.raises(ConflictError):
        service.request_cancellation(finished_id)
    with pytest.raises(NotFoundError):
        service.request_cancellation(424242)


def test_queries_and_counts(db):
    service = TaskService(db)
    pending = new_task(db)
    running = new_task(db)
    failed = new_task(db)
    service.mark_running(running.id, "INITIALIZING", 6, "go")
    service.mark_failed(failed.id, "boom")

    assert {t.id for t in service.running()} == {pending.id, running.id}
    assert [t.id for t in service.failed()] == [failed.id]
    assert [t.id for t in service.by_status(TaskStatus.RUNNING)] == [running.id]
    assert len(service.list_all()) == 3

    counts = service.counts_by_status()
    assert counts == {"PENDING": 1, "RUNNING": 1, "COMPLETED": 0, "FAILED": 1, "total": 3}


def test_recent_is_newest_first_and_capped(db):
    service = TaskService(db)
    ids = [new_task(db).id for _ in range(5)]

    assert [t.id for t in service.recent(3)] == list(reversed(ids))[:3]
    assert len(service.recent(settings.TASKS_RECENT_MAX + 50)) == 5


def test_purge_only_old_completed_tasks(db):
    service = TaskService(db)
    old_done = new_task(db).id
    new_done = new_task(db).id
    old_failed = new_task(db).id
    service.mark_completed(old_done)
    service.mark_completed(new_done)
    service.mark_failed(old_failed, "boom")

    long_ago = utcnow() - timedelta(days=45)
    for task_id in (old_done, old_failed):
        db.query(Task).filter(Task.id == task_id).update({Task.end_time: long_ago})
    db.commit()

    assert service.purge_completed(30) == 1
    remaining = {t.id for t in service.list_all()}
    assert remaining == {new_done, old_failed}
