import threading
from pathlib import Path

from noos.models import TaskStatus
from noos.services import CANCELLED_MESSAGE, TaskOrchestrator, TaskService

from conftest import wait_until


def current(db, task_id):
    db.expire_all()
    return TaskService(db).require(task_id)


def test_export_writes_tsv(db, shirts, exporter):
    run_id = TaskOrchestrator().run_sync()

    submission = exporter.submit(run_id=run_id)

    assert submission.accepted
    assert wait_until(lambda: current(db, submission.task_id).status.is_terminal)
    task = current(db, submission.task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.details["rows"] == 2
    assert exporter.file_path(submission.task_id) == Path(task.details["file_path"])


def test_cancelled_export_fails_without_writing(db, shirts, exporter, file_executor):
    run_id = TaskOrchestrator().run_sync()
    release = threading.Event()
    file_executor.submit(release.wait, 10)

    submission = exporter.submit(run_id=run_id)
    assert current(db, submission.task_id).status == TaskStatus.PENDING

    TaskOrchestrator().cancel(submission.task_id)
    release.set()

    assert wait_until(lambda: current(db, submission.task_id).status.is_terminal)
    task = current(db, submission.task_id)
    assert task.status == TaskStatus.FAILED
    assert task.error_message == CANCELLED_MESSAGE
    assert "file_path" not in (task.details or {})
