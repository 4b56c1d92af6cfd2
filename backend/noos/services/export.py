"""
Asynchronous result export on the file pool.
"""

import logging
from pathlib import Path
from typing import Optional

from noos.config.settings import settings
from noos.exceptions import ConflictError, NotFoundError, TaskCancelledError
from noos.models import SessionLocal, TaskStatus, TaskType, session_scope
from noos.services.cancellation import CancellationToken
from noos.services.executor import BoundedExecutor, Rejected, get_file_executor
from noos.services.orchestrator import Submission
from noos.services.result_store import NoosResultStore
from noos.services.task_service import BUSY_MESSAGE, TaskService

logger = logging.getLogger(__name__)

EXPORT_STEPS = 2


class ResultExportService:
    """Writes NOOS results to a TSV file under EXPORT_DIR, tracked as a task."""

    def __init__(
        self,
        session_factory=SessionLocal,
        executor: Optional[BoundedExecutor] = None,
        export_dir: Optional[str] = None
    ):
        self.session_factory = session_factory
        self._executor = executor
        self.export_dir = Path(export_dir or settings.EXPORT_DIR)

    @property
    def executor(self) -> BoundedExecutor:
        return self._executor or get_file_executor()

    def submit(self, run_id: Optional[int] = None, user_id: str = "system") -> Submission:
        with session_scope(self.session_factory) as db:
            task = TaskService(db).create(
                TaskType.RESULTS_EXPORT.value,
                parameters={"run_id": run_id},
                user_id=user_id,
                total_steps=EXPORT_STEPS,
            )
            task_id = task.id

        result = self.executor.submit(self._export, task_id, run_id)
        if isinstance(result, Rejected):
            with session_scope(self.session_factory) as db:
                TaskService(db).mark_rejected(task_id, BUSY_MESSAGE)
            return Submission(task_id=task_id, accepted=False, reason=result.reason)
        return Submission(task_id=task_id, accepted=True)

    def file_path(self, task_id: int) -> Path:
        """
        Location of a finished export.

        Raises:
            NotFoundError: no such export task, or its file is gone
            ConflictError: the export has not completed
        """
        with session_scope(self.session_factory) as db:
            task = TaskService(db).require(task_id)
            if task.task_type != TaskType.RESULTS_EXPORT.value:
                raise NotFoundError(f"Task {task_id} is not an export")
            if task.status != TaskStatus.COMPLETED:
                raise ConflictError(
                    f"Export {task_id} is {task.status.value}",
                    details={"status": task.status.value}
                )
            path = Path((task.details or {}).get("file_path", ""))

        if not path.is_file():
            raise NotFoundError(f"Export file for task {task_id} no longer exists")
        return path

    def _export(self, task_id: int, run_id: Optional[int]) -> None:
        db = self.session_factory()
        tasks = TaskService(db)
        token = CancellationToken(lambda: tasks.is_cancellation_requested(task_id))
        try:
            tasks.mark_running(task_id, "QUERYING", EXPORT_STEPS, "Reading NOOS results")
            token.raise_if_cancelled()

            store = NoosResultStore(db)
            rows = store.by_run(run_id) if run_id is not None else store.latest()
            token.raise_if_cancelled()
            tasks.update_progress(
                task_id, 50.0, phase="WRITING", step=1,
                message=f"Writing {len(rows)} rows"
            )

            self.export_dir.mkdir(parents=True, exist_ok=True)
            suffix = f"run_{run_id}" if run_id is not None else "latest"
            path = self.export_dir / f"noos_results_{suffix}_{task_id}.tsv"
            path.write_text(NoosResultStore.to_tsv(rows), encoding="utf-8")

            tasks.mark_completed(
                task_id,
                details={"file_path": str(path.resolve()), "rows": len(rows), "run_id": run_id},
                message=f"Exported {len(rows)} rows"
            )
        except TaskCancelledError as e:
            db.rollback()
            logger.info("Export task %d cancelled", task_id)
            tasks.mark_failed(task_id, e.message)
        except Exception as e:
            db.rollback()
            logger.exception("Export task %d failed", task_id)
            tasks.mark_failed(task_id, str(e) or e.__class__.__name__)
        finally:
            db.close()


_export_service: Optional[ResultExportService] = None


def get_export_service() -> ResultExportService:
    global _export_service
    if _export_service is None:
        _export_service = ResultExportService()
    return _export_service
