"""
Task persistence.

Every write commits immediately so that pollers using their own session
see progress while the run is still going.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from noos.config.settings import settings
from noos.exceptions import ConflictError, ExecutorBusyError, NotFoundError, TaskCancelledError
from noos.models import Task, TaskStatus, utcnow

logger = logging.getLogger(__name__)

BUSY_MESSAGE = ExecutorBusyError().message
CANCELLED_MESSAGE = TaskCancelledError().message


class TaskService:
    def __init__(self, db: Session):
        self.db = db

    # ---------- Creation & lookup ----------

    def create(
        self,
        task_type: str,
        parameters: Optional[Dict[str, Any]] = None,
        user_id: str = "system",
        total_steps: int = 0,
        message: Optional[str] = None
    ) -> Task:
        task = Task(
            task_type=task_type,
            status=TaskStatus.PENDING,
            progress_percentage=0.0,
            current_phase="PENDING",
            current_step=0,
            total_steps=total_steps,
            progress_message=message or "Waiting for a worker",
            parameters=parameters,
            user_id=user_id,
            created_at=utcnow(),
        )
        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        logger.info("Created %s task %d for %s", task_type, task.id, user_id)
        return task

    def get(self, task_id: int) -> Optional[Task]:
        return self.db.query(Task).filter(Task.id == task_id).first()

    def require(self, task_id: int) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def list_all(self) -> List[Task]:
        return self.db.query(Task).order_by(Task.created_at.desc(), Task.id.desc()).all()

    def recent(self, limit: Optional[int] = None) -> List[Task]:
        limit = min(limit or settings.TASKS_RECENT_DEFAULT, settings.TASKS_RECENT_MAX)
        return self.db.query(Task).order_by(
            Task.created_at.desc(), Task.id.desc()
        ).limit(limit).all()

    def running(self) -> List[Task]:
        """PENDING and RUNNING tasks, oldest first."""
        return self.db.query(Task).filter(
            Task.status.in_([TaskStatus.PENDING, TaskStatus.RUNNING])
        ).order_by(Task.created_at, Task.id).all()

    def failed(self) -> List[Task]:
        return self.by_status(TaskStatus.FAILED)

    def by_status(self, status: TaskStatus) -> List[Task]:
        return self.db.query(Task).filter(Task.status == status).order_by(
            Task.created_at.desc(), Task.id.desc()
        ).all()

    def counts_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in TaskStatus}
        rows = self.db.query(Task.status, func.count(Task.id)).group_by(Task.status).all()
        for status, count in rows:
            counts[status.value] = count
        counts["total"] = sum(counts.values())
        return counts

    # ---------- Requests from other sessions ----------

    def request_cancellation(self, task_id: int) -> Task:
        """
        Flag a task for cancellation. The owning worker stops at its next check.

        Raises:
            NotFoundError: unknown task
            ConflictError: task already COMPLETED or FAILED
        """
        task = self.require(task_id)
        if task.status.is_terminal:
            raise ConflictError(
                f"Task {task_id} is already {task.status.value}",
                details={"status": task.status.value}
            )

        task.cancellation_requested = True
        self.db.commit()
        self.db.refresh(task)
        logger.info("Cancellation requested for task %d", task_id)
        return task

    def is_cancellation_requested(self, task_id: int) -> bool:
        flag = self.db.query(Task.cancellation_requested).filter(Task.id == task_id).scalar()
        # Release the read transaction so the writer is not blocked on SQLite
        self.db.commit()
        return bool(flag)

    def purge_completed(self, older_than_days: Optional[int] = None) -> int:
        days = settings.TASK_RETENTION_DAYS if older_than_days is None else older_than_days
        cutoff = utcnow() - timedelta(days=days)
        deleted = self.db.query(Task).filter(
            Task.status == TaskStatus.COMPLETED,
            Task.end_time < cutoff
        ).delete(synchronize_session=False)
        self.db.commit()
        logger.info("Purged %d completed tasks older than %d days", deleted, days)
        return deleted

    # ---------- Owner transitions ----------

    def mark_running(self, task_id: int, phase: str, total_steps: int, message: str) -> Task:
        task = self.require(task_id)
        now = utcnow()
        task.status = TaskStatus.RUNNING
        task.start_time = now
        task.current_phase = phase
        task.current_step = 0
        task.total_steps = total_steps
        task.progress_message = message
        task.updated_at = now
        self.db.commit()
        logger.info("Task %d started", task_id)
        return task

    def update_progress(
        self,
        task_id: int,
        percentage: float,
        phase: Optional[str] = None,
        step: Optional[int] = None,
        message: Optional[str] = None
    ) -> Task:
        """Record progress. The stored percentage never goes down."""
        task = self.require(task_id)
        task.progress_percentage = round(max(task.progress_percentage or 0.0, min(percentage, 100.0)), 2)
        if phase is not None:
            task.current_phase = phase
        if step is not None:
            task.current_step = max(task.current_step or 0, step)
        if message is not None:
            task.progress_message = message
        task.updated_at = utcnow()
        logged = (task.current_phase, task.progress_percentage, task.progress_message or "")
        self.db.commit()
        logger.debug("Task %d: %s %.1f%% %s", task_id, *logged)
        return task

    def mark_completed(
        self,
        task_id: int,
        details: Optional[Dict[str, Any]] = None,
        message: str = "Completed"
    ) -> Task:
        task = self.require(task_id)
        now = utcnow()
        task.status = TaskStatus.COMPLETED
        task.progress_percentage = 100.0
        task.current_phase = "COMPLETED"
        task.current_step = task.total_steps
        task.progress_message = message
        task.details = details
        task.end_time = now
        task.updated_at = now
        self.db.commit()
        logger.info("Task %d completed", task_id)
        return task

    def mark_failed(
        self,
        task_id: int,
        error: str,
        details: Optional[Dict[str, Any]] = None
    ) -> Task:
        task = self.require(task_id)
        now = utcnow()
        task.status = TaskStatus.FAILED
        task.current_phase = "FAILED"
        task.error_message = error
        task.progress_message = error
        if details is not None:
            task.details = details
        task.end_time = now
        task.updated_at = now
        self.db.commit()
        logger.info("Task %d failed: %s", task_id, error)
        return task

    def mark_rejected(self, task_id: int, error: str = BUSY_MESSAGE) -> Task:
        """Fail a task that no worker ever picked up. start_time stays empty."""
        task = self.mark_failed(task_id, error, details={"rejected": True})
        logger.warning("Task %d rejected: %s", task_id, error)
        return task
