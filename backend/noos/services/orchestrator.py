"""
Task orchestrator for NOOS algorithm runs.

One run = resolve parameters -> load sales -> aggregate -> classify -> save,
executed on the algorithm pool. The worker owns its Task row and commits
each phase transition from its own session.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from noos.exceptions import DataError, NoosError, TaskCancelledError
from noos.models import SessionLocal, TaskType, session_scope
from noos.services.aggregator import DatabaseStockCalendar, SalesAggregator
from noos.services.cancellation import CancellationToken
from noos.services.classification import ClassificationEngine
from noos.services.executor import BoundedExecutor, Rejected, get_algorithm_executor
from noos.services.parameters import ParameterService, RunParameters
from noos.services.result_store import NoosResultStore
from noos.services.task_service import BUSY_MESSAGE, TaskService

logger = logging.getLogger(__name__)

EMPTY_WINDOW_MESSAGE = "No sales data available in the analysis window"

# (name, step, progress percentage at phase start)
INITIALIZING = ("INITIALIZING", 0, 0.0)
RESOLVING_PARAMETERS = ("RESOLVING_PARAMETERS", 1, 5.0)
LOADING_SALES = ("LOADING_SALES", 2, 15.0)
AGGREGATING = ("AGGREGATING", 3, 35.0)
CLASSIFYING = ("CLASSIFYING", 4, 55.0)
SAVING = ("SAVING", 5, 90.0)
TOTAL_STEPS = 6

CLASSIFYING_SPAN = 30.0


@dataclass(frozen=True)
class Submission:
    """Outcome of handing a task to a pool. The Task row exists either way."""
    task_id: int
    accepted: bool
    reason: Optional[str] = None


class TaskOrchestrator:
    """
    Creates ALGORITHM_RUN tasks and drives them through the pipeline.

    Parameter errors surface before a Task exists. Everything after that
    is reported through the Task row.
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        executor: Optional[BoundedExecutor] = None,
        calendar_factory=DatabaseStockCalendar
    ):
        self.session_factory = session_factory
        self._executor = executor
        self.calendar_factory = calendar_factory
        self._tokens: Dict[int, CancellationToken] = {}
        self._tokens_lock = threading.Lock()

    @property
    def executor(self) -> BoundedExecutor:
        return self._executor or get_algorithm_executor()

    # ---------- Entry points ----------

    def submit(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        parameter_set: Optional[str] = None,
        label: Optional[str] = None,
        user_id: str = "system"
    ) -> Submission:
        """Queue a run on the algorithm pool. A full pool fails the task at once."""
        task_id, params = self._prepare(overrides, parameter_set, label, user_id)
        token = self._register(task_id)

        result = self.executor.submit(self._execute, task_id, params, token)
        if isinstance(result, Rejected):
            self._unregister(task_id)
            with session_scope(self.session_factory) as db:
                TaskService(db).mark_rejected(task_id, BUSY_MESSAGE)
            return Submission(task_id=task_id, accepted=False, reason=result.reason)

        logger.info("Task %d queued on executor '%s'", task_id, self.executor.name)
        return Submission(task_id=task_id, accepted=True)

    def run_sync(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        parameter_set: Optional[str] = None,
        label: Optional[str] = None,
        user_id: str = "system"
    ) -> int:
        """Run the pipeline in the calling thread. Returns the task id."""
        task_id, params = self._prepare(overrides, parameter_set, label, user_id)
        self._execute(task_id, params, self._register(task_id))
        return task_id

    def cancel(self, task_id: int) -> None:
        """
        Request cancellation.

        Raises:
            NotFoundError: unknown task
            ConflictError: task already terminal
        """
        with session_scope(self.session_factory) as db:
            TaskService(db).request_cancellation(task_id)

        with self._tokens_lock:
            token = self._tokens.get(task_id)
        if token is not None:
            token.cancel()

    # ---------- Internals ----------

    def _prepare(self, overrides, parameter_set, label, user_id):
        with session_scope(self.session_factory) as db:
            params = ParameterService(db).resolve(overrides, parameter_set, label)
            task = TaskService(db).create(
                TaskType.ALGORITHM_RUN.value,
                parameters=params.to_dict(),
                user_id=user_id,
                total_steps=TOTAL_STEPS,
            )
            return task.id, params

    def _register(self, task_id: int) -> CancellationToken:
        token = CancellationToken()
        with self._tokens_lock:
            self._tokens[task_id] = token
        return token

    def _unregister(self, task_id: int) -> None:
        with self._tokens_lock:
            self._tokens.pop(task_id, None)

    def _enter(self, tasks: TaskService, task_id: int, token: CancellationToken, phase, message: str):
        token.raise_if_cancelled()
        name, step, percentage = phase
        tasks.update_progress(task_id, percentage, phase=name, step=step, message=message)
        logger.debug("Task %d entered %s", task_id, name)

    def _execute(self, task_id: int, params: RunParameters, token: CancellationToken) -> None:
        db = self.session_factory()
        tasks = TaskService(db)
        token.bind(lambda: tasks.is_cancellation_requested(task_id))
        started = time.monotonic()

        try:
            name, _, _ = INITIALIZING
            tasks.mark_running(task_id, name, TOTAL_STEPS, "Starting NOOS algorithm run")

            self._enter(tasks, task_id, token, RESOLVING_PARAMETERS, "Resolving analysis window")
            params = ParameterService(db).resolve_window(params)
            if not params.has_window:
                raise DataError(EMPTY_WINDOW_MESSAGE)

            self._enter(
                tasks, task_id, token, LOADING_SALES,
                f"Loading sales {params.analysis_start_date} to {params.analysis_end_date}"
            )
            aggregator = SalesAggregator(db, self.calendar_factory(db))
            sales = aggregator.load_sales(params.window)

            self._enter(tasks, task_id, token, AGGREGATING, f"Aggregating {sales.rows_scanned} sales rows")
            aggregation = aggregator.aggregate(sales, params, token)
            if aggregation.is_empty:
                raise DataError(EMPTY_WINDOW_MESSAGE)

            self._enter(
                tasks, task_id, token, CLASSIFYING,
                f"Classifying {aggregation.total_styles} styles"
            )
            _, classify_step, classify_start = CLASSIFYING

            def on_progress(done: int, total: int):
                tasks.update_progress(
                    task_id,
                    classify_start + CLASSIFYING_SPAN * done / total,
                    step=classify_step,
                    message=f"Classified {done}/{total} styles"
                )

            engine = ClassificationEngine(params)
            results = engine.classify(aggregation, token, on_progress)

            self._enter(tasks, task_id, token, SAVING, f"Saving {len(results)} results")
            NoosResultStore(db).save_run(task_id, results)

            counts = {}
            for row in results:
                counts[row.type.value] = counts.get(row.type.value, 0) + 1

            tasks.mark_completed(
                task_id,
                details={
                    "algorithm_run_id": task_id,
                    "total_styles": len(results),
                    "counts": counts,
                    "rows_scanned": aggregation.rows_scanned,
                    "rows_liquidated": aggregation.rows_liquidated,
                    "data_warnings": aggregation.warnings,
                    "availability_fallbacks": aggregation.availability_fallbacks,
                    "analysis_start_date": params.analysis_start_date.isoformat(),
                    "analysis_end_date": params.analysis_end_date.isoformat(),
                    "bestseller_window": [
                        params.bestseller_window.start.isoformat(),
                        params.bestseller_window.end.isoformat(),
                    ],
                    "category_baselines": engine.baselines(aggregation),
                    "duration_seconds": round(time.monotonic() - started, 3),
                },
                message=f"Classified {len(results)} styles"
            )

        except TaskCancelledError as e:
            db.rollback()
            logger.info("Task %d cancelled", task_id)
            self._fail(tasks, task_id, e.message)

        except NoosError as e:
            db.rollback()
            logger.error("Task %d failed: %s", task_id, e)
            self._fail(tasks, task_id, e.message)

        except Exception as e:
            db.rollback()
            logger.exception("Task %d failed with an unexpected error", task_id)
            self._fail(tasks, task_id, str(e) or e.__class__.__name__)

        finally:
            self._unregister(task_id)
            db.close()

    def _fail(self, tasks: TaskService, task_id: int, error: str) -> None:
        try:
            tasks.mark_failed(task_id, error)
        except Exception:
            logger.exception("Could not record failure of task %d", task_id)
            raise


_orchestrator: Optional[TaskOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> TaskOrchestrator:
    """Process-wide orchestrator, also used as a FastAPI dependency."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = TaskOrchestrator()
        return _orchestrator
