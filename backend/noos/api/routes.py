from typing import Dict, List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import FileResponse, JSONResponse, Response
from sqlalchemy.orm import Session

from noos.config.settings import settings
from noos.exceptions import ExecutorBusyError, ValidationError
from noos.models import get_db, TaskStatus
from noos.schemas import (
    AlgorithmRunRequest,
    ParameterSetCreate, ParameterSetResponse, ParameterDefaultsResponse,
    TaskResponse, TaskPurgeResponse,
    NoosResultResponse, NoosSummaryResponse, NoosDashboardResponse,
    RunSummaryResponse, RunPurgeResponse, ExportRequest,
    ExecutorOverviewResponse
)
from noos.schemas.converters import (
    run_request_to_overrides, parameter_create_to_values,
    parameters_to_response, defaults_to_response,
    task_to_response, result_to_response, run_summary_to_response,
    executor_stats_to_response
)
from noos.services import (
    ParameterService, NoosResultStore, TaskService,
    TaskOrchestrator, get_orchestrator,
    ResultExportService, get_export_service
)

router = APIRouter()

TSV_MEDIA_TYPE = "text/tab-separated-values"


def _task_reply(db: Session, task_id: int, accepted: bool, status_code: int = 202):
    """Task body with 202 when queued, 429 when the pool refused it."""
    body = task_to_response(TaskService(db).require(task_id))
    if not accepted:
        return JSONResponse(status_code=ExecutorBusyError.status_code, content=jsonable_encoder(body))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ============== Algorithm Parameters ==============

@router.get("/algo/defaults", response_model=ParameterDefaultsResponse)
def get_parameter_defaults(db: Session = Depends(get_db)):
    """Values used when neither a stored set nor the request provides one."""
    return defaults_to_response(ParameterService(db).defaults())


@router.get("/algo/current", response_model=ParameterSetResponse)
def get_current_parameters(
    name: Optional[str] = Query(None, min_length=1),
    db: Session = Depends(get_db)
):
    """Active version of a parameter set (the default set when no name is given)."""
    set_name = name or settings.DEFAULT_PARAMETER_SET
    row = ParameterService(db).get_active(set_name)
    if not row:
        raise HTTPException(status_code=404, detail=f"No active parameter set '{set_name}'")
    return parameters_to_response(row)


@router.get("/algo/sets", response_model=List[ParameterSetResponse])
def list_parameter_sets(db: Session = Depends(get_db)):
    """All active parameter sets."""
    return [parameters_to_response(r) for r in ParameterService(db).list_active()]


@router.post("/algo/sets", response_model=ParameterSetResponse, status_code=201)
def create_parameter_set(request: ParameterSetCreate, db: Session = Depends(get_db)):
    """
    Store a new version of a named parameter set.
    Omitted fields are inherited from the active version.
    """
    row = ParameterService(db).create_version(
        request.name,
        parameter_create_to_values(request),
        label=request.label,
        updated_by=request.updated_by,
        activate=request.activate
    )
    return parameters_to_response(row)


@router.get("/algo/sets/{name}", response_model=ParameterSetResponse)
def get_parameter_set(name: str, db: Session = Depends(get_db)):
    row = ParameterService(db).get_active(name)
    if not row:
        raise HTTPException(status_code=404, detail=f"No active parameter set '{name}'")
    return parameters_to_response(row)


@router.get("/algo/sets/{name}/versions", response_model=List[ParameterSetResponse])
def list_parameter_versions(name: str, db: Session = Depends(get_db)):
    rows = ParameterService(db).list_versions(name)
    if not rows:
        raise HTTPException(status_code=404, detail=f"Parameter set '{name}' not found")
    return [parameters_to_response(r) for r in rows]


@router.post("/algo/sets/{name}/activate", response_model=ParameterSetResponse)
def activate_parameter_set(
    name: str,
    version: int = Query(..., ge=1),
    updated_by: str = Query("system", max_length=50),
    db: Session = Depends(get_db)
):
    """Make one version the active one; the previous active version is cleared."""
    return parameters_to_response(ParameterService(db).activate(name, version, updated_by))


@router.post("/algo/sets/{name}/deactivate", response_model=ParameterSetResponse)
def deactivate_parameter_set(
    name: str,
    updated_by: str = Query("system", max_length=50),
    db: Session = Depends(get_db)
):
    return parameters_to_response(ParameterService(db).deactivate(name, updated_by))


# ============== Algorithm Runs ==============

@router.post(
    "/run/noos/async",
    response_model=TaskResponse,
    status_code=202,
    responses={429: {"model": TaskResponse, "description": "Algorithm pool is full"}}
)
def run_noos_async(
    request: AlgorithmRunRequest,
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator)
):
    """
    Queue a NOOS classification run and return its task for polling.

    Invalid parameters are rejected before any task is created. When the
    algorithm pool is full the task is returned FAILED with status 429.
    """
    submission = orchestrator.submit(
        run_request_to_overrides(request),
        parameter_set=request.parameter_set,
        label=request.label,
        user_id=request.user_id
    )
    return _task_reply(db, submission.task_id, submission.accepted)


@router.post("/run/noos", response_model=TaskResponse)
def run_noos(
    request: AlgorithmRunRequest,
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator)
):
    """Run the classification inline. Returns the finished task, 500 if it failed."""
    task_id = orchestrator.run_sync(
        run_request_to_overrides(request),
        parameter_set=request.parameter_set,
        label=request.label,
        user_id=request.user_id
    )
    task = TaskService(db).require(task_id)
    body = task_to_response(task)
    if task.status != TaskStatus.COMPLETED:
        return JSONResponse(status_code=500, content=jsonable_encoder(body))
    return body


# ============== NOOS Results ==============

@router.get("/results/noos", response_model=List[NoosResultResponse])
def get_latest_results(
    limit: int = Query(settings.RESULTS_LATEST_LIMIT, ge=1, le=settings.RESULTS_LATEST_LIMIT),
    db: Session = Depends(get_db)
):
    """Most recent results across all runs."""
    return [result_to_response(r) for r in NoosResultStore(db).latest(limit)]


@router.get("/results/noos/summary", response_model=NoosSummaryResponse)
def get_results_summary(run_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Counts per bucket, for one run or for every stored result."""
    store = NoosResultStore(db)
    counts = store.counts_by_type(run_id)
    return NoosSummaryResponse(run_id=run_id, total=store.count(run_id), counts=counts)


@router.get("/results/noos/dashboard", response_model=NoosDashboardResponse)
def get_results_dashboard(db: Session = Depends(get_db)):
    return NoosDashboardResponse(**NoosResultStore(db).dashboard())


@router.get("/results/noos/runs", response_model=List[RunSummaryResponse])
def list_result_runs(limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    """Stored runs, newest first."""
    return [run_summary_to_response(s) for s in NoosResultStore(db).run_summaries(limit)]


@router.get("/results/noos/runs/{run_id}", response_model=List[NoosResultResponse])
def get_run_results(run_id: int, db: Session = Depends(get_db)):
    rows = NoosResultStore(db).by_run(run_id)
    if not rows:
        raise HTTPException(status_code=404, detail=f"No results for run {run_id}")
    return [result_to_response(r) for r in rows]


@router.delete("/results/noos/runs/{run_id}", response_model=RunPurgeResponse)
def purge_run_results(run_id: int, db: Session = Depends(get_db)):
    """Delete every result of one run."""
    deleted = NoosResultStore(db).purge_run(run_id)
    return RunPurgeResponse(run_id=run_id, deleted=deleted)


@router.get("/results/noos/category/{category}", response_model=List[NoosResultResponse])
def get_results_by_category(
    category: str,
    run_id: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Results of one category, highest revenue contribution first."""
    return [result_to_response(r) for r in NoosResultStore(db).by_category(category, run_id)]


@router.get("/results/noos/type/{noos_type}", response_model=List[NoosResultResponse])
def get_results_by_type(
    noos_type: str,
    run_id: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Results of one bucket (core, bestseller, fashion), highest revenue contribution first."""
    rows = NoosResultStore(db).by_type(noos_type.lower(), run_id)
    return [result_to_response(r) for r in rows]


@router.get("/results/noos/download")
def download_results(run_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Tab-separated export of one run, or of the latest results."""
    store = NoosResultStore(db)
    rows = store.by_run(run_id) if run_id is not None else store.latest()
    filename = f"noos_results_run_{run_id}.tsv" if run_id is not None else "noos_results.tsv"
    return Response(
        content=store.to_tsv(rows),
        media_type=TSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.post(
    "/results/noos/export",
    response_model=TaskResponse,
    status_code=202,
    responses={429: {"model": TaskResponse, "description": "File pool is full"}}
)
def export_results(
    request: Optional[ExportRequest] = Body(None),
    db: Session = Depends(get_db),
    exporter: ResultExportService = Depends(get_export_service)
):
    """Write the export on the file pool; poll the task, then fetch the file."""
    request = request or ExportRequest()
    submission = exporter.submit(run_id=request.run_id, user_id=request.user_id)
    return _task_reply(db, submission.task_id, submission.accepted)


@router.get("/results/noos/export/{task_id}/file")
def download_export(
    task_id: int,
    exporter: ResultExportService = Depends(get_export_service)
):
    path = exporter.file_path(task_id)
    return FileResponse(path, media_type=TSV_MEDIA_TYPE, filename=path.name)


# ============== Tasks ==============

@router.get("/tasks", response_model=List[TaskResponse])
def list_recent_tasks(
    limit: int = Query(settings.TASKS_RECENT_DEFAULT, ge=1, le=settings.TASKS_RECENT_MAX),
    db: Session = Depends(get_db)
):
    return [task_to_response(t) for t in TaskService(db).recent(limit)]


@router.get("/tasks/all", response_model=List[TaskResponse])
def list_all_tasks(db: Session = Depends(get_db)):
    return [task_to_response(t) for t in TaskService(db).list_all()]


@router.get("/tasks/running", response_model=List[TaskResponse])
def list_running_tasks(db: Session = Depends(get_db)):
    """PENDING and RUNNING tasks."""
    return [task_to_response(t) for t in TaskService(db).running()]


@router.get("/tasks/failed", response_model=List[TaskResponse])
def list_failed_tasks(db: Session = Depends(get_db)):
    return [task_to_response(t) for t in TaskService(db).failed()]


@router.get("/tasks/stats", response_model=Dict[str, int])
def get_task_stats(db: Session = Depends(get_db)):
    """Task counts per status plus the total."""
    return TaskService(db).counts_by_status()


@router.get("/tasks/status/{status}", response_model=List[TaskResponse])
def list_tasks_by_status(status: str, db: Session = Depends(get_db)):
    try:
        task_status = TaskStatus(status.upper())
    except ValueError:
        raise ValidationError(
            f"Unknown task status '{status}'",
            details={"allowed": [s.value for s in TaskStatus]}
        )
    return [task_to_response(t) for t in TaskService(db).by_status(task_status)]


@router.delete("/tasks/completed", response_model=TaskPurgeResponse)
def purge_completed_tasks(
    older_than_days: int = Query(settings.TASK_RETENTION_DAYS, ge=0),
    db: Session = Depends(get_db)
):
    """Delete COMPLETED tasks that finished more than N days ago."""
    deleted = TaskService(db).purge_completed(older_than_days)
    return TaskPurgeResponse(deleted=deleted, older_than_days=older_than_days)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(task_id: int, db: Session = Depends(get_db)):
    """Poll a task. Progress is committed by the worker as it goes."""
    task = TaskService(db).get(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task_to_response(task)


@router.post("/tasks/{task_id}/cancel", response_model=TaskResponse, status_code=202)
def cancel_task(
    task_id: int,
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator)
):
    """
    Ask a task to stop. It ends FAILED with "Task was cancelled by user"
    at its next checkpoint. 404 for unknown tasks, 409 when already finished.
    """
    orchestrator.cancel(task_id)
    return task_to_response(TaskService(db).require(task_id))


# ============== System ==============

@router.get("/system/executors", response_model=ExecutorOverviewResponse)
def get_executor_stats(
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
    exporter: ResultExportService = Depends(get_export_service)
):
    """Pool size, active and queued work for the algorithm and file pools."""
    return ExecutorOverviewResponse(executors=[
        executor_stats_to_response(orchestrator.executor.stats()),
        executor_stats_to_response(exporter.executor.stats()),
    ])
