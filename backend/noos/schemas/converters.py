"""
Explicit conversions between ORM rows, service objects and API schemas.
"""

from typing import Any, Dict

from noos.models import AlgorithmParameters, NoosResult, Task
from noos.schemas.schemas import (
    AlgorithmRunRequest, ExecutorStatsResponse, NoosResultResponse,
    ParameterDefaultsResponse, ParameterSetCreate, ParameterSetResponse,
    ParameterValues, RunSummaryResponse, TaskResponse
)
from noos.services.executor import ExecutorStats
from noos.services.parameters import PARAMETER_FIELDS


def parameter_overrides(values: ParameterValues) -> Dict[str, Any]:
    """Only the threshold and window fields the caller actually set."""
    return {
        key: getattr(values, key)
        for key in PARAMETER_FIELDS
        if getattr(values, key) is not None
    }


def run_request_to_overrides(request: AlgorithmRunRequest) -> Dict[str, Any]:
    return parameter_overrides(request)


def parameter_create_to_values(request: ParameterSetCreate) -> Dict[str, Any]:
    return parameter_overrides(request)


def parameters_to_response(row: AlgorithmParameters) -> ParameterSetResponse:
    return ParameterSetResponse(
        id=row.id,
        name=row.name,
        version=row.version,
        label=row.label,
        liquidation_threshold=row.liquidation_threshold,
        bestseller_multiplier=row.bestseller_multiplier,
        min_volume_threshold=row.min_volume_threshold,
        consistency_threshold=row.consistency_threshold,
        analysis_start_date=row.analysis_start_date,
        analysis_end_date=row.analysis_end_date,
        core_duration_months=row.core_duration_months,
        bestseller_duration_days=row.bestseller_duration_days,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        updated_by=row.updated_by,
    )


def defaults_to_response(values: Dict[str, Any]) -> ParameterDefaultsResponse:
    return ParameterDefaultsResponse(**values)


def task_to_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        task_type=task.task_type,
        status=task.status.value,
        progress_percentage=task.progress_percentage or 0.0,
        current_phase=task.current_phase,
        current_step=task.current_step or 0,
        total_steps=task.total_steps or 0,
        progress_message=task.progress_message,
        error_message=task.error_message,
        cancellation_requested=bool(task.cancellation_requested),
        parameters=task.parameters,
        metadata=task.details,
        user_id=task.user_id,
        created_at=task.created_at,
        start_time=task.start_time,
        end_time=task.end_time,
        updated_at=task.updated_at,
    )


def result_to_response(row: NoosResult) -> NoosResultResponse:
    return NoosResultResponse(
        id=row.id,
        algorithm_run_id=row.algorithm_run_id,
        category=row.category,
        style_code=row.style_code,
        type=row.type,
        style_ros=row.style_ros,
        style_rev_contribution=row.style_rev_contribution,
        total_quantity_sold=row.total_quantity_sold,
        total_revenue=row.total_revenue,
        days_available=row.days_available,
        days_with_sales=row.days_with_sales,
        avg_discount=row.avg_discount,
        calculated_date=row.calculated_date,
    )


def run_summary_to_response(summary: Dict[str, Any]) -> RunSummaryResponse:
    return RunSummaryResponse(
        run_id=summary["run_id"],
        calculated_date=summary["calculated_date"],
        total=summary["total"],
        counts=dict(summary["counts"]),
        label=summary.get("label"),
        status=summary.get("status"),
        duration_seconds=summary.get("duration_seconds"),
        parameters=summary.get("parameters"),
    )


def executor_stats_to_response(stats: ExecutorStats) -> ExecutorStatsResponse:
    return ExecutorStatsResponse(
        name=stats.name,
        workers=stats.workers,
        queue_capacity=stats.queue_capacity,
        capacity=stats.capacity,
        active=stats.active,
        queued=stats.queued,
    )
