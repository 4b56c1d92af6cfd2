"""
Pydantic Schemas for API validation and serialization.

These schemas define the contract between clients and the planner:
- Run and parameter-set requests (validated before any Task exists)
- Task, result and executor responses
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, model_validator


# ============== Parameters ==============

class ParameterValues(BaseModel):
    """
    Tunable thresholds. Every field is optional; missing ones come from
    the active parameter set, then the service defaults.
    """
    liquidation_threshold: Optional[float] = Field(None, ge=0, le=100)  # percent of MRP
    bestseller_multiplier: Optional[float] = Field(None, gt=0)
    min_volume_threshold: Optional[float] = Field(None, ge=0)
    consistency_threshold: Optional[float] = Field(None, ge=0, le=1)
    analysis_start_date: Optional[date] = None
    analysis_end_date: Optional[date] = None
    core_duration_months: Optional[int] = Field(None, ge=1, le=120)
    bestseller_duration_days: Optional[int] = Field(None, ge=1, le=3650)
    label: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def check_window(self):
        start, end = self.analysis_start_date, self.analysis_end_date
        if start is not None and end is not None and start > end:
            raise ValueError("analysis_start_date must not be after analysis_end_date")
        return self


class AlgorithmRunRequest(ParameterValues):
    """Submit a NOOS run."""
    parameter_set: Optional[str] = Field(None, min_length=1, max_length=100)
    user_id: str = Field(default="system", max_length=50)


class ParameterSetCreate(ParameterValues):
    """Create a new version of a named parameter set."""
    name: str = Field(..., min_length=1, max_length=100)
    activate: bool = True
    updated_by: str = Field(default="system", max_length=50)


class ParameterSetResponse(BaseModel):
    """One stored version of a parameter set."""
    id: int
    name: str
    version: int
    label: Optional[str]
    liquidation_threshold: float
    bestseller_multiplier: float
    min_volume_threshold: float
    consistency_threshold: float
    analysis_start_date: Optional[date]
    analysis_end_date: Optional[date]
    core_duration_months: int
    bestseller_duration_days: int
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    updated_by: Optional[str]

    class Config:
        from_attributes = True


class ParameterDefaultsResponse(BaseModel):
    """Values a run uses when nothing else is configured."""
    liquidation_threshold: float
    bestseller_multiplier: float
    min_volume_threshold: float
    consistency_threshold: float
    core_duration_months: int
    bestseller_duration_days: int
    analysis_start_date: Optional[date] = None
    analysis_end_date: Optional[date] = None


# ============== Tasks ==============

class TaskResponse(BaseModel):
    """
    Task as seen by polling clients.
    progress_percentage never decreases while the task is RUNNING.
    """
    id: int
    task_type: str
    status: str
    progress_percentage: float
    current_phase: Optional[str]
    current_step: int
    total_steps: int
    progress_message: Optional[str]
    error_message: Optional[str]
    cancellation_requested: bool
    parameters: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    user_id: Optional[str]
    created_at: datetime
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    updated_at: Optional[datetime]


class TaskPurgeResponse(BaseModel):
    deleted: int
    older_than_days: int


# ============== NOOS Results ==============

class NoosResultResponse(BaseModel):
    """Single classified style."""
    id: int
    algorithm_run_id: int
    category: str
    style_code: str
    type: str
    style_ros: float
    style_rev_contribution: float
    total_quantity_sold: int
    total_revenue: float
    days_available: int
    days_with_sales: int
    avg_discount: float
    calculated_date: datetime

    class Config:
        from_attributes = True


class NoosSummaryResponse(BaseModel):
    """Counts per bucket; core, bestseller and fashion are always present."""
    run_id: Optional[int] = None
    total: int
    counts: Dict[str, int]


class NoosDashboardResponse(BaseModel):
    """Headline numbers for the most recent run."""
    run_id: Optional[int]
    summary: Dict[str, int]
    total: int
    percentages: Dict[str, float]
    last_run_date: Optional[datetime]


class RunSummaryResponse(BaseModel):
    run_id: int
    calculated_date: Optional[datetime]
    total: int
    counts: Dict[str, int]
    label: Optional[str] = None
    status: Optional[str] = None
    duration_seconds: Optional[float] = None
    parameters: Optional[Dict[str, Any]] = None


class RunPurgeResponse(BaseModel):
    run_id: int
    deleted: int


class ExportRequest(BaseModel):
    """Export one run, or the latest results when run_id is omitted."""
    run_id: Optional[int] = Field(None, ge=1)
    user_id: str = Field(default="system", max_length=50)


# ============== System ==============

class ExecutorStatsResponse(BaseModel):
    name: str
    workers: int
    queue_capacity: int
    capacity: int
    active: int
    queued: int


class ExecutorOverviewResponse(BaseModel):
    executors: List[ExecutorStatsResponse]
