# Schemas module
from noos.schemas.schemas import (
    ParameterValues, AlgorithmRunRequest,
    ParameterSetCreate, ParameterSetResponse, ParameterDefaultsResponse,
    TaskResponse, TaskPurgeResponse,
    NoosResultResponse, NoosSummaryResponse, NoosDashboardResponse,
    RunSummaryResponse, RunPurgeResponse, ExportRequest,
    ExecutorStatsResponse, ExecutorOverviewResponse
)

__all__ = [
    "ParameterValues", "AlgorithmRunRequest",
    "ParameterSetCreate", "ParameterSetResponse", "ParameterDefaultsResponse",
    "TaskResponse", "TaskPurgeResponse",
    "NoosResultResponse", "NoosSummaryResponse", "NoosDashboardResponse",
    "RunSummaryResponse", "RunPurgeResponse", "ExportRequest",
    "ExecutorStatsResponse", "ExecutorOverviewResponse"
]
