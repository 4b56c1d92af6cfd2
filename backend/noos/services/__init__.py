# Services module
from noos.services.executor import (
    BoundedExecutor, Accepted, Rejected, ExecutorStats,
    get_executor, get_algorithm_executor, get_file_executor,
    shutdown_executors
)
from noos.services.cancellation import CancellationToken
from noos.services.parameters import ParameterService, RunParameters, AnalysisWindow
from noos.services.aggregator import SalesAggregator, DatabaseStockCalendar, StyleMetrics, WindowMetrics, AggregationResult
from noos.services.classification import ClassificationEngine, ClassifiedStyle, category_average_ros
from noos.services.result_store import NoosResultStore
from noos.services.task_service import TaskService, BUSY_MESSAGE, CANCELLED_MESSAGE
from noos.services.orchestrator import TaskOrchestrator, Submission, get_orchestrator
from noos.services.export import ResultExportService, get_export_service

__all__ = [
    "BoundedExecutor", "Accepted", "Rejected", "ExecutorStats",
    "get_executor", "get_algorithm_executor", "get_file_executor",
    "shutdown_executors",
    "CancellationToken",
    "ParameterService", "RunParameters", "AnalysisWindow",
    "SalesAggregator", "DatabaseStockCalendar", "StyleMetrics", "WindowMetrics", "AggregationResult",
    "ClassificationEngine", "ClassifiedStyle", "category_average_ros",
    "NoosResultStore",
    "TaskService", "BUSY_MESSAGE", "CANCELLED_MESSAGE",
    "TaskOrchestrator", "Submission", "get_orchestrator",
    "ResultExportService", "get_export_service",
]
