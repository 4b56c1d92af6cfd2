# Models module
from noos.models.models import (
    Base, Store, Style, SKU, Sale, SkuAvailability,
    AlgorithmParameters, NoosResult, Task,
    NoosType, TaskStatus, TaskType, utcnow
)
from noos.models.database import (
    get_db, create_tables, drop_tables, session_scope, SessionLocal, engine
)

__all__ = [
    "Base", "Store", "Style", "SKU", "Sale", "SkuAvailability",
    "AlgorithmParameters", "NoosResult", "Task",
    "NoosType", "TaskStatus", "TaskType", "utcnow",
    "get_db", "create_tables", "drop_tables", "session_scope", "SessionLocal", "engine"
]
