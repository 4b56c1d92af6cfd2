"""
SQLAlchemy Database Models for the NOOS planner.

Tables:
- stores, styles, skus: Master data (maintained outside this service)
- sales: Immutable sales rows, the input of every algorithm run
- sku_availability: Stock calendar, one row per day a SKU was stocked in a store
- algorithm_parameters: Versioned threshold sets, one active version per name
- noos_results: Classification output, grouped by algorithm_run_id
- tasks: Run tracking with durable progress
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime,
    ForeignKey, Boolean, Text, JSON, Index, UniqueConstraint,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NoosType(str, enum.Enum):
    """Classification buckets. Stored as plain strings so new buckets need no migration."""
    BESTSELLER = "bestseller"
    CORE = "core"
    FASHION = "fashion"


class TaskStatus(enum.Enum):
    """Task lifecycle states."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskType(str, enum.Enum):
    ALGORITHM_RUN = "ALGORITHM_RUN"
    RESULTS_EXPORT = "RESULTS_EXPORT"


# ============== Master data ==============

class Store(Base):
    """Store (sales channel)."""
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    branch = Column(String(50), unique=True, nullable=False, index=True)
    city = Column(String(50))

    sales = relationship("Sale", back_populates="store")


class Style(Base):
    """Style master. Category and MRP drive the classification."""
    __tablename__ = "styles"

    id = Column(Integer, primary_key=True, index=True)
    style_code = Column(String(50), unique=True, nullable=False, index=True)
    brand = Column(String(50))
    category = Column(String(50), nullable=False, index=True)
    sub_category = Column(String(50))
    mrp = Column(Float)  # Missing or non-positive MRP disables liquidation cleanup
    gender = Column(String(50))

    skus = relationship("SKU", back_populates="style")


class SKU(Base):
    """Size-level variant of a style."""
    __tablename__ = "skus"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), unique=True, nullable=False, index=True)
    style_id = Column(Integer, ForeignKey("styles.id"), nullable=False, index=True)
    size = Column(String(10))

    style = relationship("Style", back_populates="skus")
    sales = relationship("Sale", back_populates="sku")


class Sale(Base):
    """
    Immutable sales row.
    discount is the markdown per unit, comparable with the style MRP.
    """
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    discount = Column(Float, nullable=False, default=0.0)
    revenue = Column(Float, nullable=False, default=0.0)

    sku = relationship("SKU", back_populates="sales")
    store = relationship("Store", back_populates="sales")


class SkuAvailability(Base):
    """Stock calendar: the SKU was on hand in the store on this date."""
    __tablename__ = "sku_availability"
    __table_args__ = (
        UniqueConstraint("sku_id", "store_id", "date", name="uq_sku_availability_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)


# ============== Algorithm configuration ==============

class AlgorithmParameters(Base):
    """
    Versioned threshold set.
    At most one version per name is active, enforced by a partial unique index.
    """
    __tablename__ = "algorithm_parameters"
    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_parameter_set_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    label = Column(String(255))

    liquidation_threshold = Column(Float, nullable=False)
    bestseller_multiplier = Column(Float, nullable=False)
    min_volume_threshold = Column(Float, nullable=False)
    consistency_threshold = Column(Float, nullable=False)
    analysis_start_date = Column(Date)
    analysis_end_date = Column(Date)
    core_duration_months = Column(Integer, nullable=False)
    bestseller_duration_days = Column(Integer, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    updated_by = Column(String(50), default="system")


Index(
    "uq_parameter_set_active",
    AlgorithmParameters.name,
    unique=True,
    sqlite_where=AlgorithmParameters.is_active == True,  # noqa: E712
    postgresql_where=AlgorithmParameters.is_active == True,  # noqa: E712
)


# ============== Output ==============

class NoosResult(Base):
    """
    Classification of one style in one run.
    Rows are never edited; later runs supersede earlier ones.
    """
    __tablename__ = "noos_results"
    __table_args__ = (
        UniqueConstraint("algorithm_run_id", "style_code", name="uq_noos_result_run_style"),
    )

    id = Column(Integer, primary_key=True, index=True)
    algorithm_run_id = Column(Integer, nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)
    style_code = Column(String(50), nullable=False)
    type = Column(String(20), nullable=False, index=True)
    style_ros = Column(Float, nullable=False)
    style_rev_contribution = Column(Float, nullable=False)  # percent of category revenue
    total_quantity_sold = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Float, nullable=False, default=0.0)
    days_available = Column(Integer, nullable=False, default=0)
    days_with_sales = Column(Integer, nullable=False, default=0)
    avg_discount = Column(Float, nullable=False, default=0.0)
    calculated_date = Column(DateTime, nullable=False, default=utcnow, index=True)


class Task(Base):
    """
    Run tracking.
    Written by the worker that owns it and by cancellation requests only.
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    task_type = Column(String(50), nullable=False, index=True)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)

    progress_percentage = Column(Float, nullable=False, default=0.0)
    current_phase = Column(String(50))
    current_step = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False, default=0)
    progress_message = Column(String(500))

    error_message = Column(Text)
    cancellation_requested = Column(Boolean, nullable=False, default=False)

    parameters = Column(JSON)
    details = Column("metadata", JSON)  # "metadata" is reserved on declarative classes
    user_id = Column(String(50), default="system")

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    start_time = Column(DateTime)
    end_time = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
