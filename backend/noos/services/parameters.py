"""
Parameter resolver.

Merges settings defaults, the active stored parameter set and explicit
request values into one immutable RunParameters snapshot.
"""

import logging
from dataclasses import asdict, dataclass, replace
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from noos.config.settings import settings
from noos.exceptions import NotFoundError, ValidationError
from noos.models import AlgorithmParameters, Sale

logger = logging.getLogger(__name__)

THRESHOLD_FIELDS = (
    "liquidation_threshold",
    "bestseller_multiplier",
    "min_volume_threshold",
    "consistency_threshold",
    "core_duration_months",
    "bestseller_duration_days",
)
WINDOW_FIELDS = ("analysis_start_date", "analysis_end_date")
PARAMETER_FIELDS = THRESHOLD_FIELDS + WINDOW_FIELDS


@dataclass(frozen=True)
class AnalysisWindow:
    """Closed date range [start, end]."""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def last_days(self, days: int) -> "AnalysisWindow":
        """Trailing ``days`` of this window, clipped to its start."""
        start = self.end - timedelta(days=days - 1)
        return AnalysisWindow(max(start, self.start), self.end)

    def last_months(self, months: int) -> "AnalysisWindow":
        """Trailing ``months`` calendar months of this window, clipped to its start."""
        start = (pd.Timestamp(self.end) - pd.DateOffset(months=months)).date() + timedelta(days=1)
        return AnalysisWindow(max(start, self.start), self.end)


@dataclass(frozen=True)
class RunParameters:
    """Thresholds frozen at submission time. A run never sees later edits."""
    liquidation_threshold: float
    bestseller_multiplier: float
    min_volume_threshold: float
    consistency_threshold: float
    core_duration_months: int
    bestseller_duration_days: int
    analysis_start_date: Optional[date] = None
    analysis_end_date: Optional[date] = None
    parameter_set: Optional[str] = None
    parameter_version: Optional[int] = None
    label: Optional[str] = None

    @property
    def has_window(self) -> bool:
        return self.analysis_start_date is not None and self.analysis_end_date is not None

    @property
    def window(self) -> AnalysisWindow:
        if not self.has_window:
            raise ValidationError("Analysis window is not resolved")
        return AnalysisWindow(self.analysis_start_date, self.analysis_end_date)

    @property
    def bestseller_window(self) -> AnalysisWindow:
        return self.window.last_days(self.bestseller_duration_days)

    @property
    def core_window(self) -> AnalysisWindow:
        return self.window.last_months(self.core_duration_months)

    def with_window(self, start: date, end: date) -> "RunParameters":
        return replace(self, analysis_start_date=start, analysis_end_date=end)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe snapshot stored on the Task."""
        data = asdict(self)
        for key in WINDOW_FIELDS:
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def default_values() -> Dict[str, Any]:
    return {
        "liquidation_threshold": settings.DEFAULT_LIQUIDATION_THRESHOLD,
        "bestseller_multiplier": settings.DEFAULT_BESTSELLER_MULTIPLIER,
        "min_volume_threshold": settings.DEFAULT_MIN_VOLUME_THRESHOLD,
        "consistency_threshold": settings.DEFAULT_CONSISTENCY_THRESHOLD,
        "core_duration_months": settings.DEFAULT_CORE_DURATION_MONTHS,
        "bestseller_duration_days": settings.DEFAULT_BESTSELLER_DURATION_DAYS,
        "analysis_start_date": None,
        "analysis_end_date": None,
    }


def validate_values(values: Dict[str, Any]) -> None:
    """
    Check a merged parameter dict.

    Raises:
        ValidationError: with one entry per offending field in ``details``
    """
    errors = {}

    liquidation = values.get("liquidation_threshold")
    if liquidation is None or not 0 <= liquidation <= 100:
        errors["liquidation_threshold"] = "must be between 0 and 100"

    multiplier = values.get("bestseller_multiplier")
    if multiplier is None or multiplier <= 0:
        errors["bestseller_multiplier"] = "must be greater than 0"

    min_volume = values.get("min_volume_threshold")
    if min_volume is None or min_volume < 0:
        errors["min_volume_threshold"] = "must be >= 0"

    consistency = values.get("consistency_threshold")
    if consistency is None or not 0 <= consistency <= 1:
        errors["consistency_threshold"] = "must be between 0 and 1"

    for key in ("core_duration_months", "bestseller_duration_days"):
        value = values.get(key)
        if value is None or value < 1:
            errors[key] = "must be >= 1"

    start = values.get("analysis_start_date")
    end = values.get("analysis_end_date")
    if start is not None and end is not None and start > end:
        errors["analysis_start_date"] = "must not be after analysis_end_date"

    if errors:
        raise ValidationError("Invalid algorithm parameters", details=errors)


def _row_values(row: AlgorithmParameters) -> Dict[str, Any]:
    return {key: getattr(row, key) for key in PARAMETER_FIELDS}


class ParameterService:
    """Versioned parameter sets plus run-time resolution."""

    def __init__(self, db: Session):
        self.db = db

    # ---------- Queries ----------

    def get_active(self, name: str) -> Optional[AlgorithmParameters]:
        return self.db.query(AlgorithmParameters).filter(
            AlgorithmParameters.name == name,
            AlgorithmParameters.is_active == True  # noqa: E712
        ).first()

    def list_active(self) -> List[AlgorithmParameters]:
        return self.db.query(AlgorithmParameters).filter(
            AlgorithmParameters.is_active == True  # noqa: E712
        ).order_by(AlgorithmParameters.name).all()

    def list_versions(self, name: str) -> List[AlgorithmParameters]:
        return self.db.query(AlgorithmParameters).filter(
            AlgorithmParameters.name == name
        ).order_by(AlgorithmParameters.version.desc()).all()

    def get_version(self, name: str, version: int) -> Optional[AlgorithmParameters]:
        return self.db.query(AlgorithmParameters).filter(
            AlgorithmParameters.name == name,
            AlgorithmParameters.version == version
        ).first()

    def defaults(self) -> Dict[str, Any]:
        return default_values()

    # ---------- Writes ----------

    def create_version(
        self,
        name: str,
        values: Dict[str, Any],
        label: Optional[str] = None,
        updated_by: str = "system",
        activate: bool = True
    ) -> AlgorithmParameters:
        """
        Store a new version of ``name``.

        Fields missing from ``values`` are inherited from the currently
        active version, then from the settings defaults.
        """
        current = self.get_active(name)
        merged = _row_values(current) if current else default_values()
        merged.update({k: v for k, v in values.items() if k in PARAMETER_FIELDS and v is not None})
        validate_values(merged)

        latest = self.db.query(func.max(AlgorithmParameters.version)).filter(
            AlgorithmParameters.name == name
        ).scalar()

        try:
            if activate and current is not None:
                # Clear the old active row first so the partial unique index never sees two
                current.is_active = False
                current.updated_by = updated_by
                self.db.flush()

            row = AlgorithmParameters(
                name=name,
                version=(latest or 0) + 1,
                label=label,
                is_active=activate,
                updated_by=updated_by,
                **merged
            )
            self.db.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(row)
        logger.info("Created parameter set '%s' version %d (active=%s)", name, row.version, activate)
        return row

    def activate(self, name: str, version: int, updated_by: str = "system") -> AlgorithmParameters:
        target = self.get_version(name, version)
        if target is None:
            raise NotFoundError(f"Parameter set '{name}' version {version} not found")
        if target.is_active:
            return target

        try:
            current = self.get_active(name)
            if current is not None:
                current.is_active = False
                current.updated_by = updated_by
                self.db.flush()
            target.is_active = True
            target.updated_by = updated_by
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(target)
        logger.info("Activated parameter set '%s' version %d", name, version)
        return target

    def deactivate(self, name: str, updated_by: str = "system") -> AlgorithmParameters:
        current = self.get_active(name)
        if current is None:
            raise NotFoundError(f"Parameter set '{name}' has no active version")

        current.is_active = False
        current.updated_by = updated_by
        self.db.commit()
        self.db.refresh(current)
        logger.info("Deactivated parameter set '%s' version %d", name, current.version)
        return current

    # ---------- Resolution ----------

    def resolve(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        parameter_set: Optional[str] = None,
        label: Optional[str] = None
    ) -> RunParameters:
        """
        Build the snapshot for one run.

        Order of precedence: explicit ``overrides``, then the active
        version of ``parameter_set`` (or the default set), then settings.

        Raises:
            NotFoundError: a named ``parameter_set`` has no active version
            ValidationError: the merged values are out of range
        """
        values = default_values()
        name = parameter_set or settings.DEFAULT_PARAMETER_SET

        stored = self.get_active(name)
        if stored is None and parameter_set is not None:
            raise NotFoundError(f"Parameter set '{parameter_set}' has no active version")
        if stored is not None:
            values.update({k: v for k, v in _row_values(stored).items() if v is not None})

        for key, value in (overrides or {}).items():
            if key in PARAMETER_FIELDS and value is not None:
                values[key] = value

        validate_values(values)

        return RunParameters(
            parameter_set=stored.name if stored else None,
            parameter_version=stored.version if stored else None,
            label=label or (stored.label if stored else None),
            **values
        )

    def sales_date_range(self) -> Optional[AnalysisWindow]:
        first, last = self.db.query(func.min(Sale.date), func.max(Sale.date)).one()
        if first is None or last is None:
            return None
        return AnalysisWindow(first, last)

    def resolve_window(self, params: RunParameters) -> RunParameters:
        """Fill open window bounds from the sales table."""
        if params.has_window:
            return params

        available = self.sales_date_range()
        if available is None:
            return params

        start = params.analysis_start_date or available.start
        end = params.analysis_end_date or available.end
        if start > end:
            raise ValidationError(
                "Analysis window does not overlap the available sales data",
                details={"analysis_start_date": str(start), "analysis_end_date": str(end)}
            )
        return params.with_window(start, end)
