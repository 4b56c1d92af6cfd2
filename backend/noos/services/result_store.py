"""
Result store for NOOS classification output.

Each run is written in a single transaction and tagged with its
algorithm_run_id. Older runs stay queryable until purged.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from noos.config.settings import settings
from noos.exceptions import NotFoundError
from noos.models import NoosResult, NoosType, Task, utcnow
from noos.services.classification import ClassifiedStyle

logger = logging.getLogger(__name__)

TSV_COLUMNS = [
    ("category", "Category"),
    ("style_code", "Style Code"),
    ("style_ros", "Style ROS"),
    ("type", "Type"),
    ("style_rev_contribution", "Style Rev Contri"),
    ("total_quantity_sold", "Total Quantity"),
    ("total_revenue", "Total Revenue"),
    ("days_available", "Days Available"),
    ("days_with_sales", "Days With Sales"),
    ("avg_discount", "Avg Discount"),
    ("calculated_date", "Calculated Date"),
    ("algorithm_run_id", "Run Id"),
]


def empty_type_counts() -> Dict[str, int]:
    return {t.value: 0 for t in NoosType}


class NoosResultStore:
    def __init__(self, db: Session):
        self.db = db

    # ---------- Writes ----------

    def save_run(
        self,
        run_id: int,
        rows: Iterable[ClassifiedStyle],
        calculated_date: Optional[datetime] = None
    ) -> int:
        """Insert every row of a run or none of them."""
        calculated_date = calculated_date or utcnow()
        records = [
            NoosResult(
                algorithm_run_id=run_id,
                category=row.category,
                style_code=row.style_code,
                type=row.type.value,
                style_ros=row.style_ros,
                style_rev_contribution=row.style_rev_contribution,
                total_quantity_sold=row.total_quantity_sold,
                total_revenue=row.total_revenue,
                days_available=row.days_available,
                days_with_sales=row.days_with_sales,
                avg_discount=row.avg_discount,
                calculated_date=calculated_date,
            )
            for row in rows
        ]

        try:
            self.db.add_all(records)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Saved %d NOOS results for run %d", len(records), run_id)
        return len(records)

    def purge_run(self, run_id: int) -> int:
        deleted = self.db.query(NoosResult).filter(
            NoosResult.algorithm_run_id == run_id
        ).delete(synchronize_session=False)
        if not deleted:
            self.db.rollback()
            raise NotFoundError(f"No results for run {run_id}")
        self.db.commit()
        logger.info("Purged %d NOOS results of run %d", deleted, run_id)
        return deleted

    # ---------- Queries ----------

    def latest(self, limit: Optional[int] = None) -> List[NoosResult]:
        """Most recent rows across all runs."""
        return self.db.query(NoosResult).order_by(
            NoosResult.calculated_date.desc(),
            NoosResult.algorithm_run_id.desc(),
            NoosResult.category,
            NoosResult.style_code
        ).limit(limit or settings.RESULTS_LATEST_LIMIT).all()

    def by_run(self, run_id: int) -> List[NoosResult]:
        return self.db.query(NoosResult).filter(
            NoosResult.algorithm_run_id == run_id
        ).order_by(NoosResult.category, NoosResult.style_code).all()

    def by_category(self, category: str, run_id: Optional[int] = None) -> List[NoosResult]:
        query = self.db.query(NoosResult).filter(NoosResult.category == category)
        if run_id is not None:
            query = query.filter(NoosResult.algorithm_run_id == run_id)
        return query.order_by(
            NoosResult.style_rev_contribution.desc(),
            NoosResult.style_code
        ).all()

    def by_type(self, noos_type: str, run_id: Optional[int] = None) -> List[NoosResult]:
        query = self.db.query(NoosResult).filter(NoosResult.type == noos_type)
        if run_id is not None:
            query = query.filter(NoosResult.algorithm_run_id == run_id)
        return query.order_by(
            NoosResult.style_rev_contribution.desc(),
            NoosResult.style_code
        ).all()

    def count(self, run_id: Optional[int] = None) -> int:
        query = self.db.query(func.count(NoosResult.id))
        if run_id is not None:
            query = query.filter(NoosResult.algorithm_run_id == run_id)
        return query.scalar() or 0

    def counts_by_type(self, run_id: Optional[int] = None) -> Dict[str, int]:
        query = self.db.query(NoosResult.type, func.count(NoosResult.id))
        if run_id is not None:
            query = query.filter(NoosResult.algorithm_run_id == run_id)

        counts = empty_type_counts()
        for noos_type, count in query.group_by(NoosResult.type).all():
            counts[noos_type] = count
        return counts

    def latest_run_id(self) -> Optional[int]:
        return self.db.query(func.max(NoosResult.algorithm_run_id)).scalar()

    def run_ids(self, limit: int = 20) -> List[int]:
        rows = self.db.query(NoosResult.algorithm_run_id).distinct().order_by(
            NoosResult.algorithm_run_id.desc()
        ).limit(limit).all()
        return [r[0] for r in rows]

    def run_summaries(self, limit: int = 20) -> List[dict]:
        """
        Per-run analytics, newest run first: calculated date, per-type
        totals and, while its task row is kept, the run label, status,
        duration and parameter snapshot.
        """
        run_ids = self.run_ids(limit)
        if not run_ids:
            return []

        rows = self.db.query(
            NoosResult.algorithm_run_id,
            NoosResult.type,
            func.count(NoosResult.id),
            func.max(NoosResult.calculated_date)
        ).filter(
            NoosResult.algorithm_run_id.in_(run_ids)
        ).group_by(NoosResult.algorithm_run_id, NoosResult.type).all()

        summaries = {
            run_id: {"run_id": run_id, "calculated_date": None, "total": 0, "counts": empty_type_counts(),
                     "label": None, "status": None, "duration_seconds": None, "parameters": None}
            for run_id in run_ids
        }
        for run_id, noos_type, count, calculated in rows:
            summary = summaries[run_id]
            summary["counts"][noos_type] = count
            summary["total"] += count
            if summary["calculated_date"] is None or calculated > summary["calculated_date"]:
                summary["calculated_date"] = calculated

        for task in self.db.query(Task).filter(Task.id.in_(run_ids)).all():
            summary = summaries[task.id]
            parameters = task.parameters or {}
            summary["label"] = parameters.get("label")
            summary["status"] = task.status.value
            summary["duration_seconds"] = (task.details or {}).get("duration_seconds")
            summary["parameters"] = parameters or None

        return [summaries[run_id] for run_id in run_ids]

    def dashboard(self) -> dict:
        """Headline numbers for the most recent run."""
        run_id = self.latest_run_id()
        counts = self.counts_by_type(run_id) if run_id is not None else empty_type_counts()
        total = sum(counts.values())

        percentages = {
            key: round(value / total * 100, 1) if total else 0.0
            for key, value in counts.items()
        }
        last_run_date = None
        if run_id is not None:
            last_run_date = self.db.query(func.max(NoosResult.calculated_date)).filter(
                NoosResult.algorithm_run_id == run_id
            ).scalar()

        return {
            "run_id": run_id,
            "summary": counts,
            "total": total,
            "percentages": percentages,
            "last_run_date": last_run_date,
        }

    # ---------- Export ----------

    @staticmethod
    def to_tsv(rows: Iterable[NoosResult]) -> str:
        """Tab-separated export with a header row."""
        frame = pd.DataFrame(
            [[getattr(row, attr) for attr, _ in TSV_COLUMNS] for row in rows],
            columns=[header for _, header in TSV_COLUMNS]
        )
        if not frame.empty:
            frame["Calculated Date"] = frame["Calculated Date"].map(
                lambda d: d.isoformat(sep=" ", timespec="seconds") if pd.notna(d) else ""
            )
        return frame.to_csv(sep="\t", index=False, lineterminator="\n")
