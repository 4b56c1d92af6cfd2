"""
Sales aggregation.

Loads the sales rows of an analysis window into a pandas frame, drops
rows with broken references and liquidation sales, and rolls the rest up
per style for the full window and the two lookback windows.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Set

import pandas as pd
from sqlalchemy.orm import Session

from noos.models import Sale, SKU, SkuAvailability, Store, Style
from noos.services.cancellation import CancellationToken
from noos.services.parameters import AnalysisWindow, RunParameters

logger = logging.getLogger(__name__)

SALES_COLUMNS = [
    "sale_id", "date", "quantity", "discount", "revenue",
    "sku_id", "sku_ref", "store_id", "store_ref",
    "style_code", "category", "mrp",
]


@dataclass
class WindowMetrics:
    """Totals for one style over one window."""
    quantity: int = 0
    revenue: float = 0.0
    # Total markdown: sum of quantity times per-unit discount
    discount: float = 0.0
    days_with_sales: int = 0
    days_available: int = 0

    @property
    def ros(self) -> float:
        """Units per available day; zero when the style was never available."""
        if self.days_available <= 0:
            return 0.0
        return self.quantity / self.days_available

    @property
    def consistency(self) -> float:
        return self.days_with_sales / max(self.days_available, 1)

    @property
    def avg_discount(self) -> float:
        """Share of list value given away as discount."""
        gross = self.discount + self.revenue
        if gross <= 0:
            return 0.0
        return self.discount / gross


@dataclass
class StyleMetrics:
    style_code: str
    category: str
    full: WindowMetrics
    bestseller: WindowMetrics
    core: WindowMetrics


@dataclass
class AggregationResult:
    window: AnalysisWindow
    styles_by_category: Dict[str, List[StyleMetrics]] = field(default_factory=dict)
    rows_scanned: int = 0
    rows_liquidated: int = 0
    warnings: int = 0
    availability_fallbacks: int = 0

    @property
    def total_styles(self) -> int:
        return sum(len(styles) for styles in self.styles_by_category.values())

    @property
    def is_empty(self) -> bool:
        return self.total_styles == 0


@dataclass
class SalesFrame:
    """Sales rows that survived reference checks, plus what was dropped."""
    frame: pd.DataFrame
    rows_scanned: int
    warnings: int


class DatabaseStockCalendar:
    """Days on which any SKU of a style was stocked in any store."""

    def __init__(self, db: Session):
        self.db = db

    def available_days(self, window: AnalysisWindow) -> Dict[str, Set[date]]:
        rows = self.db.query(Style.style_code, SkuAvailability.date).join(
            SKU, SKU.id == SkuAvailability.sku_id
        ).join(
            Style, Style.id == SKU.style_id
        ).filter(
            SkuAvailability.date >= window.start,
            SkuAvailability.date <= window.end
        ).distinct().all()

        days = defaultdict(set)
        for style_code, day in rows:
            days[style_code].add(day)
        return dict(days)


class SalesAggregator:
    """Per-style metrics for one run."""

    def __init__(self, db: Session, calendar=None):
        self.db = db
        self.calendar = calendar if calendar is not None else DatabaseStockCalendar(db)

    def load_sales(self, window: AnalysisWindow) -> SalesFrame:
        """
        Read the window's sales joined to SKU, style and store.
        Rows whose SKU, style or store cannot be resolved are skipped and counted.
        """
        rows = self.db.query(
            Sale.id.label("sale_id"), Sale.date, Sale.quantity, Sale.discount, Sale.revenue,
            Sale.sku_id, SKU.id.label("sku_ref"), Sale.store_id, Store.id.label("store_ref"),
            Style.style_code, Style.category, Style.mrp
        ).outerjoin(
            SKU, SKU.id == Sale.sku_id
        ).outerjoin(
            Style, Style.id == SKU.style_id
        ).outerjoin(
            Store, Store.id == Sale.store_id
        ).filter(
            Sale.date >= window.start,
            Sale.date <= window.end
        ).order_by(Sale.id).all()

        frame = pd.DataFrame([tuple(r) for r in rows], columns=SALES_COLUMNS)
        scanned = len(frame)

        broken = frame["sku_ref"].isna() | frame["store_ref"].isna() | frame["style_code"].isna()
        warnings = int(broken.sum())
        if warnings:
            for row in frame[broken].itertuples(index=False):
                logger.debug(
                    "Skipping sale %s: sku=%s (%s), store=%s (%s), style=%s",
                    row.sale_id, row.sku_id, "ok" if pd.notna(row.sku_ref) else "missing",
                    row.store_id, "ok" if pd.notna(row.store_ref) else "missing",
                    row.style_code if pd.notna(row.style_code) else "missing"
                )
            logger.warning("Skipped %d of %d sales rows with missing SKU, style or store", warnings, scanned)

        frame = frame[~broken].copy()
        frame["date"] = pd.to_datetime(frame["date"])
        frame["quantity"] = frame["quantity"].fillna(0).astype(int)
        for column in ("discount", "revenue", "mrp"):
            frame[column] = pd.to_numeric(frame[column], errors="coerce").fillna(0.0)

        return SalesFrame(frame=frame, rows_scanned=scanned, warnings=warnings)

    def aggregate(
        self,
        sales: SalesFrame,
        params: RunParameters,
        token: Optional[CancellationToken] = None
    ) -> AggregationResult:
        """Apply liquidation cleanup and roll the remaining rows up per style."""
        window = params.window
        frame = sales.frame

        liquidated = self.liquidation_mask(frame, params.liquidation_threshold)
        kept = frame[~liquidated]

        result = AggregationResult(
            window=window,
            rows_scanned=sales.rows_scanned,
            rows_liquidated=int(liquidated.sum()),
            warnings=sales.warnings,
        )
        if kept.empty:
            return result

        categories = kept.groupby("style_code")["category"].first()
        totals = {
            "full": _window_totals(kept, window),
            "bestseller": _window_totals(kept, params.bestseller_window),
            "core": _window_totals(kept, params.core_window),
        }
        windows = {
            "full": window,
            "bestseller": params.bestseller_window,
            "core": params.core_window,
        }

        if token is not None:
            token.raise_if_cancelled()

        calendar = self.calendar.available_days(window)

        by_category = defaultdict(list)
        for style_code in sorted(categories.index):
            stocked = calendar.get(style_code)
            if stocked is None:
                result.availability_fallbacks += 1
                logger.debug("No stock calendar for style %s, assuming full availability", style_code)

            metrics = {}
            for key, sub_window in windows.items():
                metrics[key] = _style_window(totals[key], style_code, sub_window, stocked)

            by_category[categories[style_code]].append(StyleMetrics(
                style_code=style_code,
                category=categories[style_code],
                full=metrics["full"],
                bestseller=metrics["bestseller"],
                core=metrics["core"],
            ))

        result.styles_by_category = {c: by_category[c] for c in sorted(by_category)}

        if result.availability_fallbacks:
            logger.info(
                "%d styles had no stock calendar rows; used window length as days available",
                result.availability_fallbacks
            )
        return result

    @staticmethod
    def liquidation_mask(frame: pd.DataFrame, threshold: float) -> pd.Series:
        """
        True for clearance rows: MRP is known and the discount exceeds
        ``threshold`` percent of it. Rows without a usable MRP stay in.
        """
        mrp = frame["mrp"].where(frame["mrp"] > 0)
        discount_pct = frame["discount"] / mrp * 100
        return (discount_pct > threshold).fillna(False).astype(bool)


def _window_totals(frame: pd.DataFrame, window: AnalysisWindow) -> pd.DataFrame:
    start, end = pd.Timestamp(window.start), pd.Timestamp(window.end)
    part = frame[(frame["date"] >= start) & (frame["date"] <= end)]
    part = part.assign(markdown=part["quantity"] * part["discount"])
    return part.groupby("style_code").agg(
        quantity=("quantity", "sum"),
        revenue=("revenue", "sum"),
        discount=("markdown", "sum"),
        days_with_sales=("date", "nunique"),
    )


def _style_window(
    totals: pd.DataFrame,
    style_code: str,
    window: AnalysisWindow,
    stocked: Optional[Set[date]]
) -> WindowMetrics:
    if style_code in totals.index:
        row = totals.loc[style_code]
        metrics = WindowMetrics(
            quantity=int(row["quantity"]),
            revenue=float(row["revenue"]),
            discount=float(row["discount"]),
            days_with_sales=int(row["days_with_sales"]),
        )
    else:
        metrics = WindowMetrics()

    if stocked is None:
        days = window.days
    else:
        days = sum(1 for day in stocked if window.contains(day))
    # A sale proves the style was on hand that day
    metrics.days_available = max(days, metrics.days_with_sales)
    return metrics
