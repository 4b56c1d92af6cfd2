"""
NOOS classification engine.

Per category, each style is tested in order and takes the first bucket
it qualifies for:
- Bestseller: enough units and a rate of sale well above the category average
- Core: sold on most of the days it was available
- Fashion: everything else
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from noos.models import NoosType
from noos.services.aggregator import AggregationResult, StyleMetrics, WindowMetrics
from noos.services.cancellation import CancellationToken
from noos.services.parameters import RunParameters

logger = logging.getLogger(__name__)

CANCELLATION_CHECK_INTERVAL = 50
DECIMALS = 4


@dataclass(frozen=True)
class ClassifiedStyle:
    """One output row, metrics taken over the full analysis window."""
    category: str
    style_code: str
    type: NoosType
    style_ros: float
    style_rev_contribution: float  # percent of category revenue
    total_quantity_sold: int
    total_revenue: float
    days_available: int
    days_with_sales: int
    avg_discount: float


def at_least(value: float, bar: float) -> bool:
    """``value >= bar``, tolerant to float noise so values at the bar qualify."""
    return value >= bar or math.isclose(value, bar, rel_tol=1e-9, abs_tol=1e-12)


def category_average_ros(metrics: Iterable[WindowMetrics]) -> float:
    """Mean rate of sale over styles that were available at least one day."""
    values = [m.ros for m in metrics if m.days_available > 0]
    if not values:
        return 0.0
    return sum(values) / len(values)


class ClassificationEngine:
    """Stateless apart from the frozen parameters; safe to reuse across categories."""

    def __init__(self, params: RunParameters):
        self.params = params

    def classify(
        self,
        aggregation: AggregationResult,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[Callable[[int, int], None]] = None
    ) -> List[ClassifiedStyle]:
        """
        Classify every style of an aggregation.

        Args:
            aggregation: Output of SalesAggregator.aggregate
            token: Checked every CANCELLATION_CHECK_INTERVAL styles
            on_progress: Called with (done, total) at the same interval and at the end

        Returns:
            Rows ordered by category, then style code
        """
        total = aggregation.total_styles
        done = 0
        results = []

        for category in sorted(aggregation.styles_by_category):
            styles = sorted(aggregation.styles_by_category[category], key=lambda s: s.style_code)
            avg_ros = category_average_ros(s.bestseller for s in styles)
            category_revenue = sum(s.full.revenue for s in styles)

            logger.debug(
                "Category %s: %d styles, avg ROS %.4f, revenue %.2f",
                category, len(styles), avg_ros, category_revenue
            )

            for style in styles:
                results.append(self.classify_style(style, avg_ros, category_revenue))
                done += 1
                if done % CANCELLATION_CHECK_INTERVAL == 0:
                    if token is not None:
                        token.raise_if_cancelled()
                    if on_progress is not None:
                        on_progress(done, total)

        if on_progress is not None and total:
            on_progress(total, total)
        return results

    def baselines(self, aggregation: AggregationResult) -> Dict[str, Dict[str, Any]]:
        """
        Per-category figures the Bestseller test compares against. Stored
        results carry full-window ROS, so these explain the bucket choice.
        """
        baselines = {}
        for category in sorted(aggregation.styles_by_category):
            styles = aggregation.styles_by_category[category]
            avg_ros = category_average_ros(s.bestseller for s in styles)
            baselines[category] = {
                "styles": len(styles),
                "bestseller_avg_ros": round(avg_ros, DECIMALS),
                "bestseller_min_ros": round(avg_ros * self.params.bestseller_multiplier, DECIMALS),
            }
        return baselines

    def classify_style(
        self,
        style: StyleMetrics,
        category_avg_ros: float,
        category_revenue: float
    ) -> ClassifiedStyle:
        full = style.full
        if category_revenue > 0:
            contribution = full.revenue / category_revenue * 100
        else:
            contribution = 0.0

        return ClassifiedStyle(
            category=style.category,
            style_code=style.style_code,
            type=self.bucket(style, category_avg_ros),
            style_ros=round(full.ros, DECIMALS),
            style_rev_contribution=round(contribution, DECIMALS),
            total_quantity_sold=full.quantity,
            total_revenue=round(full.revenue, 2),
            days_available=full.days_available,
            days_with_sales=full.days_with_sales,
            avg_discount=round(full.avg_discount, DECIMALS),
        )

    def bucket(self, style: StyleMetrics, category_avg_ros: float) -> NoosType:
        # Nothing meaningful to measure
        if style.full.quantity <= 0 or style.full.revenue <= 0:
            return NoosType.FASHION
        if self.is_bestseller(style.bestseller, category_avg_ros):
            return NoosType.BESTSELLER
        if self.is_core(style.core):
            return NoosType.CORE
        return NoosType.FASHION

    def is_bestseller(self, metrics: WindowMetrics, category_avg_ros: float) -> bool:
        if category_avg_ros <= 0 or metrics.days_available <= 0:
            return False
        if not at_least(metrics.quantity, self.params.min_volume_threshold):
            return False
        return at_least(metrics.ros, self.params.bestseller_multiplier * category_avg_ros)

    def is_core(self, metrics: WindowMetrics) -> bool:
        if metrics.days_available <= 0 or metrics.days_with_sales <= 0:
            return False
        return at_least(metrics.consistency, self.params.consistency_threshold)
