"""
Analytics over accumulated contract transactions.

- defi_metrics: activity, financial and performance aggregates.
- ux_bottlenecks: session lengths, abandonment between functions, A–F grade.
- user_journeys: entry points, adoption, drop-off, common paths.
- user_lifecycle: lifecycle stages, wallet types, cohorts, activation.
"""

from backend_metagauge.analytics.defi_metrics import calculate_all_metrics
from backend_metagauge.analytics.user_journeys import analyze_journeys
from backend_metagauge.analytics.user_lifecycle import analyze_user_lifecycle
from backend_metagauge.analytics.ux_bottlenecks import analyze_ux_bottlenecks

__all__ = [
    "analyze_journeys",
    "analyze_user_lifecycle",
    "analyze_ux_bottlenecks",
    "calculate_all_metrics",
]
