"""
Visualization functions for archived phone activity.

Provides plotting capabilities using plotly.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import plotly.graph_objects as go  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


def _phone_label(phone: Dict[str, Any]) -> str:
    name = phone.get("display_name")
    return f"{name} ({phone['phone']})" if name else phone["phone"]


def plot_top_phones(
    phones: List[Dict[str, Any]], output_file: Optional[str] = None
) -> go.Figure:
    """
    Plot message and call counts per phone as a stacked bar chart.

    Args:
        phones: phones rows (phone, display_name, message_count, call_count).
        output_file: Optional HTML file path to save the plot.

    Returns:
        The plotly Figure.
    """
    labels = [_phone_label(phone) for phone in phones]

    fig = go.Figure(
        data=[
            go.Bar(name="Messages", x=labels, y=[p.get("message_count", 0) for p in phones]),
            go.Bar(name="Calls", x=labels, y=[p.get("call_count", 0) for p in phones]),
        ]
    )
    fig.update_layout(
        barmode="stack",
        title="Activity by phone",
        xaxis_title="Phone",
        yaxis_title="Records",
    )

    if output_file:
        fig.write_html(output_file)
        logger.info(f"Wrote phone chart to {output_file}")

    return fig


def plot_activity_over_time(
    timestamps: Sequence[int], output_file: Optional[str] = None
) -> go.Figure:
    """
    Plot the number of records per day.

    Args:
        timestamps: Epoch-millisecond timestamps of messages and/or calls.
        output_file: Optional HTML file path to save the plot.

    Returns:
        The plotly Figure.
    """
    per_day = Counter(
        datetime.fromtimestamp(ts / 1000, tz=timezone.utc).date() for ts in timestamps
    )
    days = sorted(per_day)

    fig = go.Figure(
        data=[go.Scatter(x=days, y=[per_day[day] for day in days], mode="lines+markers")]
    )
    fig.update_layout(title="Activity over time", xaxis_title="Day (UTC)", yaxis_title="Records")

    if output_file:
        fig.write_html(output_file)
        logger.info(f"Wrote activity chart to {output_file}")

    return fig
