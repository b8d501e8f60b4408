"""
HTML Report Renderer — converts DFMEA entries into a self-contained HTML file.

Uses Jinja2 templating with the dfmea_matrix.html template.
The output is a single, portable HTML file with no external dependencies.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from doc_schema import ResolvedFailureAnalysis, RiskSummary
from exporter import NO_DETECTION, NO_PREVENTION, NOT_RATED

_TEMPLATE_DIR = Path(__file__).parent
_TEMPLATE_NAME = "dfmea_matrix.html"


def render_html_report(
    entries: list[ResolvedFailureAnalysis],
    summary: RiskSummary,
    title: str = "DFMEA Matrix",
    analysis_date: Optional[str] = None,
) -> str:
    """
    Render a self-contained HTML DFMEA matrix report.

    Args:
        entries: DFMEA entries with their links resolved.
        summary: Risk statistics over the same entries.

    Returns:
        Complete HTML string suitable for writing to a .html file.
    """
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=True,
    )
    template = env.get_template(_TEMPLATE_NAME)

    context = {
        "title": title,
        "analysis_date": analysis_date or date.today().isoformat(),
        "entries": entries,
        "no_prevention": NO_PREVENTION,
        "no_detection": NO_DETECTION,
        "not_rated": NOT_RATED,
        # Summary fields flattened for easy template access
        "total_entries": summary.total_entries,
        "critical_count": summary.critical_count,
        "high_count": summary.high_count,
        "medium_count": summary.medium_count,
        "low_count": summary.low_count,
        "unrated_count": summary.unrated_count,
        "max_rpn": summary.max_rpn,
        "avg_rpn": summary.avg_rpn,
    }

    return template.render(**context)
