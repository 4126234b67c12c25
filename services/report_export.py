"""Plain-text (Markdown) report for a completed analysis."""

from __future__ import annotations

from datetime import date
from pathlib import PurePath
from typing import Optional

from models.analysis_item import MappingStatus, TrackableItem

DISCLAIMER = (
    "*Disclaimer: This report is generated by an AI model and is for informational purposes only. "
    "It is not a substitute for professional medical advice.*"
)


def report_filename(item: TrackableItem) -> str:
    """Return the download filename for an item's report."""
    stem = PurePath(item.filename).stem or item.id
    return f"report-{stem}.md"


def build_report(item: TrackableItem, generated_on: Optional[date] = None) -> str:
    """Format the analysis of `item` as a Markdown report.

    Sections always appear in the same order: diagnosis, clinical
    explanation, interpretability, segmentation uncertainty, optional
    ancillary findings, then the disclaimer.

    Raises:
        ValueError: If the item has no analysis result yet.
    """
    result = item.result
    if result is None:
        raise ValueError(f"Item {item.id} has no analysis result to export.")

    generated_on = generated_on or date.today()
    verification = "Securely Verified" if item.mapping_status is MappingStatus.VERIFIED else "Unverified"
    sections = [
        "\n".join(
            [
                "# Retinal OCT Analysis Report",
                f"**File:** {item.filename}",
                f"**Date:** {generated_on.isoformat()}",
                f"**Verification Status:** {verification}",
            ]
        ),
        "\n".join(
            [
                "## Diagnosis",
                f"- **Condition:** {result.diagnosis.value}",
                f"- **Confidence:** {result.confidence}",
                f"- **Uncertainty Assessment:** {result.uncertainty_statement}",
            ]
        ),
        f"## Clinical Explanation\n{result.explanation}",
        f"## Model Interpretability\n{result.explainability}",
        f"## Segmentation Uncertainty Analysis\n{result.segmentation_uncertainty_statement}",
    ]
    if result.anomaly_report:
        sections.append(f"## Ancillary Findings\n{result.anomaly_report}")
    sections.append(DISCLAIMER)
    return "\n---\n\n".join(sections).strip()
