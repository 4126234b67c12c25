"""Classification result returned for one analyzed OCT image."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class Diagnosis(str, Enum):
    """Closed set of diagnoses the classifier may return."""

    AMD = "AMD"
    CNV = "CNV"
    DME = "DME"
    DRUSEN = "Drusen"
    NORMAL = "Normal"
    GEOGRAPHIC_ATROPHY = "Geographic Atrophy"
    REQUIRES_FURTHER_REVIEW = "Requires Further Review"


@dataclass(frozen=True)
class AnalysisResult:
    """Structured diagnostic output for a single image.

    Attributes:
        diagnosis: One of `Diagnosis`; forced to REQUIRES_FURTHER_REVIEW on low confidence.
        confidence: Percentage as text, e.g. "85%".
        explanation: Visual evidence supporting the diagnosis.
        explainability: Model interpretability notes.
        uncertainty_statement: Diagnostic uncertainty; carries the low-confidence disclosure.
        segmentation_uncertainty_statement: Where the segmentation is least reliable.
        anomaly_report: Optional ancillary findings.
        processed_id: Correlation id echoed back by the model.
        processed_hash: Content hash echoed back by the backend, when supported.
        backend_timestamp: ISO-8601 time at which the response was processed.
    """

    diagnosis: Diagnosis
    confidence: str
    explanation: str
    explainability: str
    uncertainty_statement: str
    segmentation_uncertainty_statement: str
    anomaly_report: Optional[str] = None
    processed_id: Optional[str] = None
    processed_hash: Optional[str] = None
    backend_timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "diagnosis": self.diagnosis.value,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "explainability": self.explainability,
            "uncertainty_statement": self.uncertainty_statement,
            "segmentation_uncertainty_statement": self.segmentation_uncertainty_statement,
            "anomaly_report": self.anomaly_report,
            "processed_id": self.processed_id,
            "processed_hash": self.processed_hash,
            "backend_timestamp": self.backend_timestamp,
        }


@dataclass(frozen=True)
class AnalysisOutcome:
    """Everything one analysis round-trip produced.

    Image fields hold base64 payloads. Segmentation artifacts are None in
    refinement mode; the heatmap is always present.
    """

    analysis: AnalysisResult
    heatmap_image: str
    segmentation_image: Optional[str] = None
    segmentation_uncertainty_image: Optional[str] = None
    usage: Dict[str, Optional[int]] = field(default_factory=dict)
