"""Schema definitions for the OCT classification tool."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.analysis_result import Diagnosis

FUNCTION_NAME = "classify_oct_scan"

# The sentinel is assigned during post-processing, never by the model.
MODEL_DIAGNOSES = [d.value for d in Diagnosis if d is not Diagnosis.REQUIRES_FURTHER_REVIEW]

FUNCTION_DEFINITION: Dict[str, Any] = {
    "type": "function",
    "name": FUNCTION_NAME,
    "description": (
        "Return the diagnosis, confidence, supporting evidence and uncertainty "
        "statements for the retinal OCT scan, echoing the verification id."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "diagnosis": {
                "type": "string",
                "description": "Diagnosis: 'AMD', 'CNV', 'DME', 'Drusen', 'Normal', 'Geographic Atrophy'.",
                "enum": MODEL_DIAGNOSES,
            },
            "confidence": {"type": "string", "description": "Confidence percentage."},
            "explanation": {"type": "string", "description": "Visual evidence explanation."},
            "explainability": {"type": "string", "description": "Model interpretability."},
            "uncertaintyStatement": {"type": "string", "description": "Diagnostic uncertainty."},
            "segmentationUncertaintyStatement": {
                "type": "string",
                "description": "Segmentation uncertainty.",
            },
            "anomalyReport": {
                "type": ["string", "null"],
                "description": "Ancillary findings, or null when there are none.",
            },
            "processedId": {
                "type": "string",
                "description": "The EXACT verification ID provided in the prompt.",
            },
        },
        "required": [
            "diagnosis",
            "confidence",
            "explanation",
            "explainability",
            "uncertaintyStatement",
            "segmentationUncertaintyStatement",
            "anomalyReport",
            "processedId",
        ],
        "additionalProperties": False,
    },
    "strict": True,
}


class ClassificationPayload(BaseModel):
    """Validated function-call arguments returned by the classifier.

    `processedId` is requested by the schema but tolerated when absent so
    the mapping check can apply its lenient-absence rule.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    diagnosis: Diagnosis
    confidence: str
    explanation: str
    explainability: str
    uncertainty_statement: str = Field(alias="uncertaintyStatement")
    segmentation_uncertainty_statement: str = Field(alias="segmentationUncertaintyStatement")
    anomaly_report: Optional[str] = Field(default=None, alias="anomalyReport")
    processed_id: Optional[str] = Field(default=None, alias="processedId")

    @field_validator("diagnosis")
    @classmethod
    def _model_diagnosis_only(cls, value: Diagnosis) -> Diagnosis:
        if value.value not in MODEL_DIAGNOSES:
            raise ValueError(f"diagnosis must be one of {', '.join(MODEL_DIAGNOSES)}")
        return value
