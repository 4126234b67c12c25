"""Helpers to parse Responses API outputs."""

import json
from typing import Any, Dict, Optional

from pydantic import ValidationError

from services.openai.analysis_errors import ArtifactExtractionError, ClassificationParseError
from services.openai.analysis_schema import ClassificationPayload


def parse_classification(response: Any, *, tool_name: str) -> ClassificationPayload:
    """Extract and validate the classification function-call arguments."""
    arguments = None
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) == "function_call" and getattr(item, "name", None) == tool_name:
            arguments = (getattr(item, "arguments", None) or "").strip()
            break
    if not arguments:
        raise ClassificationParseError("Empty classification response.")

    try:
        data = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise ClassificationParseError("Invalid JSON response from AI.") from exc
    if not isinstance(data, dict):
        raise ClassificationParseError("Invalid JSON response from AI.")

    try:
        return ClassificationPayload.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ClassificationParseError(f"Classification response failed validation: {fields}.") from exc


def extract_generated_image(response: Any, artifact: str) -> str:
    """Return the base64 image of the first image generation call in the response."""
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "image_generation_call":
            continue
        result = getattr(item, "result", None)
        if result:
            return result
        break
    raise ArtifactExtractionError(artifact)


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    return {
        "input_tokens": getattr(usage, "input_tokens", None) if usage else None,
        "output_tokens": getattr(usage, "output_tokens", None) if usage else None,
    }
