"""Description: Multi-call OCT analysis service using OpenAI's Responses API."""

import asyncio
import logging
import os
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from openai import AsyncOpenAI

from models.analysis_result import AnalysisOutcome, AnalysisResult, Diagnosis
from services.openai.analysis_errors import MissingCredentialError, RequestCancelledError, normalize_error
from services.openai.analysis_prompts import (
    build_system_prompt,
    classification_prompt,
    heatmap_prompt,
    segmentation_prompt,
    segmentation_uncertainty_prompt,
)
from services.openai.analysis_schema import FUNCTION_DEFINITION, FUNCTION_NAME
from services.openai.media_inputs import build_inputs, to_image_data_url
from services.openai.response_parser import extract_generated_image, extract_usage, parse_classification
from utils.cancellation import CancellationToken
from utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_with_backoff

LOGGER = logging.getLogger(__name__)

API_KEY_ENV = "OPENAI_API_KEY"
CLASSIFICATION_MODEL = os.getenv("OPENAI_MODEL", "gpt-5")
IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "gpt-4.1")
CONFIDENCE_THRESHOLD = 70.0

IMAGE_TOOL: Dict[str, Any] = {"type": "image_generation"}

# Mirrors float-prefix parsing: "65%" -> 65.0, "82.5 percent" -> 82.5.
_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")


def build_openai_client(api_key: Optional[str] = None, **kwargs: Any) -> AsyncOpenAI:
    """Create an async OpenAI client with SDK retries disabled; `RetryPolicy` is the only retry layer."""
    return AsyncOpenAI(api_key=api_key, max_retries=0, **kwargs)


def parse_confidence(confidence: Optional[str]) -> Optional[float]:
    """Return the leading numeric value of a confidence string, or None."""
    if not confidence:
        return None
    match = _LEADING_NUMBER.match(confidence)
    if not match:
        return None
    return float(match.group(1))


def apply_confidence_gate(result: AnalysisResult, threshold: float = CONFIDENCE_THRESHOLD) -> AnalysisResult:
    """Downgrade a low-confidence diagnosis to the review sentinel.

    The original diagnosis is kept only inside the prepended disclosure text.
    Values equal to the threshold pass unchanged.
    """
    value = parse_confidence(result.confidence)
    if value is None or value >= threshold:
        return result
    original = result.diagnosis.value
    disclosure = (
        f"**Low Confidence ({result.confidence})**: Initial finding '{original}'. Requires review. "
    )
    return replace(
        result,
        diagnosis=Diagnosis.REQUIRES_FURTHER_REVIEW,
        uncertainty_statement=disclosure + result.uncertainty_statement,
    )


async def _skipped() -> None:
    return None


class RemoteAnalysisClient:
    """Run the segmentation, uncertainty, classification and heatmap calls for one image."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        classification_model: str = CLASSIFICATION_MODEL,
        image_model: str = IMAGE_MODEL,
    ) -> None:
        """Initialize the client.

        Args:
            client: Optional async OpenAI client; created lazily from the environment when omitted.
            retry_policy: Backoff policy applied to each sub-call independently.
            sleep: Awaitable sleep used between retries.
            classification_model: Model for the structured classification call.
            image_model: Model driving the image generation tool.
        """
        self.client = client
        self.retry_policy = retry_policy
        self.classification_model = classification_model
        self.image_model = image_model
        self._sleep = sleep
        self.system_prompt = build_system_prompt()

    async def analyze(
        self,
        image_bytes: bytes,
        *,
        mime_type: str = "image/jpeg",
        refinement: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AnalysisOutcome:
        """Analyze an OCT image with four concurrent remote calls.

        Args:
            image_bytes: Raw bytes of the image.
            mime_type: MIME type of the image bytes.
            refinement: Clinician feedback; when set, segmentation artifacts are skipped
                and the heatmap focuses on the feedback.
            correlation_id: Id the classifier is asked to echo back in `processedId`.
            cancel_token: Shared token polled before each dispatch and after the join.

        Returns:
            The combined `AnalysisOutcome`.

        Raises:
            AnalysisError: For every failure, tagged with its `ErrorKind`.
        """
        try:
            return await self._analyze(image_bytes, mime_type, refinement, correlation_id, cancel_token)
        except Exception as exc:
            error = normalize_error(exc)
            if error.cancelled:
                LOGGER.info("Analysis %s cancelled", correlation_id)
            else:
                LOGGER.error("OCT analysis error for %s: %s", correlation_id, exc)
            if error is exc:
                raise
            raise error from exc

    async def _analyze(
        self,
        image_bytes: bytes,
        mime_type: str,
        refinement: Optional[str],
        correlation_id: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> AnalysisOutcome:
        self._check_cancelled(cancel_token)
        api_key = os.getenv(API_KEY_ENV)
        if not api_key:
            raise MissingCredentialError(API_KEY_ENV)
        client = self._resolve_client(api_key)

        image_url = await asyncio.to_thread(to_image_data_url, image_bytes, mime_type)
        refinement = (refinement or "").strip() or None

        def guarded(call: Callable[[], Awaitable[Any]]) -> Awaitable[Any]:
            async def attempt() -> Any:
                self._check_cancelled(cancel_token)
                return await call()

            return retry_with_backoff(attempt, self.retry_policy, sleep=self._sleep)

        if refinement:
            segmentation_call = _skipped()
            uncertainty_call = _skipped()
        else:
            segmentation_call = guarded(
                lambda: self._generate_image(client, segmentation_prompt(), image_url)
            )
            uncertainty_call = guarded(
                lambda: self._generate_image(client, segmentation_uncertainty_prompt(), image_url)
            )
        classification_call = guarded(
            lambda: self._classify(client, classification_prompt(correlation_id, refinement), image_url)
        )
        heatmap_call = guarded(lambda: self._generate_image(client, heatmap_prompt(refinement), image_url))

        responses = await asyncio.gather(
            segmentation_call, uncertainty_call, classification_call, heatmap_call, return_exceptions=True
        )
        self._check_cancelled(cancel_token)
        for response in responses:
            if isinstance(response, BaseException):
                raise response
        segmentation_resp, uncertainty_resp, classification_resp, heatmap_resp = responses

        payload = parse_classification(classification_resp, tool_name=FUNCTION_NAME)
        analysis = apply_confidence_gate(
            AnalysisResult(
                diagnosis=payload.diagnosis,
                confidence=payload.confidence,
                explanation=payload.explanation,
                explainability=payload.explainability,
                uncertainty_statement=payload.uncertainty_statement,
                segmentation_uncertainty_statement=payload.segmentation_uncertainty_statement,
                anomaly_report=payload.anomaly_report,
                processed_id=payload.processed_id,
            )
        )
        if correlation_id:
            analysis = replace(analysis, backend_timestamp=datetime.now(timezone.utc).isoformat())

        usage = self._total_usage(responses)
        heatmap_image = extract_generated_image(heatmap_resp, "Heatmap generation")
        if segmentation_resp is None or uncertainty_resp is None:
            return AnalysisOutcome(analysis=analysis, heatmap_image=heatmap_image, usage=usage)

        return AnalysisOutcome(
            analysis=analysis,
            heatmap_image=heatmap_image,
            segmentation_image=extract_generated_image(segmentation_resp, "Segmentation"),
            segmentation_uncertainty_image=extract_generated_image(uncertainty_resp, "Uncertainty map"),
            usage=usage,
        )

    def _resolve_client(self, api_key: str) -> AsyncOpenAI:
        """Return the injected client, or build one from the configured key."""
        if self.client is None:
            self.client = build_openai_client(api_key)
        return self.client

    @staticmethod
    def _check_cancelled(cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelledError()

    async def _classify(self, client: AsyncOpenAI, prompt: str, image_url: str) -> Any:
        """Send the structured classification request."""
        try:
            return await client.responses.create(
                model=self.classification_model,
                input=build_inputs(self.system_prompt, prompt, image_url),
                tools=[FUNCTION_DEFINITION],
                tool_choice={"type": "function", "name": FUNCTION_NAME},
            )
        except Exception as exc:
            LOGGER.error("Error during classification call: %s", exc)
            raise

    async def _generate_image(self, client: AsyncOpenAI, instruction: str, image_url: str) -> Any:
        """Send one image generation request."""
        try:
            return await client.responses.create(
                model=self.image_model,
                input=build_inputs(self.system_prompt, instruction, image_url),
                tools=[IMAGE_TOOL],
                tool_choice={"type": "image_generation"},
            )
        except Exception as exc:
            LOGGER.error("Error during image generation call: %s", exc)
            raise

    @staticmethod
    def _total_usage(responses: List[Any]) -> Dict[str, Optional[int]]:
        totals: Dict[str, Optional[int]] = {"input_tokens": None, "output_tokens": None}
        for response in responses:
            if response is None:
                continue
            for key, value in extract_usage(response).items():
                if value is not None:
                    totals[key] = (totals[key] or 0) + int(value)
        return totals
