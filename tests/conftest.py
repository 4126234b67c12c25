"""Pytest configuration and fixtures for the OCT batch analyzer tests."""

import io
import json
import re
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest
from PIL import Image

from services.batch_orchestrator import BatchOrchestrator
from services.item_store import ItemStore
from services.openai.analysis_client import RemoteAnalysisClient
from services.openai.analysis_schema import FUNCTION_NAME
from utils.retry import RetryPolicy

_VERIFICATION_ID = re.compile(r'VERIFICATION ID: "([^"]*)"')

SEGMENTATION_B64 = "c2VnbWVudGF0aW9u"
UNCERTAINTY_B64 = "dW5jZXJ0YWludHk="
HEATMAP_B64 = "aGVhdG1hcA=="


def make_png(color=(40, 80, 120), size=(32, 24)) -> bytes:
    """Return PNG bytes of a solid-colour image."""
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def default_classification(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "diagnosis": "CNV",
        "confidence": "85%",
        "explanation": "Subretinal hyperreflective material with overlying fluid.",
        "explainability": "Attention concentrated on the subfoveal lesion.",
        "uncertaintyStatement": "Fluid margins are partly obscured.",
        "segmentationUncertaintyStatement": "Boundaries of the lesion are indistinct nasally.",
        "anomalyReport": None,
    }
    payload.update(overrides)
    return payload


def call_kind(kwargs: Dict[str, Any]) -> str:
    """Name the sub-analysis a `responses.create` call belongs to."""
    if kwargs["tools"][0]["type"] == "function":
        return "classification"
    text = kwargs["input"][1]["content"][0]["text"]
    if text.startswith("Generate a medical segmentation map"):
        return "segmentation"
    if text.startswith("Generate a segmentation uncertainty map"):
        return "uncertainty"
    return "heatmap"


class FakeResponses:
    """Stand-in for `AsyncOpenAI().responses` that answers by call kind.

    Args:
        classification: Arguments returned by the classifier. `processedId`
            echoes the prompt's verification id unless set explicitly or
            `echo_id` is False.
        errors: Per-kind queues of exceptions raised before succeeding.
        images: Per-kind base64 payloads; a None value yields an empty output.
        before_call: Optional coroutine awaited at the start of every call.
    """

    def __init__(
        self,
        classification: Optional[Dict[str, Any]] = None,
        *,
        echo_id: bool = True,
        errors: Optional[Dict[str, List[Exception]]] = None,
        images: Optional[Dict[str, Optional[str]]] = None,
        raw_arguments: Optional[str] = None,
        before_call: Optional[Callable[[str, Dict[str, Any]], Awaitable[None]]] = None,
    ) -> None:
        self.classification = classification if classification is not None else default_classification()
        self.echo_id = echo_id
        self.errors = {kind: list(queue) for kind, queue in (errors or {}).items()}
        self.images = {"segmentation": SEGMENTATION_B64, "uncertainty": UNCERTAINTY_B64, "heatmap": HEATMAP_B64}
        self.images.update(images or {})
        self.raw_arguments = raw_arguments
        self.before_call = before_call
        self.calls: List[Dict[str, Any]] = []

    def kinds(self) -> List[str]:
        return [call_kind(call) for call in self.calls]

    async def create(self, **kwargs: Any) -> Any:
        kind = call_kind(kwargs)
        self.calls.append(kwargs)
        if self.before_call is not None:
            await self.before_call(kind, kwargs)
        queue = self.errors.get(kind)
        if queue:
            raise queue.pop(0)
        if kind == "classification":
            return self._classification_response(kwargs)
        payload = self.images.get(kind)
        output = [SimpleNamespace(type="image_generation_call", result=payload)] if payload else []
        return SimpleNamespace(output=output, usage=None)

    def _classification_response(self, kwargs: Dict[str, Any]) -> Any:
        if self.raw_arguments is not None:
            arguments = self.raw_arguments
        else:
            args = dict(self.classification)
            if self.echo_id and "processedId" not in args:
                prompt = kwargs["input"][1]["content"][0]["text"]
                args["processedId"] = _VERIFICATION_ID.search(prompt).group(1)
            arguments = json.dumps(args)
        return SimpleNamespace(
            output=[SimpleNamespace(type="function_call", name=FUNCTION_NAME, arguments=arguments)],
            usage=SimpleNamespace(input_tokens=120, output_tokens=40),
        )


class FakeOpenAI:
    def __init__(self, responses: FakeResponses) -> None:
        self.responses = responses


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def api_key(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return "sk-test"


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_responses() -> FakeResponses:
    return FakeResponses()


@pytest.fixture
def make_client(recording_sleep: RecordingSleep):
    """Build a `RemoteAnalysisClient` over a `FakeResponses` instance."""

    def _make(responses: FakeResponses, policy: Optional[RetryPolicy] = None) -> RemoteAnalysisClient:
        return RemoteAnalysisClient(
            FakeOpenAI(responses),
            retry_policy=policy or RetryPolicy(),
            sleep=recording_sleep,
        )

    return _make


@pytest.fixture
def orchestrator(make_client, fake_responses: FakeResponses) -> BatchOrchestrator:
    return BatchOrchestrator(make_client(fake_responses), ItemStore())
