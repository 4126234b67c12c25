"""Sequential, cancellable analysis queue over uploaded scans."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Iterable, Optional, Set
from uuid import uuid4

from models.analysis_item import ImageStatus, MappingStatus, TrackableItem
from models.batch_run import BatchRun
from services.item_store import ItemStore
from services.mapping_verifier import mapping_status_for, verify_mapping
from services.openai.analysis_client import RemoteAnalysisClient
from services.openai.analysis_errors import AnalysisError
from services.thumbnail_generator import ThumbnailGenerator
from utils.fingerprint import fingerprint_bytes

LOGGER = logging.getLogger(__name__)

Verifier = Callable[[TrackableItem, Optional[str], Optional[str]], Awaitable[bool]]


class RefinementNotAllowedError(ValueError):
    """Refinement was requested for an item without a completed analysis."""


def _as_png_data_url(image_b64: Optional[str]) -> Optional[str]:
    """Wrap a base64 PNG payload in a data URL; None stays None."""
    if not image_b64:
        return None
    return f"data:image/png;base64,{image_b64}"


class BatchOrchestrator:
    """Own the item collection and drive analysis runs over it.

    At most one batch run is active. Starting a new run cancels the previous
    run's token; items that run already resolved keep their status, and
    items it had not reached stay loading.
    """

    def __init__(
        self,
        client: RemoteAnalysisClient,
        store: Optional[ItemStore] = None,
        *,
        verifier: Verifier = verify_mapping,
        thumbnails: Optional[ThumbnailGenerator] = None,
    ) -> None:
        self.client = client
        self.store = store or ItemStore()
        self.verifier = verifier
        self.thumbnails = thumbnails or ThumbnailGenerator()
        self._current_run: Optional[BatchRun] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def current_run(self) -> Optional[BatchRun]:
        return self._current_run

    @property
    def is_running(self) -> bool:
        return self._current_run is not None and self._current_run.running

    # Uploads

    async def add_upload(self, filename: str, content: bytes, mime_type: Optional[str] = None) -> TrackableItem:
        """Fingerprint an uploaded image, build its preview and store it as pending.

        Raises:
            ValueError: If the upload is empty or not an image.
        """
        if not content:
            raise ValueError(f"Uploaded file {filename!r} is empty.")
        if mime_type and not mime_type.startswith("image/"):
            raise ValueError(f"Uploaded file {filename!r} is not an image ({mime_type}).")

        detected = await asyncio.to_thread(self.thumbnails.detect_mime_type, content)
        if detected is None:
            raise ValueError(f"Uploaded file {filename!r} is not a supported image.")
        content_hash = await asyncio.to_thread(fingerprint_bytes, content)
        preview = await asyncio.to_thread(self.thumbnails.create_preview, content)

        item_id = uuid4().hex
        item = TrackableItem(
            id=item_id,
            filename=filename or "upload",
            content=content,
            mime_type=mime_type or detected,
            content_hash=content_hash,
            preview_ref=f"/items/{item_id}/preview",
        )
        self.store.add(item, preview)
        LOGGER.info("Stored upload %s as item %s", item.filename, item.id)
        return item

    def delete(self, item_id: str) -> TrackableItem:
        """Remove an item and release its preview."""
        item = self.store.remove(item_id)
        LOGGER.info("Deleted item %s", item_id)
        return item

    # Batch runs

    def begin_run(self, item_ids: Iterable[str]) -> BatchRun:
        """Claim the run slot and optimistically mark every candidate loading."""
        run = BatchRun(item_ids=tuple(item_ids))
        previous, self._current_run = self._current_run, run
        if previous is not None and previous.running:
            LOGGER.info("Batch run %s superseded by %s", previous.run_id, run.run_id)
            previous.token.cancel("superseded")

        self.store.update_many(
            run.item_ids,
            lambda item: replace(
                item, status=ImageStatus.LOADING, error=None, mapping_status=MappingStatus.UNVERIFIED
            ),
        )
        return run

    async def execute(self, run: BatchRun) -> BatchRun:
        """Process the run's candidates one at a time until done or cancelled."""
        LOGGER.info("Batch run %s started with %d item(s)", run.run_id, len(run.item_ids))
        try:
            for item_id in run.item_ids:
                if run.token.cancelled:
                    LOGGER.info("Batch run %s cancelled (%s)", run.run_id, run.token.reason)
                    break
                item = self.store.find(item_id)
                if item is None:
                    LOGGER.warning("Item %s was deleted before analysis; skipping", item_id)
                    continue
                if not await self._process_item(item, run):
                    break
        finally:
            run.finish()
            if self._current_run is run:
                self._current_run = None
        LOGGER.info(
            "Batch run %s finished: %d succeeded, %d failed", run.run_id, run.succeeded, run.failed
        )
        return run

    async def run_batch(self, item_ids: Iterable[str]) -> BatchRun:
        return await self.execute(self.begin_run(item_ids))

    async def analyze_pending(self) -> Optional[BatchRun]:
        """Analyze every pending item; None when nothing is pending."""
        candidates = [item.id for item in self.store.with_status(ImageStatus.PENDING)]
        if not candidates:
            return None
        return await self.run_batch(candidates)

    async def retry_failed(self) -> Optional[BatchRun]:
        """Re-analyze every failed item; None when nothing failed."""
        candidates = [item.id for item in self.store.with_status(ImageStatus.ERROR)]
        if not candidates:
            return None
        return await self.run_batch(candidates)

    def start_analyze_pending(self) -> Optional[BatchRun]:
        """Like `analyze_pending`, but the loop runs as a background task."""
        return self._start([item.id for item in self.store.with_status(ImageStatus.PENDING)])

    def start_retry_failed(self) -> Optional[BatchRun]:
        """Like `retry_failed`, but the loop runs as a background task."""
        return self._start([item.id for item in self.store.with_status(ImageStatus.ERROR)])

    def cancel_active(self) -> bool:
        """Cancel the active run, if any. Returns True when a run was signalled."""
        run = self._current_run
        if run is None or not run.running:
            return False
        run.token.cancel("cancelled by user")
        return True

    async def shutdown(self) -> None:
        """Cancel the active run and wait for background loops to stop."""
        self.cancel_active()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Refinement

    async def refine(self, item_id: str, feedback: str) -> TrackableItem:
        """Re-run the analysis for one item with clinician feedback.

        Runs outside any batch and ignores the batch cancellation token. On
        success only the result and heatmap are replaced; segmentation images
        from the earlier analysis are kept.

        Raises:
            KeyError: If the item does not exist.
            ValueError: If the feedback is blank.
            RefinementNotAllowedError: If the item has not completed an analysis.
        """
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValueError("Refinement feedback is required.")
        item = self.store.get(item_id)
        if item.status is not ImageStatus.SUCCESS:
            raise RefinementNotAllowedError(
                f"Item {item_id} is {item.status.value}; only analyzed items can be refined."
            )
        self.store.update(item_id, lambda current: replace(current, status=ImageStatus.LOADING, error=None))

        try:
            outcome = await self.client.analyze(
                item.content, mime_type=item.mime_type, refinement=feedback, correlation_id=item.id
            )
        except AnalysisError as exc:
            LOGGER.error("Refinement of %s failed: %s", item_id, exc.message)
            updated = self.store.update(
                item_id, lambda current: replace(current, status=ImageStatus.ERROR, error=exc.message)
            )
            return updated or item

        updated = self.store.update(
            item_id,
            lambda current: replace(
                current,
                status=ImageStatus.SUCCESS,
                result=outcome.analysis,
                heatmap_image=_as_png_data_url(outcome.heatmap_image),
                error=None,
            ),
        )
        return updated or item

    # Internals

    def _start(self, candidates: list) -> Optional[BatchRun]:
        if not candidates:
            return None
        run = self.begin_run(candidates)
        task = asyncio.create_task(self.execute(run), name=f"batch-run-{run.run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    async def _process_item(self, item: TrackableItem, run: BatchRun) -> bool:
        """Run one full round-trip. Returns False when the loop must stop."""
        LOGGER.debug(
            "[Request Debug] id=%s name=%s size=%d type=%s hash=%s",
            item.id,
            item.filename,
            len(item.content),
            item.mime_type,
            item.content_hash,
        )
        try:
            outcome = await self.client.analyze(
                item.content, mime_type=item.mime_type, correlation_id=item.id, cancel_token=run.token
            )
            verified = await self.verifier(item, outcome.analysis.processed_id, outcome.analysis.processed_hash)
        except AnalysisError as exc:
            if exc.cancelled:
                LOGGER.info("Analysis cancelled at item %s", item.id)
                return False
            self._mark_error(item.id, exc.message, run)
            return True
        except Exception as exc:
            LOGGER.exception("Unexpected failure analyzing %s", item.id)
            self._mark_error(item.id, str(exc) or exc.__class__.__name__, run)
            return True

        mapping_status = mapping_status_for(verified)
        if not verified:
            LOGGER.warning(
                "CRITICAL: Mapping mismatch for image %s. Response contained ID: %s",
                item.id,
                outcome.analysis.processed_id,
            )

        self.store.update(
            item.id,
            lambda current: replace(
                current,
                status=ImageStatus.SUCCESS,
                mapping_status=mapping_status,
                result=outcome.analysis,
                segmentation_image=_as_png_data_url(outcome.segmentation_image) or current.segmentation_image,
                heatmap_image=_as_png_data_url(outcome.heatmap_image),
                segmentation_uncertainty_image=(
                    _as_png_data_url(outcome.segmentation_uncertainty_image)
                    or current.segmentation_uncertainty_image
                ),
                error=None,
            ),
        )
        run.succeeded += 1
        return True

    def _mark_error(self, item_id: str, message: str, run: BatchRun) -> None:
        LOGGER.error("Error analyzing %s: %s", item_id, message)
        self.store.update(item_id, lambda current: replace(current, status=ImageStatus.ERROR, error=message))
        run.failed += 1
