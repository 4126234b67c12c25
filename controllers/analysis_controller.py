from fastapi import HTTPException, Request, UploadFile
from fastapi.responses import Response
from typing import Any, Dict, List

from models.analysis_item import ImageStatus, TrackableItem
from services.batch_orchestrator import BatchOrchestrator, RefinementNotAllowedError
from services.report_export import build_report, report_filename


def _orchestrator(request: Request) -> BatchOrchestrator:
    """Retrieve the shared orchestrator from the app state."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Analysis orchestrator not initialized.")
    return orchestrator


def _get_item(orchestrator: BatchOrchestrator, item_id: str) -> TrackableItem:
    try:
        return orchestrator.store.get(item_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Item not found") from exc


def serialize_item(item: TrackableItem) -> Dict[str, Any]:
    """Return the JSON view of an item; the raw image bytes are left out."""
    return {
        "id": item.id,
        "filename": item.filename,
        "mime_type": item.mime_type,
        "content_hash": item.content_hash,
        "preview_url": item.preview_ref,
        "status": item.status.value,
        "mapping_status": item.mapping_status.value,
        "result": item.result.to_dict() if item.result else None,
        "error": item.error,
        "segmentation_image": item.segmentation_image,
        "heatmap_image": item.heatmap_image,
        "segmentation_uncertainty_image": item.segmentation_uncertainty_image,
        "created_at": item.created_at,
    }


async def upload_images(request: Request, files: List[UploadFile]) -> Dict[str, Any]:
    """Store each uploaded image as a pending item.

    Files that are not images are skipped rather than failing the whole upload.

    Returns:
        A dict with the created `items` and the `skipped` filenames with reasons.
    """
    orchestrator = _orchestrator(request)
    created: List[Dict[str, Any]] = []
    skipped: List[Dict[str, str]] = []
    for upload in files:
        filename = upload.filename or "upload"
        content = await upload.read()
        try:
            item = await orchestrator.add_upload(filename, content, upload.content_type)
        except ValueError as exc:
            skipped.append({"filename": filename, "reason": str(exc)})
            continue
        created.append(serialize_item(item))
    return {"items": created, "skipped": skipped}


async def list_items(request: Request) -> Dict[str, Any]:
    orchestrator = _orchestrator(request)
    return {"items": [serialize_item(item) for item in orchestrator.store.snapshot()]}


async def get_item(request: Request, item_id: str) -> Dict[str, Any]:
    orchestrator = _orchestrator(request)
    return serialize_item(_get_item(orchestrator, item_id))


async def delete_item(request: Request, item_id: str) -> Dict[str, Any]:
    orchestrator = _orchestrator(request)
    try:
        orchestrator.delete(item_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Item not found") from exc
    return {"id": item_id, "deleted": True}


async def get_preview(request: Request, item_id: str) -> Response:
    """Return the PNG preview bytes for an item.

    Raises:
        HTTPException(404) if the item or its preview is not found.
    """
    orchestrator = _orchestrator(request)
    try:
        preview = orchestrator.store.preview(item_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(content=preview, media_type="image/png")


async def get_report(request: Request, item_id: str) -> Response:
    """Return the Markdown report for a completed item as a download."""
    orchestrator = _orchestrator(request)
    item = _get_item(orchestrator, item_id)
    try:
        report = build_report(item)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return Response(
        content=report,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(item)}"'},
    )


async def refine_item(request: Request, item_id: str, feedback: str) -> Dict[str, Any]:
    """Re-analyze one item with clinician feedback and return its new state."""
    orchestrator = _orchestrator(request)
    _get_item(orchestrator, item_id)
    try:
        item = await orchestrator.refine(item_id, feedback)
    except RefinementNotAllowedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Item not found") from exc
    return serialize_item(item)


async def start_analysis(request: Request) -> Dict[str, Any]:
    """Start analyzing every pending item in the background."""
    orchestrator = _orchestrator(request)
    run = orchestrator.start_analyze_pending()
    return {"started": run is not None, "run": run.to_dict() if run else None}


async def retry_failed(request: Request) -> Dict[str, Any]:
    """Start re-analyzing every failed item in the background."""
    orchestrator = _orchestrator(request)
    run = orchestrator.start_retry_failed()
    return {"started": run is not None, "run": run.to_dict() if run else None}


async def cancel_analysis(request: Request) -> Dict[str, Any]:
    orchestrator = _orchestrator(request)
    return {"cancelled": orchestrator.cancel_active()}


async def analysis_status(request: Request) -> Dict[str, Any]:
    orchestrator = _orchestrator(request)
    counts = orchestrator.store.status_counts()
    run = orchestrator.current_run
    return {
        "is_analyzing": orchestrator.is_running,
        "run": run.to_dict() if run else None,
        "pending": counts[ImageStatus.PENDING.value],
        "failed": counts[ImageStatus.ERROR.value],
        "counts": counts,
    }
