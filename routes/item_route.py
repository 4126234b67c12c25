"""FastAPI routes for uploaded scans."""

from typing import List

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from pydantic import BaseModel

from controllers.analysis_controller import (
    delete_item,
    get_item,
    get_preview,
    get_report,
    list_items,
    refine_item,
    upload_images,
)

router = APIRouter(prefix="/items", tags=["items"])


class RefinePayload(BaseModel):
    feedback: str


@router.post("", summary="Upload one or more OCT scans")
async def upload_route(request: Request, files: List[UploadFile] = File(...)):
    """Store uploaded images as pending items; non-image files are skipped."""
    try:
        return await upload_images(request, files)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("")
async def list_route(request: Request):
    return await list_items(request)


@router.get("/{item_id}")
async def get_route(request: Request, item_id: str):
    return await get_item(request, item_id)


@router.delete("/{item_id}")
async def delete_route(request: Request, item_id: str):
    return await delete_item(request, item_id)


@router.get("/{item_id}/preview")
async def preview_route(request: Request, item_id: str):
    """Return the PNG preview bytes for the specified item."""
    try:
        return await get_preview(request, item_id)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{item_id}/report")
async def report_route(request: Request, item_id: str):
    """Download the Markdown analysis report of a completed item."""
    try:
        return await get_report(request, item_id)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.post("/{item_id}/refine")
async def refine_route(request: Request, item_id: str, payload: RefinePayload):
    """Re-run the analysis of one item focused on the clinician's feedback."""
    try:
        return await refine_item(request, item_id, payload.feedback)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))
