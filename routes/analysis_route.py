"""FastAPI routes controlling batch analysis runs."""

from fastapi import APIRouter, HTTPException, Request

from controllers.analysis_controller import analysis_status, cancel_analysis, retry_failed, start_analysis

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post("/run")
async def run_route(request: Request):
    """Analyze every pending item, one at a time, in the background."""
    try:
        return await start_analysis(request)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.post("/retry")
async def retry_route(request: Request):
    """Re-analyze every failed item in the background."""
    try:
        return await retry_failed(request)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.post("/cancel")
async def cancel_route(request: Request):
    return await cancel_analysis(request)


@router.get("/status")
async def status_route(request: Request):
    return await analysis_status(request)
