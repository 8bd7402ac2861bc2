# flixbook/api/routes/gallery.py
# Endpoints:
# - GET /api/gallery   rows + hero, rebuilt from disk on every call
# - GET /api/health    liveness probe
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from flixbook.core.config import GallerySettings, get_settings
from flixbook.schemas.gallery import GalleryError, GalleryResponse
from flixbook.services.indexer import gallery_payload, safe_build_gallery

api_router = APIRouter(tags=["gallery"])     # mounted under /api in main

NO_STORE = {"Cache-Control": "no-store"}


@api_router.get(
    "/gallery",
    response_model=GalleryResponse,
    responses={500: {"model": GalleryError}},
)
def get_gallery(settings: GallerySettings = Depends(get_settings)):
    # plain def: FastAPI runs the blocking directory scan in its threadpool
    result = safe_build_gallery(settings)
    status = 500 if isinstance(result, GalleryError) else 200
    return JSONResponse(status_code=status, content=gallery_payload(result), headers=NO_STORE)


@api_router.get("/health")
def health() -> dict:
    return {"status": "ok"}
