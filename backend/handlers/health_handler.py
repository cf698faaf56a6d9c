from fastapi import APIRouter
from fastapi.responses import PlainTextResponse


router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse)
async def banner():
    return "FFmpeg + Dropbox Merger is running. POST /merge to combine audio/video."


@router.get("/health")
async def health():
    return {"ok": True}
