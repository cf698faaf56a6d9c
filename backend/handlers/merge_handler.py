import logging
from functools import lru_cache
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from models.merge_models import MergeRequest, MergeResponse
from operators.merge_operator import MergePipeline
from utils.errors import AuthError, PipelineError, ValidationError
from utils.service_config import MergeServiceConfig


router = APIRouter(tags=["merge"])
logger = logging.getLogger(__name__)


@lru_cache
def get_service_config() -> MergeServiceConfig:
    return MergeServiceConfig.from_env()


def get_merge_pipeline(
    config: MergeServiceConfig = Depends(get_service_config),
) -> Iterator[MergePipeline]:
    pipeline = MergePipeline.from_config(config)
    try:
        yield pipeline
    finally:
        pipeline.close()


@router.post("/merge", response_model=MergeResponse)
async def merge_media(
    request: MergeRequest,
    pipeline: MergePipeline = Depends(get_merge_pipeline),
):
    logger.info(
        "merge_request_received out_path=%s audio=%s video=%s",
        request.out_path,
        request.audio_url or request.audio_path,
        request.video_url or request.video_path,
    )
    try:
        return await run_in_threadpool(pipeline.run, request)
    except (ValidationError, AuthError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PipelineError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.exception("Unexpected merge failure")
        raise HTTPException(status_code=500, detail=f"Merge failed: {e}")
