from __future__ import annotations

import logging
import time
from typing import Callable
from uuid import uuid4

from models.merge_models import (
    InputReference,
    MediaKind,
    MergeParameters,
    MergeRequest,
    MergeResponse,
    PipelineStage,
)
from utils.dropbox_client import DropboxClient
from utils.dropbox_upload import ChunkedUploader
from utils.errors import PipelineError, ValidationError
from utils.ffmpeg_merge import (
    FFmpegMerger,
    ProgressCallback,
    validate_audio_bitrate,
    validate_audio_offset,
)
from utils.remote_fetch import RemoteFetcher
from utils.service_config import MergeServiceConfig
from utils.staging import StagingSession, StagingStore

logger = logging.getLogger(__name__)

AUDIO_EXTENSION = ".mp3"
VIDEO_EXTENSION = ".mp4"
OUTPUT_EXTENSION = ".mp4"


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


def _input_reference(
    kind: MediaKind, url: str | None, path: str | None, extension: str
) -> InputReference:
    has_url, has_path = _present(url), _present(path)
    if not has_url and not has_path:
        raise ValidationError(f"Provide {kind.value}_url or {kind.value}_path")
    if has_url and has_path:
        raise ValidationError(
            f"Provide only one of {kind.value}_url or {kind.value}_path"
        )
    return InputReference(
        kind=kind,
        url=url.strip() if has_url else None,
        path=path.strip() if has_path else None,
        extension=extension,
    )


def validate_merge_request(
    request: MergeRequest,
) -> tuple[InputReference, InputReference, str, MergeParameters]:
    """Check a request without touching disk or network.

    Returns the audio reference, video reference, destination path and
    merge parameters.
    """
    if not _present(request.out_path):
        raise ValidationError("Missing out_path (Dropbox destination path)")

    audio = _input_reference(
        MediaKind.AUDIO, request.audio_url, request.audio_path, AUDIO_EXTENSION
    )
    video = _input_reference(
        MediaKind.VIDEO, request.video_url, request.video_path, VIDEO_EXTENSION
    )
    validate_audio_offset(request.audio_offset_sec)

    params = request.merge_parameters()
    params.audio_bitrate = validate_audio_bitrate(params.audio_bitrate)
    return audio, video, request.out_path.strip(), params


class MergePipeline:
    """Fetch audio and video, merge them, upload the result, clean up."""

    def __init__(
        self,
        dropbox: DropboxClient,
        fetcher: RemoteFetcher,
        merger: FFmpegMerger,
        uploader: ChunkedUploader,
        staging: StagingStore,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.dropbox = dropbox
        self.fetcher = fetcher
        self.merger = merger
        self.uploader = uploader
        self.staging = staging
        self._clock = clock

    @classmethod
    def from_config(cls, config: MergeServiceConfig) -> MergePipeline:
        dropbox = DropboxClient(config.dropbox_access_token)
        return cls(
            dropbox=dropbox,
            fetcher=RemoteFetcher(
                dropbox,
                connect_timeout_seconds=config.download_connect_timeout_seconds,
            ),
            merger=FFmpegMerger(config.ffmpeg_bin),
            uploader=ChunkedUploader(dropbox),
            staging=StagingStore(config.staging_dir),
        )

    def close(self) -> None:
        self.fetcher.close()
        self.dropbox.close()

    def run(
        self,
        request: MergeRequest,
        progress_callback: ProgressCallback | None = None,
    ) -> MergeResponse:
        started = self._clock()
        run_id = uuid4().hex[:8]
        stage = PipelineStage.VALIDATING

        def enter(next_stage: PipelineStage) -> None:
            nonlocal stage
            stage = next_stage
            logger.info("merge.stage run_id=%s stage=%s", run_id, stage.value)

        enter(PipelineStage.VALIDATING)
        try:
            audio_ref, video_ref, out_path, params = validate_merge_request(request)
            self.dropbox.require_credential()
        except PipelineError as exc:
            logger.warning("merge.rejected run_id=%s message=%s", run_id, exc)
            raise

        staged = self.staging.session()
        try:
            enter(PipelineStage.FETCHING_AUDIO)
            audio_file = self.fetcher.fetch(audio_ref, staged)

            enter(PipelineStage.FETCHING_VIDEO)
            video_file = self.fetcher.fetch(video_ref, staged)

            enter(PipelineStage.MERGING)
            output_file = staged.allocate(OUTPUT_EXTENSION)
            self.merger.merge(
                video_file, audio_file, params, output_file, progress_callback
            )

            enter(PipelineStage.UPLOADING)
            uploaded = self.uploader.upload(output_file, out_path)
        except PipelineError as exc:
            logger.error(
                "merge.error run_id=%s stage=%s message=%s", run_id, stage.value, exc
            )
            self._fail(run_id, staged)
            raise
        except Exception:
            logger.exception("merge.error run_id=%s stage=%s", run_id, stage.value)
            self._fail(run_id, staged)
            raise

        enter(PipelineStage.CLEANING_UP)
        staged.release_all()
        enter(PipelineStage.DONE)

        elapsed = max(0, int(round(self._clock() - started)))
        return MergeResponse(
            ok=True, out_path=out_path, uploaded=uploaded, elapsed_sec=elapsed
        )

    def _fail(self, run_id: str, staged: StagingSession) -> None:
        logger.info(
            "merge.stage run_id=%s stage=%s files=%s",
            run_id,
            PipelineStage.CLEANING_UP.value,
            len(staged.paths),
        )
        staged.release_all()
        logger.info("merge.stage run_id=%s stage=%s", run_id, PipelineStage.FAILED.value)
