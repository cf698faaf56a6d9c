"""
Pydantic models for the audio/video merge endpoint.

This module defines:
- The inbound merge request and the merge parameters taken from it
- References to remote inputs (URL or Dropbox path)
- The success response
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================


class PipelineStage(str, Enum):
    """Stage of a single merge pipeline run."""

    VALIDATING = "validating"
    FETCHING_AUDIO = "fetching_audio"
    FETCHING_VIDEO = "fetching_video"
    MERGING = "merging"
    UPLOADING = "uploading"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


# =============================================================================
# MERGE INPUTS
# =============================================================================


class InputReference(BaseModel):
    """Where to fetch one input from. Exactly one of url/path is set."""

    kind: MediaKind
    url: str | None = Field(default=None, description="Direct or shared link")
    path: str | None = Field(default=None, description="Dropbox path")
    extension: str = Field(default=".bin", description="Suffix for the staged file")

    @property
    def is_path(self) -> bool:
        return not self.url and bool(self.path)

    def describe(self) -> str:
        return self.url or self.path or ""


class MergeParameters(BaseModel):
    """How ffmpeg combines the two inputs."""

    audio_offset_sec: float = Field(
        default=0.0,
        allow_inf_nan=False,
        description="Shift audio later (+) or video later (-) by this many seconds",
    )
    trim_to_shortest: bool = Field(
        default=True, description="End the output when the shorter input ends"
    )
    reencode_video: bool = Field(
        default=False, description="Re-encode video with libx264 instead of stream copy"
    )
    audio_bitrate: str = Field(default="192k", description="AAC bitrate, e.g. '192k'")


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================


class MergeRequest(BaseModel):
    """Body of POST /merge."""

    audio_url: str | None = None
    audio_path: str | None = None
    video_url: str | None = None
    video_path: str | None = None
    out_path: str | None = Field(
        default=None, description="Dropbox destination path for the merged file"
    )
    audio_offset_sec: float = 0.0
    trim_to_shortest: bool = True
    reencode_video: bool = False
    audio_bitrate: str = "192k"

    def merge_parameters(self) -> MergeParameters:
        return MergeParameters(
            audio_offset_sec=self.audio_offset_sec,
            trim_to_shortest=self.trim_to_shortest,
            reencode_video=self.reencode_video,
            audio_bitrate=self.audio_bitrate,
        )


class MergeResponse(BaseModel):
    """Response after a successful merge and upload."""

    ok: bool = True
    out_path: str
    uploaded: dict[str, Any] = Field(default_factory=dict)
    elapsed_sec: int = Field(ge=0)
