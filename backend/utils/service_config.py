from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass


logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using %s", name, raw, default)
        return default


@dataclass
class MergeServiceConfig:
    port: int = 3000
    dropbox_access_token: str = ""
    staging_dir: str = ""
    ffmpeg_bin: str = "ffmpeg"
    log_level: str = "INFO"
    download_connect_timeout_seconds: int = 30

    @classmethod
    def from_env(cls) -> MergeServiceConfig:
        return cls(
            port=_int_env("PORT", 3000),
            dropbox_access_token=os.getenv("DROPBOX_ACCESS_TOKEN", "").strip(),
            staging_dir=os.getenv("MERGE_STAGING_DIR", "").strip() or tempfile.gettempdir(),
            ffmpeg_bin=os.getenv("FFMPEG_BIN", "ffmpeg"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            download_connect_timeout_seconds=_int_env(
                "DOWNLOAD_CONNECT_TIMEOUT_SECONDS", 30
            ),
        )

    @property
    def has_dropbox_credential(self) -> bool:
        return bool(self.dropbox_access_token)
