from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from utils.dropbox_client import DropboxClient
from utils.errors import UploadError

logger = logging.getLogger(__name__)

# Dropbox rejects single-call uploads above 150 MiB.
SINGLE_UPLOAD_LIMIT_BYTES = 150 * 1024 * 1024
CHUNK_SIZE_BYTES = 8 * 1024 * 1024


class ChunkedUploader:
    def __init__(
        self,
        dropbox: DropboxClient,
        single_upload_limit: int = SINGLE_UPLOAD_LIMIT_BYTES,
        chunk_size: int = CHUNK_SIZE_BYTES,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.dropbox = dropbox
        self.single_upload_limit = single_upload_limit
        self.chunk_size = chunk_size

    def upload(self, local_path: str | Path, dropbox_path: str) -> dict[str, Any]:
        self.dropbox.require_credential()

        local_path = Path(local_path)
        try:
            size = local_path.stat().st_size
        except OSError as exc:
            raise UploadError(f"Upload source not readable: {local_path}") from exc

        if size <= self.single_upload_limit:
            logger.info("upload.single path=%s bytes=%s", dropbox_path, size)
            return self.dropbox.upload(local_path.read_bytes(), dropbox_path)

        return self._upload_in_session(local_path, size, dropbox_path)

    def _upload_in_session(
        self, local_path: Path, size: int, dropbox_path: str
    ) -> dict[str, Any]:
        session = self.dropbox.upload_session_start()
        logger.info(
            "upload.session_start path=%s bytes=%s session_id=%s",
            dropbox_path,
            size,
            session.session_id,
        )

        result: dict[str, Any] = {}
        with open(local_path, "rb") as f:
            while session.offset < size:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    raise UploadError(
                        f"{local_path} shrank during upload at offset {session.offset}"
                    )
                if session.offset + len(chunk) < size:
                    self.dropbox.upload_session_append(session, chunk)
                else:
                    result = self.dropbox.upload_session_finish(
                        session, chunk, dropbox_path
                    )
                session.offset += len(chunk)
                logger.debug(
                    "upload.progress session_id=%s offset=%s/%s",
                    session.session_id,
                    session.offset,
                    size,
                )

        logger.info("upload.session_finish path=%s bytes=%s", dropbox_path, size)
        return result or {"path_display": dropbox_path, "size": size}
