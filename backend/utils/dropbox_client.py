from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import requests

from utils.errors import AuthError, UploadError, UpstreamError


logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.dropboxapi.com/2"
CONTENT_BASE_URL = "https://content.dropboxapi.com/2"

TEMPORARY_LINK_TIMEOUT_SECONDS = 120

# Destination policy for every upload: replace what is there, keep the name,
# notify the owner's clients.
COMMIT_MODE = {"mode": "overwrite", "autorename": False, "mute": False}


@dataclass
class UploadSession:
    session_id: str
    offset: int = 0

    def to_cursor(self) -> dict[str, Any]:
        return {"session_id": self.session_id, "offset": self.offset}


class DropboxClient:
    def __init__(
        self,
        access_token: str | None,
        http: requests.Session | None = None,
    ):
        self.access_token = access_token or ""
        self._http = http or requests.Session()

    def close(self) -> None:
        self._http.close()

    def require_credential(self) -> None:
        if not self.access_token:
            raise AuthError("Missing DROPBOX_ACCESS_TOKEN env var")

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def get_temporary_link(self, dropbox_path: str) -> str:
        self.require_credential()
        headers = {**self._auth_headers(), "Content-Type": "application/json"}
        try:
            response = self._http.post(
                f"{API_BASE_URL}/files/get_temporary_link",
                json={"path": dropbox_path},
                headers=headers,
                timeout=TEMPORARY_LINK_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise UpstreamError(
                f"Failed to resolve temporary link for {dropbox_path}: {exc}"
            ) from exc

        if not response.ok:
            raise UpstreamError(
                f"Dropbox get_temporary_link failed for {dropbox_path} "
                f"(status {response.status_code}): {_error_summary(response)}",
                status_code=response.status_code,
            )

        try:
            link = response.json().get("link")
        except ValueError as exc:
            raise UpstreamError(
                f"Dropbox get_temporary_link returned invalid JSON for {dropbox_path}"
            ) from exc
        if not link:
            raise UpstreamError(
                f"Dropbox get_temporary_link returned no link for {dropbox_path}"
            )
        return link

    def upload(self, content: bytes, dropbox_path: str) -> dict[str, Any]:
        return self._content_call(
            "files/upload",
            {"path": dropbox_path, **COMMIT_MODE},
            content,
        )

    def upload_session_start(self) -> UploadSession:
        data = self._content_call("files/upload_session/start", {"close": False}, b"")
        session_id = data.get("session_id")
        if not session_id:
            raise UploadError("Dropbox upload_session/start returned no session_id")
        return UploadSession(session_id=session_id, offset=0)

    def upload_session_append(self, session: UploadSession, chunk: bytes) -> None:
        self._content_call(
            "files/upload_session/append_v2",
            {"cursor": session.to_cursor(), "close": False},
            chunk,
        )

    def upload_session_finish(
        self, session: UploadSession, chunk: bytes, dropbox_path: str
    ) -> dict[str, Any]:
        return self._content_call(
            "files/upload_session/finish",
            {
                "cursor": session.to_cursor(),
                "commit": {"path": dropbox_path, **COMMIT_MODE},
            },
            chunk,
        )

    def _content_call(
        self, endpoint: str, api_arg: dict[str, Any], data: bytes
    ) -> dict[str, Any]:
        self.require_credential()
        headers = {
            **self._auth_headers(),
            "Dropbox-API-Arg": json.dumps(api_arg),
            "Content-Type": "application/octet-stream",
        }
        try:
            response = self._http.post(
                f"{CONTENT_BASE_URL}/{endpoint}",
                data=data,
                headers=headers,
                timeout=None,
            )
        except requests.RequestException as exc:
            raise UploadError(f"Dropbox {endpoint} failed: {exc}") from exc

        if not response.ok:
            raise UploadError(
                f"Dropbox {endpoint} failed (status {response.status_code}): "
                f"{_error_summary(response)}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}


def _error_summary(response: requests.Response) -> str:
    text = (response.text or "").strip()
    if len(text) > 500:
        return f"{text[:500]}... [truncated]"
    return text
