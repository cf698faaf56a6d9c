from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from models.merge_models import InputReference
from utils.dropbox_client import DropboxClient
from utils.errors import DownloadError
from utils.staging import StagingSession

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_BYTES = 1024 * 1024
SHARED_LINK_HOSTS = ("dropbox.com", "db.tt")


def is_shared_link(url: str) -> bool:
    try:
        hostname = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    return any(
        hostname == host or hostname.endswith(f".{host}") for host in SHARED_LINK_HOSTS
    )


def to_direct_download(url: str) -> str:
    """Force dl=1 so a shared link serves the file instead of a preview page."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == "dl" for key, _ in query):
        query = [(key, "1" if key == "dl" else value) for key, value in query]
    else:
        query.append(("dl", "1"))
    return urlunsplit(parts._replace(query=urlencode(query)))


class RemoteFetcher:
    def __init__(
        self,
        dropbox: DropboxClient,
        http: requests.Session | None = None,
        connect_timeout_seconds: float = 30,
    ):
        self.dropbox = dropbox
        self._http = http or requests.Session()
        self.connect_timeout_seconds = connect_timeout_seconds

    def close(self) -> None:
        self._http.close()

    def resolve_url(self, reference: InputReference) -> str:
        if reference.is_path:
            url = self.dropbox.get_temporary_link(reference.path or "")
        else:
            url = reference.url or ""
        if not url:
            raise DownloadError(f"No {reference.kind.value} url or path to fetch")
        if is_shared_link(url):
            url = to_direct_download(url)
        return url

    def fetch(self, reference: InputReference, staging: StagingSession) -> Path:
        url = self.resolve_url(reference)
        # Allocated before the request so a failed stream is still cleaned up.
        out_file = staging.allocate(reference.extension)
        logger.info("download.start kind=%s url=%s", reference.kind.value, url)

        try:
            # No read timeout: inputs can be large media files.
            with self._http.get(
                url, stream=True, timeout=(self.connect_timeout_seconds, None)
            ) as response:
                response.raise_for_status()
                with open(out_file, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as exc:
            raise DownloadError(
                f"Failed to download {reference.kind.value} from {url}: {exc}"
            ) from exc
        except OSError as exc:
            raise DownloadError(
                f"Failed to write {reference.kind.value} to {out_file}: {exc}"
            ) from exc

        logger.info(
            "download.done kind=%s out_file=%s bytes=%s",
            reference.kind.value,
            out_file,
            out_file.stat().st_size,
        )
        return out_file
