import pytest
import requests

from models.merge_models import InputReference, MediaKind
from utils.errors import AuthError, DownloadError, UpstreamError
from utils.remote_fetch import RemoteFetcher, is_shared_link, to_direct_download
from utils.staging import StagingStore


# =============================================================================
# FAKES
# =============================================================================


class FakeStreamResponse:
    def __init__(self, chunks, status_code: int = 200, fail_after: int | None = None):
        self.chunks = list(chunks)
        self.status_code = status_code
        self.fail_after = fail_after

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=None):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            yield chunk


class FakeHttp:
    def __init__(self, response: FakeStreamResponse):
        self.response = response
        self.calls: list[dict] = []

    def get(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        return self.response


class FakeDropbox:
    def __init__(self, link: str = "https://dl.dropboxusercontent.com/tmp/a.mp3", error=None):
        self.link = link
        self.error = error
        self.requested: list[str] = []

    def get_temporary_link(self, path: str) -> str:
        self.requested.append(path)
        if self.error is not None:
            raise self.error
        return self.link


@pytest.fixture
def staging(tmp_path):
    return StagingStore(tmp_path).session()


# =============================================================================
# SHARED LINK NORMALIZATION
# =============================================================================


@pytest.mark.parametrize(
    "url",
    [
        "https://www.dropbox.com/s/abc/clip.mp4?dl=0",
        "https://dropbox.com/scl/fi/xyz/clip.mp4",
        "https://db.tt/abc",
    ],
)
def test_is_shared_link_recognizes_dropbox_hosts(url):
    assert is_shared_link(url)


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/clip.mp4",
        "https://notdropbox.com/clip.mp4",
        "https://dl.dropboxusercontent.com/tmp/clip.mp4",
        "not a url",
    ],
)
def test_is_shared_link_rejects_other_hosts(url):
    assert not is_shared_link(url)


def test_to_direct_download_overwrites_existing_dl():
    url = to_direct_download("https://www.dropbox.com/s/abc/clip.mp4?dl=0&rlkey=k1")

    assert url == "https://www.dropbox.com/s/abc/clip.mp4?dl=1&rlkey=k1"


def test_to_direct_download_appends_missing_dl():
    assert (
        to_direct_download("https://www.dropbox.com/s/abc/clip.mp4")
        == "https://www.dropbox.com/s/abc/clip.mp4?dl=1"
    )
    assert (
        to_direct_download("https://www.dropbox.com/s/abc/clip.mp4?rlkey=k1")
        == "https://www.dropbox.com/s/abc/clip.mp4?rlkey=k1&dl=1"
    )


# =============================================================================
# FETCH
# =============================================================================


def test_fetch_url_streams_body_into_staged_file(staging):
    http = FakeHttp(FakeStreamResponse([b"ID3", b"", b"audio-bytes"]))
    fetcher = RemoteFetcher(FakeDropbox(), http=http, connect_timeout_seconds=5)
    reference = InputReference(
        kind=MediaKind.AUDIO, url="https://example.com/a.mp3", extension=".mp3"
    )

    path = fetcher.fetch(reference, staging)

    assert path.read_bytes() == b"ID3audio-bytes"
    assert path.suffix == ".mp3"
    assert staging.paths == [path]
    assert http.calls[0]["stream"] is True
    assert http.calls[0]["timeout"] == (5, None)


def test_fetch_shared_link_forces_direct_download(staging):
    http = FakeHttp(FakeStreamResponse([b"video"]))
    fetcher = RemoteFetcher(FakeDropbox(), http=http)
    reference = InputReference(
        kind=MediaKind.VIDEO,
        url="https://www.dropbox.com/s/abc/clip.mp4?dl=0",
        extension=".mp4",
    )

    fetcher.fetch(reference, staging)

    assert http.calls[0]["url"] == "https://www.dropbox.com/s/abc/clip.mp4?dl=1"


def test_fetch_path_resolves_temporary_link_first(staging):
    dropbox = FakeDropbox(link="https://dl.dropboxusercontent.com/tmp/a.mp3")
    http = FakeHttp(FakeStreamResponse([b"audio"]))
    fetcher = RemoteFetcher(dropbox, http=http)
    reference = InputReference(kind=MediaKind.AUDIO, path="/a.mp3", extension=".mp3")

    fetcher.fetch(reference, staging)

    assert dropbox.requested == ["/a.mp3"]
    assert http.calls[0]["url"] == "https://dl.dropboxusercontent.com/tmp/a.mp3"


@pytest.mark.parametrize("error", [AuthError("no token"), UpstreamError("409")])
def test_fetch_path_propagates_link_errors_without_download(staging, error):
    http = FakeHttp(FakeStreamResponse([b"audio"]))
    fetcher = RemoteFetcher(FakeDropbox(error=error), http=http)
    reference = InputReference(kind=MediaKind.AUDIO, path="/a.mp3", extension=".mp3")

    with pytest.raises(type(error)):
        fetcher.fetch(reference, staging)

    assert http.calls == []
    assert staging.paths == []


def test_fetch_http_error_raises_download_error(staging):
    http = FakeHttp(FakeStreamResponse([], status_code=404))
    fetcher = RemoteFetcher(FakeDropbox(), http=http)
    reference = InputReference(kind=MediaKind.VIDEO, url="https://example.com/b.mp4")

    with pytest.raises(DownloadError):
        fetcher.fetch(reference, staging)


def test_fetch_stream_failure_leaves_partial_file_owned_by_session(staging):
    http = FakeHttp(FakeStreamResponse([b"part", b"rest"], fail_after=1))
    fetcher = RemoteFetcher(FakeDropbox(), http=http)
    reference = InputReference(kind=MediaKind.VIDEO, url="https://example.com/b.mp4")

    with pytest.raises(DownloadError):
        fetcher.fetch(reference, staging)

    assert len(staging.paths) == 1
    partial = staging.paths[0]
    assert partial.read_bytes() == b"part"

    staging.release_all()
    assert not partial.exists()
