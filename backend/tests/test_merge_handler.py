import pytest
import requests
from fastapi.testclient import TestClient

from handlers.merge_handler import get_merge_pipeline, get_service_config
from main import app
from models.merge_models import MergeResponse
from operators.merge_operator import MergePipeline
from utils.errors import AuthError, DownloadError, MergeError, ValidationError
from utils.service_config import MergeServiceConfig


class StubPipeline:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.requests = []

    def run(self, request, progress_callback=None):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _use(pipeline) -> None:
    app.dependency_overrides[get_merge_pipeline] = lambda: pipeline


def test_banner(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "POST /merge" in response.text


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_merge_success_returns_pipeline_response(client):
    pipeline = StubPipeline(
        result=MergeResponse(
            out_path="/out.mp4", uploaded={"path_display": "/out.mp4"}, elapsed_sec=7
        )
    )
    _use(pipeline)

    response = client.post(
        "/merge",
        json={"audio_path": "/a.mp3", "video_path": "/b.mp4", "out_path": "/out.mp4"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "out_path": "/out.mp4",
        "uploaded": {"path_display": "/out.mp4"},
        "elapsed_sec": 7,
    }
    request = pipeline.requests[0]
    assert request.trim_to_shortest is True
    assert request.audio_bitrate == "192k"


@pytest.mark.parametrize(
    "error, status",
    [
        (ValidationError("Missing out_path (Dropbox destination path)"), 400),
        (AuthError("Missing DROPBOX_ACCESS_TOKEN env var"), 400),
        (DownloadError("Failed to download video"), 500),
        (MergeError("ffmpeg exited with code 1: bad input"), 500),
    ],
)
def test_merge_errors_map_to_status_and_message(client, error, status):
    _use(StubPipeline(error=error))

    response = client.post("/merge", json={"out_path": "/out.mp4"})

    assert response.status_code == status
    assert response.json() == {"detail": str(error)}


def test_unexpected_error_is_500(client):
    _use(StubPipeline(error=RuntimeError("boom")))

    response = client.post("/merge", json={})

    assert response.status_code == 500
    assert "boom" in response.json()["detail"]


def test_real_pipeline_rejects_invalid_request_without_network(client, tmp_path):
    config = MergeServiceConfig(dropbox_access_token="", staging_dir=str(tmp_path))
    app.dependency_overrides[get_service_config] = lambda: config

    response = client.post("/merge", json={"audio_path": "/a.mp3", "out_path": "/out.mp4"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Provide video_url or video_path"
    assert list(tmp_path.iterdir()) == []


def test_real_pipeline_rejects_missing_token(client, tmp_path):
    config = MergeServiceConfig(dropbox_access_token="", staging_dir=str(tmp_path))
    app.dependency_overrides[get_service_config] = lambda: config

    response = client.post(
        "/merge",
        json={"audio_path": "/a.mp3", "video_path": "/b.mp4", "out_path": "/out.mp4"},
    )

    assert response.status_code == 400
    assert "DROPBOX_ACCESS_TOKEN" in response.json()["detail"]


def test_pipeline_dependency_builds_from_config_and_closes_sessions(tmp_path, monkeypatch):
    config = MergeServiceConfig(
        dropbox_access_token="tok", staging_dir=str(tmp_path), ffmpeg_bin="/usr/bin/ffmpeg"
    )
    closed = []
    monkeypatch.setattr(
        requests.Session, "close", lambda self: closed.append(self)
    )

    dependency = get_merge_pipeline(config)
    pipeline = next(dependency)

    assert isinstance(pipeline, MergePipeline)
    assert pipeline.dropbox.access_token == "tok"
    assert pipeline.merger.ffmpeg_bin == "/usr/bin/ffmpeg"
    assert pipeline.staging.base_dir == tmp_path
    assert closed == []

    with pytest.raises(StopIteration):
        next(dependency)

    assert len(closed) == 2
