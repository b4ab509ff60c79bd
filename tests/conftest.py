"""
Pytest configuration and fixtures for BPA Relay Backend tests.
"""

import io
import json
import os
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["BPA_CLIENT_ID"] = "test-client"
os.environ["BPA_CLIENT_SECRET"] = "test-secret"
os.environ["BPA_TSG_ID"] = "1234567890"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="bpa_test_uploads_")
os.environ["SCRATCH_DIR"] = tempfile.mkdtemp(prefix="bpa_test_scratch_")

from bpa_relay_backend.configuration import load_settings  # noqa: E402
from bpa_relay_backend.main import app, get_coordinator  # noqa: E402
from bpa_relay_backend.pipeline import PipelineCoordinator  # noqa: E402

AUTH_URL = "https://auth.example.test/oauth2/access_token"
API_URL = "https://api.example.test/aiops/bpa/v1"
UPLOAD_URL = "https://upload.example.test/bundles/job-123?signature=abc"
DOWNLOAD_URL = "https://reports.example.test/job-123.json?signature=xyz"
JOB_ID = "job-123"

SYSTEM_INFO_DUMP = """\
> show clock

Mon Oct 19 10:00:00 UTC 2026

> show system info

hostname: fw-edge-01
ip-address: 10.0.0.1
serial: 001122
model: PA-850
sw-version: 10.2.3
family: 850
vm-license: none

> show interface all

total configured hardware interfaces: 8
"""


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the environment-provided directories after the session."""
    yield {"upload": os.environ["UPLOAD_DIR"], "scratch": os.environ["SCRATCH_DIR"]}
    shutil.rmtree(os.environ["UPLOAD_DIR"], ignore_errors=True)
    shutil.rmtree(os.environ["SCRATCH_DIR"], ignore_errors=True)


def build_bundle(path: Path, files: Dict[str, str]) -> Path:
    """Write a gzipped tarball containing ``files`` (member name -> text)."""
    with tarfile.open(path, "w:gz") as archive:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture
def bundle_factory(tmp_path):
    """Return a callable that builds bundles under a temporary directory."""
    counter = {"n": 0}

    def _build(files: Optional[Dict[str, str]] = None, name: str = "techsupport.tgz") -> Path:
        counter["n"] += 1
        target_dir = tmp_path / f"bundle-{counter['n']}"
        target_dir.mkdir()
        if files is None:
            files = {"tmp/cli/techsupport_1.txt": SYSTEM_INFO_DUMP}
        return build_bundle(target_dir / name, files)

    return _build


@pytest.fixture
def sample_bundle(bundle_factory):
    return bundle_factory()


class RecordingSleeper:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return RecordingSleeper()


class Reply:
    """Canned response; a fresh httpx.Response is built for every request."""

    def __init__(self, status: int = 200, json_body: Any = None, text: Optional[str] = None) -> None:
        self.status = status
        self.json_body = json_body
        self.text = text

    def build(self) -> httpx.Response:
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        if self.json_body is not None:
            return httpx.Response(self.status, json=self.json_body)
        return httpx.Response(self.status)


class FakeBpaCloud:
    """
    In-memory stand-in for the OAuth service, the BPA API and the upload store.

    Attributes:
        statuses: Status values returned by successive status checks; the
            last one repeats once the list is exhausted
        requests: Every request the transport served, in order
    """

    def __init__(self) -> None:
        self.token_reply = Reply(200, {"access_token": "token-abc", "expires_in": 899})
        self.create_reply = Reply(200, {"id": JOB_ID, "upload-url": UPLOAD_URL})
        self.upload_reply = Reply(200)
        self.status_error: Optional[Reply] = None
        self.statuses: List[Any] = ["COMPLETED_WITH_SUCCESS"]
        self.report_reply = Reply(200, {"download-url": DOWNLOAD_URL})
        self.requests: List[httpx.Request] = []
        self.uploaded: bytes = b""
        self.status_checks = 0

    def calls(self, method: str, fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and fragment in str(r.url)]

    def _reply_for(self, request: httpx.Request) -> Reply:
        url = str(request.url)
        if request.method == "POST" and url == AUTH_URL:
            return self.token_reply
        if request.method == "POST" and url == f"{API_URL}/requests":
            return self.create_reply
        if request.method == "PUT" and url == UPLOAD_URL:
            self.uploaded = request.content
            return self.upload_reply
        if request.method == "GET" and url == f"{API_URL}/jobs/{JOB_ID}":
            self.status_checks += 1
            if self.status_error is not None:
                return self.status_error
            index = min(self.status_checks, len(self.statuses)) - 1
            status = self.statuses[index]
            return Reply(200, {} if status is None else {"status": status})
        if request.method == "GET" and url == f"{API_URL}/reports/{JOB_ID}":
            return self.report_reply
        return Reply(404, {"message": f"no route for {request.method} {url}"})

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._reply_for(request).build()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def job_payload(self) -> Dict[str, str]:
        return json.loads(self.calls("POST", "/requests")[0].content)


@pytest.fixture
def cloud():
    return FakeBpaCloud()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at the fake cloud with per-test storage roots."""
    return load_settings(
        overrides={
            "auth": {"token_url": AUTH_URL},
            "api": {"base_url": API_URL},
            "storage": {
                "upload_root": str(tmp_path / "uploads"),
                "scratch_root": str(tmp_path / "scratch"),
            },
            "credentials": {
                "client_id": "test-client",
                "client_secret": "test-secret",
                "tsg_id": "1234567890",
            },
        },
        environ={},
    )


@pytest.fixture
def coordinator(settings, cloud, sleeper):
    return PipelineCoordinator(settings, transport=cloud.transport(), sleep=sleeper)


@pytest.fixture
def client(coordinator):
    """Create a test client whose pipeline talks to the fake cloud."""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
