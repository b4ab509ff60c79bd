"""
Tests for the per-request pipeline coordinator and its cleanup guarantee.
"""

import asyncio
import shutil

import pytest

from bpa_relay_backend.configuration import load_settings
from bpa_relay_backend.errors import (
    ArchiveError,
    AuthError,
    ConfigurationError,
    JobFailedError,
    NotFoundError,
    ValidationError,
)
from bpa_relay_backend.models import ScratchResources
from bpa_relay_backend.pipeline import PipelineCoordinator, release_scratch, validate_requester

from conftest import JOB_ID, Reply


@pytest.fixture
def stored_upload(settings, sample_bundle):
    """Place the sample bundle where the HTTP layer would have stored it."""
    upload_dir = settings.storage.upload_root / "upload-1"
    upload_dir.mkdir(parents=True)
    destination = upload_dir / "techsupport.tgz"
    shutil.copy(sample_bundle, destination)
    return destination


def _run(coordinator, upload, email="ops@example.com", name="Ops Team"):
    return asyncio.run(coordinator.run(upload, email=email, name=name))


def _scratch_is_empty(settings):
    root = settings.storage.scratch_root
    return not root.exists() or not any(root.iterdir())


class TestValidateRequester:
    """Tests for request-level field validation."""

    def test_accepts_email_and_name(self):
        """Present fields should be trimmed and accepted."""
        outcome = validate_requester("  ops@example.com ", "Ops")
        assert outcome.unwrap().email == "ops@example.com"

    @pytest.mark.parametrize(
        "email,name,missing",
        [(None, "Ops", ["email"]), ("ops@example.com", "", ["name"]), ("  ", None, ["email", "name"])],
    )
    def test_names_missing_fields(self, email, name, missing):
        """Every missing field should be named, and only those."""
        outcome = validate_requester(email, name)
        assert isinstance(outcome.error, ValidationError)
        assert outcome.error.fields == missing


class TestPipelineRun:
    """Tests for PipelineCoordinator.run."""

    def test_success_returns_reference_and_cleans_up(self, coordinator, settings, stored_upload, cloud):
        """A successful run should return the report and leave no scratch behind."""
        outcome = _run(coordinator, stored_upload)
        assert outcome.ok
        assert outcome.unwrap().job_id == JOB_ID
        assert not stored_upload.exists()
        assert not stored_upload.parent.exists()
        assert _scratch_is_empty(settings)
        assert cloud.job_payload()["serial"] == "001122"

    def test_missing_requester_makes_no_network_calls(self, coordinator, settings, stored_upload, cloud):
        """Validation failures should happen before any network activity."""
        outcome = _run(coordinator, stored_upload, email="")
        assert isinstance(outcome.error, ValidationError)
        assert cloud.requests == []
        assert not stored_upload.exists()

    def test_missing_credentials(self, tmp_path, stored_upload, cloud, sleeper):
        """Unconfigured credentials should fail with ConfigurationError."""
        bare = load_settings(
            overrides={
                "storage": {"upload_root": str(tmp_path / "uploads"), "scratch_root": str(tmp_path / "scratch")},
            },
            environ={"BPA_CLIENT_ID": "only-the-id"},
        )
        coordinator = PipelineCoordinator(bare, transport=cloud.transport(), sleep=sleeper)
        outcome = _run(coordinator, stored_upload)
        assert isinstance(outcome.error, ConfigurationError)
        assert "BPA_CLIENT_SECRET" in outcome.error.message
        assert "BPA_CLIENT_ID" not in outcome.error.message
        assert outcome.error.status_code == 500
        assert cloud.requests == []
        assert not stored_upload.exists()

    def test_bundle_without_cli_info(self, coordinator, settings, bundle_factory, cloud):
        """A bundle without CLI captures should fail before authenticating."""
        bundle = bundle_factory({"var/log/messages.txt": "boot"})
        outcome = _run(coordinator, bundle)
        assert isinstance(outcome.error, NotFoundError)
        assert cloud.requests == []
        assert not bundle.exists()
        assert _scratch_is_empty(settings)

    def test_corrupt_bundle(self, coordinator, settings, tmp_path, cloud):
        """A corrupt upload should fail with ArchiveError and still be removed."""
        upload = tmp_path / "uploads" / "u" / "bad.tgz"
        upload.parent.mkdir(parents=True)
        upload.write_bytes(b"not a tarball")
        outcome = _run(coordinator, upload)
        assert isinstance(outcome.error, ArchiveError)
        assert not upload.exists()
        assert _scratch_is_empty(settings)

    def test_incomplete_device_info(self, coordinator, bundle_factory, cloud):
        """Missing device fields should be a validation failure with no job created."""
        bundle = bundle_factory({"tmp/cli/ts.txt": "> show system info\nserial: 1\nmodel: PA-220\n"})
        outcome = _run(coordinator, bundle)
        assert isinstance(outcome.error, ValidationError)
        assert outcome.error.fields == ["family", "version"]
        assert cloud.requests == []

    def test_auth_failure(self, coordinator, settings, stored_upload, cloud):
        """A failed token exchange should stop the run before job creation."""
        cloud.token_reply = Reply(401, {"error": "invalid_client"})
        outcome = _run(coordinator, stored_upload)
        assert isinstance(outcome.error, AuthError)
        assert not cloud.calls("POST", "/requests")
        assert _scratch_is_empty(settings)

    def test_job_failure_cleans_up(self, coordinator, settings, stored_upload, cloud):
        """Mid-pipeline failures should still release scratch resources."""
        cloud.statuses = ["COMPLETED_WITH_ERROR"]
        outcome = _run(coordinator, stored_upload)
        assert isinstance(outcome.error, JobFailedError)
        assert not stored_upload.exists()
        assert _scratch_is_empty(settings)

    def test_unexpected_exception_still_cleans_up(self, coordinator, settings, stored_upload, monkeypatch):
        """Crashes outside the error taxonomy propagate after cleanup."""

        def _explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(coordinator.inspector, "inspect", _explode)
        with pytest.raises(RuntimeError):
            _run(coordinator, stored_upload)
        assert not stored_upload.exists()

    def test_scratch_directories_are_unique(self, coordinator):
        """Each run gets its own scratch directory name."""
        names = {coordinator.new_scratch_dir() for _ in range(50)}
        assert len(names) == 50


class TestReleaseScratch:
    """Tests for scratch cleanup."""

    def test_tolerates_missing_paths(self, tmp_path):
        """Releasing resources that were never created should not raise."""
        release_scratch(ScratchResources(tmp_path / "gone" / "f.tgz", tmp_path / "never"))

    def test_keeps_shared_parent_with_other_files(self, tmp_path):
        """Only an emptied upload directory is removed."""
        upload = tmp_path / "shared" / "a.tgz"
        upload.parent.mkdir()
        upload.write_bytes(b"x")
        (upload.parent / "b.tgz").write_bytes(b"y")
        release_scratch(ScratchResources(upload, tmp_path / "scratch"))
        assert not upload.exists()
        assert (upload.parent / "b.tgz").exists()
