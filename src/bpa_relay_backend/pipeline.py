"""
Per-request composition of the BPA relay pipeline.

The coordinator validates the request, inspects the uploaded bundle,
exchanges credentials and hands off to the job orchestrator. Each step
returns an ``Outcome``; the first failed outcome ends the run. Scratch
resources (the uploaded file and the extraction directory) are released in
a ``finally`` block, so they are removed whichever way the run ends.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional
from uuid import uuid4

import httpx

from .archive import ArchiveInspector
from .auth import CredentialExchanger
from .configuration import Settings
from .errors import ConfigurationError, ValidationError
from .job_orchestrator import JobOrchestrator, PollPolicy, Sleeper
from .models import DeviceInfo, JobRequest, Outcome, ReportReference, Requester, ScratchResources

logger = logging.getLogger(__name__)


def release_scratch(resources: ScratchResources) -> None:
    """
    Delete the uploaded file and the extraction directory.

    The uploaded file lives in its own per-upload directory under the
    upload root; that directory goes too once it is empty.
    """
    shutil.rmtree(resources.extraction_dir, ignore_errors=True)
    uploaded = resources.uploaded_file
    try:
        uploaded.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning(f"Could not remove uploaded file {uploaded}: {exc}")
    try:
        uploaded.parent.rmdir()
    except OSError:
        pass


def validate_requester(email: Optional[str], name: Optional[str]) -> Outcome[Requester]:
    email = (email or "").strip()
    name = (name or "").strip()
    missing = [label for label, value in (("email", email), ("name", name)) if not value]
    if missing:
        return Outcome.failure(ValidationError.missing_fields(missing, what="request field"))
    return Outcome.success(Requester(email=email, name=name))


class PipelineCoordinator:
    """
    Runs the full bundle-to-report pipeline for one request at a time.

    Instances carry configuration only; each ``run`` builds its own HTTP
    client, token, scratch directory and job, so concurrent runs never
    share mutable state.

    Attributes:
        settings: Validated service settings
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._sleep = sleep
        self.inspector = ArchiveInspector(
            cli_info_dir=settings.archive.cli_info_dir,
            cli_info_suffix=settings.archive.cli_info_suffix,
        )

    def new_scratch_dir(self) -> Path:
        return Path(self.settings.storage.scratch_root) / uuid4().hex

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.settings.api.timeout_seconds)

    def _check_configuration(self) -> Outcome[None]:
        missing = self.settings.credentials.missing()
        if missing:
            return Outcome.failure(
                ConfigurationError(f"Server is missing configuration: {', '.join(missing)}")
            )
        return Outcome.success(None)

    async def _execute(self, uploaded_file: Path, scratch_dir: Path, requester: Requester) -> Outcome[ReportReference]:
        fields = await asyncio.to_thread(self.inspector.inspect, uploaded_file, scratch_dir)
        if not fields.ok:
            return fields.forward()

        try:
            device = DeviceInfo.from_fields(fields.unwrap())
        except ValidationError as exc:
            return Outcome.failure(exc)
        logger.info(f"Bundle is from {device.model} serial {device.serial} running {device.version}")

        async with self._http_client() as client:
            token = await CredentialExchanger(client, self.settings.auth.token_url).exchange(
                self.settings.credentials
            )
            if not token.ok:
                return token.forward()

            orchestrator = JobOrchestrator(
                client,
                self.settings.api,
                PollPolicy.from_settings(self.settings.polling, sleep=self._sleep),
            )
            return await orchestrator.run(token.unwrap(), JobRequest.build(requester, device), uploaded_file)

    async def run(
        self,
        uploaded_file: Path,
        email: Optional[str],
        name: Optional[str],
    ) -> Outcome[ReportReference]:
        """
        Process one stored upload end to end.

        Args:
            uploaded_file: Path where the inbound bundle was stored
            email: Requester email from the form
            name: Requester name from the form

        Returns:
            Outcome with the report reference or the first error hit. The
            uploaded file is deleted before this returns, in every case.
        """
        resources = ScratchResources(uploaded_file=uploaded_file, extraction_dir=self.new_scratch_dir())
        try:
            requester = validate_requester(email, name)
            if not requester.ok:
                return requester.forward()

            configured = self._check_configuration()
            if not configured.ok:
                return configured.forward()

            outcome = await self._execute(uploaded_file, resources.extraction_dir, requester.unwrap())
            if outcome.ok:
                logger.info(f"BPA report ready for job {outcome.unwrap().job_id}")
            return outcome
        finally:
            release_scratch(resources)

