"""
Lifecycle of a single Best Practice Assessment job.

A run walks through a fixed sequence of phases::

    CREATING -> UPLOADING -> POLLING -> FETCHING_REPORT -> DONE

and drops to FAILED from any of them. Only POLLING repeats, under a
``PollPolicy`` with a fixed interval and attempt cap; every other failure
is terminal on first occurrence.

The orchestrator holds no state between runs. The job record it tracks is
a local copy refreshed from status reads and discarded when the run ends.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

import httpx

from .configuration import ApiSettings, PollingSettings
from .errors import (
    JobCreationError,
    JobFailedError,
    JobTimeoutError,
    PipelineError,
    PollError,
    ProtocolError,
    ReportFetchError,
    UploadError,
)
from .models import AnalysisJob, JobRequest, JobStatus, Outcome, ReportReference

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]

UPLOAD_CHUNK_SIZE = 1024 * 1024


class JobPhase(str, Enum):
    CREATING = "creating"
    UPLOADING = "uploading"
    POLLING = "polling"
    FETCHING_REPORT = "fetching_report"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PollPolicy:
    """
    Bounded, fixed-interval polling schedule.

    Attributes:
        interval: Seconds to wait before every status check
        max_attempts: Maximum number of status checks
        sleep: Awaitable used for the wait; swap it out to simulate time
    """

    interval: float = 3.0
    max_attempts: int = 20
    sleep: Sleeper = field(default=asyncio.sleep, compare=False)

    @classmethod
    def from_settings(cls, settings: PollingSettings, sleep: Sleeper = asyncio.sleep) -> "PollPolicy":
        return cls(interval=settings.interval_seconds, max_attempts=settings.max_attempts, sleep=sleep)


def _snippet(response: httpx.Response) -> str:
    return response.text[:500]


def _json_object(response: httpx.Response, phase: JobPhase) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProtocolError(f"Non-JSON response while {phase.value}", detail=_snippet(response)) from exc
    if not isinstance(payload, dict):
        raise ProtocolError(f"Unexpected response shape while {phase.value}", detail=_snippet(response))
    return payload


async def _iter_file(path: Path) -> AsyncIterator[bytes]:
    with path.open("rb") as stream:
        while chunk := await asyncio.to_thread(stream.read, UPLOAD_CHUNK_SIZE):
            yield chunk


class JobOrchestrator:
    """
    Drives one BPA job from creation to report reference.

    Attributes:
        api: Endpoint settings for the BPA API
        poll_policy: Schedule for status checks
        phase: Phase of the run currently in progress
    """

    def __init__(self, client: httpx.AsyncClient, api: ApiSettings, poll_policy: PollPolicy) -> None:
        self._client = client
        self.api = api
        self.poll_policy = poll_policy
        self.phase = JobPhase.CREATING

    def _enter(self, phase: JobPhase, job_id: str | None = None) -> None:
        self.phase = phase
        logger.info(f"BPA job {job_id or '-'}: {phase.value}")

    @staticmethod
    def _bearer(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def create_job(self, token: str, request: JobRequest) -> AnalysisJob:
        self._enter(JobPhase.CREATING)
        try:
            response = await self._client.post(
                self.api.url("requests"), headers=self._bearer(token), json=request.to_wire()
            )
        except httpx.HTTPError as exc:
            raise JobCreationError("BPA job creation request failed", detail=str(exc)) from exc
        if not response.is_success:
            raise JobCreationError(
                f"BPA job creation rejected (HTTP {response.status_code})", detail=_snippet(response)
            )

        payload = _json_object(response, JobPhase.CREATING)
        job_id = payload.get("id")
        upload_url = payload.get("upload-url")
        if not job_id or not upload_url:
            raise ProtocolError("BPA job creation response lacks id or upload-url", detail=_snippet(response))
        return AnalysisJob(id=str(job_id), upload_url=str(upload_url))

    async def upload_artifact(self, job: AnalysisJob, archive_path: Path) -> None:
        """PUT the bundle to the pre-signed upload URL; the bearer token is not sent there."""
        self._enter(JobPhase.UPLOADING, job.id)
        try:
            size = archive_path.stat().st_size
            response = await self._client.put(
                job.upload_url,
                content=_iter_file(archive_path),
                headers={"Content-Type": "application/octet-stream", "Content-Length": str(size)},
            )
        except (httpx.HTTPError, OSError) as exc:
            raise UploadError("Bundle upload failed", detail=str(exc)) from exc
        if not response.is_success:
            raise UploadError(f"Bundle upload rejected (HTTP {response.status_code})", detail=_snippet(response))

    async def check_status(self, token: str, job: AnalysisJob) -> JobStatus:
        try:
            response = await self._client.get(self.api.url("jobs", job.id), headers=self._bearer(token))
        except httpx.HTTPError as exc:
            raise PollError(f"Status check for BPA job {job.id} failed", detail=str(exc)) from exc
        if not response.is_success:
            raise PollError(
                f"Status check for BPA job {job.id} failed (HTTP {response.status_code})",
                detail=_snippet(response),
            )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return JobStatus.parse(payload.get("status") if isinstance(payload, dict) else None)

    async def wait_for_completion(self, token: str, job: AnalysisJob) -> AnalysisJob:
        """
        Poll until the job reaches a terminal status or the attempt cap runs out.

        Raises:
            PollError: A status check returned a non-success response
            JobFailedError: The job finished with COMPLETED_WITH_ERROR
            JobTimeoutError: No terminal status within ``max_attempts`` checks
        """
        self._enter(JobPhase.POLLING, job.id)
        policy = self.poll_policy
        for attempt in range(1, policy.max_attempts + 1):
            await policy.sleep(policy.interval)
            job.status = await self.check_status(token, job)
            logger.info(f"BPA job {job.id}: poll {attempt}/{policy.max_attempts} -> {job.status.value}")
            if job.status is JobStatus.COMPLETED_WITH_SUCCESS:
                return job
            if job.status is JobStatus.COMPLETED_WITH_ERROR:
                raise JobFailedError(f"BPA job {job.id} failed")
        raise JobTimeoutError(
            f"Timed out waiting for BPA job {job.id} after {policy.max_attempts} status checks"
        )

    async def fetch_report(self, token: str, job: AnalysisJob) -> ReportReference:
        self._enter(JobPhase.FETCHING_REPORT, job.id)
        try:
            response = await self._client.get(self.api.url("reports", job.id), headers=self._bearer(token))
        except httpx.HTTPError as exc:
            raise ReportFetchError(f"Report request for BPA job {job.id} failed", detail=str(exc)) from exc
        if not response.is_success:
            raise ReportFetchError(
                f"Report request for BPA job {job.id} failed (HTTP {response.status_code})",
                detail=_snippet(response),
            )
        payload = _json_object(response, JobPhase.FETCHING_REPORT)
        download_url = payload.get("download-url")
        if not download_url:
            raise ProtocolError("Report response lacks download-url", detail=_snippet(response))
        return ReportReference(job_id=job.id, download_url=str(download_url))

    async def _run(self, token: str, request: JobRequest, archive_path: Path) -> ReportReference:
        job = await self.create_job(token, request)
        await self.upload_artifact(job, archive_path)
        await self.wait_for_completion(token, job)
        report = await self.fetch_report(token, job)
        self._enter(JobPhase.DONE, job.id)
        return report

    async def run(self, token: str, request: JobRequest, archive_path: Path) -> Outcome[ReportReference]:
        """
        Execute the full job sequence for one bundle.

        Returns:
            Outcome holding the report reference, or the error that ended
            the run. A reference is only produced for COMPLETED_WITH_SUCCESS.
        """
        try:
            return Outcome.success(await self._run(token, request, archive_path))
        except PipelineError as exc:
            logger.error(f"BPA job failed while {self.phase.value}: {exc.message}")
            self.phase = JobPhase.FAILED
            return Outcome.failure(exc)
