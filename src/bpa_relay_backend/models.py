from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .errors import PipelineError, ValidationError

T = TypeVar("T")

DEVICE_FIELDS = ("serial", "model", "version", "family")


class JobStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED_WITH_SUCCESS = "COMPLETED_WITH_SUCCESS"
    COMPLETED_WITH_ERROR = "COMPLETED_WITH_ERROR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: object) -> "JobStatus":
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        return cls.UNKNOWN


class DeviceFields(BaseModel):
    """Whatever the extractor managed to find; any field may be absent."""

    model_config = ConfigDict(frozen=True)

    serial: Optional[str] = None
    model: Optional[str] = None
    version: Optional[str] = None
    family: Optional[str] = None

    def missing(self) -> list[str]:
        return [name for name in DEVICE_FIELDS if not getattr(self, name)]


class DeviceInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    serial: str
    model: str
    version: str
    family: str

    @classmethod
    def from_fields(cls, fields: DeviceFields) -> "DeviceInfo":
        """
        Promote extracted fields to a complete DeviceInfo.

        Raises:
            ValidationError: Naming every field that is absent or empty
        """
        missing = fields.missing()
        if missing:
            raise ValidationError.missing_fields(missing, what="device field")
        return cls(**fields.model_dump())


class Requester(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    name: str


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    tsg_id: Optional[str] = None

    def missing(self) -> list[str]:
        names = {
            "client_id": "BPA_CLIENT_ID",
            "client_secret": "BPA_CLIENT_SECRET",
            "tsg_id": "BPA_TSG_ID",
        }
        return [env for attr, env in names.items() if not getattr(self, attr)]


class JobRequest(BaseModel):
    """Body of the BPA job-creation call."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    requester_email: str = Field(alias="requester-email")
    requester_name: str = Field(alias="requester-name")
    serial: str
    model: str
    version: str
    family: str

    @classmethod
    def build(cls, requester: Requester, device: DeviceInfo) -> "JobRequest":
        return cls(
            requester_email=requester.email,
            requester_name=requester.name,
            **device.model_dump(),
        )

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class AnalysisJob(BaseModel):
    id: str
    upload_url: str
    status: JobStatus = JobStatus.PENDING


class ReportReference(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: str = Field(serialization_alias="id")
    download_url: str = Field(serialization_alias="download-url")

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str


@dataclass(frozen=True)
class ScratchResources:
    uploaded_file: Path
    extraction_dir: Path


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result of one pipeline step: either a value or a tagged PipelineError.
    """

    value: Optional[T] = None
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PipelineError) -> "Outcome[T]":
        return cls(error=error)

    def forward(self) -> "Outcome[Any]":
        """Re-tag a failed outcome for a caller with a different value type."""
        if self.error is None:
            raise ValueError("Only failed outcomes can be forwarded")
        return Outcome(error=self.error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
