"""Core data models for bucket records, stack snapshots, sync and teardown results."""

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class BucketStatus(StrEnum):
    """Lifecycle status of a locally recorded bucket."""

    PENDING = "pending"
    DEPLOYING = "deploying"
    ACTIVE = "active"
    FAILED = "failed"
    DELETING = "deleting"


class Encryption(StrEnum):
    """Bucket encryption mode, stored with the values the dashboard has always written."""

    NONE = "none"
    SERVER_SIDE = "s3"
    MANAGED_KEY = "kms"


class SyncAction(StrEnum):
    """Corrective action recommended for a drifted bucket record."""

    UPDATE_TO_ACTIVE = "update-to-active"
    UPDATE_TO_FAILED = "update-to-failed"
    UPDATE_TO_PENDING = "update-to-pending"
    CLEANUP = "cleanup"
    ROLLBACK = "rollback"
    NONE = "none"


class StepStatus(StrEnum):
    """Status of a single teardown step."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class EventLevel(StrEnum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"
    COMMAND = "command"


class EventType(StrEnum):
    LOG = "log"
    RESULT = "result"
    ERROR_INTELLIGENCE = "error-intelligence"


class ResultStatus(StrEnum):
    OK = "ok"
    ERROR = "error"


class DeployAction(StrEnum):
    SYNTH = "synth"
    DEPLOY = "deploy"


def utc_now() -> str:
    """ISO-8601 timestamp used for record bookkeeping."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class BucketConfig:
    """Desired bucket configuration captured at creation time."""

    versioning: bool = False
    encryption: Encryption = Encryption.SERVER_SIDE
    backup_enabled: bool = False
    max_file_size_mb: float = 100

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BucketConfig":
        return cls(
            versioning=bool(data.get("versioning", False)),
            encryption=Encryption(data.get("encryption", Encryption.SERVER_SIDE)),
            backup_enabled=bool(data.get("backupEnabled", False)),
            max_file_size_mb=data.get("maxFileSizeMB", 100),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "versioning": self.versioning,
            "encryption": self.encryption.value,
            "backupEnabled": self.backup_enabled,
            "maxFileSizeMB": self.max_file_size_mb,
        }


@dataclass
class DeletionStep:
    """One unit of the bucket teardown plan."""

    id: str
    label: str
    status: StepStatus = StepStatus.PENDING
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeletionStep":
        return cls(
            id=data["id"],
            label=data.get("label", data["id"]),
            status=StepStatus(data.get("status", StepStatus.PENDING)),
            error=data.get("error"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "label": self.label, "status": self.status.value}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class BucketRecord:
    """A persisted storage bucket + CDN distribution pair.

    The persisted JSON layout uses camelCase keys; ``from_dict``/``to_dict``
    translate between that layout and this dataclass. ``teardown`` holds the
    step list of the most recent teardown attempt so that a record left in
    ``deleting`` can be resumed after a restart.
    """

    id: str
    project_id: str
    name: str
    s3_bucket_name: str
    region: str
    status: BucketStatus = BucketStatus.PENDING
    s3_bucket_arn: str = ""
    cloudfront_domain: str = ""
    cloudfront_distribution_id: str = ""
    config: BucketConfig = field(default_factory=BucketConfig)
    created_at: str = ""
    updated_at: str = ""
    teardown: list[DeletionStep] = field(default_factory=list)

    @classmethod
    def new(
        cls,
        project_id: str,
        name: str,
        region: str,
        config: BucketConfig | None = None,
    ) -> "BucketRecord":
        """Create a pending record with a fresh id and a unique S3 bucket name."""
        now = utc_now()
        return cls(
            id=str(uuid.uuid4()),
            project_id=project_id,
            name=name,
            s3_bucket_name=f"scr-{name}-{int(time.time() * 1000)}",
            region=region,
            config=config or BucketConfig(),
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BucketRecord":
        return cls(
            id=data["id"],
            project_id=data.get("projectId", ""),
            name=data.get("name", ""),
            s3_bucket_name=data.get("s3BucketName", ""),
            region=data.get("region", ""),
            status=BucketStatus(data.get("status", BucketStatus.PENDING)),
            s3_bucket_arn=data.get("s3BucketArn", ""),
            cloudfront_domain=data.get("cloudFrontDomain", ""),
            cloudfront_distribution_id=data.get("cloudFrontDistributionId", ""),
            config=BucketConfig.from_dict(data.get("config") or {}),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            teardown=[DeletionStep.from_dict(s) for s in data.get("teardown") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "s3BucketName": self.s3_bucket_name,
            "s3BucketArn": self.s3_bucket_arn,
            "cloudFrontDomain": self.cloudfront_domain,
            "cloudFrontDistributionId": self.cloudfront_distribution_id,
            "region": self.region,
            "status": self.status.value,
            "config": self.config.to_dict(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.teardown:
            data["teardown"] = [s.to_dict() for s in self.teardown]
        return data


@dataclass(frozen=True)
class StackResource:
    """A single resource owned by a provisioning stack."""

    logical_id: str
    physical_id: str
    resource_type: str
    status: str
    status_reason: str | None
    last_updated: datetime | None


@dataclass(frozen=True)
class StackStatus:
    """Live snapshot of a provisioning stack."""

    stack_name: str
    stack_status: str
    stack_status_reason: str | None
    creation_time: datetime | None
    last_updated_time: datetime | None
    outputs: dict[str, str]
    resources: list[StackResource]

    @property
    def is_complete(self) -> bool:
        return self.stack_status in ("CREATE_COMPLETE", "UPDATE_COMPLETE")

    @property
    def is_failed(self) -> bool:
        return "FAILED" in self.stack_status or "ROLLBACK" in self.stack_status

    @property
    def is_in_progress(self) -> bool:
        return "IN_PROGRESS" in self.stack_status


@dataclass(frozen=True)
class BucketSyncStatus:
    """Comparison of a local bucket record against live AWS state."""

    bucket_id: str
    bucket_name: str
    s3_bucket_name: str
    local_status: BucketStatus
    stack_exists: bool
    s3_bucket_exists: bool
    needs_sync: bool
    recommended_action: SyncAction
    stack_status: str | None = None
    stack_status_reason: str | None = None
    cloudfront_domain: str | None = None
    cloudfront_distribution_id: str | None = None
    resources: list[StackResource] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class SyncUpdate:
    """Record change computed for an applied sync action.

    ``delete`` means the local record should be removed; otherwise ``fields``
    holds the camelCase attributes to merge into the persisted record.
    """

    bucket_id: str
    action: SyncAction
    fields: dict[str, Any] = field(default_factory=dict)
    delete: bool = False


@dataclass(frozen=True)
class CostBreakdown:
    """Monthly cost components for one bucket, in USD."""

    s3_storage: float
    s3_put_requests: float
    s3_get_requests: float
    s3_delete_requests: float
    s3_list_requests: float
    s3_data_transfer: float
    cf_data_transfer: float
    cf_requests: float
    total: float


@dataclass(frozen=True)
class DeploymentEvent:
    """One line of the deployment event stream."""

    message: str
    level: EventLevel = EventLevel.INFO
    status: ResultStatus | None = None
    type: EventType | None = None
    title: str | None = None
    suggestion: str | None = None
    command: str | None = None

    @property
    def is_failure_result(self) -> bool:
        return self.type == EventType.RESULT and self.status == ResultStatus.ERROR


@dataclass(frozen=True)
class DeployRequest:
    """Caller request to synth or deploy the CDK app."""

    action: DeployAction
    bucket_id: str | None = None
    s3_bucket_name: str | None = None
    region: str | None = None

    def validate(self) -> None:
        if self.action == DeployAction.DEPLOY and not (self.s3_bucket_name and self.region):
            raise ValueError("deploy requires s3_bucket_name and region")


@dataclass(frozen=True)
class DeploymentResult:
    """Outcome of a synth or deploy run."""

    success: bool
    last_error_message: str | None = None
    exit_code: int | None = None
    cancelled: bool = False
    outputs: dict[str, str] = field(default_factory=dict)
