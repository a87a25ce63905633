"""Thin boto3 wrapper over the stack, bucket and distribution APIs."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from storageroom.distribution import DistributionState, DistributionTeardown
from storageroom.errors import ErrorKind, ResourceError, wrap_error
from storageroom.models import StackResource, StackStatus

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
# CloudFront is global but its API endpoint lives in us-east-1.
CLOUDFRONT_REGION = "us-east-1"
DEFAULT_STACK_PREFIX = "SCR-"
DELETE_BATCH_SIZE = 1000


@dataclass(frozen=True)
class ObjectSummary:
    key: str
    size: int
    last_modified: datetime | None
    etag: str | None
    storage_class: str | None


@dataclass(frozen=True)
class DistributionConfig:
    """Current distribution config with the ETag required to mutate it."""

    config: dict[str, Any]
    etag: str

    @property
    def enabled(self) -> bool:
        return bool(self.config.get("Enabled"))


@dataclass(frozen=True)
class DistributionSummary:
    id: str
    domain_name: str
    status: str
    enabled: bool
    origins: list[str]
    comment: str
    last_modified: datetime | None
    aliases: list[str]
    price_class: str


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a copy-then-delete move.

    The move is not atomic. When the copy succeeded but the delete of the
    source failed, ``duplicated`` is true, the object exists at both keys and
    ``error`` holds the delete failure.
    """

    source_key: str
    destination_key: str
    duplicated: bool = False
    error: ResourceError | None = None


class CloudGateway:
    """Wraps boto3 CloudFormation, S3 and CloudFront calls.

    Every call carries the connect/read timeouts of the botocore config and is
    attempted once; failures surface as ResourceError.
    """

    def __init__(
        self,
        region: str | None = None,
        stack_prefix: str = DEFAULT_STACK_PREFIX,
        connect_timeout: float = 10,
        read_timeout: float = 30,
    ):
        self._region = region or DEFAULT_REGION
        self._stack_prefix = stack_prefix
        self._config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        self._clients: dict[tuple[str, str], Any] = {}

    def _client(self, service: str, region: str | None = None):
        key = (service, region or self._region)
        if key not in self._clients:
            self._clients[key] = boto3.client(service, region_name=key[1], config=self._config)
        return self._clients[key]

    def stack_name(self, s3_bucket_name: str) -> str:
        return f"{self._stack_prefix}{s3_bucket_name}"

    # -- CloudFormation ---------------------------------------------------

    def describe_stack(self, s3_bucket_name: str, region: str | None = None) -> StackStatus | None:
        """Describe the stack that provisions ``s3_bucket_name``. None if absent."""
        stack_name = self.stack_name(s3_bucket_name)
        client = self._client("cloudformation", region)
        try:
            resp = client.describe_stacks(StackName=stack_name)
            stacks = resp.get("Stacks", [])
            if not stacks:
                return None
            stack = stacks[0]
            if stack.get("StackStatus") == "DELETE_COMPLETE":
                return None
            resources_resp = client.describe_stack_resources(StackName=stack_name)
        except (ClientError, BotoCoreError) as e:
            err = wrap_error(e, f"stack/{stack_name}")
            if err.is_not_found:
                return None
            raise err from e

        outputs = {
            o["OutputKey"]: o["OutputValue"]
            for o in stack.get("Outputs", [])
            if o.get("OutputKey") and o.get("OutputValue")
        }
        resources = [
            StackResource(
                logical_id=r.get("LogicalResourceId", ""),
                physical_id=r.get("PhysicalResourceId", ""),
                resource_type=r.get("ResourceType", ""),
                status=r.get("ResourceStatus", ""),
                status_reason=r.get("ResourceStatusReason"),
                last_updated=r.get("Timestamp"),
            )
            for r in resources_resp.get("StackResources", [])
        ]

        return StackStatus(
            stack_name=stack_name,
            stack_status=stack.get("StackStatus", "UNKNOWN"),
            stack_status_reason=stack.get("StackStatusReason"),
            creation_time=stack.get("CreationTime"),
            last_updated_time=stack.get("LastUpdatedTime"),
            outputs=outputs,
            resources=resources,
        )

    def delete_stack(self, s3_bucket_name: str, region: str | None = None) -> None:
        stack_name = self.stack_name(s3_bucket_name)
        try:
            self._client("cloudformation", region).delete_stack(StackName=stack_name)
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"stack/{stack_name}") from e
        logger.info("Requested deletion of stack %s", stack_name)

    # -- S3 ---------------------------------------------------------------

    def bucket_exists(self, bucket: str, region: str | None = None) -> bool:
        try:
            self._client("s3", region).head_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as e:
            err = wrap_error(e, f"bucket/{bucket}")
            if err.is_not_found:
                return False
            raise err from e
        return True

    def list_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        region: str | None = None,
    ) -> Iterator[ObjectSummary]:
        """Yield every object in ``bucket``, following continuation tokens."""
        paginator = self._client("s3", region).get_paginator("list_objects_v2")
        kwargs: dict = {"Bucket": bucket}
        if prefix:
            kwargs["Prefix"] = prefix
        try:
            for page in paginator.paginate(**kwargs):
                for obj in page.get("Contents", []):
                    yield ObjectSummary(
                        key=obj["Key"],
                        size=obj.get("Size", 0),
                        last_modified=obj.get("LastModified"),
                        etag=obj.get("ETag"),
                        storage_class=obj.get("StorageClass"),
                    )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"bucket/{bucket}") from e

    def _delete_batch(self, bucket: str, objects: list[dict], region: str | None) -> None:
        resp = self._client("s3", region).delete_objects(
            Bucket=bucket,
            Delete={"Objects": objects, "Quiet": True},
        )
        errors = resp.get("Errors", [])
        if errors:
            first = errors[0]
            raise ResourceError(
                ErrorKind.PERMISSION_DENIED
                if first.get("Code") == "AccessDenied"
                else ErrorKind.TRANSIENT,
                f"bucket/{bucket}/{first.get('Key', '')}",
                f"{len(errors)} object(s) not deleted: {first.get('Message', first.get('Code'))}",
            )

    def empty_bucket(self, bucket: str, region: str | None = None) -> int:
        """Delete every object, version and delete marker. Returns the number
        of distinct keys that held data.

        Safe to call again after a partial failure: objects already deleted are
        simply absent from the next listing.
        """
        client = self._client("s3", region)
        try:
            versioning = client.get_bucket_versioning(Bucket=bucket).get("Status")
            if versioning:
                removed = self._delete_versions(client, bucket, region)
            else:
                removed = self._delete_current(client, bucket, region)
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"bucket/{bucket}") from e

        logger.info("Removed %d object(s) from %s", removed, bucket)
        return removed

    def _delete_current(self, client, bucket: str, region: str | None) -> int:
        removed = 0
        for page in client.get_paginator("list_objects_v2").paginate(Bucket=bucket):
            keys = [{"Key": o["Key"]} for o in page.get("Contents", [])]
            for i in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[i : i + DELETE_BATCH_SIZE]
                self._delete_batch(bucket, batch, region)
                removed += len(batch)
        return removed

    def _delete_versions(self, client, bucket: str, region: str | None) -> int:
        # Deleting by VersionId never adds delete markers, so one pass empties the bucket.
        keys = set()
        for page in client.get_paginator("list_object_versions").paginate(Bucket=bucket):
            versions = page.get("Versions", [])
            keys.update(v["Key"] for v in versions)
            entries = [
                {"Key": v["Key"], "VersionId": v["VersionId"]}
                for v in versions + page.get("DeleteMarkers", [])
            ]
            for i in range(0, len(entries), DELETE_BATCH_SIZE):
                self._delete_batch(bucket, entries[i : i + DELETE_BATCH_SIZE], region)
        return len(keys)

    def delete_bucket(self, bucket: str, region: str | None = None) -> None:
        try:
            self._client("s3", region).delete_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"bucket/{bucket}") from e

    def create_folder_marker(self, bucket: str, folder_path: str, region: str | None = None) -> str:
        """Create a zero-byte ``folder/`` object and return its key."""
        key = folder_path if folder_path.endswith("/") else f"{folder_path}/"
        try:
            self._client("s3", region).put_object(Bucket=bucket, Key=key, Body=b"")
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"bucket/{bucket}/{key}") from e
        return key

    def move_object(
        self,
        bucket: str,
        source_key: str,
        destination_key: str,
        region: str | None = None,
    ) -> MoveResult:
        """Copy ``source_key`` to ``destination_key`` then delete the source."""
        client = self._client("s3", region)
        try:
            client.copy_object(
                Bucket=bucket,
                CopySource={"Bucket": bucket, "Key": source_key},
                Key=destination_key,
            )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"bucket/{bucket}/{source_key}") from e

        try:
            client.delete_object(Bucket=bucket, Key=source_key)
        except (ClientError, BotoCoreError) as e:
            err = wrap_error(e, f"bucket/{bucket}/{source_key}")
            logger.warning(
                "Copied %s to %s but could not delete the source: %s",
                source_key,
                destination_key,
                err,
            )
            return MoveResult(source_key, destination_key, duplicated=True, error=err)

        return MoveResult(source_key, destination_key)

    # -- CloudFront -------------------------------------------------------

    def get_distribution_config(self, distribution_id: str) -> DistributionConfig:
        try:
            resp = self._client("cloudfront", CLOUDFRONT_REGION).get_distribution_config(
                Id=distribution_id
            )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"distribution/{distribution_id}") from e
        return DistributionConfig(config=resp["DistributionConfig"], etag=resp["ETag"])

    def disable_distribution(self, distribution_id: str, current: DistributionConfig) -> str:
        """Submit ``Enabled=False`` using the ETag of ``current``. Returns the new ETag."""
        config = dict(current.config, Enabled=False)
        try:
            resp = self._client("cloudfront", CLOUDFRONT_REGION).update_distribution(
                Id=distribution_id,
                DistributionConfig=config,
                IfMatch=current.etag,
            )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"distribution/{distribution_id}") from e
        return resp.get("ETag", "")

    def get_distribution_status(self, distribution_id: str) -> str:
        try:
            resp = self._client("cloudfront", CLOUDFRONT_REGION).get_distribution(
                Id=distribution_id
            )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"distribution/{distribution_id}") from e
        return resp["Distribution"]["Status"]

    def delete_distribution(self, distribution_id: str, etag: str) -> None:
        try:
            self._client("cloudfront", CLOUDFRONT_REGION).delete_distribution(
                Id=distribution_id, IfMatch=etag
            )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, f"distribution/{distribution_id}") from e

    def disable_and_delete_distribution(
        self,
        distribution_id: str,
        poll_interval: float = 10.0,
        max_poll_attempts: int = 60,
    ) -> None:
        """Disable, wait for propagation and delete a distribution."""
        machine = DistributionTeardown(
            self,
            distribution_id,
            poll_interval=poll_interval,
            max_poll_attempts=max_poll_attempts,
        )
        if machine.run() == DistributionState.FAILED:
            raise machine.error

    def list_distributions(self) -> list[DistributionSummary]:
        paginator = self._client("cloudfront", CLOUDFRONT_REGION).get_paginator(
            "list_distributions"
        )
        results = []
        try:
            for page in paginator.paginate():
                for dist in page.get("DistributionList", {}).get("Items", []):
                    results.append(
                        DistributionSummary(
                            id=dist.get("Id", ""),
                            domain_name=dist.get("DomainName", ""),
                            status=dist.get("Status", "Unknown"),
                            enabled=dist.get("Enabled", False),
                            origins=[
                                o["DomainName"]
                                for o in dist.get("Origins", {}).get("Items", [])
                                if o.get("DomainName")
                            ],
                            comment=dist.get("Comment", ""),
                            last_modified=dist.get("LastModifiedTime"),
                            aliases=dist.get("Aliases", {}).get("Items", []),
                            price_class=dist.get("PriceClass", "PriceClass_All"),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            raise wrap_error(e, "distributions") from e
        return results
