"""Compares local bucket records with live AWS state and recommends corrections."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from storageroom.errors import ResourceError
from storageroom.models import (
    BucketRecord,
    BucketStatus,
    BucketSyncStatus,
    StackStatus,
    SyncAction,
    SyncUpdate,
    utc_now,
)

logger = logging.getLogger(__name__)

OUTPUT_BUCKET_ARN = "BucketArn"
OUTPUT_CDN_DOMAIN = "CloudFrontDomain"
OUTPUT_DISTRIBUTION_ID = "DistributionId"


def recommend_action(
    record: BucketRecord,
    stack: StackStatus | None,
    bucket_exists: bool,
) -> SyncAction:
    """Decision table for the corrective action, evaluated top to bottom."""
    local = record.status

    if local in (BucketStatus.PENDING, BucketStatus.DEPLOYING):
        if stack is not None and stack.is_complete and bucket_exists:
            return SyncAction.UPDATE_TO_ACTIVE
        if stack is None or stack.is_failed:
            return SyncAction.UPDATE_TO_FAILED
        return SyncAction.NONE

    if local == BucketStatus.ACTIVE:
        if stack is None:
            return SyncAction.CLEANUP
        if stack.is_failed:
            return SyncAction.UPDATE_TO_FAILED
        if stack.is_complete and bucket_exists and _cdn_drifted(record, stack):
            return SyncAction.UPDATE_TO_ACTIVE
        return SyncAction.NONE

    if local == BucketStatus.FAILED:
        if stack is not None and stack.is_complete and bucket_exists:
            return SyncAction.UPDATE_TO_ACTIVE

    # Rollbacks count as failures above, so only plain in-progress stacks land here.
    return SyncAction.NONE


def _cdn_drifted(record: BucketRecord, stack: StackStatus) -> bool:
    live_domain = stack.outputs.get(OUTPUT_CDN_DOMAIN)
    live_id = stack.outputs.get(OUTPUT_DISTRIBUTION_ID)
    return bool(
        (live_domain and live_domain != record.cloudfront_domain)
        or (live_id and live_id != record.cloudfront_distribution_id)
    )


class Reconciler:
    """Computes sync status for bucket records.

    Results are computed fresh on every call; nothing is cached between
    checks. The reconciler never writes the record store: ``apply`` returns a
    SyncUpdate for the caller to persist.
    """

    def __init__(self, gateway, max_concurrent: int = 5):
        self._gateway = gateway
        self._max_concurrent = max_concurrent

    def check(self, record: BucketRecord) -> BucketSyncStatus:
        """Cross-reference one record against its stack and bucket."""
        stack = self._gateway.describe_stack(record.s3_bucket_name, region=record.region)
        bucket_exists = self._gateway.bucket_exists(record.s3_bucket_name, region=record.region)
        action = recommend_action(record, stack, bucket_exists)

        return BucketSyncStatus(
            bucket_id=record.id,
            bucket_name=record.name,
            s3_bucket_name=record.s3_bucket_name,
            local_status=record.status,
            stack_exists=stack is not None,
            s3_bucket_exists=bucket_exists,
            needs_sync=action != SyncAction.NONE,
            recommended_action=action,
            stack_status=stack.stack_status if stack else None,
            stack_status_reason=stack.stack_status_reason if stack else None,
            cloudfront_domain=stack.outputs.get(OUTPUT_CDN_DOMAIN) if stack else None,
            cloudfront_distribution_id=stack.outputs.get(OUTPUT_DISTRIBUTION_ID) if stack else None,
            resources=list(stack.resources) if stack else [],
        )

    def check_all(self, records: list[BucketRecord]) -> list[BucketSyncStatus]:
        """Check every record concurrently. Output order follows ``records``.

        A record whose live query fails is reported with ``error`` set and
        ``needs_sync`` false instead of aborting the whole run.
        """
        if not records:
            return []

        results: dict[str, BucketSyncStatus] = {}
        with ThreadPoolExecutor(max_workers=self._max_concurrent) as executor:
            futures = {executor.submit(self.check, r): r for r in records}
            for future in as_completed(futures):
                record = futures[future]
                try:
                    results[record.id] = future.result()
                except Exception as e:
                    logger.exception("Failed to check sync status for %s", record.id)
                    results[record.id] = BucketSyncStatus(
                        bucket_id=record.id,
                        bucket_name=record.name,
                        s3_bucket_name=record.s3_bucket_name,
                        local_status=record.status,
                        stack_exists=False,
                        s3_bucket_exists=False,
                        needs_sync=False,
                        recommended_action=SyncAction.NONE,
                        error=str(e),
                    )

        return [results[r.id] for r in records]

    def apply(self, record: BucketRecord, action: SyncAction) -> SyncUpdate:
        """Compute the record change for ``action``.

        ``update-to-active`` reads the live stack outputs; ``rollback`` deletes
        the stack before resetting the record to pending.
        """
        now = utc_now()

        if action == SyncAction.UPDATE_TO_ACTIVE:
            stack = self._gateway.describe_stack(record.s3_bucket_name, region=record.region)
            outputs = stack.outputs if stack else {}
            fields = {
                "status": BucketStatus.ACTIVE.value,
                "s3BucketArn": outputs.get(OUTPUT_BUCKET_ARN) or record.s3_bucket_arn,
                "cloudFrontDomain": outputs.get(OUTPUT_CDN_DOMAIN) or record.cloudfront_domain,
                "cloudFrontDistributionId": (
                    outputs.get(OUTPUT_DISTRIBUTION_ID) or record.cloudfront_distribution_id
                ),
                "updatedAt": now,
            }
            return SyncUpdate(record.id, action, fields)

        if action == SyncAction.UPDATE_TO_FAILED:
            return SyncUpdate(
                record.id, action, {"status": BucketStatus.FAILED.value, "updatedAt": now}
            )

        if action == SyncAction.ROLLBACK:
            try:
                self._gateway.delete_stack(record.s3_bucket_name, region=record.region)
            except ResourceError as e:
                if not e.is_not_found:
                    raise
            return SyncUpdate(record.id, action, _reset_fields(now))

        if action == SyncAction.UPDATE_TO_PENDING:
            return SyncUpdate(record.id, action, _reset_fields(now))

        if action == SyncAction.CLEANUP:
            return SyncUpdate(record.id, action, delete=True)

        return SyncUpdate(record.id, action)


def _reset_fields(now: str) -> dict[str, str]:
    return {
        "status": BucketStatus.PENDING.value,
        "s3BucketArn": "",
        "cloudFrontDomain": "",
        "cloudFrontDistributionId": "",
        "updatedAt": now,
    }
