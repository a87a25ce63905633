"""Tests for storageroom data models."""

import re

import pytest

from storageroom.models import (
    BucketConfig,
    BucketRecord,
    BucketStatus,
    DeletionStep,
    DeployAction,
    DeploymentEvent,
    DeployRequest,
    Encryption,
    EventType,
    ResultStatus,
    StepStatus,
    SyncAction,
)
from tests.conftest import make_stack


def test_sync_action_values():
    """SyncAction values are the strings accepted on the command line."""
    assert SyncAction.UPDATE_TO_ACTIVE.value == "update-to-active"
    assert SyncAction.UPDATE_TO_FAILED.value == "update-to-failed"
    assert SyncAction.UPDATE_TO_PENDING.value == "update-to-pending"
    assert SyncAction.CLEANUP.value == "cleanup"
    assert SyncAction.NONE.value == "none"


def test_enums_are_string_enums():
    assert isinstance(BucketStatus.ACTIVE, str)
    assert isinstance(StepStatus.DONE, str)
    assert isinstance(EventType.ERROR_INTELLIGENCE, str)


def test_new_record_is_pending_with_unique_bucket_name():
    record = BucketRecord.new("p-1", "photos", "eu-west-1")

    assert record.status == BucketStatus.PENDING
    assert re.fullmatch(r"scr-photos-\d+", record.s3_bucket_name)
    assert record.created_at == record.updated_at
    assert record.created_at.endswith("Z")
    assert record.cloudfront_domain == ""


def test_record_round_trips_persisted_layout():
    data = {
        "id": "b-1",
        "projectId": "p-1",
        "name": "photos",
        "s3BucketName": "scr-photos-1",
        "s3BucketArn": "arn:aws:s3:::scr-photos-1",
        "cloudFrontDomain": "d111.cloudfront.net",
        "cloudFrontDistributionId": "E111",
        "region": "us-east-1",
        "status": "active",
        "config": {
            "versioning": True,
            "encryption": "kms",
            "backupEnabled": False,
            "maxFileSizeMB": 50,
        },
        "createdAt": "2026-01-01T00:00:00Z",
        "updatedAt": "2026-01-02T00:00:00Z",
    }

    record = BucketRecord.from_dict(data)

    assert record.status == BucketStatus.ACTIVE
    assert record.config.encryption == Encryption.MANAGED_KEY
    assert record.config.versioning is True
    assert record.to_dict() == data


def test_record_from_dict_fills_defaults():
    record = BucketRecord.from_dict({"id": "b-2"})

    assert record.status == BucketStatus.PENDING
    assert record.config == BucketConfig()
    assert record.teardown == []


def test_record_keeps_teardown_steps():
    data = {
        "id": "b-1",
        "status": "deleting",
        "teardown": [
            {"id": "cloudfront", "label": "Remove CloudFront distribution", "status": "done"},
            {"id": "files", "label": "Delete all files from S3", "status": "error", "error": "x"},
        ],
    }

    record = BucketRecord.from_dict(data)

    assert record.teardown[0].status == StepStatus.DONE
    assert record.teardown[1] == DeletionStep(
        "files", "Delete all files from S3", StepStatus.ERROR, "x"
    )
    assert record.to_dict()["teardown"] == data["teardown"]


@pytest.mark.parametrize(
    "status, complete, failed, in_progress",
    [
        ("CREATE_COMPLETE", True, False, False),
        ("UPDATE_COMPLETE", True, False, False),
        ("CREATE_IN_PROGRESS", False, False, True),
        ("UPDATE_ROLLBACK_IN_PROGRESS", False, True, True),
        ("ROLLBACK_COMPLETE", False, True, False),
        ("CREATE_FAILED", False, True, False),
    ],
)
def test_stack_status_flags(status, complete, failed, in_progress):
    stack = make_stack(status)

    assert stack.is_complete is complete
    assert stack.is_failed is failed
    assert stack.is_in_progress is in_progress


def test_failure_result_event():
    event = DeploymentEvent("boom", type=EventType.RESULT, status=ResultStatus.ERROR)

    assert event.is_failure_result
    assert not DeploymentEvent("boom", status=ResultStatus.ERROR).is_failure_result


def test_deploy_request_requires_bucket_and_region():
    with pytest.raises(ValueError):
        DeployRequest(DeployAction.DEPLOY, bucket_id="b-1").validate()

    DeployRequest(DeployAction.SYNTH).validate()
    DeployRequest(DeployAction.DEPLOY, "b-1", "scr-photos-1", "us-east-1").validate()
