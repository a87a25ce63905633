"""Tests for the CLI entrypoint."""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from storageroom.aws.client import DistributionSummary
from storageroom.cli import main
from storageroom.errors import ErrorKind, ResourceError
from storageroom.models import (
    BucketStatus,
    DeletionStep,
    DeploymentResult,
    StepStatus,
    SyncAction,
    SyncUpdate,
)
from storageroom.store import BUCKETS, FILES, RecordStore
from storageroom.teardown import TeardownResult
from tests.conftest import make_record, make_stack


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    store = RecordStore(tmp_path)
    store.append(BUCKETS, make_record(BucketStatus.PENDING).to_dict())
    return tmp_path


def _invoke(runner, data_dir, args, **kwargs):
    return runner.invoke(main, ["--data-dir", str(data_dir), *args], **kwargs)


def _stored(data_dir):
    return RecordStore(data_dir).bucket("b-1")


@patch("storageroom.cli.CloudGateway")
def test_check_status_json(mock_gateway_cls, runner, data_dir):
    gateway = mock_gateway_cls.return_value
    gateway.describe_stack.return_value = make_stack("CREATE_COMPLETE")
    gateway.bucket_exists.return_value = True

    result = _invoke(runner, data_dir, ["check-status", "b-1", "--format", "json"])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["buckets"][0]["recommended_action"] == "update-to-active"


def test_check_status_unknown_bucket(runner, data_dir):
    result = _invoke(runner, data_dir, ["check-status", "nope"])

    assert result.exit_code == 1
    assert "No bucket with id nope" in result.output


@patch("storageroom.cli.CloudGateway")
def test_check_status_aws_error(mock_gateway_cls, runner, data_dir):
    mock_gateway_cls.return_value.describe_stack.side_effect = ResourceError(
        ErrorKind.PERMISSION_DENIED, "stack/SCR-scr-photos-1", "AccessDenied"
    )

    result = _invoke(runner, data_dir, ["check-status", "b-1"])

    assert result.exit_code == 1
    assert "permission-denied" in result.output


@patch("storageroom.cli.CloudGateway")
def test_sync_all_out_of_sync_exit_1(mock_gateway_cls, runner, data_dir):
    gateway = mock_gateway_cls.return_value
    gateway.describe_stack.return_value = make_stack()
    gateway.bucket_exists.return_value = True

    result = _invoke(runner, data_dir, ["sync-all"])

    assert result.exit_code == 1
    assert "update-to-active" in result.output
    assert _stored(data_dir).status == BucketStatus.PENDING


@patch("storageroom.cli.CloudGateway")
def test_sync_all_in_sync_exit_0(mock_gateway_cls, runner, tmp_path):
    RecordStore(tmp_path).append(BUCKETS, make_record().to_dict())
    gateway = mock_gateway_cls.return_value
    gateway.describe_stack.return_value = make_stack()
    gateway.bucket_exists.return_value = True

    result = _invoke(runner, tmp_path, ["sync-all"])

    assert result.exit_code == 0


@patch("storageroom.cli.CloudGateway")
def test_sync_all_apply_persists(mock_gateway_cls, runner, data_dir):
    gateway = mock_gateway_cls.return_value
    gateway.describe_stack.return_value = make_stack()
    gateway.bucket_exists.return_value = True

    result = _invoke(runner, data_dir, ["sync-all", "--apply"])

    assert result.exit_code == 0
    assert "applied update-to-active" in result.output
    stored = _stored(data_dir)
    assert stored.status == BucketStatus.ACTIVE
    assert stored.cloudfront_domain == "d111.cloudfront.net"


@patch("storageroom.cli.Reconciler")
@patch("storageroom.cli.CloudGateway")
def test_apply_sync_cleanup_removes_record(mock_gateway_cls, mock_reconciler_cls, runner, data_dir):
    mock_reconciler_cls.return_value.apply.return_value = SyncUpdate(
        "b-1", SyncAction.CLEANUP, delete=True
    )

    result = _invoke(runner, data_dir, ["apply-sync", "b-1", "cleanup"])

    assert result.exit_code == 0
    assert RecordStore(data_dir).buckets() == []


@patch("storageroom.cli.CloudGateway")
def test_apply_sync_update_to_failed(mock_gateway_cls, runner, data_dir):
    result = _invoke(runner, data_dir, ["apply-sync", "b-1", "update-to-failed"])

    assert result.exit_code == 0
    assert "photos is now failed" in result.output
    assert _stored(data_dir).status == BucketStatus.FAILED


def test_apply_sync_rejects_unknown_action(runner, data_dir):
    result = _invoke(runner, data_dir, ["apply-sync", "b-1", "explode"])
    assert result.exit_code == 2


@patch("storageroom.cli.Deployer")
def test_deploy_success_records_outputs(mock_deployer_cls, runner, data_dir):
    mock_deployer_cls.return_value.run.return_value = DeploymentResult(
        success=True,
        exit_code=0,
        outputs={"CloudFrontDomain": "d999.cloudfront.net", "DistributionId": "E999"},
    )

    result = _invoke(runner, data_dir, ["deploy", "b-1"])

    assert result.exit_code == 0
    stored = _stored(data_dir)
    assert stored.status == BucketStatus.ACTIVE
    assert stored.cloudfront_domain == "d999.cloudfront.net"
    assert stored.cloudfront_distribution_id == "E999"
    request = mock_deployer_cls.return_value.run.call_args.args[0]
    assert request.s3_bucket_name == "scr-photos-1"


@patch("storageroom.cli.Deployer")
def test_deploy_failure_marks_failed(mock_deployer_cls, runner, data_dir):
    mock_deployer_cls.return_value.run.return_value = DeploymentResult(
        success=False, exit_code=1, last_error_message="deploy failed with exit code 1"
    )

    result = _invoke(runner, data_dir, ["deploy", "b-1"])

    assert result.exit_code == 1
    assert _stored(data_dir).status == BucketStatus.FAILED


@patch("storageroom.cli.Deployer")
def test_deploy_invalid_request_leaves_status(mock_deployer_cls, runner, tmp_path):
    RecordStore(tmp_path).append(BUCKETS, make_record(BucketStatus.PENDING, region="").to_dict())

    result = _invoke(runner, tmp_path, ["deploy", "b-1"])

    assert result.exit_code == 1
    assert "Cannot deploy photos" in result.output
    assert _stored(tmp_path).status == BucketStatus.PENDING
    mock_deployer_cls.return_value.run.assert_not_called()


@patch("storageroom.cli.Deployer")
def test_deploy_interrupted_marks_failed(mock_deployer_cls, runner, data_dir):
    mock_deployer_cls.return_value.run.side_effect = KeyboardInterrupt

    result = _invoke(runner, data_dir, ["deploy", "b-1"])

    assert result.exit_code == 1
    assert _stored(data_dir).status == BucketStatus.FAILED


@patch("storageroom.cli.Deployer")
def test_synth_exit_code(mock_deployer_cls, runner, data_dir):
    mock_deployer_cls.return_value.run.return_value = DeploymentResult(success=True, exit_code=0)
    assert _invoke(runner, data_dir, ["synth"]).exit_code == 0

    mock_deployer_cls.return_value.run.return_value = DeploymentResult(success=False, exit_code=1)
    assert _invoke(runner, data_dir, ["synth"]).exit_code == 1


@patch("storageroom.cli.TeardownWorkflow")
@patch("storageroom.cli.CloudGateway")
def test_teardown_success_removes_record(mock_gateway_cls, mock_workflow_cls, runner, data_dir):
    RecordStore(data_dir).append(FILES, {"bucketName": "scr-photos-1", "key": "a.jpg"})
    steps = [DeletionStep("cloudfront", "Remove CloudFront distribution", StepStatus.DONE)]
    mock_workflow_cls.return_value.run.return_value = TeardownResult("b-1", steps, 3)

    result = _invoke(runner, data_dir, ["teardown", "b-1", "--yes"])

    assert result.exit_code == 0
    assert "3 object(s) removed" in result.output
    assert RecordStore(data_dir).buckets() == []
    assert RecordStore(data_dir).read(FILES) == []


@patch("storageroom.cli.CloudGateway")
def test_teardown_failure_keeps_progress(mock_gateway_cls, runner, data_dir):
    gateway = mock_gateway_cls.return_value
    gateway.empty_bucket.side_effect = ResourceError(
        ErrorKind.PERMISSION_DENIED, "bucket/scr-photos-1", "AccessDenied"
    )

    result = _invoke(runner, data_dir, ["teardown", "b-1", "--yes"])

    assert result.exit_code == 1
    stored = _stored(data_dir)
    assert stored.status == BucketStatus.FAILED
    assert [s.status for s in stored.teardown] == [
        StepStatus.DONE,
        StepStatus.ERROR,
        StepStatus.PENDING,
        StepStatus.PENDING,
    ]


@patch("storageroom.cli.TeardownWorkflow")
@patch("storageroom.cli.CloudGateway")
def test_teardown_interrupted_reverts_to_failed(
    mock_gateway_cls, mock_workflow_cls, runner, data_dir
):
    def interrupted_run(record):
        on_step = mock_workflow_cls.call_args.kwargs["on_step"]
        on_step(
            [
                DeletionStep("cloudfront", "Remove CloudFront distribution", StepStatus.DONE),
                DeletionStep("files", "Delete all files from S3", StepStatus.RUNNING),
            ]
        )
        raise KeyboardInterrupt

    mock_workflow_cls.return_value.run.side_effect = interrupted_run

    result = _invoke(runner, data_dir, ["teardown", "b-1", "--yes"])

    assert result.exit_code == 1
    stored = _stored(data_dir)
    assert stored.status == BucketStatus.FAILED
    assert [s.status for s in stored.teardown] == [StepStatus.DONE, StepStatus.RUNNING]


def test_teardown_requires_confirmation(runner, data_dir):
    result = _invoke(runner, data_dir, ["teardown", "b-1"], input="n\n")

    assert result.exit_code == 1
    assert _stored(data_dir).status == BucketStatus.PENDING


@patch("storageroom.cli.CloudGateway")
def test_cost_json(mock_gateway_cls, runner, tmp_path):
    RecordStore(tmp_path).append(BUCKETS, make_record().to_dict())
    obj = MagicMock(size=1024**3)
    mock_gateway_cls.return_value.list_objects.return_value = iter([obj, obj])

    result = _invoke(runner, tmp_path, ["cost", "--format", "json"])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["buckets"]["photos"]["s3_storage"] == 0.046
    assert data["total"]["total"] == data["buckets"]["photos"]["total"]


def test_diagnose_from_stdin(runner, data_dir):
    result = _invoke(
        runner,
        data_dir,
        ["diagnose", "--format", "json"],
        input="Is account 123456789012 bootstrapped? aws://123456789012/us-east-1",
    )

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["rule"] == "bootstrap-required"
    assert data["fix_commands"][0]["command"] == "npx cdk bootstrap aws://123456789012/us-east-1"


@patch("storageroom.cli.CloudGateway")
def test_distributions_json_links_bucket(mock_gateway_cls, runner, tmp_path):
    RecordStore(tmp_path).append(BUCKETS, make_record().to_dict())
    mock_gateway_cls.return_value.list_distributions.return_value = [
        DistributionSummary("E111", "d111.cloudfront.net", "Deployed", True, [], "", None, [], "")
    ]

    result = _invoke(runner, tmp_path, ["distributions", "--format", "json"])

    assert result.exit_code == 0
    assert json.loads(result.output)[0]["bucket_id"] == "b-1"


def test_buckets_create_and_list(runner, tmp_path):
    result = _invoke(
        runner, tmp_path, ["--region", "eu-west-1", "buckets", "create", "docs", "--project", "p-9"]
    )
    assert result.exit_code == 0
    bucket_id = result.output.strip()

    listing = _invoke(runner, tmp_path, ["buckets", "list", "--format", "json"])
    records = json.loads(listing.output)

    assert records[0]["id"] == bucket_id
    assert records[0]["region"] == "eu-west-1"
    assert records[0]["status"] == "pending"
    assert records[0]["projectId"] == "p-9"
