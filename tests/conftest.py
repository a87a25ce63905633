"""Shared test fixtures."""

import boto3
import pytest
from moto import mock_aws

from storageroom.models import BucketRecord, BucketStatus, StackStatus


@pytest.fixture
def aws_credentials(monkeypatch):
    """Set dummy AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_client(aws_credentials):
    """Create a moto-mocked S3 boto3 client."""
    with mock_aws():
        yield boto3.client("s3", region_name="us-east-1")


BUCKET_STACK_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "Bucket": {
            "Type": "AWS::S3::Bucket"
        }
    },
    "Outputs": {
        "BucketArn": {"Value": "arn:aws:s3:::scr-photos-1"},
        "CloudFrontDomain": {"Value": "d111.cloudfront.net"},
        "DistributionId": {"Value": "E111"}
    }
}"""


def make_record(status=BucketStatus.ACTIVE, **kwargs) -> BucketRecord:
    fields = {
        "id": "b-1",
        "project_id": "p-1",
        "name": "photos",
        "s3_bucket_name": "scr-photos-1",
        "region": "us-east-1",
        "status": status,
        "cloudfront_domain": "d111.cloudfront.net",
        "cloudfront_distribution_id": "E111",
    }
    fields.update(kwargs)
    return BucketRecord(**fields)


def make_stack(status="CREATE_COMPLETE", outputs=None, **kwargs) -> StackStatus:
    fields = {
        "stack_name": "SCR-scr-photos-1",
        "stack_status": status,
        "stack_status_reason": None,
        "creation_time": None,
        "last_updated_time": None,
        "outputs": {
            "BucketArn": "arn:aws:s3:::scr-photos-1",
            "CloudFrontDomain": "d111.cloudfront.net",
            "DistributionId": "E111",
        }
        if outputs is None
        else outputs,
        "resources": [],
    }
    fields.update(kwargs)
    return StackStatus(**fields)
