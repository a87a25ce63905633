"""Typed failures raised by the cloud gateway and the deployment runner."""

from enum import StrEnum

from botocore.exceptions import ClientError, ConnectTimeoutError, ReadTimeoutError


class ErrorKind(StrEnum):
    """Classification of a failed cloud operation."""

    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission-denied"
    TIMEOUT = "timeout"


NOT_FOUND_CODES = {
    "404",
    "NotFound",
    "NoSuchBucket",
    "NoSuchKey",
    "NoSuchDistribution",
    "NoSuchEntity",
}

CONFLICT_CODES = {
    "409",
    "412",
    "PreconditionFailed",
    "InvalidIfMatchVersion",
    "DistributionNotDisabled",
    "BucketNotEmpty",
    "OperationAborted",
    "BucketAlreadyExists",
    "BucketAlreadyOwnedByYou",
    "AlreadyExistsException",
}

PERMISSION_CODES = {
    "403",
    "AccessDenied",
    "AccessDeniedException",
    "AllAccessDisabled",
    "UnauthorizedOperation",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
}

TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "SlowDown",
    "RequestLimitExceeded",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
}


class ResourceError(Exception):
    """A cloud operation failed against a specific resource."""

    def __init__(self, kind: ErrorKind, resource_ref: str, cause: str | BaseException):
        self.kind = kind
        self.resource_ref = resource_ref
        self.cause = cause
        super().__init__(f"{kind.value}: {resource_ref}: {cause}")

    @property
    def is_not_found(self) -> bool:
        return self.kind == ErrorKind.NOT_FOUND


class DeploymentError(Exception):
    """The provisioning subprocess could not be run or its output stream broke.

    ``events`` holds everything read before the failure.
    """

    def __init__(self, message: str, events: list | None = None):
        super().__init__(message)
        self.events = list(events or [])


def _client_error_kind(error: ClientError) -> ErrorKind:
    err = error.response.get("Error", {})
    code = str(err.get("Code", ""))
    message = str(err.get("Message", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    # CloudFormation reports missing stacks as a ValidationError.
    if code in NOT_FOUND_CODES or "does not exist" in message:
        return ErrorKind.NOT_FOUND
    if code in PERMISSION_CODES:
        return ErrorKind.PERMISSION_DENIED
    if code in CONFLICT_CODES:
        return ErrorKind.CONFLICT
    if code in TRANSIENT_CODES:
        return ErrorKind.TRANSIENT
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 403:
        return ErrorKind.PERMISSION_DENIED
    if status is not None and status >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.CONFLICT


def classify_error(error: BaseException) -> ErrorKind:
    """Map a boto3/botocore exception onto an ErrorKind."""
    if isinstance(error, ClientError):
        return _client_error_kind(error)
    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError)):
        return ErrorKind.TIMEOUT
    # Dropped connections and other transport failures are retryable.
    return ErrorKind.TRANSIENT


def wrap_error(error: BaseException, resource_ref: str) -> ResourceError:
    """Build a ResourceError for ``resource_ref`` from a lower-level exception."""
    if isinstance(error, ResourceError):
        return error
    return ResourceError(classify_error(error), resource_ref, error)
