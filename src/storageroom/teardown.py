"""Ordered deletion of a bucket's distribution, contents, bucket and stack."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from storageroom.errors import ResourceError
from storageroom.models import BucketRecord, DeletionStep, StepStatus

logger = logging.getLogger(__name__)

# Later steps depend on the state left by earlier ones, so order is fixed.
TEARDOWN_PLAN: list[tuple[str, str]] = [
    ("cloudfront", "Remove CloudFront distribution"),
    ("files", "Delete all files from S3"),
    ("bucket", "Delete S3 bucket"),
    ("stack", "Delete CloudFormation stack"),
]


@dataclass(frozen=True)
class TeardownResult:
    bucket_id: str
    steps: list[DeletionStep]
    objects_removed: int = 0

    @property
    def succeeded(self) -> bool:
        return all(s.status == StepStatus.DONE for s in self.steps)

    @property
    def failed_step(self) -> DeletionStep | None:
        return next((s for s in self.steps if s.status == StepStatus.ERROR), None)


def plan_steps(previous: list[DeletionStep] | None = None) -> list[DeletionStep]:
    """Fresh step list, keeping ``done`` steps from a previous attempt."""
    done = {s.id for s in previous or [] if s.status == StepStatus.DONE}
    return [
        DeletionStep(
            id=step_id,
            label=label,
            status=StepStatus.DONE if step_id in done else StepStatus.PENDING,
        )
        for step_id, label in TEARDOWN_PLAN
    ]


class TeardownWorkflow:
    """Runs the teardown plan for one bucket record.

    Steps run strictly in sequence. The first failing step is marked ``error``
    and the workflow stops; completed steps are not rolled back and later
    steps stay ``pending``. Resources that are already gone count as deleted,
    so re-running the workflow for the same record is safe.

    The workflow never writes the record store. ``on_step`` is called after
    every step transition with the full step list so the caller can persist
    progress.
    """

    def __init__(
        self,
        gateway,
        poll_interval: float = 10.0,
        max_poll_attempts: int = 60,
        on_step: Callable[[list[DeletionStep]], None] | None = None,
    ):
        self._gateway = gateway
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._on_step = on_step

    def run(self, record: BucketRecord) -> TeardownResult:
        steps = plan_steps(record.teardown)
        actions: dict[str, Callable[[BucketRecord], int | None]] = {
            "cloudfront": self._delete_distribution,
            "files": self._empty_bucket,
            "bucket": self._delete_bucket,
            "stack": self._delete_stack,
        }
        removed = 0

        for step in steps:
            if step.status == StepStatus.DONE:
                logger.debug("Skipping completed step %s for %s", step.id, record.id)
                continue

            step.status = StepStatus.RUNNING
            step.error = None
            self._notify(steps)

            try:
                count = actions[step.id](record)
            except ResourceError as e:
                if not e.is_not_found:
                    step.status = StepStatus.ERROR
                    step.error = str(e)
                    logger.warning("Teardown of %s stopped at %s: %s", record.id, step.id, e)
                    self._notify(steps)
                    break
                logger.info("%s already gone for %s", step.id, record.id)
                count = None

            removed += count or 0
            step.status = StepStatus.DONE
            self._notify(steps)

        return TeardownResult(bucket_id=record.id, steps=steps, objects_removed=removed)

    def _notify(self, steps: list[DeletionStep]) -> None:
        if self._on_step is not None:
            self._on_step([DeletionStep(s.id, s.label, s.status, s.error) for s in steps])

    def _delete_distribution(self, record: BucketRecord) -> None:
        if not record.cloudfront_distribution_id:
            return
        self._gateway.disable_and_delete_distribution(
            record.cloudfront_distribution_id,
            poll_interval=self._poll_interval,
            max_poll_attempts=self._max_poll_attempts,
        )

    def _empty_bucket(self, record: BucketRecord) -> int:
        if not record.s3_bucket_name:
            return 0
        return self._gateway.empty_bucket(record.s3_bucket_name, region=record.region)

    def _delete_bucket(self, record: BucketRecord) -> None:
        if record.s3_bucket_name:
            self._gateway.delete_bucket(record.s3_bucket_name, region=record.region)

    def _delete_stack(self, record: BucketRecord) -> None:
        if record.s3_bucket_name:
            self._gateway.delete_stack(record.s3_bucket_name, region=record.region)
