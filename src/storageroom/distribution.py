"""State machine that disables, waits out and deletes a CloudFront distribution.

CloudFront refuses to delete a distribution that is enabled or still
propagating a change, and every mutation must carry the latest ETag. The
machine therefore moves through::

    enabled -> disabling -> waiting-deployed -> deleting -> deleted

with ``failed`` reachable from any state. Each call to ``step`` performs one
transition so the exhausted-polling case is an explicit state rather than a
loop exit.
"""

import logging
import time
from enum import StrEnum

from storageroom.errors import ErrorKind, ResourceError

logger = logging.getLogger(__name__)

DEPLOYED = "Deployed"


class DistributionState(StrEnum):
    ENABLED = "enabled"
    DISABLING = "disabling"
    WAITING_DEPLOYED = "waiting-deployed"
    DELETING = "deleting"
    DELETED = "deleted"
    FAILED = "failed"


TERMINAL_STATES = {DistributionState.DELETED, DistributionState.FAILED}


class DistributionTeardown:
    """Drives one distribution from enabled to deleted.

    ``gateway`` must provide ``get_distribution_config``,
    ``disable_distribution``, ``get_distribution_status`` and
    ``delete_distribution`` (see CloudGateway).
    """

    def __init__(
        self,
        gateway,
        distribution_id: str,
        poll_interval: float = 10.0,
        max_poll_attempts: int = 60,
        max_conflict_retries: int = 3,
    ):
        self._gateway = gateway
        self.distribution_id = distribution_id
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._max_conflict_retries = max_conflict_retries

        self.state = DistributionState.ENABLED
        self.poll_attempts = 0
        self.conflicts = 0
        self.delete_issued = False
        self.error: ResourceError | None = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def run(self) -> DistributionState:
        """Step until the machine reaches ``deleted`` or ``failed``."""
        while not self.done:
            self.step()
        return self.state

    def step(self) -> DistributionState:
        """Perform a single transition and return the new state."""
        handlers = {
            DistributionState.ENABLED: self._start,
            DistributionState.DISABLING: self._disable,
            DistributionState.WAITING_DEPLOYED: self._poll,
            DistributionState.DELETING: self._delete,
        }
        handler = handlers.get(self.state)
        if handler is None:
            return self.state

        try:
            handler()
        except ResourceError as e:
            self._handle_error(e)
        return self.state

    def _transition(self, state: DistributionState) -> None:
        logger.debug("Distribution %s: %s -> %s", self.distribution_id, self.state, state)
        self.state = state

    def _fail(self, error: ResourceError) -> None:
        self.error = error
        logger.warning("Distribution %s teardown failed: %s", self.distribution_id, error)
        self._transition(DistributionState.FAILED)

    def _handle_error(self, error: ResourceError) -> None:
        if error.kind == ErrorKind.NOT_FOUND:
            logger.info("Distribution %s no longer exists", self.distribution_id)
            self._transition(DistributionState.DELETED)
        elif error.kind == ErrorKind.CONFLICT and self.state in (
            DistributionState.DISABLING,
            DistributionState.DELETING,
        ):
            # Stale ETag: the next step re-fetches the config before mutating again.
            self.conflicts += 1
            if self.conflicts > self._max_conflict_retries:
                self._fail(error)
            else:
                logger.info(
                    "Distribution %s changed concurrently, retrying (%d/%d)",
                    self.distribution_id,
                    self.conflicts,
                    self._max_conflict_retries,
                )
        elif error.kind in (ErrorKind.TRANSIENT, ErrorKind.TIMEOUT) and (
            self.state == DistributionState.WAITING_DEPLOYED
        ):
            logger.warning("Status read for %s failed: %s", self.distribution_id, error)
            self._after_unsuccessful_poll()
        else:
            self._fail(error)

    def _start(self) -> None:
        self._transition(DistributionState.DISABLING)

    def _disable(self) -> None:
        current = self._gateway.get_distribution_config(self.distribution_id)
        if current.enabled:
            self._gateway.disable_distribution(self.distribution_id, current)
            logger.info("Disable submitted for distribution %s", self.distribution_id)
        self.conflicts = 0
        self._transition(DistributionState.WAITING_DEPLOYED)

    def _poll(self) -> None:
        self.poll_attempts += 1
        status = self._gateway.get_distribution_status(self.distribution_id)
        if status == DEPLOYED:
            self._transition(DistributionState.DELETING)
            return
        self._after_unsuccessful_poll()

    def _after_unsuccessful_poll(self) -> None:
        if self.poll_attempts >= self._max_poll_attempts:
            self._fail(
                ResourceError(
                    ErrorKind.TIMEOUT,
                    f"distribution/{self.distribution_id}",
                    f"did not reach {DEPLOYED} state after {self.poll_attempts} status checks",
                )
            )
            return
        if self._poll_interval > 0:
            time.sleep(self._poll_interval)

    def _delete(self) -> None:
        # ETags seen while polling may be stale; fetch right before deleting.
        latest = self._gateway.get_distribution_config(self.distribution_id)
        self.delete_issued = True
        self._gateway.delete_distribution(self.distribution_id, latest.etag)
        logger.info("Deleted distribution %s", self.distribution_id)
        self._transition(DistributionState.DELETED)
