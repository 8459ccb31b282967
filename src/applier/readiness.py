"""CRD readiness gate.

A CustomResourceDefinition is usable only once the API server reports both
the Established and NamesAccepted conditions as True. The gate polls the
CRD status at a fixed interval until that happens, the overall timeout
expires, or the attempt budget is spent.

State machine per CRD:

    submitted -> established
    submitted -> failed       (timeout / attempts exhausted)

The clock is injectable so tests can drive the loop without real waiting.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from applier.clients import ClusterClient
from applier.common import ApplyError, SchemaNotReadyError
from applier.manifest import DecodedResource

logger = logging.getLogger(__name__)

SUBMITTED = 'submitted'
ESTABLISHED = 'established'
FAILED = 'failed'

REQUIRED_CONDITIONS = ('Established', 'NamesAccepted')


class Clock(Protocol):
    """Time source used by the gate."""

    def monotonic(self) -> float:
        """Current monotonic time in seconds."""

    def sleep(self, seconds: float) -> None:
        """Block for `seconds`."""


class SystemClock:
    """Wall-clock implementation of Clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def is_established(conditions: list[dict]) -> bool:
    """True when every required condition reports status 'True'."""
    status = {c.get('type'): c.get('status') for c in conditions or []}
    return all(status.get(t) == 'True' for t in REQUIRED_CONDITIONS)


@dataclass
class SchemaReadiness:
    """Readiness tracking for one CRD.

    Attributes:
        name: CRD name (e.g. samplecustomresources.example.com)
        group: API group the CRD registers
        kind: Kind the CRD registers
        state: submitted, established or failed
        conditions: Last observed status conditions
        polls: Number of status polls performed
        last_error: Error from the most recent failed poll, if any
        reason: Failure reason once failed
    """
    name: str
    group: str
    kind: str
    state: str = SUBMITTED
    conditions: list = field(default_factory=list)
    polls: int = 0
    last_error: Optional[Exception] = None
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (ESTABLISHED, FAILED)

    def establish(self) -> None:
        self.state = ESTABLISHED

    def fail(self, reason: str) -> None:
        self.state = FAILED
        self.reason = reason

    def to_dict(self) -> dict:
        d = {
            'name': self.name,
            'group': self.group,
            'kind': self.kind,
            'state': self.state,
            'polls': self.polls,
        }
        if self.reason is not None:
            d['reason'] = self.reason
        return d


@dataclass
class SchemaGate:
    """Blocks until a submitted CRD is established.

    Attributes:
        client: Cluster client used for status queries
        timeout: Default overall wait in seconds
        interval: Seconds between polls
        clock: Time source (SystemClock outside tests)
        max_attempts: Optional cap on the number of polls
    """
    client: ClusterClient
    timeout: float = 60.0
    interval: float = 0.5
    clock: Clock = field(default_factory=SystemClock)
    max_attempts: Optional[int] = None

    def wait_until_established(self, resource: DecodedResource,
                               timeout: Optional[float] = None) -> SchemaReadiness:
        """Poll the CRD until established.

        Args:
            resource: The (already submitted) CRD document
            timeout: Override for the overall wait

        Returns:
            SchemaReadiness in the established state

        Raises:
            SchemaNotReadyError: On timeout or exhausted attempts, with the
                last observed conditions
        """
        group, kind = resource.defines or ('', resource.kind)
        readiness = SchemaReadiness(name=resource.name, group=group, kind=kind)
        budget = self.timeout if timeout is None else timeout
        deadline = self.clock.monotonic() + budget
        logger.info(f"Waiting for CRD {resource.name} to be established (timeout {budget}s)")

        while True:
            remaining = deadline - self.clock.monotonic()
            readiness.polls += 1
            try:
                readiness.conditions = self.client.schema_conditions(
                    resource.name, timeout=max(remaining, self.interval))
                readiness.last_error = None
            except ApplyError as e:
                readiness.last_error = e
                logger.debug(f"CRD {resource.name} status poll {readiness.polls} failed: {e}")
            else:
                if is_established(readiness.conditions):
                    readiness.establish()
                    logger.info(f"CRD {resource.name} established after {readiness.polls} poll(s)")
                    return readiness
                logger.debug(f"CRD {resource.name} not ready yet, retrying in {self.interval}s...")

            if self.max_attempts is not None and readiness.polls >= self.max_attempts:
                reason = f"gave up after {readiness.polls} attempt(s)"
                break
            if self.clock.monotonic() + self.interval > deadline:
                reason = f"timed out after {budget}s"
                break
            self.clock.sleep(self.interval)

        readiness.fail(reason)
        logger.error(f"CRD {resource.name} not established: {reason}")
        raise SchemaNotReadyError(group, kind, reason, readiness.conditions, readiness.last_error)
