"""Traffic eligibility of load balancer targets.

A registered target starts ``UNKNOWN``. ``healthy_threshold`` consecutive
passing probes make it ``HEALTHY`` and eligible for traffic, and
``unhealthy_threshold`` consecutive failures make it ``UNHEALTHY``. A target
that stops being eligible is drained for ``deregistration_delay`` seconds
before it is removed.

The load balancer runs the real probes; this module replays the same rules
against explicit timestamps so a policy can be checked before it is deployed.
"""

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional

from docker_image_deployment.logging_config import get_logger
from docker_image_deployment.topology import HealthCheckPolicy

logger = get_logger(__name__)


class TargetState(enum.Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class UnknownTarget(KeyError):
    pass


class DuplicateTarget(KeyError):
    pass


@dataclass(frozen=True)
class ProbeResult:
    at: float
    status_code: Optional[int] = None  # None: no response
    elapsed: float = 0.0


class TargetHealth:
    def __init__(self, target_id: str, policy: HealthCheckPolicy) -> None:
        self.target_id = target_id
        self.policy = policy
        self.state = TargetState.UNKNOWN
        self.consecutive_passes = 0
        self.consecutive_failures = 0
        self.draining_since: Optional[float] = None
        self.deregistered = False

    @property
    def is_eligible(self) -> bool:
        return self.state is TargetState.HEALTHY and not self.deregistered

    @property
    def drain_deadline(self) -> Optional[float]:
        if self.draining_since is None:
            return None
        return self.draining_since + self.policy.deregistration_delay

    def is_draining(self, now: float) -> bool:
        deadline = self.drain_deadline
        return deadline is not None and now < deadline

    def removal_due(self, now: float) -> bool:
        deadline = self.drain_deadline
        return deadline is not None and now >= deadline

    def record(self, passed: bool, at: float) -> TargetState:
        if self.deregistered:
            logger.debug("ignoring probe for deregistered target %s", self.target_id)
            return self.state

        if passed:
            self.consecutive_passes += 1
            self.consecutive_failures = 0
            if (
                self.state is not TargetState.HEALTHY
                and self.consecutive_passes >= self.policy.healthy_threshold
            ):
                self._transition(TargetState.HEALTHY, at)
        else:
            self.consecutive_failures += 1
            self.consecutive_passes = 0
            if (
                self.state is not TargetState.UNHEALTHY
                and self.consecutive_failures >= self.policy.unhealthy_threshold
            ):
                self._transition(TargetState.UNHEALTHY, at)
        return self.state

    def record_probe(self, result: ProbeResult) -> TargetState:
        passed = self.policy.is_passing(result.status_code, result.elapsed)
        return self.record(passed, result.at)

    def deregister(self, at: float) -> None:
        if self.deregistered:
            return
        self.deregistered = True
        if self.draining_since is None:
            self.draining_since = at
        logger.info(
            "target %s deregistered, draining for %ss",
            self.target_id,
            self.policy.deregistration_delay,
        )

    def _transition(self, new_state: TargetState, at: float) -> None:
        previous, self.state = self.state, new_state
        logger.info("target %s: %s -> %s", self.target_id, previous.value, new_state.value)

        if previous is TargetState.HEALTHY:
            self.draining_since = at
            logger.info(
                "target %s is no longer eligible, draining for %ss",
                self.target_id,
                self.policy.deregistration_delay,
            )
        elif new_state is TargetState.HEALTHY and self.draining_since is not None:
            self.draining_since = None
            logger.info("target %s recovered, drain cancelled", self.target_id)


class TargetGroup:
    """The set of targets behind one listener, all probed with the same policy."""

    def __init__(self, policy: HealthCheckPolicy) -> None:
        self.policy = policy
        self._targets: Dict[str, TargetHealth] = {}

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, target_id: str) -> bool:
        return target_id in self._targets

    def __getitem__(self, target_id: str) -> TargetHealth:
        try:
            return self._targets[target_id]
        except KeyError:
            raise UnknownTarget(target_id) from None

    def register(self, target_id: str) -> TargetHealth:
        if target_id in self._targets:
            raise DuplicateTarget(target_id)
        target = TargetHealth(target_id, self.policy)
        self._targets[target_id] = target
        logger.info("registered target %s", target_id)
        return target

    def deregister(self, target_id: str, at: float) -> None:
        self[target_id].deregister(at)

    def record(self, target_id: str, result: ProbeResult) -> TargetState:
        return self[target_id].record_probe(result)

    def eligible_targets(self) -> List[str]:
        return [target_id for target_id, target in self._targets.items() if target.is_eligible]

    def draining_targets(self, now: float) -> List[str]:
        return [
            target_id for target_id, target in self._targets.items() if target.is_draining(now)
        ]

    def sweep(self, now: float) -> List[str]:
        """Remove every target whose drain has finished and return their ids."""
        removed = [
            target_id for target_id, target in self._targets.items() if target.removal_due(now)
        ]
        for target_id in removed:
            del self._targets[target_id]
            logger.info("removed target %s", target_id)
        return removed


def seconds_until_eligible(policy: HealthCheckPolicy) -> int:
    """Upper bound on the time between registration and the first forwarded request."""
    return policy.healthy_threshold * policy.interval


def seconds_until_removed(policy: HealthCheckPolicy) -> int:
    """Upper bound on the time a failing healthy target keeps its registration."""
    return policy.unhealthy_threshold * policy.interval + policy.deregistration_delay
