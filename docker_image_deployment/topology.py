"""Static description of the deployment topology.

Everything the stack needs is collected into a single frozen
``TopologyDescriptor`` before any construct is created, so configuration
mistakes are reported before synthesis instead of halfway through a
CloudFormation deployment.
"""

import ipaddress
import re
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

DEFAULT_DOMAIN_NAME = "menbee-scheduler.com"
DEFAULT_SECRET_NAME = "nextjs-app/env"
DEFAULT_SECRET_KEYS = (
    "AUTH_SECRET",
    "NEXTAUTH_URL",
    "AUTH_GOOGLE_ID",
    "AUTH_GOOGLE_SECRET",
    "DATABASE_URL",
    "AUTH_TRUST_HOST",
)
# Bridge networking maps the container port onto the ephemeral range.
DYNAMIC_HOST_PORT_RANGE = (32768, 65535)

HTTP_PORT = 80
HTTPS_PORT = 443
# Smallest and largest VPC a CloudFormation template may declare.
VPC_PREFIX_RANGE = (16, 28)

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class TopologyError(ValueError):
    pass


class InvalidPolicy(TopologyError):
    pass


class InvalidTopology(TopologyError):
    pass


def parse_http_codes(codes: str) -> Tuple[Tuple[int, int], ...]:
    """Parse a load balancer matcher such as ``"200"``, ``"200,202"`` or ``"200-299"``."""
    ranges = []
    for part in codes.split(","):
        low, sep, high = part.strip().partition("-")
        try:
            first = int(low)
            last = int(high) if sep else first
        except ValueError:
            raise InvalidPolicy(f"invalid HTTP code matcher: {codes!r}") from None
        if not 200 <= first <= last <= 499:
            raise InvalidPolicy(f"HTTP codes must be within 200-499: {codes!r}")
        ranges.append((first, last))
    return tuple(ranges)


def _check_port(name: str, port: int) -> None:
    if not 1 <= port <= 65535:
        raise InvalidTopology(f"{name} must be between 1 and 65535, got {port}")


def _parse_cidr(name: str, cidr: str) -> ipaddress.IPv4Network:
    # CloudFormation wants the mask spelled out, even for a single host.
    if "/" not in cidr:
        raise InvalidTopology(f"{name} {cidr!r} is missing its prefix length")
    try:
        return ipaddress.IPv4Network(cidr)
    except ValueError as error:
        raise InvalidTopology(f"invalid {name} {cidr!r}: {error}") from None


@dataclass(frozen=True)
class HealthCheckPolicy:
    """Target group health check.

    All durations are in seconds. ``timeout`` must be strictly shorter than
    ``interval``, otherwise a probe could still be in flight when the next one
    starts.
    """

    path: str = "/"
    interval: int = 120
    timeout: int = 60
    healthy_threshold: int = 2
    unhealthy_threshold: int = 10
    deregistration_delay: int = 300
    healthy_http_codes: str = "200"

    def __post_init__(self):
        if not self.path.startswith("/"):
            raise InvalidPolicy(f"health check path must start with '/', got {self.path!r}")
        if self.timeout <= 0:
            raise InvalidPolicy(f"timeout must be positive, got {self.timeout}")
        if self.timeout >= self.interval:
            raise InvalidPolicy(
                f"timeout ({self.timeout}s) must be shorter than interval ({self.interval}s)"
            )
        if self.healthy_threshold < 1:
            raise InvalidPolicy(
                f"healthy threshold must be at least 1, got {self.healthy_threshold}"
            )
        if self.unhealthy_threshold < 1:
            raise InvalidPolicy(
                f"unhealthy threshold must be at least 1, got {self.unhealthy_threshold}"
            )
        if self.deregistration_delay < 0:
            raise InvalidPolicy(
                f"deregistration delay must not be negative, got {self.deregistration_delay}"
            )
        parse_http_codes(self.healthy_http_codes)

    def accepts_status(self, status_code: int) -> bool:
        return any(
            first <= status_code <= last
            for first, last in parse_http_codes(self.healthy_http_codes)
        )

    def is_passing(self, status_code: Optional[int], elapsed: float) -> bool:
        """A probe passes when a healthy status arrives before the timeout.

        ``status_code`` is ``None`` when no response was received at all.
        """
        if status_code is None:
            return False
        return elapsed < self.timeout and self.accepts_status(status_code)


@dataclass(frozen=True)
class SecretReferenceSet:
    """Names of the JSON keys read from one Secrets Manager secret.

    Only key names live here; values are resolved by ECS when the container
    starts.
    """

    secret_name: str = DEFAULT_SECRET_NAME
    keys: Tuple[str, ...] = DEFAULT_SECRET_KEYS

    def __post_init__(self):
        object.__setattr__(self, "keys", tuple(self.keys))
        if not self.secret_name:
            raise InvalidTopology("secret name must not be empty")
        seen = set()
        for key in self.keys:
            if not _ENV_NAME.match(key):
                raise InvalidTopology(f"invalid secret key name: {key!r}")
            if key in seen:
                raise InvalidTopology(f"duplicate secret key: {key!r}")
            seen.add(key)

    def resource_arn(self, region: str, account: str) -> str:
        # Secrets Manager appends a random suffix to the secret name.
        return f"arn:aws:secretsmanager:{region}:{account}:secret:{self.secret_name}*"


@dataclass(frozen=True)
class TopologyDescriptor:
    domain_name: str = DEFAULT_DOMAIN_NAME
    vpc_cidr: str = "10.0.0.0/16"
    max_azs: int = 1
    container_port: int = 3000
    host_port_range: Tuple[int, int] = DYNAMIC_HOST_PORT_RANGE
    enable_https: bool = True
    ssh_ingress_cidr: Optional[str] = None

    instance_type: str = "t3.micro"
    min_capacity: int = 1
    desired_capacity: int = 1
    max_capacity: int = 1

    cluster_name: str = "nextjs-cluster"
    service_name: str = "nextjs-service"
    repository_name: str = "nextjs-app"
    load_balancer_name: str = "nextjs-alb"
    task_family: str = "nextjs-task-family"
    container_name: str = "nextjs-container"
    image_tag: str = "latest"

    desired_count: int = 1
    cpu: int = 128
    memory_reservation_mib: int = 200
    memory_limit_mib: int = 800

    environment: Optional[Mapping[str, str]] = None
    secrets: SecretReferenceSet = field(default_factory=SecretReferenceSet)
    health_check: HealthCheckPolicy = field(default_factory=HealthCheckPolicy)

    def __post_init__(self):
        if self.enable_https and not self.domain_name:
            raise InvalidTopology("a domain name is required when HTTPS is enabled")
        self._check_network()
        self._check_capacity()

        environment = self.environment
        if environment is None:
            environment = {
                "NODE_ENV": "production",
                "PORT": str(self.container_port),
                "HOSTNAME": "0.0.0.0",
                "NEXT_TELEMETRY_DISABLED": "1",
            }
        if environment.get("PORT", str(self.container_port)) != str(self.container_port):
            raise InvalidTopology(
                f"PORT={environment['PORT']} does not match container port {self.container_port}"
            )
        overlap = sorted(set(environment) & set(self.secrets.keys))
        if overlap:
            raise InvalidTopology(
                f"variables set both in plain text and from secrets: {', '.join(overlap)}"
            )
        object.__setattr__(self, "environment", MappingProxyType(dict(environment)))
        object.__setattr__(self, "host_port_range", tuple(self.host_port_range))

    def __hash__(self):
        # The environment is a read-only mapping, which has no hash of its own.
        values = []
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "environment":
                value = tuple(sorted(value.items()))
            values.append(value)
        return hash(tuple(values))

    def _check_network(self):
        vpc_network = _parse_cidr("VPC CIDR", self.vpc_cidr)
        if not VPC_PREFIX_RANGE[0] <= vpc_network.prefixlen <= VPC_PREFIX_RANGE[1]:
            raise InvalidTopology(
                f"VPC CIDR {self.vpc_cidr!r} must be between /{VPC_PREFIX_RANGE[0]} "
                f"and /{VPC_PREFIX_RANGE[1]}"
            )
        if self.ssh_ingress_cidr is not None:
            _parse_cidr("SSH ingress CIDR", self.ssh_ingress_cidr)
        if self.max_azs < 1:
            raise InvalidTopology(f"max_azs must be at least 1, got {self.max_azs}")

        _check_port("container port", self.container_port)
        low, high = self.host_port_range
        _check_port("host port range start", low)
        _check_port("host port range end", high)
        if low > high:
            raise InvalidTopology(f"host port range is reversed: {low}-{high}")

    def _check_capacity(self):
        if not self.min_capacity <= self.desired_capacity <= self.max_capacity:
            raise InvalidTopology(
                "capacity must satisfy min <= desired <= max, got "
                f"{self.min_capacity}/{self.desired_capacity}/{self.max_capacity}"
            )
        if self.desired_count < 1:
            raise InvalidTopology(f"desired count must be at least 1, got {self.desired_count}")
        if self.memory_reservation_mib > self.memory_limit_mib:
            raise InvalidTopology(
                f"memory reservation ({self.memory_reservation_mib} MiB) exceeds "
                f"the limit ({self.memory_limit_mib} MiB)"
            )

    @property
    def listener_port(self) -> int:
        return HTTPS_PORT if self.enable_https else HTTP_PORT

    @property
    def https_url(self) -> str:
        return f"https://{self.domain_name}"

    @property
    def log_group_name(self) -> str:
        return f"/aws/ecs/{self.cluster_name}"

    def describe(self) -> str:
        health = self.health_check
        return (
            f"{self.listener_port} -> {self.container_port} "
            f"(hosts {self.host_port_range[0]}-{self.host_port_range[1]}), "
            f"vpc {self.vpc_cidr} across {self.max_azs} AZ(s), "
            f"health {health.path} every {health.interval}s "
            f"(timeout {health.timeout}s, {health.healthy_threshold} up / "
            f"{health.unhealthy_threshold} down)"
        )
