"""Builds the deployment settings once at startup.

Every value is read from the CDK context first (``cdk deploy -c key=value`` or
``cdk.json``), then from the environment (a ``.env`` file is loaded by
``app.py``), and falls back to the defaults of ``TopologyDescriptor``.
"""

import os
from typing import Any, Dict, Optional, Tuple

import aws_cdk as cdk
from constructs import Construct

from docker_image_deployment.topology import (
    HealthCheckPolicy,
    InvalidTopology,
    SecretReferenceSet,
    TopologyDescriptor,
)

DEFAULT_REGION = "ap-northeast-1"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_str(name: str, value: Any) -> str:
    return str(value)


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidTopology(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidTopology(f"{name} must be an integer, got {value!r}") from None


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InvalidTopology(f"{name} must be a boolean, got {value!r}")


def _as_keys(name: str, value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(key).strip() for key in value)
    return tuple(key.strip() for key in str(value).split(",") if key.strip())


# (field, context key, environment variable, converter)
_TOPOLOGY_SETTINGS = [
    ("domain_name", "domain_name", "DOMAIN_NAME", _as_str),
    ("vpc_cidr", "vpc_cidr", "VPC_CIDR", _as_str),
    ("max_azs", "max_azs", "MAX_AZS", _as_int),
    ("container_port", "container_port", "CONTAINER_PORT", _as_int),
    ("enable_https", "enable_https", "ENABLE_HTTPS", _as_bool),
    ("ssh_ingress_cidr", "ssh_ingress_cidr", "SSH_INGRESS_CIDR", _as_str),
    ("instance_type", "instance_type", "INSTANCE_TYPE", _as_str),
    ("desired_count", "desired_count", "DESIRED_COUNT", _as_int),
    ("image_tag", "image_tag", "IMAGE_TAG", _as_str),
]

_HEALTH_CHECK_SETTINGS = [
    ("path", "health_check_path", "HEALTH_CHECK_PATH", _as_str),
    ("interval", "health_check_interval", "HEALTH_CHECK_INTERVAL", _as_int),
    ("timeout", "health_check_timeout", "HEALTH_CHECK_TIMEOUT", _as_int),
    ("healthy_threshold", "healthy_threshold", "HEALTHY_THRESHOLD", _as_int),
    ("unhealthy_threshold", "unhealthy_threshold", "UNHEALTHY_THRESHOLD", _as_int),
    ("deregistration_delay", "deregistration_delay", "DEREGISTRATION_DELAY", _as_int),
    ("healthy_http_codes", "healthy_http_codes", "HEALTHY_HTTP_CODES", _as_str),
]

_SECRET_SETTINGS = [
    ("secret_name", "secret_name", "APP_SECRET_NAME", _as_str),
    ("keys", "secret_keys", "APP_SECRET_KEYS", _as_keys),
]


def _lookup(scope: Optional[Construct], context_key: str, env_var: str) -> Any:
    value = None
    if scope is not None:
        value = scope.node.try_get_context(context_key)
    if value is None:
        value = os.getenv(env_var)
    if value == "":
        return None
    return value


def _collect(scope: Optional[Construct], settings) -> Dict[str, Any]:
    values = {}
    for field_name, context_key, env_var, converter in settings:
        value = _lookup(scope, context_key, env_var)
        if value is not None:
            values[field_name] = converter(env_var, value)
    return values


def load_topology(scope: Optional[Construct] = None) -> TopologyDescriptor:
    """Read the topology settings and validate them.

    Raises InvalidTopology or InvalidPolicy on bad input.
    """
    return TopologyDescriptor(
        health_check=HealthCheckPolicy(**_collect(scope, _HEALTH_CHECK_SETTINGS)),
        secrets=SecretReferenceSet(**_collect(scope, _SECRET_SETTINGS)),
        **_collect(scope, _TOPOLOGY_SETTINGS),
    )


def load_certificate_options(scope: Optional[Construct] = None) -> Tuple[Optional[str], bool]:
    """Return ``(certificate_arn, lookup)`` for the HTTPS listener."""
    certificate_arn = _lookup(scope, "certificate_arn", "CERTIFICATE_ARN")
    lookup = _lookup(scope, "lookup_certificate", "LOOKUP_CERTIFICATE")
    return (
        _as_str("CERTIFICATE_ARN", certificate_arn) if certificate_arn is not None else None,
        _as_bool("LOOKUP_CERTIFICATE", lookup) if lookup is not None else False,
    )


def stack_environment(scope: Optional[Construct] = None) -> cdk.Environment:
    account = _lookup(scope, "account", "CDK_DEFAULT_ACCOUNT")
    region = _lookup(scope, "region", "CDK_DEFAULT_REGION") or DEFAULT_REGION
    return cdk.Environment(account=account, region=region)
