import pytest
from aws_cdk import App

from docker_image_deployment.config import (
    DEFAULT_REGION,
    load_certificate_options,
    load_topology,
    stack_environment,
)
from docker_image_deployment.topology import (
    DEFAULT_SECRET_KEYS,
    InvalidPolicy,
    InvalidTopology,
    TopologyDescriptor,
)


def test_defaults_without_settings(clean_env):
    assert load_topology() == TopologyDescriptor()


def test_environment_variables(clean_env):
    clean_env.setenv("DOMAIN_NAME", "example.com")
    clean_env.setenv("MAX_AZS", "2")
    clean_env.setenv("SSH_INGRESS_CIDR", "203.0.113.0/24")
    clean_env.setenv("HEALTH_CHECK_INTERVAL", "30")
    clean_env.setenv("HEALTH_CHECK_TIMEOUT", "5")
    clean_env.setenv("HEALTHY_THRESHOLD", "3")

    topology = load_topology()

    assert topology.domain_name == "example.com"
    assert topology.max_azs == 2
    assert topology.ssh_ingress_cidr == "203.0.113.0/24"
    assert topology.health_check.interval == 30
    assert topology.health_check.timeout == 5
    assert topology.health_check.healthy_threshold == 3
    assert topology.health_check.unhealthy_threshold == 10


def test_context_takes_precedence_over_environment(clean_env):
    clean_env.setenv("DOMAIN_NAME", "from-env.com")
    app = App(context={"domain_name": "from-context.com", "max_azs": 2})

    topology = load_topology(app)

    assert topology.domain_name == "from-context.com"
    assert topology.max_azs == 2


def test_empty_value_falls_back_to_default(clean_env):
    clean_env.setenv("SSH_INGRESS_CIDR", "")

    assert load_topology().ssh_ingress_cidr is None


@pytest.mark.parametrize("value, expected", [("false", False), ("0", False), ("Yes", True)])
def test_boolean_settings(clean_env, value, expected):
    clean_env.setenv("ENABLE_HTTPS", value)

    assert load_topology().enable_https is expected


def test_malformed_integer(clean_env):
    clean_env.setenv("CONTAINER_PORT", "three thousand")

    with pytest.raises(InvalidTopology, match="CONTAINER_PORT"):
        load_topology()


def test_malformed_boolean(clean_env):
    clean_env.setenv("ENABLE_HTTPS", "maybe")

    with pytest.raises(InvalidTopology, match="ENABLE_HTTPS"):
        load_topology()


def test_invalid_health_check_policy(clean_env):
    clean_env.setenv("HEALTH_CHECK_INTERVAL", "60")
    clean_env.setenv("HEALTH_CHECK_TIMEOUT", "60")

    with pytest.raises(InvalidPolicy):
        load_topology()


def test_secret_settings(clean_env):
    clean_env.setenv("APP_SECRET_NAME", "other-app/env")
    clean_env.setenv("APP_SECRET_KEYS", "DATABASE_URL, AUTH_SECRET")

    secrets = load_topology().secrets

    assert secrets.secret_name == "other-app/env"
    assert secrets.keys == ("DATABASE_URL", "AUTH_SECRET")


def test_secret_keys_from_context_list(clean_env):
    app = App(context={"secret_keys": ["DATABASE_URL"]})

    assert load_topology(app).secrets.keys == ("DATABASE_URL",)


def test_default_secret_keys(clean_env):
    assert load_topology().secrets.keys == DEFAULT_SECRET_KEYS


def test_certificate_options(clean_env):
    assert load_certificate_options() == (None, False)

    clean_env.setenv("CERTIFICATE_ARN", "arn:aws:acm:ap-northeast-1:123456789012:certificate/abc")
    clean_env.setenv("LOOKUP_CERTIFICATE", "true")

    assert load_certificate_options() == (
        "arn:aws:acm:ap-northeast-1:123456789012:certificate/abc",
        True,
    )


def test_stack_environment(clean_env):
    clean_env.setenv("CDK_DEFAULT_ACCOUNT", "111122223333")
    clean_env.delenv("CDK_DEFAULT_REGION", raising=False)

    env = stack_environment()

    assert env.account == "111122223333"
    assert env.region == DEFAULT_REGION
