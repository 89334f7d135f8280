"""Shared fixtures for the stack and model tests."""

import os

import pytest
from aws_cdk import App, Environment

from docker_image_deployment.topology import TopologyDescriptor

ACCOUNT = "123456789012"
REGION = "ap-northeast-1"


@pytest.fixture(scope="session", autouse=True)
def configure_test_environment():
    """Keep CDK and boto3 away from real credentials."""
    test_env = {
        "CDK_DEFAULT_ACCOUNT": ACCOUNT,
        "CDK_DEFAULT_REGION": REGION,
        "CDK_DISABLE_VERSION_CHECK": "true",
        "AWS_DEFAULT_REGION": REGION,
        "AWS_ACCESS_KEY_ID": "testing",
        "AWS_SECRET_ACCESS_KEY": "testing",
    }

    for key, value in test_env.items():
        if key not in os.environ:
            os.environ[key] = value


@pytest.fixture
def cdk_app():
    return App()


@pytest.fixture(scope="session")
def aws_environment():
    return Environment(account=ACCOUNT, region=REGION)


@pytest.fixture
def topology():
    return TopologyDescriptor()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every setting the config loader reads from the environment."""
    for name in (
        "DOMAIN_NAME",
        "VPC_CIDR",
        "MAX_AZS",
        "CONTAINER_PORT",
        "ENABLE_HTTPS",
        "SSH_INGRESS_CIDR",
        "INSTANCE_TYPE",
        "DESIRED_COUNT",
        "IMAGE_TAG",
        "HEALTH_CHECK_PATH",
        "HEALTH_CHECK_INTERVAL",
        "HEALTH_CHECK_TIMEOUT",
        "HEALTHY_THRESHOLD",
        "UNHEALTHY_THRESHOLD",
        "DEREGISTRATION_DELAY",
        "HEALTHY_HTTP_CODES",
        "APP_SECRET_NAME",
        "APP_SECRET_KEYS",
        "CERTIFICATE_ARN",
        "LOOKUP_CERTIFICATE",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
