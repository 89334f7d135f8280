#!/usr/bin/env python3
import sys

import aws_cdk as cdk

from docker_image_deployment.certificates import resolve_certificate_arn
from docker_image_deployment.config import (
    load_certificate_options,
    load_topology,
    stack_environment,
)
from docker_image_deployment.docker_image_deployment_stack import DockerImageDeploymentStack
from docker_image_deployment.health_check import seconds_until_eligible, seconds_until_removed
from docker_image_deployment.logging_config import get_logger, setup_logging
from docker_image_deployment.topology import TopologyError

from dotenv import load_dotenv

load_dotenv()
setup_logging()

logger = get_logger("app")

app = cdk.App()
env = stack_environment(app)

try:
    topology = load_topology(app)
except TopologyError as error:
    logger.error("Invalid deployment settings: %s", error)
    sys.exit(1)

logger.info("Topology: %s", topology.describe())
logger.info(
    "New targets receive traffic within %ss; failing targets are removed within %ss",
    seconds_until_eligible(topology.health_check),
    seconds_until_removed(topology.health_check),
)

certificate_arn = None
if topology.enable_https:
    certificate_arn, lookup = load_certificate_options(app)
    certificate_arn = resolve_certificate_arn(
        topology.domain_name, certificate_arn, lookup=lookup, region=env.region
    )

DockerImageDeploymentStack(
    app,
    "MenbeeSchedulerStack",
    topology,
    certificate_arn=certificate_arn,
    env=env,
)

app.synth()
