from typing import Optional

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_autoscaling as autoscaling,
    aws_certificatemanager as acm,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from docker_image_deployment.topology import HTTPS_PORT, HTTP_PORT, TopologyDescriptor


class DockerImageDeploymentStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        topology: TopologyDescriptor,
        certificate_arn: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.topology = topology

        # The image itself is pushed by CI.
        self.repository = ecr.Repository(
            self,
            "NextjsEcrRepo",
            repository_name=topology.repository_name,
            removal_policy=RemovalPolicy.RETAIN,
        )

        self.vpc = ec2.Vpc(
            self,
            "NextjsVpc",
            max_azs=topology.max_azs,
            ip_addresses=ec2.IpAddresses.cidr(topology.vpc_cidr),
        )

        self.cluster = ecs.Cluster(
            self, "NextjsCluster", vpc=self.vpc, cluster_name=topology.cluster_name
        )

        log_group = logs.LogGroup(
            self,
            "LogGroup",
            log_group_name=topology.log_group_name,
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=RemovalPolicy.DESTROY,
        )

        ec2_security_group = ec2.SecurityGroup(
            self, "Ec2SecurityGroup", vpc=self.vpc, allow_all_outbound=True
        )
        if topology.ssh_ingress_cidr:
            ec2_security_group.add_ingress_rule(
                ec2.Peer.ipv4(topology.ssh_ingress_cidr),
                ec2.Port.tcp(22),
                "Allow SSH access",
            )

        user_data = ec2.UserData.for_linux()
        user_data.add_commands(
            f"echo ECS_CLUSTER={topology.cluster_name} >> /etc/ecs/ecs.config"
        )

        auto_scaling_group = autoscaling.AutoScalingGroup(
            self,
            "ASG",
            vpc=self.vpc,
            instance_type=ec2.InstanceType(topology.instance_type),
            machine_image=ecs.EcsOptimizedImage.amazon_linux2(),
            user_data=user_data,
            min_capacity=topology.min_capacity,
            max_capacity=topology.max_capacity,
            desired_capacity=topology.desired_capacity,
            security_group=ec2_security_group,
        )

        capacity_provider = ecs.AsgCapacityProvider(
            self, "AsgCapacityProvider", auto_scaling_group=auto_scaling_group
        )
        self.cluster.add_asg_capacity_provider(capacity_provider)

        alb_security_group = ec2.SecurityGroup(
            self, "AlbSecurityGroup", vpc=self.vpc, allow_all_outbound=True
        )
        alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(),
            ec2.Port.tcp(topology.listener_port),
            "Allow HTTPS traffic" if topology.enable_https else "Allow HTTP traffic",
        )

        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "alb",
            internet_facing=True,
            load_balancer_name=topology.load_balancer_name,
            security_group=alb_security_group,
            vpc=self.vpc,
        )

        if topology.enable_https:
            self.listener = self.__add_https_listeners(certificate_arn)
        else:
            self.listener = self.load_balancer.add_listener(
                "HttpListener", port=HTTP_PORT, protocol=elbv2.ApplicationProtocol.HTTP
            )

        # Bridge mode: the ALB reaches containers through the host.
        ec2_security_group.add_ingress_rule(
            alb_security_group,
            ec2.Port.tcp(topology.container_port),
            f"Allow traffic from ALB to container port {topology.container_port}",
        )
        low, high = topology.host_port_range
        ec2_security_group.add_ingress_rule(
            alb_security_group,
            ec2.Port.tcp_range(low, high),
            "Allow traffic from ALB to dynamic ports",
        )

        app_secrets = secretsmanager.Secret.from_secret_name_v2(
            self, "AppSecrets", topology.secrets.secret_name
        )

        task_role = iam.Role(
            self,
            "TaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AmazonECSTaskExecutionRolePolicy"
                )
            ],
        )

        task_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "secretsmanager:GetSecretValue",
                    "secretsmanager:DescribeSecret",
                ],
                resources=[topology.secrets.resource_arn(self.region, self.account)],
            )
        )

        # ECS Exec
        task_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "ssmmessages:CreateControlChannel",
                    "ssmmessages:CreateDataChannel",
                    "ssmmessages:OpenControlChannel",
                    "ssmmessages:OpenDataChannel",
                ],
                resources=["*"],
            )
        )

        self.task_definition = ecs.Ec2TaskDefinition(
            self,
            "TaskDef",
            family=topology.task_family,
            network_mode=ecs.NetworkMode.BRIDGE,
            task_role=task_role,
        )

        self.container = self.task_definition.add_container(
            "NextjsContainer",
            container_name=topology.container_name,
            image=ecs.ContainerImage.from_ecr_repository(self.repository, topology.image_tag),
            memory_reservation_mib=topology.memory_reservation_mib,
            memory_limit_mib=topology.memory_limit_mib,
            cpu=topology.cpu,
            port_mappings=[
                ecs.PortMapping(
                    container_port=topology.container_port,
                    host_port=0,  # dynamic
                    protocol=ecs.Protocol.TCP,
                )
            ],
            logging=ecs.LogDrivers.aws_logs(stream_prefix="container", log_group=log_group),
            essential=True,
            start_timeout=Duration.minutes(10),
            stop_timeout=Duration.minutes(2),
            environment=dict(topology.environment),
            secrets={
                key: ecs.Secret.from_secrets_manager(app_secrets, key)
                for key in topology.secrets.keys
            },
            # The load balancer probe decides eligibility, this one only keeps ECS quiet.
            health_check=ecs.HealthCheck(
                command=["CMD-SHELL", "exit 0"],
                interval=Duration.seconds(30),
                timeout=Duration.seconds(5),
                retries=3,
                start_period=Duration.seconds(60),
            ),
        )

        self.service = ecs.Ec2Service(
            self,
            "Ec2Service",
            cluster=self.cluster,
            service_name=topology.service_name,
            task_definition=self.task_definition,
            desired_count=topology.desired_count,
            enable_execute_command=True,
            placement_strategies=[ecs.PlacementStrategy.spread_across_instances()],
        )

        health_check = topology.health_check
        self.target_group = self.listener.add_targets(
            "EcsTargetGroup",
            port=HTTP_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[self.service],
            health_check=elbv2.HealthCheck(
                path=health_check.path,
                interval=Duration.seconds(health_check.interval),
                timeout=Duration.seconds(health_check.timeout),
                healthy_threshold_count=health_check.healthy_threshold,
                unhealthy_threshold_count=health_check.unhealthy_threshold,
                healthy_http_codes=health_check.healthy_http_codes,
                port="traffic-port",
                protocol=elbv2.Protocol.HTTP,
            ),
            deregistration_delay=Duration.seconds(health_check.deregistration_delay),
        )

        CfnOutput(
            self,
            "LoadBalancerDNS",
            value=self.load_balancer.load_balancer_dns_name,
            description="ALB DNS name",
        )

        if topology.domain_name:
            CfnOutput(
                self,
                "DomainName",
                value=topology.https_url,
                description="HTTPS URL",
            )

    def __add_https_listeners(self, certificate_arn: Optional[str]) -> elbv2.ApplicationListener:
        if certificate_arn:
            certificate = acm.Certificate.from_certificate_arn(
                self, "SslCertificate", certificate_arn
            )
        else:
            certificate = acm.Certificate(
                self,
                "SslCertificate",
                domain_name=self.topology.domain_name,
                validation=acm.CertificateValidation.from_dns(),
            )

        https_listener = self.load_balancer.add_listener(
            "HttpsListener",
            port=HTTPS_PORT,
            protocol=elbv2.ApplicationProtocol.HTTPS,
            certificates=[elbv2.ListenerCertificate.from_certificate_manager(certificate)],
        )

        self.load_balancer.add_listener(
            "HttpListener",
            port=HTTP_PORT,
            default_action=elbv2.ListenerAction.redirect(
                protocol="HTTPS", port=str(HTTPS_PORT)
            ),
        )

        return https_listener
