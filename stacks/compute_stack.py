#!/usr/bin/env python3
from aws_cdk import (
    Stack,
    aws_autoscaling as autoscaling,
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_s3 as s3,
    Duration,
    RemovalPolicy,
    CfnOutput,
)
from constructs import Construct

from stacks.config import ComputeConfig
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack


class ComputeStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        security: SecurityStack,
        config: ComputeConfig = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config or ComputeConfig()
        self.config.validate()
        if security.http_port != self.config.http_port:
            raise ValueError(
                f"compute.http_port ({self.config.http_port}) does not match the security "
                f"stack's load balancer port ({security.http_port})"
            )

        # Bucket for files shared by the application instances
        self.file_bucket = s3.Bucket(
            self,
            "FileBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
            versioned=True,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=RemovalPolicy.RETAIN,
        )

        # Instance role, scoped to the file bucket only
        self.instance_role = iam.Role(
            self,
            "AppInstanceRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AmazonSSMManagedInstanceCore"
                )
            ],
            inline_policies={
                "ec2-s3-access": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=["s3:ListBucket"],
                            resources=[self.file_bucket.bucket_arn],
                        ),
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=[
                                "s3:GetObject",
                                "s3:PutObject",
                                "s3:DeleteObject",
                            ],
                            resources=[f"{self.file_bucket.bucket_arn}/*"],
                        ),
                    ]
                )
            },
        )

        # Bootstrap commands run once, in order, at first boot
        self.user_data = ec2.UserData.for_linux(shebang="#!/bin/bash")
        self.user_data.add_commands(*self.config.bootstrap_commands)

        self.auto_scaling_group = autoscaling.AutoScalingGroup(
            self,
            "AppAutoScalingGroup",
            vpc=network.vpc,
            vpc_subnets=network.application_subnets,
            instance_type=ec2.InstanceType(self.config.instance_type),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(),
            min_capacity=self.config.min_capacity,
            max_capacity=self.config.max_capacity,
            security_group=security.app_security_group,
            user_data=self.user_data,
            role=self.instance_role,
            cooldown=Duration.minutes(self.config.cooldown_minutes),
            group_metrics=[autoscaling.GroupMetrics.all()],
        )
        self.auto_scaling_group.scale_on_cpu_utilization(
            "CpuScaling",
            target_utilization_percent=self.config.cpu_target_percent,
        )

        # Application Load Balancer in the ingress tier
        self.target_group = elbv2.ApplicationTargetGroup(
            self,
            "AppTargetGroup",
            vpc=network.vpc,
            port=self.config.http_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[self.auto_scaling_group],
            stickiness_cookie_duration=Duration.minutes(self.config.stickiness_minutes),
        )

        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "AppLoadBalancer",
            vpc=network.vpc,
            vpc_subnets=network.ingress_subnets,
            internet_facing=True,
            security_group=security.alb_security_group,
        )

        # Plain HTTP until a certificate is provisioned
        self.listener = self.load_balancer.add_listener(
            "HttpListener",
            port=self.config.http_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            open=False,
            default_target_groups=[self.target_group],
        )

        # Bastion reachable through Session Manager only, no SSH ingress
        self.bastion = None
        if self.config.enable_bastion:
            self.bastion = ec2.BastionHostLinux(
                self,
                "BastionHost",
                vpc=network.vpc,
                instance_name="Bastion Host",
                subnet_selection=network.ingress_subnets,
            )

        # Outputs
        CfnOutput(
            self,
            "LoadBalancerDnsName",
            value=self.load_balancer.load_balancer_dns_name,
            description="Public DNS name of the application load balancer",
        )

        CfnOutput(
            self,
            "FileBucketName",
            value=self.file_bucket.bucket_name,
            description="S3 bucket for application instance files",
        )
