#!/usr/bin/env python3
from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    CfnOutput,
)
from constructs import Construct

from stacks.config import NetworkConfig

INGRESS_SUBNET_GROUP = "Ingress"
APPLICATION_SUBNET_GROUP = "Application"
DATA_SUBNET_GROUP = "Data"


class NetworkStack(Stack):
    """VPC split into ingress, application and data tiers in every AZ."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: NetworkConfig = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config or NetworkConfig()
        self.config.validate()

        # Application tier only gets a default route when a NAT gateway exists
        application_subnet_type = (
            ec2.SubnetType.PRIVATE_WITH_EGRESS
            if self.config.has_egress
            else ec2.SubnetType.PRIVATE_ISOLATED
        )

        self.vpc = ec2.Vpc(
            self,
            "Vpc",
            ip_addresses=ec2.IpAddresses.cidr(self.config.cidr),
            max_azs=self.config.max_azs,
            nat_gateways=self.config.nat_gateways,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name=INGRESS_SUBNET_GROUP,
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=self.config.subnet_cidr_mask,
                ),
                ec2.SubnetConfiguration(
                    name=APPLICATION_SUBNET_GROUP,
                    subnet_type=application_subnet_type,
                    cidr_mask=self.config.subnet_cidr_mask,
                ),
                ec2.SubnetConfiguration(
                    name=DATA_SUBNET_GROUP,
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=self.config.subnet_cidr_mask,
                ),
            ],
        )

        self.ingress_subnets = ec2.SubnetSelection(subnet_group_name=INGRESS_SUBNET_GROUP)
        self.application_subnets = ec2.SubnetSelection(subnet_group_name=APPLICATION_SUBNET_GROUP)
        self.data_subnets = ec2.SubnetSelection(subnet_group_name=DATA_SUBNET_GROUP)

        # S3 traffic from the application tier stays on the AWS network
        self.s3_gateway = None
        if self.config.s3_gateway_endpoint:
            self.s3_gateway = self.vpc.add_gateway_endpoint(
                "S3Gateway",
                service=ec2.GatewayVpcEndpointAwsService.S3,
                subnets=[self.application_subnets],
            )

        # Outputs
        CfnOutput(
            self,
            "VpcId",
            value=self.vpc.vpc_id,
            description="VPC hosting the ingress, application and data tiers",
        )
