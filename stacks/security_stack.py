#!/usr/bin/env python3
from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    CfnOutput,
)
from constructs import Construct

from stacks.network_stack import NetworkStack


class SecurityStack(Stack):
    """
    Security boundaries between tiers.

    Only allow rules exist. Each rule between tiers names both groups, so
    every rule lives in this stack. The data tier accepts traffic from the
    compute tier's group on the database port and from nothing else.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        database_port: int = 3306,
        http_port: int = 80,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Ingress tier boundary, open to the internet on the listener port
        self.alb_security_group = ec2.SecurityGroup(
            self,
            "AlbSecurityGroup",
            vpc=network.vpc,
            description="Allow HTTP to the application load balancer",
            allow_all_outbound=True,
        )
        self.alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(),
            ec2.Port.tcp(http_port),
            "HTTP from anywhere",
        )

        # Compute tier boundary
        self.app_security_group = ec2.SecurityGroup(
            self,
            "AppSecurityGroup",
            vpc=network.vpc,
            description="Allow serving from application instances",
            allow_all_outbound=True,
        )
        # Matches the rule the target group derives, so it is declared once here
        self.app_security_group.add_ingress_rule(
            self.alb_security_group,
            ec2.Port.tcp(http_port),
            "Load balancer to instances",
        )

        # Data tier boundary
        self.db_security_group = ec2.SecurityGroup(
            self,
            "DbSecurityGroup",
            vpc=network.vpc,
            description="Allow database connection from application instances",
            allow_all_outbound=False,
        )
        self.db_security_group.add_ingress_rule(
            self.app_security_group,
            ec2.Port.tcp(database_port),
            "Database connection allow",
        )

        self.database_port = database_port
        self.http_port = http_port

        # Outputs
        CfnOutput(
            self,
            "AppSecurityGroupId",
            value=self.app_security_group.security_group_id,
            description="Security group of the application instances",
        )

        CfnOutput(
            self,
            "DbSecurityGroupId",
            value=self.db_security_group.security_group_id,
            description="Security group of the database cluster",
        )

        CfnOutput(
            self,
            "AlbSecurityGroupId",
            value=self.alb_security_group.security_group_id,
            description="Security group of the application load balancer",
        )
