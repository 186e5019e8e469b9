#!/usr/bin/env python3
from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    CfnOutput,
)
from constructs import Construct

from stacks.config import DatabaseConfig
from stacks.network_stack import NetworkStack
from stacks.security_stack import SecurityStack


def _aurora_mysql(version: str) -> rds.IClusterEngine:
    # Full versions look like "8.0.mysql_aurora.3.04.0"
    major = version.split(".mysql_aurora")[0]
    return rds.DatabaseClusterEngine.aurora_mysql(
        version=rds.AuroraMysqlEngineVersion.of(version, major)
    )


def _aurora_postgres(version: str) -> rds.IClusterEngine:
    major = version.split(".")[0]
    return rds.DatabaseClusterEngine.aurora_postgres(
        version=rds.AuroraPostgresEngineVersion.of(version, major)
    )


CLUSTER_ENGINES = {
    "AURORA_MYSQL": _aurora_mysql,
    "AURORA_POSTGRESQL": _aurora_postgres,
}


class DatabaseStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        network: NetworkStack,
        security: SecurityStack,
        config: DatabaseConfig = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config or DatabaseConfig()
        self.config.validate()

        self.engine = CLUSTER_ENGINES[self.config.engine](self.config.version)

        # Credentials live in Secrets Manager and must exist before deploying.
        # Only the reference is placed in the template.
        self.db_credentials = secretsmanager.Secret.from_secret_partial_arn(
            self, "DbCredentialsSecret", self.config.secret_arn
        )

        self.parameter_group = rds.ParameterGroup(
            self,
            "DbParameterGroup",
            engine=self.engine,
            description=f"{self.config.engine} cluster parameters",
            parameters=dict(self.config.parameters),
        )

        instance_type = ec2.InstanceType(self.config.instance_type)
        readers = [
            rds.ClusterInstance.provisioned(
                f"Reader{index}", instance_type=instance_type
            )
            for index in range(1, self.config.reader_count + 1)
        ]

        self.db_cluster = rds.DatabaseCluster(
            self,
            "DbCluster",
            engine=self.engine,
            credentials=rds.Credentials.from_secret(self.db_credentials),
            writer=rds.ClusterInstance.provisioned("Writer", instance_type=instance_type),
            readers=readers,
            vpc=network.vpc,
            vpc_subnets=network.data_subnets,
            security_groups=[security.db_security_group],
            parameter_group=self.parameter_group,
            port=self.config.database_port,
            storage_encrypted=True,
        )

        # Outputs
        CfnOutput(
            self,
            "ClusterEndpoint",
            value=self.db_cluster.cluster_endpoint.socket_address,
            description="Writer endpoint of the database cluster",
        )

        CfnOutput(
            self,
            "CredentialsSecretArn",
            value=self.db_credentials.secret_arn,
            description="Secrets Manager reference used for the cluster credentials",
        )
