"""
Unit tests for the Database Stack
Tests the Aurora cluster, its parameter group and the credentials reference
"""

import json

import aws_cdk as core
import aws_cdk.assertions as assertions
import pytest

from stacks.config import DatabaseConfig
from stacks.database_stack import DatabaseStack

SAMPLE_SECRET_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:sample"


class TestDatabaseStack:
    """Test class for Database Stack"""

    @pytest.fixture
    def app(self):
        """Create CDK app for testing"""
        return core.App()

    @pytest.fixture
    def network_stack(self, app):
        """Create network stack"""
        from stacks.network_stack import NetworkStack

        return NetworkStack(app, "test-network-stack")

    @pytest.fixture
    def security_stack(self, app, network_stack):
        """Create security stack"""
        from stacks.security_stack import SecurityStack

        return SecurityStack(app, "test-security-stack", network=network_stack)

    @pytest.fixture
    def config(self):
        return DatabaseConfig(
            engine="AURORA_MYSQL",
            secret_arn=SAMPLE_SECRET_ARN,
            parameters={"character_set_client": "utf8mb4"},
        )

    @pytest.fixture
    def stack(self, app, network_stack, security_stack, config):
        """Create Database stack for testing"""
        return DatabaseStack(
            app,
            "test-database-stack",
            network=network_stack,
            security=security_stack,
            config=config,
        )

    @pytest.fixture
    def template(self, stack):
        """Create CDK template for assertions"""
        return assertions.Template.from_stack(stack)

    def test_stack_has_required_resources(self, stack):
        """Test that the stack has the expected resources"""
        assert hasattr(stack, "db_cluster")
        assert hasattr(stack, "db_credentials")
        assert hasattr(stack, "parameter_group")

    def test_parameter_group_has_exactly_configured_parameters(self, template):
        """Test that only the configured key/value pair reaches the cluster"""
        groups = template.find_resources("AWS::RDS::DBClusterParameterGroup")
        assert len(groups) == 1
        group = next(iter(groups.values()))
        assert group["Properties"]["Parameters"] == {"character_set_client": "utf8mb4"}
        assert group["Properties"]["Family"] == "aurora-mysql8.0"

    def test_credentials_resolve_to_secret_arn(self, template):
        """Test that credentials are a reference to the secret, never a literal"""
        clusters = template.find_resources("AWS::RDS::DBCluster")
        assert len(clusters) == 1
        properties = next(iter(clusters.values()))["Properties"]

        username = json.dumps(properties["MasterUsername"])
        password = json.dumps(properties["MasterUserPassword"])
        assert SAMPLE_SECRET_ARN in username
        assert "resolve:secretsmanager" in username
        assert SAMPLE_SECRET_ARN in password

    def test_cluster_engine_and_port(self, template):
        """Test engine, port and encryption"""
        template.has_resource_properties("AWS::RDS::DBCluster", {
            "Engine": "aurora-mysql",
            "Port": 3306,
            "StorageEncrypted": True,
        })

    def test_writer_and_reader(self, template):
        """Test one writer plus the default reader"""
        template.resource_count_is("AWS::RDS::DBInstance", 2)

    def test_cluster_uses_data_tier_boundary(self, stack, security_stack):
        """Test that only the data tier security group is attached"""
        groups = stack.db_cluster.connections.security_groups
        assert len(groups) == 1
        assert groups[0].node.path == security_stack.db_security_group.node.path

    def test_no_public_instances(self, template):
        """Test that no cluster instance is publicly accessible"""
        for instance in template.find_resources("AWS::RDS::DBInstance").values():
            assert instance["Properties"].get("PubliclyAccessible") is not True

    def test_postgres_engine(self, app, network_stack, security_stack):
        """Test the PostgreSQL engine mapping"""
        stack = DatabaseStack(
            app,
            "test-database-pg",
            network=network_stack,
            security=security_stack,
            config=DatabaseConfig(
                engine="AURORA_POSTGRESQL",
                reader_count=0,
                parameters={"client_encoding": "UTF8"},
            ),
        )
        template = assertions.Template.from_stack(stack)
        template.has_resource_properties("AWS::RDS::DBCluster", {
            "Engine": "aurora-postgresql",
            "Port": 5432,
        })
        template.resource_count_is("AWS::RDS::DBInstance", 1)

    def test_invalid_secret_reference_rejected(self):
        """Test that a non Secrets Manager ARN is refused"""
        with pytest.raises(ValueError, match="secret_arn"):
            DatabaseConfig(secret_arn="arn:aws:s3:::bucket").validate()

    def test_unknown_engine_rejected(self):
        """Test that only mapped engines are accepted"""
        with pytest.raises(ValueError, match="database.engine"):
            DatabaseConfig(engine="ORACLE").validate()
