"""
Unit tests for the Serverless Stack
Tests the bucket notification, the forwarder Lambda and its queue permissions
"""

import json

import aws_cdk as core
import aws_cdk.assertions as assertions
import pytest

from stacks.config import ServerlessConfig
from stacks.serverless_stack import ServerlessStack


class TestServerlessStack:
    """Test class for Serverless Stack"""

    @pytest.fixture
    def app(self):
        """Create CDK app for testing"""
        return core.App()

    @pytest.fixture
    def stack(self, app):
        """Create Serverless stack for testing"""
        return ServerlessStack(app, "test-serverless-stack")

    @pytest.fixture
    def template(self, stack):
        """Create CDK template for assertions"""
        return assertions.Template.from_stack(stack)

    def test_stack_has_required_resources(self, stack):
        """Test that the stack has the expected resources"""
        assert hasattr(stack, "bucket")
        assert hasattr(stack, "queue")
        assert hasattr(stack, "dlq")
        assert hasattr(stack, "forwarder_lambda")

    def test_queue(self, template):
        """Test the event queue name"""
        template.has_resource_properties("AWS::SQS::Queue", {
            "QueueName": "serverless-queue",
        })

    def test_forwarder_function(self, stack, template):
        """Test the forwarder handler and its queue URL"""
        queue_id = stack.get_logical_id(stack.queue.node.default_child)
        template.has_resource_properties("AWS::Lambda::Function", {
            "Handler": "lambda_function.handler",
            "Runtime": "python3.11",
            "Environment": {
                "Variables": {"SQS_QUEUE_URL": {"Ref": queue_id}},
            },
            "DeadLetterConfig": assertions.Match.object_like({
                "TargetArn": assertions.Match.any_value(),
            }),
        })

    def test_object_created_notification(self, template):
        """Test that the bucket notifies on object creation"""
        template.has_resource_properties("Custom::S3BucketNotifications", {
            "NotificationConfiguration": {
                "LambdaFunctionConfigurations": [
                    assertions.Match.object_like({
                        "Events": ["s3:ObjectCreated:*"],
                    })
                ]
            }
        })

    def test_role_only_sends_to_queue(self, stack, template):
        """Test the inline policy grants sqs:SendMessage on the event queue only"""
        queue_id = stack.get_logical_id(stack.queue.node.default_child)
        role_id = stack.get_logical_id(stack.lambda_role.node.default_child)
        role = template.find_resources("AWS::IAM::Role")[role_id]
        policies = {p["PolicyName"]: p for p in role["Properties"]["Policies"]}

        statements = policies["SendToQueue"]["PolicyDocument"]["Statement"]
        assert statements == [
            {
                "Action": "sqs:SendMessage",
                "Effect": "Allow",
                "Resource": {"Fn::GetAtt": [queue_id, "Arn"]},
            }
        ]

    def test_key_filter(self, app):
        """Test the optional prefix/suffix filter"""
        stack = ServerlessStack(
            app,
            "test-serverless-filtered",
            config=ServerlessConfig(key_prefix="uploads/", key_suffix=".csv"),
        )
        template = assertions.Template.from_stack(stack)
        notifications = template.find_resources("Custom::S3BucketNotifications")
        rendered = json.dumps(notifications)
        assert "uploads/" in rendered
        assert ".csv" in rendered

    def test_invalid_timeout_rejected(self):
        """Test that Lambda limits are enforced"""
        with pytest.raises(ValueError, match="function_timeout_seconds"):
            ServerlessConfig(function_timeout_seconds=901).validate()
