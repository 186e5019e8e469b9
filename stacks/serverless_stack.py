#!/usr/bin/env python3
import os

from aws_cdk import (
    Stack,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_lambda_event_sources as event_sources,
    aws_logs as logs,
    aws_s3 as s3,
    aws_sqs as sqs,
    Duration,
    RemovalPolicy,
    CfnOutput,
)
from constructs import Construct

from stacks.config import ServerlessConfig

LAMBDA_ASSET_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "lambda")


class ServerlessStack(Stack):
    """Bucket uploads forwarded to an SQS queue by a Lambda function."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: ServerlessConfig = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config or ServerlessConfig()
        self.config.validate()

        self.bucket = s3.Bucket(
            self,
            "UploadBucket",
            bucket_name=self.config.bucket_name,
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.queue = sqs.Queue(
            self,
            "EventQueue",
            queue_name=self.config.queue_name,
            retention_period=Duration.days(4),
        )

        # Dead Letter Queue for failed asynchronous invocations
        self.dlq = sqs.Queue(
            self,
            "ForwarderDLQ",
            queue_name=f"{self.config.queue_name}-forwarder-dlq",
            retention_period=Duration.days(14),
        )

        # Lambda execution role: logging plus sending to the event queue
        self.lambda_role = iam.Role(
            self,
            "ForwarderRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ],
            inline_policies={
                "SendToQueue": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=["sqs:SendMessage"],
                            resources=[self.queue.queue_arn],
                        ),
                    ]
                )
            },
        )

        self.log_group = logs.LogGroup(
            self,
            "ForwarderLogGroup",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.forwarder_lambda = lambda_.Function(
            self,
            "ForwarderLambda",
            runtime=lambda_.Runtime.PYTHON_3_11,
            handler="lambda_function.handler",
            code=lambda_.Code.from_asset(LAMBDA_ASSET_DIR),
            role=self.lambda_role,
            timeout=Duration.seconds(self.config.function_timeout_seconds),
            memory_size=self.config.function_memory_mb,
            dead_letter_queue=self.dlq,
            environment={
                "SQS_QUEUE_URL": self.queue.queue_url,
            },
            log_group=self.log_group,
        )

        key_filters = []
        if self.config.key_prefix or self.config.key_suffix:
            key_filters.append(
                s3.NotificationKeyFilter(
                    prefix=self.config.key_prefix,
                    suffix=self.config.key_suffix,
                )
            )

        self.forwarder_lambda.add_event_source(
            event_sources.S3EventSource(
                self.bucket,
                events=[s3.EventType.OBJECT_CREATED],
                filters=key_filters,
            )
        )

        # Outputs
        CfnOutput(
            self,
            "BucketName",
            value=self.bucket.bucket_name,
            description="Bucket whose uploads are forwarded to the queue",
        )

        CfnOutput(
            self,
            "QueueUrl",
            value=self.queue.queue_url,
            description="Queue receiving one message per uploaded object",
        )

        CfnOutput(
            self,
            "FunctionName",
            value=self.forwarder_lambda.function_name,
            description="Forwarder Lambda function name",
        )
