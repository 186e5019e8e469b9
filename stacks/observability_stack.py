#!/usr/bin/env python3
from aws_cdk import (
    Stack,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cw_actions,
    aws_sns as sns,
    Duration,
    CfnOutput,
)
from constructs import Construct
from stacks.compute_stack import ComputeStack
from stacks.database_stack import DatabaseStack
from stacks.serverless_stack import ServerlessStack


class ObservabilityStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        compute: ComputeStack,
        database: DatabaseStack,
        serverless: ServerlessStack,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # SNS Topic for alerts
        self.alerts_topic = sns.Topic(
            self,
            "InfrastructureAlerts",
            display_name="Infrastructure Alerts",
        )

        # CloudWatch Dashboard
        self.dashboard = cloudwatch.Dashboard(
            self,
            "InfrastructureDashboard",
            dashboard_name=f"{self.stack_name}-Infrastructure",
        )

        asg_dimensions = {
            "AutoScalingGroupName": compute.auto_scaling_group.auto_scaling_group_name
        }
        target_dimensions = {
            "TargetGroup": compute.target_group.target_group_full_name,
            "LoadBalancer": compute.load_balancer.load_balancer_full_name,
        }
        cluster_dimensions = {
            "DBClusterIdentifier": database.db_cluster.cluster_identifier
        }
        function_dimensions = {
            "FunctionName": serverless.forwarder_lambda.function_name
        }

        healthy_hosts = cloudwatch.Metric(
            namespace="AWS/ApplicationELB",
            metric_name="HealthyHostCount",
            dimensions_map=target_dimensions,
            statistic="Minimum",
            period=Duration.minutes(1),
        )
        database_cpu = cloudwatch.Metric(
            namespace="AWS/RDS",
            metric_name="CPUUtilization",
            dimensions_map=cluster_dimensions,
            statistic="Average",
            period=Duration.minutes(5),
        )
        function_errors = cloudwatch.Metric(
            namespace="AWS/Lambda",
            metric_name="Errors",
            dimensions_map=function_dimensions,
            statistic="Sum",
            period=Duration.minutes(5),
        )

        # Compute tier widget
        compute_metrics = cloudwatch.GraphWidget(
            title="Application Tier",
            left=[
                cloudwatch.Metric(
                    namespace="AWS/EC2",
                    metric_name="CPUUtilization",
                    dimensions_map=asg_dimensions,
                    statistic="Average",
                    period=Duration.minutes(5),
                ),
            ],
            right=[
                healthy_hosts,
                cloudwatch.Metric(
                    namespace="AWS/ApplicationELB",
                    metric_name="RequestCount",
                    dimensions_map=target_dimensions,
                    statistic="Sum",
                    period=Duration.minutes(5),
                ),
            ],
            width=12,
            height=6,
        )

        # Data tier widget
        database_metrics = cloudwatch.GraphWidget(
            title="Database Cluster",
            left=[database_cpu],
            right=[
                cloudwatch.Metric(
                    namespace="AWS/RDS",
                    metric_name="DatabaseConnections",
                    dimensions_map=cluster_dimensions,
                    statistic="Average",
                    period=Duration.minutes(5),
                ),
            ],
            width=12,
            height=6,
        )

        # Event pipeline widget
        pipeline_metrics = cloudwatch.GraphWidget(
            title="Upload Event Pipeline",
            left=[
                cloudwatch.Metric(
                    namespace="AWS/Lambda",
                    metric_name="Invocations",
                    dimensions_map=function_dimensions,
                    statistic="Sum",
                    period=Duration.minutes(5),
                ),
                function_errors,
            ],
            right=[
                cloudwatch.Metric(
                    namespace="AWS/SQS",
                    metric_name="ApproximateNumberOfMessagesVisible",
                    dimensions_map={"QueueName": serverless.queue.queue_name},
                    statistic="Average",
                    period=Duration.minutes(5),
                ),
            ],
            width=12,
            height=6,
        )

        # Add widgets to dashboard
        self.dashboard.add_widgets(compute_metrics, database_metrics)
        self.dashboard.add_widgets(pipeline_metrics)

        # No healthy target behind the load balancer
        unhealthy_target_alarm = cloudwatch.Alarm(
            self,
            "NoHealthyTargetAlarm",
            metric=healthy_hosts,
            threshold=1,
            comparison_operator=cloudwatch.ComparisonOperator.LESS_THAN_THRESHOLD,
            evaluation_periods=5,
            datapoints_to_alarm=1,
            treat_missing_data=cloudwatch.TreatMissingData.BREACHING,
        )

        database_cpu_alarm = cloudwatch.Alarm(
            self,
            "DatabaseCpuAlarm",
            metric=database_cpu,
            threshold=80,
            evaluation_periods=3,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )

        function_error_alarm = cloudwatch.Alarm(
            self,
            "ForwarderErrorAlarm",
            metric=function_errors,
            threshold=1,
            evaluation_periods=1,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )

        # DLQ Messages Alarm
        dlq_alarm = cloudwatch.Alarm(
            self,
            "ForwarderDLQAlarm",
            metric=cloudwatch.Metric(
                namespace="AWS/SQS",
                metric_name="ApproximateNumberOfMessagesVisible",
                dimensions_map={"QueueName": serverless.dlq.queue_name},
                statistic="Average",
                period=Duration.minutes(1),
            ),
            threshold=1,
            evaluation_periods=1,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )

        # Add alarm actions
        for alarm in (unhealthy_target_alarm, database_cpu_alarm, function_error_alarm, dlq_alarm):
            alarm.add_alarm_action(cw_actions.SnsAction(self.alerts_topic))

        # Outputs
        CfnOutput(
            self,
            "DashboardUrl",
            value=f"https://{self.region}.console.aws.amazon.com/cloudwatch/home?region={self.region}#dashboards:name={self.dashboard.dashboard_name}",
            description="CloudWatch Dashboard URL",
        )

        CfnOutput(
            self,
            "AlertsTopicArn",
            value=self.alerts_topic.topic_arn,
            description="SNS Topic ARN for alerts",
        )
