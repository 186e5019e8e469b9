#!/usr/bin/env python3
import logging

import aws_cdk as cdk

from stacks.compute_stack import ComputeStack
from stacks.config import AppConfig, load_config
from stacks.database_stack import DatabaseStack
from stacks.network_stack import NetworkStack
from stacks.observability_stack import ObservabilityStack
from stacks.security_stack import SecurityStack
from stacks.serverless_stack import ServerlessStack
from stacks.waf_stack import WafStack


def build_stacks(app: cdk.App, config: AppConfig) -> dict:
    """Declare every stack of the application on ``app``."""
    env = cdk.Environment(account=config.account, region=config.region)
    prefix = config.project_name

    # Network Stack - VPC with ingress, application and data tiers
    network = NetworkStack(app, f"{prefix}Network", config=config.network, env=env)

    # Security Stack - tier boundaries
    security = SecurityStack(
        app,
        f"{prefix}Security",
        network=network,
        database_port=config.database.database_port,
        http_port=config.compute.http_port,
        env=env,
    )

    # Compute Stack - autoscaled instances behind a load balancer
    compute = ComputeStack(
        app,
        f"{prefix}Compute",
        network=network,
        security=security,
        config=config.compute,
        env=env,
    )

    # Database Stack - Aurora cluster in the data tier
    database = DatabaseStack(
        app,
        f"{prefix}Database",
        network=network,
        security=security,
        config=config.database,
        env=env,
    )

    # Serverless Stack - bucket uploads forwarded to a queue
    serverless = ServerlessStack(app, f"{prefix}Serverless", config=config.serverless, env=env)

    # WAF Stack - optionally attached to the load balancer
    waf_resource_arn = None
    if config.waf.associate_load_balancer:
        waf_resource_arn = compute.load_balancer.load_balancer_arn
    waf = WafStack(
        app,
        f"{prefix}Waf",
        config=config.waf,
        resource_arn=waf_resource_arn,
        env=env,
    )

    # Observability Stack - dashboard and alarms
    observability = ObservabilityStack(
        app,
        f"{prefix}Observability",
        compute=compute,
        database=database,
        serverless=serverless,
        env=env,
    )

    # Database must exist before instances start using it
    compute.node.add_dependency(database)

    stacks = {
        "network": network,
        "security": security,
        "compute": compute,
        "database": database,
        "serverless": serverless,
        "waf": waf,
        "observability": observability,
    }

    for stack in stacks.values():
        for key, value in config.tags.items():
            cdk.Tags.of(stack).add(key, value)

    return stacks


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    app = cdk.App()
    config = load_config(app.node)
    build_stacks(app, config)
    app.synth()


if __name__ == "__main__":
    main()
