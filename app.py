#!/usr/bin/env python3
import logging
import os

import aws_cdk as cdk

from infrastructure.config import load_config
from infrastructure.lib.github_actions_oidc_stack import (
    GithubActionsOIDCStack,
    RoleConfig,
    deployment_role_policies,
)
from infrastructure.lib.infra_stack import InfraStack
from infrastructure.lib.security.account_security_stack import AccountSecurityStack
from infrastructure.lib.security.security_stack import SecurityStack

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("app")

app = cdk.App()
config = load_config(app)

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

github_actions = GithubActionsOIDCStack(
    app,
    "GithubActionsOIDCStack",
    env=env,
    repository_config=config.repository,
    role_config=RoleConfig(
        inline_policies=deployment_role_policies(env.account, env.region),
    ),
    description="GitHub Actions OIDC federation and sample app image repository",
)

infra = InfraStack(
    app,
    "InfraStack",
    env=env,
    github_actions_role=github_actions.role,
    app_config=config,
    # Tag pushed by the first CI run
    app_image=config.sample_app_image
    or github_actions.repository.repository_uri_for_tag("initial"),
    description="VPC, MongoDB with backups and EKS cluster for the sample app",
)
infra.add_dependency(github_actions)

stacks = [github_actions, infra]

if config.enable_edge_security:
    security = SecurityStack(
        app,
        "SecurityStack",
        env=env,
        ingress_stack_tag=config.ingress_stack_tag,
        description="CloudFront and WAF protection for the sample app",
    )
    security.add_dependency(infra)
    stacks.append(security)

if config.enable_account_security:
    account_security = AccountSecurityStack(
        app,
        "AccountSecurityStack",
        env=env,
        description="CloudTrail, AWS Config and Access Analyzer for the account",
    )
    stacks.append(account_security)

for stack in stacks:
    cdk.Tags.of(stack).add("Project", "AwsK8sMongoDbApp")

logger.info("Synthesizing stacks: %s", ", ".join(s.stack_name for s in stacks))

app.synth()
