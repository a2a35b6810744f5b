from dataclasses import dataclass
from typing import Dict, List, Optional

from aws_cdk import (
    Aws,
    Stack,
    aws_ecr as ecr,
    aws_iam as iam,
    CfnOutput,
    Duration,
    Tags,
)
from constructs import Construct

from infrastructure.config import RepositoryConfig

GITHUB_OIDC_URL = "https://token.actions.githubusercontent.com"
GITHUB_OIDC_AUDIENCE = "sts.amazonaws.com"


@dataclass
class RoleConfig:
    inline_policies: Optional[Dict[str, iam.PolicyDocument]] = None
    managed_policies: Optional[List[iam.IManagedPolicy]] = None


def deployment_role_policies(
    account: Optional[str] = None, region: Optional[str] = None
) -> Dict[str, iam.PolicyDocument]:
    """
    Inline policies letting CI assume the CDK roles, push images and reach EKS.
    Without an explicit account or region the deploying stack's own is used.
    """
    account = account or Aws.ACCOUNT_ID
    region = region or Aws.REGION
    return {
        "AssumeCdkRolePolicy": iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    actions=["sts:AssumeRole"],
                    resources=[f"arn:aws:iam::{account}:role/cdk-*"],
                )
            ]
        ),
        "EcrPolicy": iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    actions=["ecr:*"],
                    resources=[f"arn:aws:ecr:{region}:{account}:*"],
                )
            ]
        ),
        "EKSPolicy": iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    actions=["eks:DescribeCluster", "eks:ListClusters"],
                    resources=["*"],
                )
            ]
        ),
    }


class GithubActionsOIDCStack(Stack):
    """
    Federates GitHub Actions with IAM so workflows of a single repository can
    deploy without long-lived credentials, and hosts the ECR repository the
    workflows push the sample application image to.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        repository_config: RepositoryConfig,
        role_config: RoleConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        github_provider = iam.OpenIdConnectProvider(
            self,
            "GithubActionsProvider",
            url=GITHUB_OIDC_URL,
            client_ids=[GITHUB_OIDC_AUDIENCE],
        )

        repo_deploy_access = (
            f"repo:{repository_config.owner}/{repository_config.repo}"
            f":{repository_config.filter or '*'}"
        )
        conditions = {
            "StringLike": {
                "token.actions.githubusercontent.com:sub": repo_deploy_access,
            },
            "StringEquals": {
                "token.actions.githubusercontent.com:aud": GITHUB_OIDC_AUDIENCE,
            },
        }

        self.role = iam.Role(
            self,
            "GitHubActionsOidcAccessRole",
            role_name="GitHubActionsOidcAccessRole",
            assumed_by=iam.WebIdentityPrincipal(
                github_provider.open_id_connect_provider_arn, conditions
            ),
            inline_policies=role_config.inline_policies,
            managed_policies=role_config.managed_policies,
            description="This role is used via GitHub Actions assume the role in the target AWS account",
            max_session_duration=Duration.hours(12),
        )

        self.repository = ecr.Repository(self, "SampleAppRepo")

        # Outputs
        CfnOutput(
            self,
            "GitHubActionsOidcAccessRoleArn",
            value=self.role.role_arn,
            description=f"Arn for AWS IAM role with Github Actions OIDC auth for {repo_deploy_access}",
            export_name="GitHubActionsOidcAccessRoleArn",
        )

        CfnOutput(
            self,
            "ECRRepositoryName",
            value=self.repository.repository_name,
            description="Name of the ECR Repository to store application docker images",
            export_name="ECRRepositoryName",
        )

        Tags.of(self).add("component", "CdkGithubActionsOidcIamRole")
