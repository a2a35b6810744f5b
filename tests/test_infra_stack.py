from aws_cdk import App, Environment
from aws_cdk.assertions import Match, Template

from infrastructure.config import AppConfig, RepositoryConfig
from infrastructure.lib.github_actions_oidc_stack import GithubActionsOIDCStack, RoleConfig
from infrastructure.lib.infra_stack import InfraStack


def _literal_text(value) -> str:
    """Concatenates the literal parts of a string that may contain tokens."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and "Fn::Join" in value:
        return "".join(_literal_text(part) for part in value["Fn::Join"][1])
    return ""


class TestInfraStack:
    """Test suite for the InfraStack."""

    def create_infra_stack(self, app_config=None) -> InfraStack:
        """Helper method to create the InfraStack next to its CI role stack."""
        app = App()
        env = Environment(account="123456789012", region="us-east-1")
        github_actions = GithubActionsOIDCStack(
            app,
            "test-github-actions",
            repository_config=RepositoryConfig(owner="acme", repo="shop"),
            role_config=RoleConfig(),
            env=env,
        )
        return InfraStack(
            app,
            "test-infra",
            github_actions_role=github_actions.role,
            app_config=app_config or AppConfig(),
            app_image="123456789012.dkr.ecr.us-east-1.amazonaws.com/sample-app:initial",
            env=env,
        )

    def test_vpc_with_public_and_private_subnets(self):
        """Test that the VPC spans two AZs with public and private subnets."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.resource_count_is("AWS::EC2::VPC", 1)
        template.resource_count_is("AWS::EC2::Subnet", 4)
        template.has_resource_properties(
            "AWS::EC2::Subnet",
            {
                "MapPublicIpOnLaunch": True,
                "Tags": Match.array_with(
                    [{"Key": "aws-cdk:subnet-name", "Value": "public"}]
                ),
            },
        )
        template.has_resource_properties(
            "AWS::EC2::Subnet",
            {
                "Tags": Match.array_with(
                    [{"Key": "aws-cdk:subnet-name", "Value": "private"}]
                ),
            },
        )

    def test_mongodb_instance_with_backup(self):
        """Test that the MongoDB host is created with the default backup schedule."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::EC2::Instance",
            {"InstanceType": "t3.small", "ImageId": "ami-0195204d5dce06d99"},
        )
        template.has_resource_properties(
            "AWS::Scheduler::Schedule",
            {"ScheduleExpression": "cron(0 2 * * ? *)"},
        )

    def test_mongodb_reachable_from_cluster(self):
        """Test that the cluster security group may reach MongoDB."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::EC2::SecurityGroup",
            {
                "SecurityGroupIngress": Match.array_with(
                    [
                        Match.object_like(
                            {
                                "FromPort": 27017,
                                "ToPort": 27017,
                                "IpProtocol": "tcp",
                                "Description": "MongoDB from EKS Nodes",
                            }
                        )
                    ]
                )
            },
        )

    def test_eks_cluster_created(self):
        """Test that the EKS cluster runs the expected Kubernetes version."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.resource_count_is("AWS::EKS::Cluster", 1)
        template.has_resource_properties("AWS::EKS::Cluster", {"Version": "1.32"})

    def test_secrets_store_helm_charts(self):
        """Test that the Secrets Store CSI driver and AWS provider are installed."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "Custom::AWSCDK-EKS-HelmChart",
            {
                "Chart": "secrets-store-csi-driver",
                "Release": "csi-secrets-store",
                "Namespace": "kube-system",
                "Repository": "https://kubernetes-sigs.github.io/secrets-store-csi-driver/charts",
            },
        )
        template.has_resource_properties(
            "Custom::AWSCDK-EKS-HelmChart",
            {
                "Chart": "secrets-store-csi-driver-provider-aws",
                "Release": "secrets-store-csi-driver-provider-aws",
                "Namespace": "kube-system",
                "Version": "1.0.1",
            },
        )

    def test_sample_app_manifests_applied(self):
        """Test that the sample app manifests are applied to the cluster."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        for kind in ("IngressClass", "Ingress", "Deployment", "ClusterRoleBinding"):
            template.has_resource_properties(
                "Custom::AWSCDK-EKS-KubernetesResource",
                {"Manifest": Match.string_like_regexp(f'"kind":"{kind}"')},
            )

    def test_service_account_policies(self):
        """Test that the sample app service account role gets the EKS managed policies."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        for policy_name in ("AmazonEKSClusterPolicy", "AmazonEKSVPCResourceController"):
            template.has_resource_properties(
                "AWS::IAM::Role",
                {
                    "ManagedPolicyArns": Match.array_with(
                        [
                            {
                                "Fn::Join": [
                                    "",
                                    [
                                        "arn:",
                                        {"Ref": "AWS::Partition"},
                                        f":iam::aws:policy/{policy_name}",
                                    ],
                                ]
                            }
                        ]
                    )
                },
            )

    def test_github_actions_access_entry(self):
        """Test that the CI role is granted cluster access."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::EKS::AccessEntry",
            {
                "Type": "STANDARD",
                "AccessPolicies": Match.array_with(
                    [
                        Match.object_like(
                            {"AccessScope": {"Type": "cluster"}}
                        )
                    ]
                ),
            },
        )

    def test_outputs_created(self):
        """Test that stack outputs are created."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_output("MongoDBInstancePrivateIp", {})
        template.has_output("BackupS3BucketName", {})
        template.has_output("EksClusterName", {})

    def test_backup_output_skipped_without_backups(self):
        """Test that no backup bucket output exists when backups are disabled."""
        # Given
        stack = self.create_infra_stack(AppConfig(backup_schedule=None))

        # When
        template = Template.from_stack(stack)

        # Then
        assert template.find_outputs("BackupS3BucketName") == {}
        template.resource_count_is("AWS::Scheduler::Schedule", 0)

    def test_secret_provider_class_waits_for_service_account(self):
        """Test that the SecretProviderClass is applied after the service account exists."""
        # Given
        stack = self.create_infra_stack()
        role_logical_id = stack.get_logical_id(
            stack.sample_app_service_account.role.node.default_child
        )

        # When
        template = Template.from_stack(stack)

        # Then
        manifests = template.find_resources("Custom::AWSCDK-EKS-KubernetesResource")
        (secret_provider_class,) = [
            resource
            for resource in manifests.values()
            if '"kind":"SecretProviderClass"'
            in _literal_text(resource["Properties"]["Manifest"])
        ]
        assert role_logical_id in secret_provider_class["DependsOn"]

    def test_service_account_name_output(self):
        """Test that the sample app service account name is exposed."""
        # Given
        stack = self.create_infra_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_output("SampleAppServiceAccountName", {"Value": "sample-app-sa"})
