from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    CfnOutput,
)
import aws_cdk.aws_eks_v2_alpha as eks
from aws_cdk.lambda_layer_kubectl_v32 import KubectlV32Layer
from constructs import Construct

from infrastructure.config import AppConfig
from infrastructure.lib import k8s_manifests as manifests
from infrastructure.lib.mongodb_instance import MongoDbInstanceWithBackup


class InfraStack(Stack):
    """
    Application infrastructure: the VPC, the MongoDB host with its backups and
    the EKS cluster running the sample application against it.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        github_actions_role: iam.IRole,
        app_config: AppConfig,
        app_image: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # VPC with public and private subnets
        self.vpc = ec2.Vpc(
            self,
            "AppVpc",
            max_azs=2,
            subnet_configuration=[
                ec2.SubnetConfiguration(name="public", subnet_type=ec2.SubnetType.PUBLIC),
                ec2.SubnetConfiguration(
                    name="private", subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
                ),
            ],
        )

        self.mongodb = MongoDbInstanceWithBackup(
            self,
            "MongoDBInstanceWithBackup",
            vpc=self.vpc,
            vpc_subnet=self.vpc.select_subnets(subnet_type=ec2.SubnetType.PUBLIC).subnets[0],
            machine_image=ec2.MachineImage.generic_linux(app_config.mongo_ami_map),
            instance_type=ec2.InstanceType(app_config.mongo_instance_type),
            backup_config=app_config.backup,
        )

        self.cluster = eks.Cluster(
            self,
            "EksCluster",
            version=eks.KubernetesVersion.V1_32,
            vpc=self.vpc,
            vpc_subnets=[ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)],
            default_capacity_type=eks.DefaultCapacityType.AUTOMODE,
            kubectl_provider_options=eks.KubectlProviderOptions(
                kubectl_layer=KubectlV32Layer(self, "kubectl"),
            ),
        )
        self.mongodb.security_group.add_ingress_rule(
            ec2.Peer.security_group_id(self.cluster.cluster_security_group_id),
            ec2.Port.tcp(manifests.MONGODB_PORT),
            "MongoDB from EKS Nodes",
        )

        self._add_secrets_store_addons()
        self.sample_app_service_account = self._add_sample_app(
            app_image, app_config.sample_app_secret_key
        )

        # Let GitHub Actions deploy by updating the container image
        eks.AccessEntry(
            self,
            "GitHubActionsEksAccessEntry",
            cluster=self.cluster,
            principal=github_actions_role.role_arn,
            access_entry_type=eks.AccessEntryType.STANDARD,
            access_policies=[
                eks.AccessPolicy.from_access_policy_name(
                    "AmazonEKSAdminPolicy",
                    access_scope_type=eks.AccessScopeType.CLUSTER,
                ),
                eks.AccessPolicy.from_access_policy_name(
                    "AmazonEKSClusterAdminPolicy",
                    access_scope_type=eks.AccessScopeType.CLUSTER,
                ),
            ],
        )

        # Outputs
        CfnOutput(
            self,
            "MongoDBInstancePrivateIp",
            value=self.mongodb.instance.instance_private_ip,
            description="Private IP address of the MongoDB EC2 instance",
        )

        if self.mongodb.backup_bucket is not None:
            CfnOutput(
                self,
                "BackupS3BucketName",
                value=self.mongodb.backup_bucket.bucket_name,
                description="Name of the S3 bucket for MongoDB backups",
            )

        CfnOutput(
            self,
            "EksClusterName",
            value=self.cluster.cluster_name,
            description="Name of the EKS Cluster",
        )

        CfnOutput(
            self,
            "SampleAppServiceAccountName",
            value=self.sample_app_service_account.service_account_name,
            description="Kubernetes service account of the sample application",
        )

    def _add_secrets_store_addons(self) -> None:
        """Installs the Secrets Store CSI driver and its AWS provider."""
        self.cluster.add_helm_chart(
            "SecretsStoreCsiDriver",
            chart="secrets-store-csi-driver",
            release="csi-secrets-store",
            repository="https://kubernetes-sigs.github.io/secrets-store-csi-driver/charts",
            namespace="kube-system",
            wait=True,
            # Sync mounted secrets into native Kubernetes Secrets
            values={"syncSecret": {"enabled": True}},
        )

        self.cluster.add_helm_chart(
            "AwsSecretsProvider",
            chart="secrets-store-csi-driver-provider-aws",
            release="secrets-store-csi-driver-provider-aws",
            repository="https://aws.github.io/secrets-store-csi-driver-provider-aws",
            namespace="kube-system",
            version="1.0.1",
            wait=True,
            values={"rotationPollInterval": "30s"},
        )

    def _add_sample_app(self, app_image: str, secret_key: str) -> eks.ServiceAccount:
        service_account = self.cluster.add_service_account(
            "SampleAppServiceAccount",
            name="sample-app-sa",
            namespace="default",
        )

        self.cluster.add_manifest(
            "SampleAppSAClusterRoleBinding",
            manifests.service_account_admin_binding(
                service_account.service_account_name,
                service_account.service_account_namespace,
            ),
        )

        service_account.role.add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name("AmazonEKSClusterPolicy")
        )
        service_account.role.add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name("AmazonEKSVPCResourceController")
        )
        self.mongodb.credentials.grant_read(service_account)

        secret_provider_class = self.cluster.add_manifest(
            "MongoDBSecretProviderClass",
            manifests.secret_provider_class(self.mongodb.credentials.secret_name),
        )
        secret_provider_class.node.add_dependency(service_account)

        self.cluster.add_manifest(
            "MongoService",
            manifests.external_mongodb_service(
                self.mongodb.instance.instance_private_dns_name
            ),
        )
        self.cluster.add_manifest("AppIngressClass", manifests.alb_ingress_class())

        self.cluster.add_manifest(
            "AppDeployment",
            manifests.sample_app_deployment(
                app_image, service_account.service_account_name, secret_key
            ),
        )
        self.cluster.add_manifest("AppService", manifests.sample_app_service())
        self.cluster.add_manifest("AppIngress", manifests.sample_app_ingress())

        return service_account
