from aws_cdk import (
    Stack,
    aws_accessanalyzer as accessanalyzer,
    aws_cloudtrail as cloudtrail,
    aws_config as config,
    aws_iam as iam,
    aws_s3 as s3,
    CfnOutput,
    RemovalPolicy,
    Tags,
)
from constructs import Construct


class AccountSecurityStack(Stack):
    """
    Account-wide audit and compliance baseline.
    It includes:
    - CloudTrail across all regions for audit purposes
    - AWS Config continuously recording resources, with rules detecting
      public SSH access and publicly readable S3 buckets
    - IAM Access Analyzer for the account
    """

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        trail_log_bucket = s3.Bucket(
            self,
            "SampleCloudTrailLogsBucket",
            removal_policy=RemovalPolicy.DESTROY,
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
        )

        cloudtrail.Trail(
            self,
            "SampleTrail",
            bucket=trail_log_bucket,
            is_multi_region_trail=True,
            include_global_service_events=True,
            enable_file_validation=True,
            send_to_cloud_watch_logs=True,
        )

        config_role = iam.Role(
            self,
            "ConfigRecorderRole",
            assumed_by=iam.ServicePrincipal("config.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWS_ConfigRole"
                ),
            ],
        )

        config_recorder = config.CfnConfigurationRecorder(
            self,
            "SampleConfigRecorder",
            name="default",
            role_arn=config_role.role_arn,
            recording_group=config.CfnConfigurationRecorder.RecordingGroupProperty(
                all_supported=True, include_global_resource_types=True
            ),
        )

        config_bucket = s3.Bucket(
            self,
            "ConfigBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
        )

        # AWSConfigBucketPermissionsCheck
        config_bucket.add_to_resource_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                principals=[config_role],
                resources=[config_bucket.bucket_arn],
                actions=["s3:GetBucketAcl"],
            )
        )

        # AWSConfigBucketDelivery
        config_bucket.add_to_resource_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                principals=[config_role],
                resources=[
                    config_bucket.arn_for_objects(
                        f"AWSLogs/{Stack.of(self).account}/Config/*"
                    )
                ],
                actions=["s3:PutObject"],
                conditions={
                    "StringEquals": {"s3:x-amz-acl": "bucket-owner-full-control"}
                },
            )
        )

        config.CfnDeliveryChannel(
            self,
            "ConfigDeliveryChannel",
            s3_bucket_name=config_bucket.bucket_name,
        )

        s3_public_read_rule = config.ManagedRule(
            self,
            "S3BucketPublicReadProhibited",
            identifier=config.ManagedRuleIdentifiers.S3_BUCKET_PUBLIC_READ_PROHIBITED,
            description="Checks if S3 buckets are publicly readable.",
            rule_scope=config.RuleScope.from_resource(config.ResourceType.S3_BUCKET),
        )
        s3_public_read_rule.node.add_dependency(config_recorder)

        ssh_rule = config.ManagedRule(
            self,
            "RestrictedSSH",
            identifier=config.ManagedRuleIdentifiers.EC2_SECURITY_GROUPS_INCOMING_SSH_DISABLED,
            description="Checks whether security groups are configured to restrict unrestricted incoming SSH traffic.",
            rule_scope=config.RuleScope.from_resource(
                config.ResourceType.EC2_SECURITY_GROUP
            ),
        )
        ssh_rule.node.add_dependency(config_recorder)

        accessanalyzer.CfnAnalyzer(
            self,
            "AccountAccessAnalyzer",
            type="ACCOUNT",
        )

        Tags.of(self).add("Stack", "AccountSecurity")

        # Outputs
        CfnOutput(
            self,
            "CloudTrailBucketName",
            value=trail_log_bucket.bucket_name,
            description="S3 Bucket where CloudTrail stores logs",
        )

        CfnOutput(
            self,
            "AWSConfigBucketName",
            value=config_bucket.bucket_name,
            description="S3 Bucket where AWS Config stores configuration data and snapshots",
        )
