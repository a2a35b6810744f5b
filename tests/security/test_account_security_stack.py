from aws_cdk import App, Environment
from aws_cdk.assertions import Match, Template

from infrastructure.lib.security.account_security_stack import AccountSecurityStack


class TestAccountSecurityStack:
    """Test suite for the AccountSecurityStack."""

    def create_stack(self) -> AccountSecurityStack:
        app = App()
        return AccountSecurityStack(
            app,
            "test-account-security",
            env=Environment(account="123456789012", region="us-east-1"),
        )

    def test_cloudtrail_multi_region(self):
        """Test that CloudTrail records all regions with file validation."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::CloudTrail::Trail",
            {
                "IsMultiRegionTrail": True,
                "IncludeGlobalServiceEvents": True,
                "EnableLogFileValidation": True,
                "CloudWatchLogsLogGroupArn": Match.any_value(),
            },
        )

    def test_trail_bucket_private(self):
        """Test that the trail bucket is encrypted and blocks public access."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::S3::Bucket",
            {
                "BucketEncryption": {
                    "ServerSideEncryptionConfiguration": [
                        {"ServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}
                    ]
                },
                "PublicAccessBlockConfiguration": {
                    "BlockPublicAcls": True,
                    "BlockPublicPolicy": True,
                    "IgnorePublicAcls": True,
                    "RestrictPublicBuckets": True,
                },
            },
        )

    def test_config_recorder_configured(self):
        """Test that AWS Config records all supported resources."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::Config::ConfigurationRecorder",
            {
                "Name": "default",
                "RecordingGroup": {
                    "AllSupported": True,
                    "IncludeGlobalResourceTypes": True,
                },
            },
        )
        template.resource_count_is("AWS::Config::DeliveryChannel", 1)

    def test_config_bucket_policy(self):
        """Test that AWS Config may check the bucket ACL and deliver snapshots."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::S3::BucketPolicy",
            {
                "PolicyDocument": {
                    "Statement": Match.array_with(
                        [
                            Match.object_like({"Action": "s3:GetBucketAcl"}),
                            Match.object_like(
                                {
                                    "Action": "s3:PutObject",
                                    "Condition": {
                                        "StringEquals": {
                                            "s3:x-amz-acl": "bucket-owner-full-control"
                                        }
                                    },
                                }
                            ),
                        ]
                    )
                }
            },
        )

    def test_config_rules(self):
        """Test that rules for public S3 read and open SSH are created."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::Config::ConfigRule",
            {
                "Source": {
                    "Owner": "AWS",
                    "SourceIdentifier": "S3_BUCKET_PUBLIC_READ_PROHIBITED",
                }
            },
        )
        template.has_resource(
            "AWS::Config::ConfigRule",
            {
                "Properties": {
                    "Source": {
                        "Owner": "AWS",
                        "SourceIdentifier": "INCOMING_SSH_DISABLED",
                    }
                },
                "DependsOn": Match.any_value(),
            },
        )

    def test_access_analyzer(self):
        """Test that an account-level Access Analyzer is enabled."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::AccessAnalyzer::Analyzer", {"Type": "ACCOUNT"}
        )

    def test_outputs_created(self):
        """Test that stack outputs are created."""
        # Given
        stack = self.create_stack()

        # When
        template = Template.from_stack(stack)

        # Then
        template.has_output("CloudTrailBucketName", {})
        template.has_output("AWSConfigBucketName", {})
