import json
import logging
from pathlib import Path
from string import Template
from typing import Optional

from aws_cdk import (
    Aws,
    CfnTag,
    RemovalPolicy,
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_s3 as s3,
    aws_scheduler as scheduler,
    aws_secretsmanager as secretsmanager,
    aws_ssm as ssm,
)
from constructs import Construct

from infrastructure.config import MongoDbBackupConfig

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets"
USER_DATA_FILE = ASSETS_DIR / "userdata.sh"
BACKUP_DOCUMENT_FILE = ASSETS_DIR / "backup-document.json"

DEFAULT_SECRET_NAME = "mongodb/credentials"
START_AUTOMATION_TARGET_ARN = "arn:aws:scheduler:::aws-sdk:ssm:startAutomationExecution"


def render_user_data(secret_name: str) -> str:
    """Returns the instance bootstrap script bound to the credentials secret."""
    return Template(USER_DATA_FILE.read_text(encoding="utf-8")).safe_substitute(
        mongodb_secret_name=secret_name
    )


def load_backup_document() -> dict:
    return json.loads(BACKUP_DOCUMENT_FILE.read_text(encoding="utf-8"))


class MongoDbInstanceWithBackup(Construct):
    """
    Provisions an EC2 instance with MongoDB installed and, when a backup
    configuration is given, a recurring dump of the database to S3 driven by
    an SSM Automation document and an EventBridge Scheduler schedule.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        vpc_subnet: ec2.ISubnet,
        instance_type: ec2.InstanceType,
        machine_image: ec2.IMachineImage,
        backup_config: Optional[MongoDbBackupConfig] = None,
        mongo_db_secret_name: str = DEFAULT_SECRET_NAME,
    ) -> None:
        super().__init__(scope, construct_id)

        if backup_config is not None and not backup_config.schedule_expression:
            raise ValueError(
                "backup schedule expression is required when backup is configured"
            )

        self.backup_bucket: Optional[s3.Bucket] = None
        self.ssm_document: Optional[ssm.CfnDocument] = None
        self.schedule: Optional[scheduler.CfnSchedule] = None

        # EC2 Security Group
        self.security_group = ec2.SecurityGroup(
            self,
            "MongoDbInstanceSG",
            vpc=vpc,
            description="Security Group for EC2 instance hosting MongoDB",
            allow_all_outbound=True,
        )
        self.security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(),
            ec2.Port.tcp(22),
            "Allow SSH access from anywhere (restrict in production!)",
        )

        # Instance role, registered with SSM
        self.role = iam.Role(
            self,
            "MongoEc2Role",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AmazonSSMManagedInstanceCore"
                )
            ],
        )
        self.role.add_to_policy(
            iam.PolicyStatement(actions=["ec2:*"], resources=["*"])
        )

        self.instance = ec2.Instance(
            self,
            "MongoDbEC2Instance",
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnets=[vpc_subnet]),
            instance_type=instance_type,
            machine_image=machine_image,
            security_group=self.security_group,
            user_data=ec2.UserData.custom(render_user_data(mongo_db_secret_name)),
            role=self.role,
        )

        self.credentials = secretsmanager.Secret(
            self,
            "MongoDBCredentials",
            secret_name=mongo_db_secret_name,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": "dbAdmin"}),
                generate_string_key="password",
                exclude_punctuation=True,
                include_space=False,
            ),
        )
        self.credentials.grant_read(self.role)

        if backup_config is None:
            logger.info("MongoDB backups disabled for %s", self.node.path)
            return

        logger.info(
            "MongoDB backups for %s scheduled with %s",
            self.node.path,
            backup_config.schedule_expression,
        )
        self._create_backup_resources(backup_config, mongo_db_secret_name)

    def _create_backup_resources(
        self, backup_config: MongoDbBackupConfig, secret_name: str
    ) -> None:
        """Creates the bucket, automation document and schedule for backups."""
        # Backups are published for public read and list
        self.backup_bucket = s3.Bucket(
            self,
            "MongoBackupBucket",
            block_public_access=s3.BlockPublicAccess(
                block_public_acls=False,
                block_public_policy=False,
                ignore_public_acls=False,
                restrict_public_buckets=False,
            ),
            cors=[
                s3.CorsRule(
                    allowed_methods=[s3.HttpMethods.GET, s3.HttpMethods.HEAD],
                    allowed_origins=["*"],
                )
            ],
            removal_policy=RemovalPolicy.DESTROY,
            auto_delete_objects=True,
        )
        self.backup_bucket.grant_write(self.role)
        self.backup_bucket.grant_read(iam.AnyPrincipal())

        automation_role = iam.Role(
            self,
            "SSMAutomationRole",
            assumed_by=iam.ServicePrincipal("ssm.amazonaws.com"),
            description="IAM role that SSM Automation assumes to perform MongoDB backups",
        )
        automation_role.add_to_policy(
            iam.PolicyStatement(actions=["ssm:SendCommand"], resources=["*"])
        )
        self.backup_bucket.grant_read_write(automation_role)

        self.ssm_document = ssm.CfnDocument(
            self,
            "MongoDBBackupSSMDoc",
            name=f"MongoDB-S3-Backup-Document-{Aws.STACK_NAME}",
            content=load_backup_document(),
            document_type="Automation",
            document_format="JSON",
            tags=[CfnTag(key="Purpose", value="MongoDBBackup")],
        )

        scheduler_role = iam.Role(
            self,
            "EventBridgeSchedulerSSMRole",
            assumed_by=iam.ServicePrincipal("scheduler.amazonaws.com"),
            description="IAM role for EventBridge Scheduler to start SSM Automation",
        )
        scheduler_role.add_to_policy(
            iam.PolicyStatement(
                actions=["ssm:StartAutomationExecution"],
                resources=[
                    f"arn:aws:ssm:{Aws.REGION}:{Aws.ACCOUNT_ID}:automation-definition/{self.ssm_document.name}:$DEFAULT",
                    f"arn:aws:ssm:{Aws.REGION}:{Aws.ACCOUNT_ID}:automation-execution/*",
                ],
            )
        )
        scheduler_role.add_to_policy(
            iam.PolicyStatement(
                actions=["ssm:*"],
                resources=[f"arn:aws:ssm:{Aws.REGION}:{Aws.ACCOUNT_ID}:*"],
            )
        )
        scheduler_role.add_to_policy(
            iam.PolicyStatement(
                actions=["ssm:SendCommand"],
                resources=[
                    f"arn:aws:ec2:{Aws.REGION}:{Aws.ACCOUNT_ID}:instance/{self.instance.instance_id}",
                    f"arn:aws:ssm:{Aws.REGION}::document/AWS-RunShellScript",
                ],
            )
        )
        # The scheduler passes the automation role on to SSM
        automation_role.grant_pass_role(scheduler_role)

        self.schedule = scheduler.CfnSchedule(
            self,
            "MongoDBS3BackupSchedule",
            flexible_time_window=scheduler.CfnSchedule.FlexibleTimeWindowProperty(
                mode="FLEXIBLE", maximum_window_in_minutes=5
            ),
            schedule_expression=backup_config.schedule_expression,
            schedule_expression_timezone=backup_config.schedule_timezone or "UTC",
            target=scheduler.CfnSchedule.TargetProperty(
                arn=START_AUTOMATION_TARGET_ARN,
                role_arn=scheduler_role.role_arn,
                input=Stack.of(self).to_json_string(
                    {
                        "DocumentName": self.ssm_document.name,
                        "Parameters": {
                            "InstanceId": [self.instance.instance_id],
                            "AutomationAssumeRole": [automation_role.role_arn],
                            "S3BucketName": [self.backup_bucket.bucket_name],
                            "Region": [Aws.REGION],
                            "SecretName": [secret_name],
                        },
                    }
                ),
            ),
            state="ENABLED",
        )
