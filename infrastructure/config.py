import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from constructs import Construct

logger = logging.getLogger(__name__)


@dataclass
class RepositoryConfig:
    owner: str
    repo: str
    filter: str = "*"


@dataclass
class MongoDbBackupConfig:
    # See https://docs.aws.amazon.com/scheduler/latest/UserGuide/schedule-expressions.html
    schedule_expression: str
    schedule_timezone: Optional[str] = None


@dataclass
class AppConfig:
    github_owner: str = "vitodegiosa"
    github_repo: str = "aws-k8s-mongodb-app"
    github_filter: str = "*"
    # amzn2-ami-kernel-5.10-hvm-2.0.20240620.0-x86_64-gp2
    mongo_ami_map: Dict[str, str] = field(
        default_factory=lambda: {"us-east-1": "ami-0195204d5dce06d99"}
    )
    mongo_instance_type: str = "t3.small"
    backup_schedule: Optional[str] = "cron(0 2 * * ? *)"
    backup_timezone: Optional[str] = None
    sample_app_image: Optional[str] = None
    sample_app_secret_key: str = "secret123"
    ingress_stack_tag: str = "default/sample-app-ingress"
    enable_edge_security: bool = False
    enable_account_security: bool = False

    @property
    def repository(self) -> RepositoryConfig:
        return RepositoryConfig(
            owner=self.github_owner, repo=self.github_repo, filter=self.github_filter
        )

    @property
    def backup(self) -> Optional[MongoDbBackupConfig]:
        if self.backup_schedule is None:
            return None
        return MongoDbBackupConfig(
            schedule_expression=self.backup_schedule,
            schedule_timezone=self.backup_timezone,
        )


# CDK context key -> AppConfig field
CONTEXT_KEYS = {
    "githubOwner": "github_owner",
    "githubRepo": "github_repo",
    "githubFilter": "github_filter",
    "mongoInstanceType": "mongo_instance_type",
    "backupSchedule": "backup_schedule",
    "backupTimezone": "backup_timezone",
    "sampleAppImage": "sample_app_image",
    "sampleAppSecretKey": "sample_app_secret_key",
    "ingressStackTag": "ingress_stack_tag",
}

FLAG_KEYS = {
    "enableEdgeSecurity": "enable_edge_security",
    "enableAccountSecurity": "enable_account_security",
}


def _to_bool(value) -> bool:
    """Context from `cdk -c key=value` is a string, context from cdk.json may be a bool."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_config(scope: Construct) -> AppConfig:
    """Build the application config from defaults and CDK context overrides."""
    config = AppConfig()
    overrides = {}

    for context_key, field_name in CONTEXT_KEYS.items():
        value = scope.node.try_get_context(context_key)
        if value is not None:
            logger.debug("Context %s overrides %s", context_key, field_name)
            overrides[field_name] = value

    for context_key, field_name in FLAG_KEYS.items():
        value = scope.node.try_get_context(context_key)
        if value is not None:
            logger.debug("Context flag %s=%s", context_key, value)
            overrides[field_name] = _to_bool(value)

    ami_id = scope.node.try_get_context("mongoAmiId")
    if ami_id:
        ami_region = scope.node.try_get_context("mongoAmiRegion") or "us-east-1"
        overrides["mongo_ami_map"] = {ami_region: ami_id}

    if _to_bool(scope.node.try_get_context("disableBackups") or False):
        logger.info("MongoDB backups disabled through context")
        overrides["backup_schedule"] = None

    config = replace(config, **overrides)

    if not config.github_owner or not config.github_repo:
        raise ValueError("Both 'githubOwner' and 'githubRepo' must be non-empty")

    return config
