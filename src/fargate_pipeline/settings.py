# src/fargate_pipeline/settings.py
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Deployer configuration: the stack to declare, the branch to deliver and
    where state, artifacts and secrets live.

    Environment variables override the .env files, which override the defaults
    below. Secrets are configured by reference only; their values are fetched
    from Secrets Manager when needed. Instances are frozen.
    """

    # Application Settings
    app_name: str = Field(
        default="exanubes",
        description="Application name, used as the prefix of every resource name"
    )

    environment: str = Field(
        default="production",
        description="Environment key for the persisted state snapshot"
    )

    owner: str = Field(
        default="unknown",
        description="Value of the 'owner' tag applied to every resource"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="aws-prod",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="eu-central-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    aws_account_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCOUNT_ID",
        description="AWS Account ID (auto-detected if not provided)"
    )

    # Source repository
    repository_owner: str = Field(default="exanubes")
    repository_name: str = Field(default="ecs-fargate-ci-cd-pipeline")
    branch: str = Field(
        default="master",
        description="Only pushes to this branch trigger a pipeline run"
    )
    github_api_url: str = Field(default="https://api.github.com")

    # Secret references (names or ARNs, never values)
    source_token_secret: str = Field(
        default="github/token",
        description="Secrets Manager reference holding the source-control access token"
    )
    webhook_secret: Optional[str] = Field(
        default=None,
        description="Secrets Manager reference holding the webhook signing secret"
    )

    # Container / service
    ecr_repo_name: str = Field(default="backend", description="ECR repository name")
    container_name: str = Field(default="backend")
    container_port: int = Field(default=80)
    container_cpu: int = Field(default=256)
    container_memory: int = Field(default=512)
    desired_count: int = Field(default=1)
    task_execution_role_arn: Optional[str] = Field(
        default=None,
        description="Role ECS uses to pull images from ECR and ship logs"
    )
    health_check_path: str = Field(default="/")
    dockerfile: str = Field(default="backend/Dockerfile")
    build_context: str = Field(default="backend")

    # Network
    vpc_cidr: str = Field(default="10.0.0.0/16")
    availability_zones: int = Field(default=2)

    # DNS
    hosted_zone_id: Optional[str] = Field(default=None)
    domain_name: Optional[str] = Field(default=None)

    # State and artifacts
    state_backend: str = Field(default="local", description="local or s3")
    state_dir: str = Field(default=".deployment_state")
    state_bucket: Optional[str] = Field(default=None)
    artifact_bucket: Optional[str] = Field(
        default=None,
        description="Bucket for pipeline artifacts (defaults to '<app_name>-pipeline-artifacts')"
    )

    # Provider retries (Throttled only)
    provider_max_attempts: int = Field(default=5)
    provider_backoff_base: float = Field(default=1.0)
    provider_backoff_factor: float = Field(default=2.0)

    # Ready signal polling after create/update
    ready_poll_attempts: int = Field(default=30)
    ready_poll_interval: float = Field(default=10.0)

    # Rollout polling
    rollout_poll_attempts: int = Field(default=10)
    rollout_poll_interval: float = Field(default=30.0)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('deployment_mode')
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        valid_modes = ["local-dev", "aws-mock", "aws-prod"]
        if v not in valid_modes:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {valid_modes}")
        return v

    @field_validator('state_backend')
    @classmethod
    def validate_state_backend(cls, v):
        valid_backends = ["local", "s3"]
        if v not in valid_backends:
            raise ValueError(f"Invalid state_backend: {v}. Must be one of {valid_backends}")
        return v

    @property
    def resource_prefix(self) -> str:
        return self.app_name.lower().replace(' ', '-')

    @property
    def cluster_name(self) -> str:
        return f"{self.resource_prefix}-cluster"

    @property
    def service_name(self) -> str:
        return f"{self.resource_prefix}-service"

    @property
    def artifact_bucket_name(self) -> str:
        return self.artifact_bucket or f"{self.resource_prefix}-pipeline-artifacts"

    @property
    def ecr_registry(self) -> str:
        """Get ECR registry host."""
        return f"{self.aws_account_id or '123456789012'}.dkr.ecr.{self.aws_region}.amazonaws.com"

    @property
    def repository_uri(self) -> str:
        return f"{self.ecr_registry}/{self.ecr_repo_name}"

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.local-dev", ".env.aws-mock", ".env.aws-prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
