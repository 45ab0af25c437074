"""
Suite Configuration Management

Loads configuration from environment variables (and an optional .env file).
Credentials for the integration org can also be pulled from AWS Secrets Manager,
which is how CI runs provide them.
"""

import json
from functools import lru_cache
from typing import Any, Dict, Optional

import boto3
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from salesforce_streaming.utils.exceptions import ConfigurationException


class Settings(BaseSettings):
    """Suite settings with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development", description="Environment name")

    # Application
    app_name: str = Field(default="Salesforce Streaming Integration Suite")
    app_version: str = Field(default="1.0.0")
    log_level: str = Field(default="INFO")

    # Salesforce OAuth
    salesforce_client_id: Optional[str] = Field(default=None, description="Salesforce Connected App Client ID")
    salesforce_client_secret: Optional[str] = Field(
        default=None, description="Salesforce Connected App Client Secret"
    )
    salesforce_username: Optional[str] = Field(
        default=None, description="Salesforce integration user username"
    )
    salesforce_password: Optional[str] = Field(
        default=None, description="Salesforce integration user password"
    )
    salesforce_security_token: Optional[str] = Field(
        default=None, description="Salesforce security token, appended to the password"
    )
    salesforce_instance_url: str = Field(
        default="https://login.salesforce.com", description="Salesforce login URL"
    )
    salesforce_api_version: str = Field(default="v63.0")

    # HTTP
    http_timeout: float = Field(default=30.0, description="Timeout for REST calls in seconds")

    # AWS Secrets Manager
    aws_region: str = Field(default="us-east-1")
    use_secrets_manager: bool = Field(default=False)
    secrets_manager_secret_name: str = Field(
        default="salesforce-streaming-suite/integration"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(default=5)
    retry_backoff_base: int = Field(default=2)
    retry_backoff_max: int = Field(default=32)

    # Streaming
    streaming_long_poll_timeout: float = Field(
        default=110.0, description="Server-side /meta/connect hold time in seconds"
    )
    subscribe_settle_seconds: float = Field(
        default=5.0, description="Delay between subscription ack and the triggering mutation"
    )
    delivery_timeout_seconds: float = Field(
        default=60.0, description="Hard timeout for a single expected message"
    )
    cdc_wait_seconds: float = Field(
        default=60.0, description="Soft timeout for Change Data Capture deliveries"
    )

    # Scenario fixtures
    test_channel_name: str = Field(default="/u/StreamingSuiteTestChannel")
    cdc_channel: str = Field(default="/data/AccountChangeEvent")
    push_topic_api_version: str = Field(default="54.0")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment"""
        valid_envs = ["development", "test", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v_lower

    @field_validator("salesforce_api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """Normalize API version to the 'vNN.N' form"""
        v = v.strip()
        if not v.startswith("v"):
            v = f"v{v}"
        try:
            float(v[1:])
        except ValueError:
            raise ValueError(f"Invalid Salesforce API version: {v}")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running against a production org"""
        return self.environment == "production"

    @property
    def salesforce_token_url(self) -> str:
        """Get Salesforce OAuth token endpoint"""
        return f"{self.salesforce_instance_url}/services/oauth2/token"

    @property
    def salesforce_api_version_number(self) -> str:
        """API version without the leading 'v', as the cometd endpoint expects it"""
        return self.salesforce_api_version[1:]

    @property
    def salesforce_login_password(self) -> Optional[str]:
        """Password with the security token appended, as the password flow expects it"""
        if self.salesforce_password is None:
            return None
        return f"{self.salesforce_password}{self.salesforce_security_token or ''}"

    @property
    def has_live_credentials(self) -> bool:
        """Whether enough credentials are configured to talk to a live org"""
        return not self.missing_secrets()

    def missing_secrets(self) -> list:
        missing = []
        if not self.salesforce_client_id:
            missing.append("salesforce_client_id")
        if not self.salesforce_client_secret:
            missing.append("salesforce_client_secret")
        if not self.salesforce_username:
            missing.append("salesforce_username")
        if not self.salesforce_password:
            missing.append("salesforce_password")
        return missing

    def validate_required_secrets(self) -> None:
        """
        Validate that required secrets are present.
        Raises ConfigurationException if any required secrets are missing.
        """
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationException(
                f"Missing required configuration: {', '.join(missing)}. "
                f"Set them in the environment or a .env file, "
                f"or enable USE_SECRETS_MANAGER.",
                details={"missing": missing},
            )


class SecretsManager:
    """AWS Secrets Manager client for retrieving integration org credentials"""

    def __init__(self, region: str, secret_name: str):
        self.client = boto3.client("secretsmanager", region_name=region)
        self.secret_name = secret_name

    def get_secrets(self) -> Dict[str, Any]:
        """Retrieve secrets from AWS Secrets Manager"""
        try:
            response = self.client.get_secret_value(SecretId=self.secret_name)
            secret_string = response.get("SecretString")
            if secret_string:
                return json.loads(secret_string)
            return {}
        except Exception as e:
            raise ConfigurationException(
                f"Failed to retrieve secrets from Secrets Manager: {e}",
                details={"secret_name": self.secret_name},
            ) from e


def apply_secrets(settings: Settings) -> Settings:
    """
    Override settings with the values stored in Secrets Manager.

    Secret keys are matched case-insensitively against settings fields;
    'client_id' style keys are also accepted for the Salesforce credentials.
    """
    secrets = SecretsManager(
        region=settings.aws_region,
        secret_name=settings.secrets_manager_secret_name,
    ).get_secrets()

    for key, value in secrets.items():
        field = key.lower()
        if not hasattr(settings, field):
            field = f"salesforce_{field}"
        if field in Settings.model_fields:
            setattr(settings, field, value)

    return settings


@lru_cache()
def get_settings() -> Settings:
    """
    Get suite settings (cached).
    Loads from environment variables, then Secrets Manager when enabled.
    """
    settings = Settings()

    if settings.use_secrets_manager:
        try:
            apply_secrets(settings)
        except ConfigurationException as e:
            # Fall back to environment variables; the live gate reports what is missing
            print(f"Warning: {e.message}")

    return settings


# Export singleton instance
settings = get_settings()
