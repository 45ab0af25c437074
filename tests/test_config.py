"""
Test Configuration

Tests settings validation and loading credentials from AWS Secrets Manager.
"""

import json

import boto3
import pytest
from moto import mock_aws
from pydantic import ValidationError

from salesforce_streaming.config import SecretsManager, Settings, apply_secrets
from salesforce_streaming.utils.exceptions import ConfigurationException

SECRET_NAME = "salesforce-streaming-suite/test"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto"""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


def bare_settings(**overrides) -> Settings:
    """Settings isolated from the environment running the tests"""
    values = {
        "salesforce_client_id": None,
        "salesforce_client_secret": None,
        "salesforce_username": None,
        "salesforce_password": None,
        "salesforce_security_token": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_api_version_normalized():
    assert bare_settings(salesforce_api_version="63.0").salesforce_api_version == "v63.0"
    assert bare_settings(salesforce_api_version=" v58.0 ").salesforce_api_version == "v58.0"
    assert bare_settings(salesforce_api_version="v63.0").salesforce_api_version_number == "63.0"


def test_invalid_api_version_rejected():
    with pytest.raises(ValidationError):
        bare_settings(salesforce_api_version="latest")


def test_log_level_and_environment_normalized():
    settings = bare_settings(log_level="debug", environment="Production")

    assert settings.log_level == "DEBUG"
    assert settings.environment == "production"
    assert settings.is_production


def test_invalid_environment_rejected():
    with pytest.raises(ValidationError):
        bare_settings(environment="qa")


def test_login_password_appends_security_token():
    settings = bare_settings(salesforce_password="secret", salesforce_security_token="TOKEN")

    assert settings.salesforce_login_password == "secretTOKEN"
    assert bare_settings(salesforce_password="secret").salesforce_login_password == "secret"
    assert bare_settings().salesforce_login_password is None


def test_token_url_follows_instance_url():
    settings = bare_settings(salesforce_instance_url="https://test.salesforce.com")

    assert settings.salesforce_token_url == "https://test.salesforce.com/services/oauth2/token"


def test_streaming_defaults():
    settings = bare_settings()

    assert settings.test_channel_name == "/u/StreamingSuiteTestChannel"
    assert settings.cdc_channel == "/data/AccountChangeEvent"
    assert settings.push_topic_api_version == "54.0"
    assert settings.subscribe_settle_seconds == 5.0
    assert settings.cdc_wait_seconds == 60.0


def test_missing_secrets_reported(test_settings):
    settings = bare_settings(salesforce_client_id="id", salesforce_username="user")

    assert settings.missing_secrets() == ["salesforce_client_secret", "salesforce_password"]
    assert not settings.has_live_credentials
    assert test_settings.has_live_credentials

    with pytest.raises(ConfigurationException) as exc_info:
        settings.validate_required_secrets()

    assert exc_info.value.error_code == "CONFIG_ERROR"
    assert exc_info.value.details["missing"] == ["salesforce_client_secret", "salesforce_password"]


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("SALESFORCE_CLIENT_ID", "env_client")
    monkeypatch.setenv("CDC_WAIT_SECONDS", "12.5")

    settings = Settings(_env_file=None)

    assert settings.salesforce_client_id == "env_client"
    assert settings.cdc_wait_seconds == 12.5


@mock_aws
def test_apply_secrets_overrides_credentials(aws_credentials):
    client = boto3.client("secretsmanager", region_name="us-east-1")
    client.create_secret(
        Name=SECRET_NAME,
        SecretString=json.dumps({
            "client_id": "secret_client",
            "client_secret": "secret_value",
            "SALESFORCE_USERNAME": "integration@example.com",
            "password": "hunter2",
            "unrelated_key": "ignored",
        }),
    )

    settings = apply_secrets(bare_settings(secrets_manager_secret_name=SECRET_NAME))

    assert settings.salesforce_client_id == "secret_client"
    assert settings.salesforce_client_secret == "secret_value"
    assert settings.salesforce_username == "integration@example.com"
    assert settings.salesforce_password == "hunter2"
    assert settings.has_live_credentials
    assert not hasattr(settings, "unrelated_key")


@mock_aws
def test_missing_secret_raises_configuration_error(aws_credentials):
    manager = SecretsManager(region="us-east-1", secret_name="does-not-exist")

    with pytest.raises(ConfigurationException) as exc_info:
        manager.get_secrets()

    assert exc_info.value.details == {"secret_name": "does-not-exist"}


@mock_aws
def test_empty_secret_string(aws_credentials):
    client = boto3.client("secretsmanager", region_name="us-east-1")
    client.create_secret(Name=SECRET_NAME, SecretBinary=b"\x00")

    assert SecretsManager(region="us-east-1", secret_name=SECRET_NAME).get_secrets() == {}
