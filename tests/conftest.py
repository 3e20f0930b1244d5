"""Shared fixtures for filevault tests."""
import boto3
import pytest
from moto import mock_aws

from filevault import FileVault, VaultConfig, generate_key
from filevault import protocols
from tests.consts import TEST_BUCKET_NAME


@pytest.fixture(autouse=True)
def clean_protocols():
    """Drop stream handlers registered by a test."""
    yield
    for scheme, container in protocols.registered_protocols():
        protocols.unregister_protocol(scheme, container)


@pytest.fixture
def key():
    return generate_key("AES-128-CBC")


@pytest.fixture
def storage(tmp_path):
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def config(storage, key):
    return VaultConfig(
        key=key,
        disks={"local": {"driver": "local", "root": str(storage)}},
    )


@pytest.fixture
def vault(config):
    return FileVault(config)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        s3_client = boto3.client("s3", region_name="us-east-1")
        s3_client.create_bucket(Bucket=TEST_BUCKET_NAME)
        yield s3_client
