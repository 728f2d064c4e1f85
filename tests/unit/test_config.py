"""Unit tests for environment-driven settings."""

import os

import pytest
from pydantic import ValidationError

from awsacme.challenges import ChallengeStrategy
from awsacme.client import DEFAULT_DIRECTORY_URL
from awsacme.config import Settings
from awsacme.filer import OSFiler, S3Filer
from awsacme.services import open_client, open_store


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep AAA_ variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.upper().startswith("AAA_"):
            monkeypatch.delenv(name)


class TestSettings:
    """Tests for Settings defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings()

        assert settings.directory_url == DEFAULT_DIRECTORY_URL
        assert settings.challenge_strategy is ChallengeStrategy.DNS_01
        assert settings.http_port == 9999
        assert settings.layout_version == 2
        assert settings.renewal_days == 30
        assert settings.verify is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("AAA_DIRECTORY_URL", "https://ca.test/directory")
        monkeypatch.setenv("AAA_CHALLENGE_STRATEGY", "http-01")
        monkeypatch.setenv("AAA_HTTP_PORT", "8080")
        monkeypatch.setenv("AAA_LAYOUT_VERSION", "1")

        settings = Settings()

        assert settings.directory_url == "https://ca.test/directory"
        assert settings.challenge_strategy is ChallengeStrategy.HTTP_01
        assert settings.http_port == 8080
        assert settings.layout_version == 1

    def test_invalid_port(self, monkeypatch):
        monkeypatch.setenv("AAA_HTTP_PORT", "70000")

        with pytest.raises(ValidationError):
            Settings()

    def test_invalid_layout_version(self):
        with pytest.raises(ValidationError):
            Settings(layout_version=3)

    def test_s3_strategy_requires_bucket(self):
        with pytest.raises(ValidationError):
            Settings(challenge_strategy="s3-http-01")

        assert Settings(challenge_strategy="s3-http-01", s3_bucket="b").s3_bucket == "b"

    def test_verify(self):
        assert Settings(ca_bundle="/etc/ca.pem").verify == "/etc/ca.pem"
        assert Settings(ca_bundle="/etc/ca.pem", insecure=True).verify is False


class TestBuildFiler:
    def test_local_without_bucket(self, tmp_path):
        filer = Settings(data_dir=str(tmp_path)).build_filer()

        assert isinstance(filer, OSFiler)

    def test_s3_with_bucket(self):
        filer = Settings(s3_bucket="bucket", s3_kms_key_id="kms").build_filer()

        assert isinstance(filer, S3Filer)
        assert filer.bucket == "bucket"
        assert filer.kms_key_id == "kms"

    def test_debug_forces_local(self, tmp_path):
        settings = Settings(s3_bucket="bucket", debug=True, data_dir=str(tmp_path))

        assert isinstance(settings.build_filer(), OSFiler)

    def test_open_store_and_client(self, tmp_path):
        settings = Settings(
            data_dir=str(tmp_path), layout_version=1, directory_url="https://ca.test/directory"
        )

        store = open_store("admin@example.org", settings)
        client = open_client(store, settings)

        assert store.layout_version == 1
        assert client.directory_url == "https://ca.test/directory"
        assert client.store is store
        client.close()
