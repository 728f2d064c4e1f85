"""Environment-driven configuration.

Every field can be overridden by an ``AAA_``-prefixed environment
variable (e.g. ``AAA_DIRECTORY_URL``, ``AAA_HTTP_PORT``).
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from awsacme.challenges.selection import ChallengeStrategy
from awsacme.client import DEFAULT_DIRECTORY_URL
from awsacme.filer import Filer, OSFiler, S3Filer
from awsacme.store import LAYOUT_VERSION


class Settings(BaseSettings):
    """Settings consumed by the workflows before building the core components."""

    model_config = SettingsConfigDict(
        env_prefix="AAA_",
        case_sensitive=False,
        extra="ignore",
    )

    # CA
    directory_url: str = DEFAULT_DIRECTORY_URL
    ca_bundle: str = ""  # empty = system default
    insecure: bool = False

    # Challenges
    challenge_strategy: ChallengeStrategy = ChallengeStrategy.DNS_01
    http_port: int = 9999

    # Storage
    s3_bucket: str = ""
    s3_kms_key_id: str = ""
    data_dir: str = "."
    layout_version: int = LAYOUT_VERSION
    debug: bool = False  # forces the local filesystem backend

    # Renewal
    renewal_days: int = 30

    @field_validator("http_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError("http_port must be between 0 and 65535")
        return v

    @field_validator("layout_version")
    @classmethod
    def validate_layout_version(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("layout_version must be 1 or 2")
        return v

    @model_validator(mode="after")
    def validate_s3_strategy(self) -> "Settings":
        if self.challenge_strategy is ChallengeStrategy.S3_HTTP_01 and not self.s3_bucket:
            raise ValueError("s3_bucket must be set for the s3-http-01 challenge strategy")
        return self

    @property
    def verify(self) -> str | bool:
        """The ``ca_cert`` argument for AcmeClient."""
        if self.insecure:
            return False
        return self.ca_bundle or True

    def build_filer(self) -> Filer:
        """Return the S3 backend, or the local one in debug mode or without a bucket."""
        if self.debug or not self.s3_bucket:
            return OSFiler(self.data_dir)
        return S3Filer(self.s3_bucket, kms_key_id=self.s3_kms_key_id or None)
