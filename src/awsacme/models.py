"""Pydantic models for ACME protocol resources and stored records."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from cryptography import x509
from pydantic import AliasChoices, BaseModel, Field

# =============================================================================
# ACME Protocol Enums (draft-ietf-acme-acme-01)
# =============================================================================


class ChallengeStatus(StrEnum):
    """Challenge statuses."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    REVOKED = "revoked"


class AuthorizationStatus(StrEnum):
    """Authorization statuses."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    DEACTIVATED = "deactivated"


_FINAL_AUTHORIZATION_STATUSES = frozenset(
    {
        AuthorizationStatus.VALID,
        AuthorizationStatus.INVALID,
        AuthorizationStatus.EXPIRED,
        AuthorizationStatus.REVOKED,
        AuthorizationStatus.DEACTIVATED,
    }
)


class ChallengeType(StrEnum):
    """Challenge types understood by the solvers."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"


class IdentifierType(StrEnum):
    """Identifier types."""

    DNS = "dns"


# =============================================================================
# Pydantic Models
# =============================================================================


class Directory(BaseModel):
    """ACME directory resource."""

    new_authz: str = Field(alias="new-authz")
    new_cert: str = Field(alias="new-cert")
    new_reg: str = Field(alias="new-reg")
    revoke_cert: str | None = Field(default=None, alias="revoke-cert")
    new_nonce: str | None = Field(default=None, alias="new-nonce")
    meta: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class Identifier(BaseModel):
    """ACME identifier."""

    type: IdentifierType
    value: str


class Challenge(BaseModel):
    """ACME challenge resource."""

    type: str
    uri: str = Field(default="", validation_alias=AliasChoices("uri", "url"))
    token: str = ""
    status: ChallengeStatus | None = None
    key_authorization: str | None = Field(default=None, alias="keyAuthorization")
    error: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class Authorization(BaseModel):
    """ACME authorization resource.

    ``url`` is not part of the wire format; it is filled in from the
    ``Location`` header (or the URL the resource was fetched from) so a
    persisted authorization can be re-fetched later.
    """

    url: str = ""
    status: AuthorizationStatus
    identifier: Identifier
    expires: datetime | None = None
    challenges: list[Challenge] = []
    combinations: list[list[int]] = []

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True if the authorization is expired at ``now``.

        A missing expiry is treated as already expired.
        """
        if self.expires is None:
            return True
        now = now or datetime.now(UTC)
        expires = self.expires
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return expires < now

    def is_reusable(self, now: datetime | None = None) -> bool:
        """Return True if the authorization is valid and not yet expired."""
        return self.status == AuthorizationStatus.VALID and not self.is_expired(now)

    @property
    def is_final(self) -> bool:
        """True once the CA will no longer change the status."""
        return self.status in _FINAL_AUTHORIZATION_STATUSES


class Registration(BaseModel):
    """Registration record stored per account email."""

    url: str
    tos: str
    tos_agreed: bool = False
    email: str | None = None
    contact: list[str] = []


class CertificateChain(BaseModel):
    """An issued certificate and the issuer certificates above it."""

    certificate: x509.Certificate
    issuers: list[x509.Certificate] = []

    model_config = {"arbitrary_types_allowed": True}

    @property
    def certificates(self) -> list[x509.Certificate]:
        """The leaf followed by its issuers."""
        return [self.certificate, *self.issuers]


class CertificateInfo(BaseModel):
    """Summary of a stored certificate, used for listing and renewal."""

    email: str
    domain: str
    not_before: datetime
    not_after: datetime
    san: list[str]
