"""Persistence of account and per-domain materials on a Filer.

Layout (``{prefix}`` is ``aaa-data`` for layout 1, ``aaa-data/v2`` for
layout 2)::

    {prefix}/{email}/info/
        {email}.json      registration record
        {email}.jwk|pem   account private key
    {prefix}/{email}/domain/{domain}/
        authz.json        last authorization result
        privkey.jwk|pem   certificate private key
        cert.pem          certificate followed by its issuers

Layout 1 stores private keys as JWK, layout 2 as PKCS#8 PEM. A Store
reads and writes exactly one layout; it never guesses the encoding.
"""

import json

from cryptography import x509
from pydantic import ValidationError

from awsacme._logging import get_logger
from awsacme.crypto import (
    PrivateKey,
    certificates_to_pem,
    load_pem_certificates,
    load_private_key_pem,
    private_key_from_jwk,
    private_key_to_jwk,
    private_key_to_pem,
)
from awsacme.exceptions import StoreError
from awsacme.filer import Filer
from awsacme.models import Authorization, Registration

logger = get_logger(__name__)

STORE_PREFIX = "aaa-data"
LAYOUT_VERSION = 2

_LAYOUT_PREFIXES = {
    1: (STORE_PREFIX,),
    2: (STORE_PREFIX, "v2"),
}
_KEY_EXTENSIONS = {1: "jwk", 2: "pem"}

# Path segments that name layout versions rather than accounts
_VERSION_SEGMENTS = {"v2"}


def layout_prefix(filer: Filer, layout_version: int = LAYOUT_VERSION) -> str:
    """Return the root key of a layout version."""
    try:
        return filer.join(*_LAYOUT_PREFIXES[layout_version])
    except KeyError:
        raise ValueError(f"unknown layout version: {layout_version}") from None


def list_accounts(filer: Filer, layout_version: int = LAYOUT_VERSION) -> list[str]:
    """List the account emails stored under a layout version."""
    accounts = []
    for entry in filer.list_dir(layout_prefix(filer, layout_version)):
        name = filer.split(entry)[-1]
        if name in _VERSION_SEGMENTS:
            continue
        accounts.append(name)
    return accounts


class Store:
    """Per-account persistence layer.

    Args:
        email: Account email; namespaces every key.
        filer: Blob store backend.
        layout_version: Storage layout to read and write.
    """

    def __init__(self, email: str, filer: Filer, layout_version: int = LAYOUT_VERSION):
        if not email:
            raise ValueError("email must not be empty")
        if layout_version not in _LAYOUT_PREFIXES:
            raise ValueError(f"unknown layout version: {layout_version}")

        self.email = email
        self.filer = filer
        self.layout_version = layout_version
        self.prefix = layout_prefix(filer, layout_version)

    def _key(self, *elems: str) -> str:
        return self.filer.join(self.prefix, self.email, *elems)

    def _domain_key(self, domain: str, name: str) -> str:
        return self._key("domain", domain, name)

    @property
    def _key_extension(self) -> str:
        return _KEY_EXTENSIONS[self.layout_version]

    def _encode_private_key(self, key: PrivateKey) -> bytes:
        if self.layout_version == 1:
            return json.dumps(private_key_to_jwk(key)).encode("utf-8")
        return private_key_to_pem(key)

    def _decode_private_key(self, blob: bytes, key: str) -> PrivateKey:
        try:
            if self.layout_version == 1:
                return private_key_from_jwk(json.loads(blob))
            return load_private_key_pem(blob)
        except ValueError as e:
            raise StoreError(f"failed to decode private key {key}: {e}") from e

    # Account materials

    def save_account_key(self, key: PrivateKey) -> None:
        """Save the account private key."""
        self.filer.write_file(
            self._key("info", f"{self.email}.{self._key_extension}"),
            self._encode_private_key(key),
        )

    def load_account_key(self) -> PrivateKey:
        """Load the account private key.

        Raises:
            NotFound: If no account key is stored.
        """
        key = self._key("info", f"{self.email}.{self._key_extension}")
        return self._decode_private_key(self.filer.read_file(key), key)

    def save_registration(self, registration: Registration) -> None:
        """Save the CA registration record."""
        self.filer.write_file(
            self._key("info", f"{self.email}.json"),
            registration.model_dump_json().encode("utf-8"),
        )

    def load_registration(self) -> Registration:
        """Load the CA registration record.

        Raises:
            NotFound: If the account has not been registered.
        """
        key = self._key("info", f"{self.email}.json")
        blob = self.filer.read_file(key)
        try:
            return Registration.model_validate_json(blob)
        except ValidationError as e:
            raise StoreError(f"failed to decode registration {key}: {e}") from e

    # Per-domain materials

    def save_cert_key(self, domain: str, key: PrivateKey) -> None:
        """Save the private key of the certificate for ``domain``."""
        self.filer.write_file(
            self._domain_key(domain, f"privkey.{self._key_extension}"),
            self._encode_private_key(key),
        )

    def load_cert_key(self, domain: str) -> PrivateKey:
        """Load the private key of the certificate for ``domain``.

        Raises:
            NotFound: If no key is stored for ``domain``.
        """
        key = self._domain_key(domain, f"privkey.{self._key_extension}")
        return self._decode_private_key(self.filer.read_file(key), key)

    def save_cert(
        self, domain: str, certificates: x509.Certificate | list[x509.Certificate]
    ) -> None:
        """Save a certificate, optionally followed by its issuers, as PEM."""
        if isinstance(certificates, x509.Certificate):
            certificates = [certificates]
        self.filer.write_file(
            self._domain_key(domain, "cert.pem"),
            certificates_to_pem(certificates),
        )

    def load_cert_chain(self, domain: str) -> list[x509.Certificate]:
        """Load the certificate for ``domain`` followed by its issuers.

        Raises:
            NotFound: If no certificate is stored for ``domain``.
        """
        key = self._domain_key(domain, "cert.pem")
        blob = self.filer.read_file(key)
        try:
            return load_pem_certificates(blob)
        except ValueError as e:
            raise StoreError(f"failed to decode certificate {key}: {e}") from e

    def load_cert(self, domain: str) -> x509.Certificate:
        """Load the leaf certificate for ``domain``.

        Raises:
            NotFound: If no certificate is stored for ``domain``.
        """
        return self.load_cert_chain(domain)[0]

    def save_authorization(self, authz: Authorization) -> None:
        """Save an authorization under its identifier's domain."""
        self.filer.write_file(
            self._domain_key(authz.identifier.value, "authz.json"),
            authz.model_dump_json(by_alias=True).encode("utf-8"),
        )

    def load_authorization(self, domain: str) -> Authorization:
        """Load the last saved authorization for ``domain``.

        Raises:
            NotFound: If ``domain`` has never been authorized.
        """
        key = self._domain_key(domain, "authz.json")
        blob = self.filer.read_file(key)
        try:
            return Authorization.model_validate_json(blob)
        except ValidationError as e:
            raise StoreError(f"failed to decode authorization {key}: {e}") from e

    def list_domains(self) -> list[str]:
        """List every domain that has stored materials."""
        entries = self.filer.list_dir(self._key("domain"))
        domains = [self.filer.split(entry)[-1] for entry in entries]
        logger.debug("Listed domains", extra={"email": self.email, "count": len(domains)})
        return domains
