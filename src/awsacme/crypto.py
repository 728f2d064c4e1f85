"""Cryptographic utilities for ACME protocol operations."""

import base64
import hashlib
import json
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

RENEWAL_HORIZON = timedelta(days=30)


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: Key size in bits (2048 or 4096 recommended).

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def load_private_key_pem(pem_data: str | bytes, password: bytes | None = None) -> PrivateKey:
    """Load a private key from PEM-encoded data.

    Args:
        pem_data: PEM-encoded private key.
        password: Optional password for encrypted keys.

    Returns:
        RSA or ECDSA private key.

    Raises:
        ValueError: If PEM data is invalid or password is incorrect.
    """
    if isinstance(pem_data, str):
        pem_data = pem_data.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem_data, password=password)
    except ValueError as e:
        raise ValueError(f"Invalid PEM data: {e}") from e
    except TypeError as e:
        # TypeError is raised when encrypted key is loaded without password
        raise ValueError("Invalid password or encrypted key requires password") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Unsupported key type: {type(key).__name__}")

    return key


def private_key_to_pem(key: PrivateKey) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Base64url decode, tolerating missing padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _int_to_base64url(n: int, length: int | None = None) -> str:
    """Convert an integer to big-endian base64url, optionally fixed length."""
    if length is None:
        length = max(1, (n.bit_length() + 7) // 8)
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def _base64url_to_int(data: str) -> int:
    return int.from_bytes(base64url_decode(data), byteorder="big")


def get_jwk(key: PrivateKey) -> dict:
    """Get the JWK (JSON Web Key) representation of a public key.

    Args:
        key: Private key to extract public JWK from.

    Returns:
        JWK dictionary.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        public_numbers = key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(public_numbers.n),
            "e": _int_to_base64url(public_numbers.e),
        }

    public_key = key.public_key()
    public_numbers = public_key.public_numbers()
    crv, coord_size = _curve_params(public_key.curve.name)
    return {
        "kty": "EC",
        "crv": crv,
        "x": _int_to_base64url(public_numbers.x, coord_size),
        "y": _int_to_base64url(public_numbers.y, coord_size),
    }


def _curve_params(curve_name: str) -> tuple[str, int]:
    if curve_name == "secp256r1":
        return "P-256", 32
    if curve_name == "secp384r1":
        return "P-384", 48
    raise ValueError(f"Unsupported curve: {curve_name}")


def private_key_to_jwk(key: rsa.RSAPrivateKey) -> dict:
    """Get the full private JWK of an RSA key (layout 1 encoding)."""
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"Unsupported key type for JWK: {type(key).__name__}")

    numbers = key.private_numbers()
    return {
        **get_jwk(key),
        "d": _int_to_base64url(numbers.d),
        "p": _int_to_base64url(numbers.p),
        "q": _int_to_base64url(numbers.q),
        "dp": _int_to_base64url(numbers.dmp1),
        "dq": _int_to_base64url(numbers.dmq1),
        "qi": _int_to_base64url(numbers.iqmp),
    }


def private_key_from_jwk(data: dict) -> rsa.RSAPrivateKey:
    """Load an RSA private key from its JWK representation.

    A JWK Set (``{"keys": [...]}``) is accepted; its first key is used.

    Raises:
        ValueError: If the JWK is not an RSA private key.
    """
    if "keys" in data:
        if not data["keys"]:
            raise ValueError("no key found")
        data = data["keys"][0]

    if data.get("kty") != "RSA" or "d" not in data:
        raise ValueError("JWK is not an RSA private key")

    try:
        public_numbers = rsa.RSAPublicNumbers(
            e=_base64url_to_int(data["e"]),
            n=_base64url_to_int(data["n"]),
        )
        private_numbers = rsa.RSAPrivateNumbers(
            p=_base64url_to_int(data["p"]),
            q=_base64url_to_int(data["q"]),
            d=_base64url_to_int(data["d"]),
            dmp1=_base64url_to_int(data["dp"]),
            dmq1=_base64url_to_int(data["dq"]),
            iqmp=_base64url_to_int(data["qi"]),
            public_numbers=public_numbers,
        )
    except KeyError as e:
        raise ValueError(f"JWK is missing member {e}") from e
    return private_numbers.private_key()


def key_thumbprint(key: PrivateKey) -> str:
    """Compute the JWK thumbprint of a key (RFC 7638).

    Args:
        key: Private key to compute thumbprint for.

    Returns:
        Base64url-encoded SHA-256 thumbprint.
    """
    jwk = get_jwk(key)

    # Thumbprint is computed over the required members only
    if jwk["kty"] == "RSA":
        canonical = {"e": jwk["e"], "kty": "RSA", "n": jwk["n"]}
    else:
        canonical = {"crv": jwk["crv"], "kty": "EC", "x": jwk["x"], "y": jwk["y"]}

    json_bytes = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64url_encode(hashlib.sha256(json_bytes).digest())


def build_key_authorization(token: str, key: PrivateKey) -> str:
    """Build the key authorization binding ``token`` to the account key.

    Returns:
        ``token + "." + thumbprint`` where thumbprint is the base64url
        SHA-256 JWK thumbprint of the account public key.
    """
    return f"{token}.{key_thumbprint(key)}"


def sign_jws(key: PrivateKey, payload: dict, nonce: str | None) -> dict:
    """Sign a payload as a flattened JSON JWS for ACME.

    The protected header carries the algorithm, the account public key
    as ``jwk`` and the replay nonce.

    Args:
        key: Private key to sign with.
        payload: Request body.
        nonce: Replay nonce to embed.

    Returns:
        Dict with ``protected``, ``payload`` and ``signature`` members.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        alg = "RS256"
    else:
        crv, _ = _curve_params(key.public_key().curve.name)
        alg = "ES256" if crv == "P-256" else "ES384"

    protected: dict[str, str | dict] = {"alg": alg, "jwk": get_jwk(key)}
    if nonce is not None:
        protected["nonce"] = nonce

    protected_b64 = base64url_encode(json.dumps(protected, separators=(",", ":")).encode("utf-8"))
    payload_b64 = base64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{protected_b64}.{payload_b64}".encode()

    if isinstance(key, rsa.RSAPrivateKey):
        signature = key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
    else:
        hash_alg = hashes.SHA256() if alg == "ES256" else hashes.SHA384()
        r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(hash_alg)))
        _, coord_size = _curve_params(key.public_key().curve.name)
        signature = r.to_bytes(coord_size, byteorder="big") + s.to_bytes(
            coord_size, byteorder="big"
        )

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }


def create_csr(
    key: PrivateKey,
    common_name: str,
    domains: list[str] | None = None,
) -> x509.CertificateSigningRequest:
    """Create a Certificate Signing Request (CSR).

    Args:
        key: Private key to sign the CSR.
        common_name: Subject Common Name, also the first SAN entry.
        domains: Additional Subject Alternative Names.

    Returns:
        Certificate Signing Request.
    """
    if not common_name:
        raise ValueError("Common Name is required")

    names = [common_name]
    names.extend(d for d in domains or [] if d != common_name)

    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    san = x509.SubjectAlternativeName([x509.DNSName(name) for name in names])

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(san, critical=False)
    )
    return builder.sign(key, hashes.SHA256())


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    """DER-encode a CSR."""
    return csr.public_bytes(serialization.Encoding.DER)


def certificates_to_pem(certificates: list[x509.Certificate]) -> bytes:
    """PEM-encode certificates, one block after another."""
    return b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in certificates)


def load_pem_certificates(data: bytes) -> list[x509.Certificate]:
    """Load every certificate from a PEM bundle.

    Raises:
        ValueError: If the data holds no certificate.
    """
    certificates = x509.load_pem_x509_certificates(data)
    if not certificates:
        raise ValueError("no certificate found in PEM data")
    return certificates


def subject_alternative_names(cert: x509.Certificate) -> list[str]:
    """Return the DNS names of a certificate's SAN extension."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)


def needs_renewal(
    cert: x509.Certificate,
    now: datetime | None = None,
    horizon: timedelta = RENEWAL_HORIZON,
) -> bool:
    """Return True if ``cert`` expires within ``horizon`` of ``now``."""
    now = now or datetime.now(UTC)
    return cert.not_valid_after_utc < now + horizon
