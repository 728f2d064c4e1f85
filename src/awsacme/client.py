"""ACME client speaking the CA's HTTP+JSON protocol."""

import json
from typing import Any, TypeVar

import httpx
from cryptography import x509
from pydantic import BaseModel, ValidationError

from awsacme._logging import Timer, get_domain_extra, get_logger
from awsacme.crypto import PrivateKey, base64url_encode, load_pem_certificates, sign_jws
from awsacme.exceptions import (
    BadNonceError,
    ChallengeFailed,
    NoTermsOfServiceFound,
    ProtocolError,
    Timeout,
    TransportError,
)
from awsacme.models import (
    Authorization,
    CertificateChain,
    Challenge,
    ChallengeStatus,
    Directory,
    Registration,
)
from awsacme.polling import poll_until
from awsacme.store import Store

logger = get_logger(__name__)

DEFAULT_DIRECTORY_URL = "https://acme-staging.api.letsencrypt.org/directory"
JOSE_CONTENT_TYPE = "application/jose+json"

M = TypeVar("M", bound=BaseModel)


class AcmeClient:
    """ACME client for one account and one workflow.

    The client owns its replay nonce: every response received updates it
    and every signed request consumes it, so a single instance must not
    be shared between concurrent workflows.

    Args:
        directory_url: URL of the ACME directory endpoint.
        store: Persistence layer holding the account key.
        ca_cert: Path to CA certificate file, False to disable verification,
                 or None/True for default verification.
        timeout: Per-request network timeout in seconds.
        http_client: Pre-built httpx client (mostly for tests).
    """

    # Polling configuration
    POLL_INTERVAL = 5  # seconds
    CHALLENGE_TIMEOUT = 5 * 60
    CERTIFICATE_TIMEOUT = 3 * 60

    MAX_NONCE_RETRIES = 3
    MAX_CHAIN_DEPTH = 4

    def __init__(
        self,
        directory_url: str,
        store: Store,
        ca_cert: str | bool | None = None,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        self.directory_url = directory_url
        self.store = store

        if http_client is None:
            verify = True if ca_cert is None else ca_cert
            http_client = httpx.Client(verify=verify, timeout=timeout)
        self._http = http_client

        self._account_key: PrivateKey | None = None
        self._directory: Directory | None = None
        self._nonce: str | None = None

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()

    def __enter__(self) -> "AcmeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def nonce(self) -> str | None:
        """The replay nonce from the most recent response."""
        return self._nonce

    @property
    def directory(self) -> Directory:
        """The directory fetched by initialize()."""
        if self._directory is None:
            raise RuntimeError("client is not initialized; call initialize() first")
        return self._directory

    @property
    def account_key(self) -> PrivateKey:
        """The account key loaded by initialize()."""
        if self._account_key is None:
            raise RuntimeError("client is not initialized; call initialize() first")
        return self._account_key

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request and record the nonce it returns."""
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(method, url, str(e)) from e

        self._update_nonce(response)
        logger.debug(
            "ACME response",
            extra={"method": method, "url": url, "status_code": response.status_code},
        )
        return response

    def _update_nonce(self, response: httpx.Response) -> None:
        self._nonce = response.headers.get("Replay-Nonce")

    def _fresh_nonce(self) -> str:
        """Obtain a nonce when the last response did not carry one."""
        if self._directory is not None and self._directory.new_nonce:
            response = self._request("HEAD", self._directory.new_nonce)
        else:
            response = self._request("GET", self.directory_url)

        if self._nonce is None:
            raise ProtocolError(
                type="unknown",
                detail="response carries no Replay-Nonce header",
                status_code=response.status_code,
                url=str(response.request.url),
            )
        return self._nonce

    def _signed_post(self, url: str, resource: str, fields: dict[str, Any]) -> httpx.Response:
        """POST a JWS-signed ``{"resource": ..., **fields}`` body.

        A badNonce rejection is retried with the nonce carried by the
        rejection response.

        Raises:
            ProtocolError: If the CA answers with a status above 299.
        """
        payload = {"resource": resource, **fields}

        for attempt in range(self.MAX_NONCE_RETRIES + 1):
            nonce = self._nonce or self._fresh_nonce()
            body = sign_jws(self.account_key, payload, nonce)

            response = self._request(
                "POST",
                url,
                content=json.dumps(body).encode("utf-8"),
                headers={"Content-Type": JOSE_CONTENT_TYPE},
            )
            if response.status_code <= 299:
                return response

            error = ProtocolError.from_response(response)
            if isinstance(error, BadNonceError) and attempt < self.MAX_NONCE_RETRIES:
                logger.debug("Retrying with fresh nonce", extra={"url": url, "resource": resource})
                continue
            raise error

        raise AssertionError("unreachable")

    def _get(self, url: str) -> httpx.Response:
        response = self._request("GET", url)
        if response.status_code > 299:
            raise ProtocolError.from_response(response)
        return response

    @staticmethod
    def _parse(model: type[M], response: httpx.Response, **extra: Any) -> M:
        """Validate a JSON response body as ``model``."""
        try:
            data = response.json()
            return model.model_validate({**data, **extra})
        except (ValueError, TypeError, ValidationError) as e:
            raise ProtocolError(
                type="unknown",
                detail=f"malformed {model.__name__} response: {e}",
                status_code=response.status_code,
                url=str(response.request.url),
            ) from e

    # -------------------------------------------------------------------------
    # Protocol operations
    # -------------------------------------------------------------------------

    def initialize(self, account_key: PrivateKey | None = None) -> None:
        """Load the account key, fetch the directory and the first nonce.

        Args:
            account_key: Key to sign with instead of the stored one, for a
                registration whose key is saved only once it succeeds.

        Raises:
            StoreError: If the account key cannot be loaded.
            ProtocolError: If the directory request fails.
        """
        self._account_key = account_key or self.store.load_account_key()

        response = self._get(self.directory_url)
        self._directory = self._parse(Directory, response)
        logger.info("ACME directory loaded", extra={"url": self.directory_url})

    def register(self, contacts: list[str]) -> Registration:
        """Create a new registration for the account key.

        Args:
            contacts: Contact URIs (e.g. ``mailto:admin@example.com``).

        Returns:
            Registration with the account URL and the terms-of-service link.

        Raises:
            NoTermsOfServiceFound: If the response links to no terms of service.
        """
        response = self._signed_post(self.directory.new_reg, "new-reg", {"contact": contacts})

        tos = response.links.get("terms-of-service", {}).get("url")
        if not tos:
            raise NoTermsOfServiceFound(
                f"no terms-of-service link in registration response from {self.directory.new_reg}"
            )

        registration = Registration(
            url=response.headers.get("Location", ""),
            tos=tos,
            contact=contacts,
        )
        logger.info("Account registered", extra={"url": registration.url})
        return registration

    def update_registration(
        self,
        account_url: str,
        agreement: str | None,
        contacts: list[str],
    ) -> None:
        """Update a registration, typically to agree to the terms of service."""
        fields: dict[str, Any] = {"contact": contacts}
        if agreement:
            fields["agreement"] = agreement

        self._signed_post(account_url, "reg", fields)
        logger.info("Registration updated", extra={"url": account_url})

    def new_authorization(self, identifier_type: str, identifier_value: str) -> Authorization:
        """Ask the CA to start authorizing an identifier."""
        response = self._signed_post(
            self.directory.new_authz,
            "new-authz",
            {"identifier": {"type": identifier_type, "value": identifier_value}},
        )
        authz = self._parse(Authorization, response, url=response.headers.get("Location", ""))
        logger.info(
            "Authorization created",
            extra={"url": authz.url, "status": str(authz.status), **get_domain_extra()},
        )
        return authz

    def get_authorization(self, url: str) -> Authorization:
        """Fetch the current state of an authorization."""
        return self._parse(Authorization, self._get(url), url=url)

    def get_challenge(self, url: str) -> Challenge:
        """Fetch the current state of a challenge."""
        return self._parse(Challenge, self._get(url))

    def submit_challenge_response(self, challenge: Challenge, key_authorization: str) -> Challenge:
        """Tell the CA the challenge is ready to be validated.

        Success is signaled by 202 Accepted.

        Raises:
            ProtocolError: The CA's error for any other status.
        """
        response = self._signed_post(
            challenge.uri,
            "challenge",
            {
                "type": challenge.type,
                "token": challenge.token,
                "keyAuthorization": key_authorization,
            },
        )
        if response.status_code != httpx.codes.ACCEPTED:
            error = self._parse(Challenge, response).error if response.content else None
            if error:
                raise ProtocolError.from_problem(error, response.status_code, url=challenge.uri)
            raise ProtocolError(
                type="unknown",
                detail=f"unexpected status {response.status_code} for challenge response",
                status_code=response.status_code,
                url=challenge.uri,
            )

        logger.info(
            "Challenge response submitted",
            extra={"url": challenge.uri, "type": challenge.type, **get_domain_extra()},
        )
        if not response.content:
            return challenge
        return self._parse(Challenge, response)

    def wait_for_challenge(
        self,
        challenge: Challenge,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> Challenge:
        """Poll a challenge until it becomes valid or invalid.

        Raises:
            ChallengeFailed: If the challenge becomes invalid.
            Timeout: If it is still pending when the deadline elapses.
        """
        timeout = self.CHALLENGE_TIMEOUT if timeout is None else timeout
        poll_interval = self.POLL_INTERVAL if poll_interval is None else poll_interval
        last_status: str | None = None
        domain = get_domain_extra().get("domain")

        def attempt() -> Challenge | None:
            nonlocal last_status
            current = self.get_challenge(challenge.uri)
            last_status = current.status
            logger.debug("Challenge status", extra={"url": challenge.uri, "status": last_status})

            if current.status == ChallengeStatus.VALID:
                return current
            if current.status == ChallengeStatus.INVALID:
                raise ChallengeFailed(challenge.type, challenge.uri, current.error, domain=domain)
            return None

        with Timer() as t:
            result = poll_until(
                attempt,
                timeout=timeout,
                interval=poll_interval,
                on_timeout=lambda: Timeout(
                    f"{challenge.type} challenge",
                    timeout,
                    last_status,
                    url=challenge.uri,
                    domain=domain,
                ),
            )
        logger.info(
            "Challenge validated",
            extra={"url": challenge.uri, "elapsed_ms": t.elapsed_ms, **get_domain_extra()},
        )
        return result

    def request_certificate(self, csr_der: bytes) -> str:
        """Ask the CA to issue a certificate for a DER-encoded CSR.

        Returns:
            The URL where the certificate will be available.
        """
        response = self._signed_post(
            self.directory.new_cert,
            "new-cert",
            {"csr": base64url_encode(csr_der)},
        )
        location = response.headers.get("Location")
        if not location:
            raise ProtocolError(
                type="unknown",
                detail="new-cert response carries no Location header",
                status_code=response.status_code,
                url=self.directory.new_cert,
            )
        logger.info("Certificate requested", extra={"url": location, **get_domain_extra()})
        return location

    def fetch_certificate(
        self,
        url: str,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> CertificateChain:
        """Poll until the certificate is issued, then fetch its issuers.

        202 Accepted means issuance is still in progress.

        Raises:
            ProtocolError: For any CA error.
            Timeout: If the certificate is not available within the deadline.
        """
        timeout = self.CERTIFICATE_TIMEOUT if timeout is None else timeout
        poll_interval = self.POLL_INTERVAL if poll_interval is None else poll_interval

        def attempt() -> httpx.Response | None:
            response = self._get(url)
            if response.status_code == httpx.codes.ACCEPTED:
                logger.debug("Creation of certificate is still ongoing", extra={"url": url})
                return None
            if response.status_code == httpx.codes.OK:
                return response
            raise ProtocolError(
                type="unknown",
                detail=f"unexpected status {response.status_code} for certificate",
                status_code=response.status_code,
                url=url,
            )

        response = poll_until(
            attempt,
            timeout=timeout,
            interval=poll_interval,
            on_timeout=lambda: Timeout(
                "certificate",
                timeout,
                "processing",
                url=url,
                domain=get_domain_extra().get("domain"),
            ),
        )
        certificate = self._parse_certificate(response)
        return CertificateChain(
            certificate=certificate,
            issuers=self._fetch_issuers(url, response),
        )

    def _fetch_issuers(self, url: str, response: httpx.Response) -> list[x509.Certificate]:
        """Follow ``rel="up"`` links until none remain."""
        issuers: list[x509.Certificate] = []
        seen = {url}
        current_url = url
        link = response.links.get("up", {}).get("url")

        while link and len(issuers) < self.MAX_CHAIN_DEPTH:
            issuer_url = str(httpx.URL(current_url).join(link))
            if issuer_url in seen:
                break
            seen.add(issuer_url)

            logger.debug("Retrieving issuer's certificate", extra={"url": issuer_url})
            issuer_response = self._get(issuer_url)
            issuer = self._parse_certificate(issuer_response)
            issuers.append(issuer)

            if issuer.issuer == issuer.subject:
                break
            current_url = issuer_url
            link = issuer_response.links.get("up", {}).get("url")

        if not issuers:
            logger.warning("No issuer certificate linked", extra={"url": url})
        return issuers

    @staticmethod
    def _parse_certificate(response: httpx.Response) -> x509.Certificate:
        """Parse a DER (or PEM) certificate body."""
        body = response.content
        try:
            if body.lstrip().startswith(b"-----BEGIN"):
                return load_pem_certificates(body)[0]
            return x509.load_der_x509_certificate(body)
        except ValueError as e:
            raise ProtocolError(
                type="unknown",
                detail=f"malformed certificate: {e}",
                status_code=response.status_code,
                url=str(response.request.url),
            ) from e
