"""Register, Authorize, Issue and List workflows.

Each workflow owns one AcmeClient for its duration. Stores have no
locking: callers must not run two workflows for the same domain against
the same store at once.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from awsacme._logging import Timer, get_logger, reset_domain, set_domain
from awsacme.challenges.base import ChallengeSolver
from awsacme.challenges.selection import ChallengeStrategy, build_solver, find_challenge
from awsacme.client import AcmeClient
from awsacme.config import Settings
from awsacme.crypto import (
    PrivateKey,
    build_key_authorization,
    create_csr,
    csr_to_der,
    generate_rsa_key,
    needs_renewal,
    subject_alternative_names,
)
from awsacme.exceptions import NotFound
from awsacme.filer import Filer
from awsacme.models import (
    Authorization,
    CertificateChain,
    CertificateInfo,
    IdentifierType,
    Registration,
)
from awsacme.providers.base import DnsProvider
from awsacme.store import LAYOUT_VERSION, Store, list_accounts

logger = get_logger(__name__)

ALLOWED_RSA_KEY_SIZES = (2048, 4096)


def open_store(email: str, settings: Settings, filer: Filer | None = None) -> Store:
    """Build the store for ``email`` from settings."""
    return Store(email, filer or settings.build_filer(), layout_version=settings.layout_version)


def open_client(store: Store, settings: Settings) -> AcmeClient:
    """Build an uninitialized client for ``store`` from settings."""
    return AcmeClient(settings.directory_url, store, ca_cert=settings.verify)


def _cleanup_quietly(solver: ChallengeSolver, key_authorization: str) -> None:
    """Run a cleanup while another error propagates; log its own failure."""
    try:
        solver.cleanup_challenge(key_authorization)
    except Exception:
        logger.warning("Challenge cleanup failed", exc_info=True)


class RegisterService:
    """Create the account key and register it with the CA.

    An existing registration is left alone unless ``override`` is set,
    in which case a new account key replaces the stored one. A stored
    registration whose terms of service were not yet agreed to is
    updated in place when ``agree_tos`` is set.

    Args:
        store: Store of the account.
        client: Uninitialized client bound to ``store``.
        agree_tos: Record agreement to the CA's terms of service.
        override: Register again with a new key.
        key_size: RSA size of a new account key.
    """

    def __init__(
        self,
        store: Store,
        client: AcmeClient,
        agree_tos: bool = False,
        override: bool = False,
        key_size: int = 2048,
    ):
        self.store = store
        self.client = client
        self.agree_tos = agree_tos
        self.override = override
        self.key_size = key_size

    @property
    def contacts(self) -> list[str]:
        return [f"mailto:{self.store.email}"]

    def run(self) -> Registration:
        try:
            registration = self.store.load_registration()
        except NotFound:
            registration = None
            logger.info("No registration stored", extra={"email": self.store.email})

        if registration is not None and not self.override:
            if registration.tos_agreed or not self.agree_tos:
                logger.info(
                    "Found the existing registration; set override to register with a new key",
                    extra={"email": self.store.email, "url": registration.url},
                )
                return registration

            self.client.initialize()
            return self._agree(registration)

        logger.info("Creating new account key pair", extra={"email": self.store.email})
        account_key = generate_rsa_key(self.key_size)
        self.client.initialize(account_key=account_key)

        # the key is stored only once the CA knows it
        registration = self.client.register(self.contacts)
        registration.email = self.store.email
        self.store.save_account_key(account_key)
        self.store.save_registration(registration)

        if not self.agree_tos:
            logger.warning(
                "Terms of service not agreed; agree to them to complete the registration",
                extra={"email": self.store.email, "tos": registration.tos},
            )
            return registration
        return self._agree(registration)

    def _agree(self, registration: Registration) -> Registration:
        self.client.update_registration(registration.url, registration.tos, self.contacts)
        registration.tos_agreed = True
        self.store.save_registration(registration)
        logger.info("Registration has been done", extra={"email": self.store.email})
        return registration


class AuthorizeService:
    """Prove control of one domain.

    A stored authorization that is still valid is reused unless
    ``renewal`` is set.

    Args:
        store: Store of the account.
        client: Uninitialized client bound to ``store``.
        domain: Domain to authorize.
        strategy: How to solve the challenge.
        dns_provider: Provider for the dns-01 strategy.
        http_port: Listener port for the http-01 strategy.
        settle_delay: Listener settle delay for the http-01 strategy.
        s3_bucket: Bucket for the s3-http-01 strategy.
        s3_client: boto3 S3 client for the s3-http-01 strategy.
        renewal: Authorize again even if a valid authorization is stored.
    """

    def __init__(
        self,
        store: Store,
        client: AcmeClient,
        domain: str,
        strategy: ChallengeStrategy | str = ChallengeStrategy.DNS_01,
        *,
        dns_provider: DnsProvider | None = None,
        http_port: int = 9999,
        settle_delay: float = 1.0,
        s3_bucket: str | None = None,
        s3_client: Any = None,
        renewal: bool = False,
    ):
        self.store = store
        self.client = client
        self.domain = domain
        self.strategy = ChallengeStrategy(strategy)
        self.dns_provider = dns_provider
        self.http_port = http_port
        self.settle_delay = settle_delay
        self.s3_bucket = s3_bucket
        self.s3_client = s3_client
        self.renewal = renewal

    def _stored_authorization(self) -> Authorization | None:
        try:
            authz = self.store.load_authorization(self.domain)
        except NotFound:
            return None

        logger.debug("Previous authorization found", extra={"expires": str(authz.expires)})
        if authz.is_reusable():
            return authz

        logger.info("Previous authorization is not usable; re-authorization is required")
        return None

    def run(self) -> Authorization:
        """Authorize the domain and persist the resulting authorization.

        Returns:
            The authorization as last reported by the CA.

        Raises:
            ChallengeNotFound: If the CA offers no usable challenge.
            UnsupportedCombination: If challenges must be solved jointly.
            ChallengeFailed: If the CA rejects the challenge.
            Timeout: If the CA does not decide in time.
        """
        token = set_domain(self.domain)
        try:
            if not self.renewal:
                stored = self._stored_authorization()
                if stored is not None:
                    logger.info(
                        "Authorization has already been done", extra={"url": stored.url}
                    )
                    return stored

            with Timer() as t:
                authz = self._authorize()
            logger.info(
                "Challenge has been solved",
                extra={"url": authz.url, "status": str(authz.status), "elapsed_ms": t.elapsed_ms},
            )
            return authz
        finally:
            reset_domain(token)

    def _authorize(self) -> Authorization:
        logger.info("Starting authorization", extra={"strategy": str(self.strategy)})
        self.client.initialize()

        authz = self.client.new_authorization(IdentifierType.DNS, self.domain)
        challenge = find_challenge(authz, self.strategy.challenge_type)
        solver = build_solver(
            self.strategy,
            challenge,
            self.domain,
            dns_provider=self.dns_provider,
            http_port=self.http_port,
            settle_delay=self.settle_delay,
            s3_bucket=self.s3_bucket,
            s3_client=self.s3_client,
        )
        key_authorization = build_key_authorization(challenge.token, self.client.account_key)

        try:
            solver.solve_challenge(key_authorization)
            self.client.submit_challenge_response(challenge, key_authorization)
            self.client.wait_for_challenge(challenge)
        except BaseException:
            logger.info("Challenge has failed; cleaning up")
            _cleanup_quietly(solver, key_authorization)
            raise
        solver.cleanup_challenge(key_authorization)

        current = self.client.get_authorization(authz.url)
        if not current.is_final:
            logger.warning(
                "Authorization is not final yet; not storing it",
                extra={"url": current.url, "status": str(current.status)},
            )
            return current

        self.store.save_authorization(current)
        return current


class IssueService:
    """Obtain a certificate for a Common Name and extra domains.

    Every name must already be authorized. The certificate key stored for
    the Common Name is reused unless ``create_key`` is set or none exists.
    A stored certificate outside the renewal horizon is kept unless
    ``force`` is set.

    Args:
        store: Store of the account.
        client: Uninitialized client bound to ``store``.
        common_name: Subject Common Name and first SAN.
        domains: Additional SANs.
        create_key: Generate a new certificate key.
        key_size: RSA size of a new key (2048 or 4096).
        renewal_days: Renewal horizon in days.
        force: Issue even if the stored certificate is not due.
    """

    def __init__(
        self,
        store: Store,
        client: AcmeClient,
        common_name: str,
        domains: list[str] | None = None,
        *,
        create_key: bool = False,
        key_size: int = 4096,
        renewal_days: int = 30,
        force: bool = False,
    ):
        if key_size not in ALLOWED_RSA_KEY_SIZES:
            raise ValueError(f"key size must be one of {ALLOWED_RSA_KEY_SIZES}, got {key_size}")

        self.store = store
        self.client = client
        self.common_name = common_name
        self.domains = [d for d in domains or [] if d != common_name]
        self.create_key = create_key
        self.key_size = key_size
        self.renewal_horizon = timedelta(days=renewal_days)
        self.force = force

    @property
    def names(self) -> list[str]:
        return [self.common_name, *self.domains]

    def is_due(self, now: datetime | None = None) -> bool:
        """Return True if no certificate is stored or it needs renewal."""
        try:
            cert = self.store.load_cert(self.common_name)
        except NotFound:
            return True
        return needs_renewal(cert, now=now, horizon=self.renewal_horizon)

    def run(self) -> CertificateChain | None:
        """Issue and persist the certificate.

        Returns:
            The issued chain, or None when the stored certificate is not due.
        """
        token = set_domain(self.common_name)
        try:
            if not self.force and not self.is_due():
                logger.info("Certificate is not due for renewal")
                return None

            self._check_authorizations()
            key = self._certificate_key()

            self.client.initialize()
            csr = create_csr(key, self.common_name, self.domains)

            with Timer() as t:
                location = self.client.request_certificate(csr_to_der(csr))
                chain = self.client.fetch_certificate(location)

            self.store.save_cert(self.common_name, chain.certificates)
            logger.info(
                "Certificate is successfully saved",
                extra={
                    "not_after": chain.certificate.not_valid_after_utc.isoformat(),
                    "issuers": len(chain.issuers),
                    "elapsed_ms": t.elapsed_ms,
                },
            )
            return chain
        finally:
            reset_domain(token)

    def _check_authorizations(self) -> None:
        for name in self.names:
            try:
                authz = self.store.load_authorization(name)
            except NotFound:
                logger.warning("No authorization stored", extra={"identifier": name})
                continue
            if not authz.is_reusable():
                logger.warning(
                    "Stored authorization is not valid",
                    extra={"identifier": name, "status": str(authz.status)},
                )

    def _certificate_key(self) -> PrivateKey:
        if not self.create_key:
            try:
                key = self.store.load_cert_key(self.common_name)
            except NotFound:
                logger.info("No certificate key stored")
            else:
                logger.info("Using the existing private key")
                return key

        logger.info("Creating new private key", extra={"key_size": self.key_size})
        key = generate_rsa_key(self.key_size)
        self.store.save_cert_key(self.common_name, key)
        return key


class ListService:
    """Summarize every stored certificate of every account."""

    def __init__(self, filer: Filer, layout_version: int = LAYOUT_VERSION):
        self.filer = filer
        self.layout_version = layout_version

    def fetch_data(self) -> list[CertificateInfo]:
        infos: list[CertificateInfo] = []

        for email in list_accounts(self.filer, self.layout_version):
            store = Store(email, self.filer, layout_version=self.layout_version)
            for domain in store.list_domains():
                try:
                    cert = store.load_cert(domain)
                except NotFound:
                    logger.info("No certificate stored", extra={"email": email, "domain": domain})
                    continue

                infos.append(
                    CertificateInfo(
                        email=email,
                        domain=domain,
                        not_before=cert.not_valid_before_utc,
                        not_after=cert.not_valid_after_utc,
                        san=subject_alternative_names(cert),
                    )
                )

        return infos


def select_due_for_renewal(
    infos: list[CertificateInfo],
    now: datetime | None = None,
    days: int = 30,
) -> list[CertificateInfo]:
    """Return the certificates whose NotAfter falls before ``now + days``."""
    now = now or datetime.now(UTC)
    threshold = now + timedelta(days=days)
    return [info for info in infos if info.not_after < threshold]
