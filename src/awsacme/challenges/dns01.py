"""DNS-01 challenge implementation."""

import base64
import hashlib

from awsacme._logging import get_logger
from awsacme.challenges.base import ChallengeSolver
from awsacme.models import Challenge
from awsacme.providers.base import DnsProvider

logger = get_logger(__name__)


def compute_dns_txt_value(key_authorization: str) -> str:
    """Compute the DNS TXT record value for DNS-01 challenge.

    The TXT record value is the base64url-encoded SHA-256 digest
    of the key authorization string.

    Args:
        key_authorization: The key authorization string.

    Returns:
        The base64url-encoded SHA-256 digest (without padding).
    """
    digest = hashlib.sha256(key_authorization.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


class DnsChallengeSolver(ChallengeSolver):
    """Solve DNS-01 by publishing a TXT record through a DNS provider.

    Args:
        provider: DNS provider hosting the domain's zone.
        challenge: The dns-01 challenge being solved.
        domain: The domain being authorized.
    """

    def __init__(self, provider: DnsProvider, challenge: Challenge, domain: str):
        self.provider = provider
        self.challenge = challenge
        self.domain = domain

    def solve_challenge(self, key_authorization: str) -> None:
        value = compute_dns_txt_value(key_authorization)
        logger.info("Publishing DNS-01 TXT record", extra={"domain": self.domain})
        self.provider.upsert_txt_record(self.domain, value)

    def cleanup_challenge(self, key_authorization: str) -> None:
        value = compute_dns_txt_value(key_authorization)
        logger.info("Removing DNS-01 TXT record", extra={"domain": self.domain})
        self.provider.delete_txt_record(self.domain, value)
