"""Abstract base class for DNS providers."""

from abc import ABC, abstractmethod

ACME_CHALLENGE_LABEL = "_acme-challenge"


def challenge_record_name(domain: str) -> str:
    """Return the TXT record name validated for ``domain``."""
    return f"{ACME_CHALLENGE_LABEL}.{domain.rstrip('.')}"


class DnsProvider(ABC):
    """Abstract interface for DNS providers.

    DNS providers are responsible for creating and deleting the TXT
    records used for ACME DNS-01 challenge validation. Both operations
    block until the provider reports the change as propagated to all of
    its name servers.
    """

    @abstractmethod
    def upsert_txt_record(self, domain: str, value: str) -> None:
        """Create or replace the TXT record for an ACME challenge.

        Sets the TXT record at _acme-challenge.{domain} to ``value``.

        Args:
            domain: The domain name (without _acme-challenge prefix).
            value: The challenge value to set as TXT record.

        Raises:
            DNSProviderError: If the provider rejects the change.
            DNSPropagationTimeout: If the change does not propagate in time.
        """
        ...

    @abstractmethod
    def delete_txt_record(self, domain: str, value: str) -> None:
        """Delete the TXT record for an ACME challenge.

        Args:
            domain: The domain name (without _acme-challenge prefix).
            value: The challenge value previously set.

        Raises:
            DNSProviderError: If the provider rejects the change.
            DNSPropagationTimeout: If the change does not propagate in time.
        """
        ...
