"""Amazon Route 53 provider for ACME DNS-01 challenges."""

from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from awsacme._logging import Timer, get_logger
from awsacme.exceptions import DNSPropagationTimeout, DNSProviderError, HostedZoneNotFound
from awsacme.polling import poll_until
from awsacme.providers.base import DnsProvider, challenge_record_name

logger = get_logger(__name__)

INSYNC = "INSYNC"

# Bound on ListHostedZones pages fetched while resolving a zone
MAX_ZONE_PAGES = 1000


class Route53Provider(DnsProvider):
    """DNS provider for Amazon Route 53.

    This provider manages TXT records for ACME DNS-01 challenges via the
    Route 53 API and waits for every change to reach INSYNC.

    Args:
        client: boto3 Route 53 client (created on demand if omitted).
        ttl: TTL of the challenge record in seconds (default: 10).
        poll_interval: Seconds between GetChange polls (default: 5).
        timeout: Maximum seconds to wait for INSYNC (default: 30 minutes).
    """

    def __init__(
        self,
        client: Any = None,
        ttl: int = 10,
        poll_interval: float = 5,
        timeout: float = 30 * 60,
    ):
        self._client = client
        self.ttl = ttl
        self.poll_interval = poll_interval
        self.timeout = timeout

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("route53")
        return self._client

    def upsert_txt_record(self, domain: str, value: str) -> None:
        self._change("UPSERT", domain, value, comment="updated by aaa")

    def delete_txt_record(self, domain: str, value: str) -> None:
        self._change("DELETE", domain, value, comment="deleted by aaa")

    def list_hosted_zones(self) -> list[dict[str, Any]]:
        """Return every hosted zone of the account, in listing order."""
        zones: list[dict[str, Any]] = []
        params: dict[str, Any] = {}

        for _ in range(MAX_ZONE_PAGES):
            try:
                resp = self.client.list_hosted_zones(**params)
            except (BotoCoreError, ClientError) as e:
                raise DNSProviderError(f"failed to list hosted zones: {e}") from e

            zones.extend(resp.get("HostedZones", []))
            if not resp.get("IsTruncated"):
                break
            params["Marker"] = resp["NextMarker"]

        return zones

    def find_hosted_zone(self, domain: str) -> dict[str, Any]:
        """Find the most specific hosted zone for a domain.

        A zone matches when its name is a label-wise suffix of the domain.
        The longest matching name wins; between names of equal length the
        one listed last wins.

        Args:
            domain: The fully qualified domain name.

        Returns:
            The hosted zone as returned by ListHostedZones.

        Raises:
            HostedZoneNotFound: If no zone matches.
        """
        fqdn = domain.rstrip(".") + "."
        zone: dict[str, Any] | None = None

        for candidate in self.list_hosted_zones():
            name = candidate["Name"]
            if not name.endswith("."):
                name += "."
            if fqdn != name and not fqdn.endswith("." + name):
                continue
            if zone is None or len(name) >= len(zone["Name"].rstrip(".") + "."):
                zone = candidate

        if zone is None:
            raise HostedZoneNotFound(domain)

        logger.debug(
            "Hosted zone found",
            extra={"domain": domain, "zone": zone["Name"], "zone_id": zone["Id"]},
        )
        return zone

    def _change(self, action: str, domain: str, value: str, comment: str) -> None:
        """Submit a single-record change batch and wait for it to sync."""
        zone = self.find_hosted_zone(domain)
        record_name = challenge_record_name(domain)

        try:
            resp = self.client.change_resource_record_sets(
                HostedZoneId=zone["Id"],
                ChangeBatch={
                    "Comment": comment,
                    "Changes": [
                        {
                            "Action": action,
                            "ResourceRecordSet": {
                                "Name": record_name,
                                "Type": "TXT",
                                "TTL": self.ttl,
                                "ResourceRecords": [{"Value": f'"{value}"'}],
                            },
                        }
                    ],
                },
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "Route 53 change rejected",
                extra={"action": action, "record": record_name, "zone": zone["Name"]},
            )
            raise DNSProviderError(f"{action} of TXT {record_name} failed: {e}") from e

        change_info = resp["ChangeInfo"]
        logger.info(
            "TXT record change submitted",
            extra={
                "action": action,
                "record": record_name,
                "zone": zone["Name"],
                "change_id": change_info["Id"],
                "status": change_info["Status"],
            },
        )

        if change_info["Status"] == INSYNC:
            return
        self._wait_until_in_sync(domain, change_info["Id"])

    def _wait_until_in_sync(self, domain: str, change_id: str) -> None:
        """Poll GetChange until the change is INSYNC.

        Raises:
            DNSPropagationTimeout: If the change is still pending at the deadline.
        """
        last_status: str | None = None

        def attempt() -> bool | None:
            nonlocal last_status
            try:
                resp = self.client.get_change(Id=change_id)
            except (BotoCoreError, ClientError) as e:
                raise DNSProviderError(f"failed to get change {change_id}: {e}") from e

            last_status = resp["ChangeInfo"]["Status"]
            logger.debug("Change status", extra={"change_id": change_id, "status": last_status})
            return True if last_status == INSYNC else None

        with Timer() as t:
            poll_until(
                attempt,
                timeout=self.timeout,
                interval=self.poll_interval,
                on_timeout=lambda: DNSPropagationTimeout(
                    f"RRSets change for {domain}", self.timeout, last_status, domain=domain
                ),
            )
        logger.info(
            "TXT record change is INSYNC",
            extra={"domain": domain, "change_id": change_id, "elapsed_ms": t.elapsed_ms},
        )
