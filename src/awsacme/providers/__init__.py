"""DNS providers for ACME challenge validation."""

from awsacme.providers.base import DnsProvider, challenge_record_name
from awsacme.providers.route53 import Route53Provider

__all__ = ["DnsProvider", "Route53Provider", "challenge_record_name"]
