"""Challenge selection and solver dispatch."""

from enum import StrEnum
from typing import Any

from awsacme.challenges.base import ChallengeSolver
from awsacme.challenges.dns01 import DnsChallengeSolver
from awsacme.challenges.http01 import HttpChallengeSolver, S3HttpChallengeSolver
from awsacme.exceptions import ChallengeNotFound, UnsupportedCombination
from awsacme.models import Authorization, Challenge, ChallengeType
from awsacme.providers.base import DnsProvider


class ChallengeStrategy(StrEnum):
    """How a challenge is solved."""

    DNS_01 = "dns-01"
    HTTP_01 = "http-01"
    S3_HTTP_01 = "s3-http-01"

    @property
    def challenge_type(self) -> ChallengeType:
        """The ACME challenge type the strategy answers."""
        if self is ChallengeStrategy.DNS_01:
            return ChallengeType.DNS_01
        return ChallengeType.HTTP_01


def find_challenge(authz: Authorization, challenge_type: str) -> Challenge:
    """Pick the challenge of ``challenge_type`` offered on its own.

    A challenge is usable only when some combination consists of that
    challenge alone.

    Args:
        authz: The authorization offering the challenges.
        challenge_type: The wanted challenge type (e.g. "dns-01").

    Returns:
        The matching challenge.

    Raises:
        UnsupportedCombination: If a combination names several challenges.
        ChallengeNotFound: If no single-challenge combination matches.
    """
    domain = authz.identifier.value

    for index, challenge in enumerate(authz.challenges):
        if challenge.type != challenge_type:
            continue
        for combination in authz.combinations:
            if len(combination) != 1:
                raise UnsupportedCombination(combination, domain)
            if combination[0] == index:
                return challenge

    raise ChallengeNotFound(challenge_type, domain)


def build_solver(
    strategy: ChallengeStrategy | str,
    challenge: Challenge,
    domain: str,
    *,
    dns_provider: DnsProvider | None = None,
    http_port: int = 9999,
    settle_delay: float = 1.0,
    s3_bucket: str | None = None,
    s3_client: Any = None,
) -> ChallengeSolver:
    """Build the solver for ``strategy``.

    Raises:
        ValueError: If the strategy is unknown or lacks its collaborator.
    """
    strategy = ChallengeStrategy(strategy)

    if strategy is ChallengeStrategy.DNS_01:
        if dns_provider is None:
            raise ValueError("dns-01 strategy requires a DNS provider")
        return DnsChallengeSolver(dns_provider, challenge, domain)

    if strategy is ChallengeStrategy.HTTP_01:
        return HttpChallengeSolver(challenge, domain, port=http_port, settle_delay=settle_delay)

    if not s3_bucket:
        raise ValueError("s3-http-01 strategy requires a bucket")
    return S3HttpChallengeSolver(s3_bucket, challenge, domain, client=s3_client)
