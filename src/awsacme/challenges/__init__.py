"""ACME challenge solvers."""

from awsacme.challenges.base import ChallengeSolver, acme_well_known_path
from awsacme.challenges.dns01 import DnsChallengeSolver, compute_dns_txt_value
from awsacme.challenges.http01 import HttpChallengeSolver, S3HttpChallengeSolver
from awsacme.challenges.selection import ChallengeStrategy, build_solver, find_challenge

__all__ = [
    "ChallengeSolver",
    "ChallengeStrategy",
    "DnsChallengeSolver",
    "HttpChallengeSolver",
    "S3HttpChallengeSolver",
    "acme_well_known_path",
    "build_solver",
    "compute_dns_txt_value",
    "find_challenge",
]
