"""Base class for challenge solvers."""

from abc import ABC, abstractmethod

ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/"


def acme_well_known_path(token: str) -> str:
    """Return the URL path at which an HTTP-01 token is validated."""
    return f"{ACME_CHALLENGE_PATH}{token}"


class ChallengeSolver(ABC):
    """Abstract base class for ACME challenge solvers.

    A solver is built for one challenge of one domain. ``solve_challenge``
    provisions the proof-of-control artifact and ``cleanup_challenge``
    removes it; the caller must run the cleanup on every exit path once
    solving has been attempted.
    """

    @abstractmethod
    def solve_challenge(self, key_authorization: str) -> None:
        """Provision whatever the CA needs to validate the challenge.

        Returns only once the artifact is visible to the CA (e.g. the DNS
        change is INSYNC, the listener is accepting connections).

        Args:
            key_authorization: The key authorization for the challenge token.
        """
        ...

    @abstractmethod
    def cleanup_challenge(self, key_authorization: str) -> None:
        """Remove the artifact created by solve_challenge().

        Args:
            key_authorization: The key authorization passed to solve_challenge().
        """
        ...
