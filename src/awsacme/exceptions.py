"""Exceptions raised by the awsacme library."""

import json
from typing import Any

import httpx


class AcmeError(Exception):
    """Base exception for every error raised by awsacme."""


class ProtocolError(AcmeError):
    """The CA returned an application-level error.

    Represents errors returned by the ACME server in the standard
    problem document format (RFC 7807).
    """

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        url: str | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.url = url
        super().__init__(f"acme error({status_code}): type: {type} detail: {detail}")

    @classmethod
    def from_problem(
        cls,
        data: dict[str, Any],
        status_code: int,
        url: str | None = None,
    ) -> "ProtocolError":
        """Create a ProtocolError from a decoded problem document.

        Routes to the appropriate subclass based on error type.

        Args:
            data: Parsed JSON problem document.
            status_code: HTTP status code.
            url: The URL that produced the error.

        Returns:
            ProtocolError instance (or appropriate subclass).
        """
        error_type = data.get("type", "unknown")
        kwargs: dict[str, Any] = {
            "type": error_type,
            "detail": data.get("detail", "Unknown error"),
            "status_code": status_code,
            "url": url,
        }

        # draft-01 uses urn:acme:error:*, RFC 8555 urn:ietf:params:acme:error:*
        if error_type.endswith(":badNonce"):
            return BadNonceError(**kwargs)

        return cls(**kwargs)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ProtocolError":
        """Create a ProtocolError from an HTTP response.

        Args:
            response: The failed response.

        Returns:
            ProtocolError instance (or appropriate subclass).
        """
        url = str(response.request.url) if response.request is not None else None
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None

        if not isinstance(data, dict):
            return cls(
                type="unknown",
                detail=response.text,
                status_code=response.status_code,
                url=url,
            )
        return cls.from_problem(data, response.status_code, url=url)


class BadNonceError(ProtocolError):
    """The request carried a stale or unknown replay nonce."""


class NoTermsOfServiceFound(AcmeError):
    """The registration response did not link to terms of service."""


class TransportError(AcmeError):
    """Network or TLS failure while talking to a remote endpoint.

    Safe to retry at the orchestration layer; never retried automatically.
    """

    def __init__(self, method: str, url: str, reason: str):
        self.method = method
        self.url = url
        self.reason = reason
        super().__init__(f"{method} {url} failed: {reason}")


class ChallengeFailed(AcmeError):
    """The CA marked a challenge invalid."""

    def __init__(
        self,
        challenge_type: str,
        url: str,
        error: dict[str, Any] | None = None,
        domain: str | None = None,
    ):
        self.challenge_type = challenge_type
        self.url = url
        self.error = error
        self.domain = domain
        detail = (error or {}).get("detail", "no detail provided")
        super().__init__(f"{challenge_type} challenge at {url} became invalid: {detail}")


class Timeout(AcmeError):
    """A polling deadline elapsed before a terminal state was observed."""

    def __init__(
        self,
        what: str,
        timeout: float,
        last_status: str | None = None,
        url: str | None = None,
        domain: str | None = None,
    ):
        self.what = what
        self.timeout = timeout
        self.last_status = last_status
        self.url = url
        self.domain = domain
        where = f" at {url}" if url else ""
        super().__init__(
            f"{what}{where} has not been completed within {timeout:g}s "
            f"(last status: {last_status})"
        )


class DNSPropagationTimeout(Timeout):
    """A DNS change did not reach INSYNC within the deadline."""


class DNSProviderError(AcmeError):
    """The DNS provider API rejected a request."""


class HostedZoneNotFound(DNSProviderError):
    """No hosted zone owned by the account matches the domain."""

    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"no hosted zone found for {domain}")


class ChallengeNotFound(AcmeError):
    """The authorization offers no usable challenge of the requested type."""

    def __init__(self, challenge_type: str, domain: str):
        self.challenge_type = challenge_type
        self.domain = domain
        super().__init__(f"no {challenge_type} challenge and its combination found for {domain}")


class UnsupportedCombination(AcmeError):
    """A challenge combination requires more than one challenge."""

    def __init__(self, combination: list[int], domain: str):
        self.combination = combination
        self.domain = domain
        super().__init__(
            f"combination {combination} for {domain} requires multiple challenges; "
            "only single-challenge combinations are supported"
        )


class StoreError(AcmeError):
    """Persisted material could not be read or written."""


class NotFound(StoreError):
    """The requested key does not exist in the blob store."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"file not found: {key}")
