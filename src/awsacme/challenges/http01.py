"""HTTP-01 challenge implementations.

Two solvers:
  1. Local listener: serves the key authorization from an HTTP server
     running in a background thread of this process.
  2. Object storage: uploads the key authorization as a public-read S3
     object under the well-known prefix of a bucket that fronts the domain.
"""

import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from awsacme._logging import get_logger
from awsacme.challenges.base import ChallengeSolver, acme_well_known_path
from awsacme.exceptions import AcmeError
from awsacme.models import Challenge

logger = get_logger(__name__)


class _ChallengeServer(HTTPServer):
    """HTTPServer carrying the one path and body it answers with."""

    def __init__(self, address: tuple[str, int], path: str, body: bytes):
        self.challenge_path = path
        self.challenge_body = body
        super().__init__(address, _ChallengeHandler)


class _ChallengeHandler(BaseHTTPRequestHandler):
    """Serves only the ACME HTTP-01 challenge path.

    Other paths get 404 and every method other than GET gets 405.
    """

    server: _ChallengeServer

    def do_GET(self) -> None:
        if urlsplit(self.path).path != self.server.challenge_path:
            self.send_error(404)
            return

        body = self.server.challenge_body
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def send_error(self, code: int, message: str | None = None, explain: str | None = None) -> None:
        # the base handler answers 501 for any method without a do_ handler
        if code != HTTPStatus.NOT_IMPLEMENTED:
            super().send_error(code, message, explain)
            return

        self.close_connection = True
        self.send_response(HTTPStatus.METHOD_NOT_ALLOWED)
        self.send_header("Allow", "GET")
        self.send_header("Connection", "close")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("HTTP-01 listener request", extra={"request": format % args})


class HttpChallengeSolver(ChallengeSolver):
    """Solve HTTP-01 with a listener bound in this process.

    The listener runs ``serve_forever`` in a daemon thread. After binding
    the solver sleeps ``settle_delay`` seconds before returning so the
    CA is not told to validate before the listener answers.

    Args:
        challenge: The http-01 challenge being solved.
        domain: The domain being authorized.
        port: Port to bind (0 picks an ephemeral port).
        host: Interface to bind ("" binds all interfaces).
        settle_delay: Seconds to wait after binding.
    """

    def __init__(
        self,
        challenge: Challenge,
        domain: str,
        port: int = 9999,
        host: str = "",
        settle_delay: float = 1.0,
    ):
        self.challenge = challenge
        self.domain = domain
        self.host = host
        self.settle_delay = settle_delay
        self._port = port
        self._server: _ChallengeServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        """The bound port while listening, the configured port otherwise."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    @property
    def running(self) -> bool:
        return self._server is not None

    def solve_challenge(self, key_authorization: str) -> None:
        if self._server is not None:
            raise RuntimeError("challenge listener is already running")

        self._server = _ChallengeServer(
            (self.host, self._port),
            acme_well_known_path(self.challenge.token),
            key_authorization.encode("utf-8"),
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name=f"http-01 {self.domain}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "HTTP-01 listener started",
            extra={"domain": self.domain, "port": self.port},
        )

        if self.settle_delay > 0:
            time.sleep(self.settle_delay)

    def cleanup_challenge(self, key_authorization: str) -> None:
        server, self._server = self._server, None
        thread, self._thread = self._thread, None
        if server is None:
            return

        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5)
        logger.info("HTTP-01 listener stopped", extra={"domain": self.domain})


class S3HttpChallengeSolver(ChallengeSolver):
    """Solve HTTP-01 by uploading the key authorization to an S3 bucket.

    The bucket is expected to be served at
    ``http://<domain>/.well-known/acme-challenge/``.

    Args:
        bucket: Bucket name.
        challenge: The http-01 challenge being solved.
        domain: The domain being authorized.
        client: boto3 S3 client (created on demand if omitted).
    """

    def __init__(self, bucket: str, challenge: Challenge, domain: str, client: Any = None):
        self.bucket = bucket
        self.challenge = challenge
        self.domain = domain
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    @property
    def object_key(self) -> str:
        return acme_well_known_path(self.challenge.token).lstrip("/")

    def solve_challenge(self, key_authorization: str) -> None:
        body = key_authorization.encode("utf-8")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self.object_key,
                Body=body,
                ContentLength=len(body),
                ContentType="text/plain",
                ACL="public-read",
            )
        except (BotoCoreError, ClientError) as e:
            raise AcmeError(
                f"failed to upload s3://{self.bucket}/{self.object_key}: {e}"
            ) from e
        logger.info(
            "HTTP-01 object uploaded",
            extra={"domain": self.domain, "bucket": self.bucket, "key": self.object_key},
        )

    def cleanup_challenge(self, key_authorization: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self.object_key)
        except (BotoCoreError, ClientError) as e:
            raise AcmeError(
                f"failed to delete s3://{self.bucket}/{self.object_key}: {e}"
            ) from e
        logger.info(
            "HTTP-01 object deleted",
            extra={"domain": self.domain, "bucket": self.bucket, "key": self.object_key},
        )
