"""Pytest fixtures for the awsacme test suite."""

import io
import logging
import logging.handlers
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from awsacme.crypto import generate_rsa_key
from awsacme.filer import OSFiler
from awsacme.store import Store

TEST_EMAIL = "admin@example.org"


def _client_error(code: str, operation: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeRoute53:
    """In-memory stand-in for a boto3 Route 53 client.

    Changes are reported PENDING until ``get_change`` has been called
    ``polls_until_insync`` times for them.
    """

    def __init__(
        self,
        zones: list[tuple[str, str]] | None = None,
        page_size: int = 100,
        polls_until_insync: int = 0,
    ) -> None:
        self.zones = [
            {"Id": zone_id, "Name": name, "Config": {"PrivateZone": False}}
            for zone_id, name in (zones or [])
        ]
        self.page_size = page_size
        self.polls_until_insync = polls_until_insync
        self.records: dict[tuple[str, str], list[str]] = {}
        self.change_batches: list[dict[str, Any]] = []
        self.list_calls = 0
        self.get_change_calls = 0
        self._polls: dict[str, int] = {}

    def list_hosted_zones(self, Marker: str | None = None) -> dict[str, Any]:
        self.list_calls += 1
        start = int(Marker) if Marker else 0
        page = self.zones[start : start + self.page_size]
        end = start + len(page)
        resp: dict[str, Any] = {"HostedZones": page, "IsTruncated": end < len(self.zones)}
        if resp["IsTruncated"]:
            resp["NextMarker"] = str(end)
        return resp

    def change_resource_record_sets(self, HostedZoneId: str, ChangeBatch: dict) -> dict:
        self.change_batches.append({"HostedZoneId": HostedZoneId, **ChangeBatch})
        for change in ChangeBatch["Changes"]:
            rrset = change["ResourceRecordSet"]
            key = (HostedZoneId, rrset["Name"])
            values = [r["Value"] for r in rrset["ResourceRecords"]]
            if change["Action"] == "DELETE":
                if self.records.get(key) != values:
                    raise _client_error("InvalidChangeBatch", "ChangeResourceRecordSets")
                del self.records[key]
            else:
                self.records[key] = values

        change_id = f"/change/C{len(self.change_batches)}"
        self._polls[change_id] = 0
        status = "INSYNC" if self.polls_until_insync == 0 else "PENDING"
        return {"ChangeInfo": {"Id": change_id, "Status": status}}

    def get_change(self, Id: str) -> dict:
        self.get_change_calls += 1
        if Id not in self._polls:
            raise _client_error("NoSuchChange", "GetChange", 404)
        self._polls[Id] += 1
        status = "INSYNC" if self._polls[Id] >= self.polls_until_insync else "PENDING"
        return {"ChangeInfo": {"Id": Id, "Status": status}}


class FakeS3:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.page_size = page_size

    def put_object(self, Bucket: str, Key: str, Body: bytes, **params: Any) -> dict:
        self.objects[(Bucket, Key)] = {"Body": bytes(Body), **params}
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict:
        try:
            obj = self.objects[(Bucket, Key)]
        except KeyError:
            raise _client_error("NoSuchKey", "GetObject", 404) from None
        return {"Body": io.BytesIO(obj["Body"])}

    def delete_object(self, Bucket: str, Key: str) -> dict:
        self.objects.pop((Bucket, Key), None)
        return {}

    def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        Delimiter: str = "",
        ContinuationToken: str | None = None,
    ) -> dict:
        prefixes: list[str] = []
        for bucket, key in sorted(self.objects):
            if bucket != Bucket or not key.startswith(Prefix):
                continue
            rest = key[len(Prefix) :]
            if Delimiter and Delimiter in rest:
                common = Prefix + rest.split(Delimiter, 1)[0] + Delimiter
                if common not in prefixes:
                    prefixes.append(common)

        start = int(ContinuationToken) if ContinuationToken else 0
        page = prefixes[start : start + self.page_size]
        end = start + len(page)
        resp: dict[str, Any] = {"IsTruncated": end < len(prefixes)}
        if page:
            resp["CommonPrefixes"] = [{"Prefix": p} for p in page]
        if resp["IsTruncated"]:
            resp["NextContinuationToken"] = str(end)
        return resp


@pytest.fixture(scope="session")
def account_key() -> rsa.RSAPrivateKey:
    """A 2048-bit RSA account key shared by the session."""
    return generate_rsa_key(2048)


@pytest.fixture(scope="session")
def other_key() -> rsa.RSAPrivateKey:
    """A second RSA key, distinct from account_key."""
    return generate_rsa_key(2048)


@pytest.fixture
def filer(tmp_path) -> OSFiler:
    """A filesystem filer rooted in a temporary directory."""
    return OSFiler(tmp_path)


@pytest.fixture
def store(filer: OSFiler) -> Store:
    """A layout-2 store for TEST_EMAIL."""
    return Store(TEST_EMAIL, filer)


@pytest.fixture
def fake_route53() -> FakeRoute53:
    """A Route 53 fake hosting example.org."""
    return FakeRoute53(zones=[("/hostedzone/Z1", "example.org.")])


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def make_certificate(
    account_key: rsa.RSAPrivateKey,
) -> Callable[..., x509.Certificate]:
    """Factory for certificates signed by account_key.

    Usage:
        cert = make_certificate("example.org", not_after=now + timedelta(days=10))
    """

    def _make(
        common_name: str = "example.org",
        sans: list[str] | None = None,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
        issuer_name: str | None = None,
        key: rsa.RSAPrivateKey | None = None,
    ) -> x509.Certificate:
        now = datetime.now(UTC)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        issuer = x509.Name(
            [x509.NameAttribute(NameOID.COMMON_NAME, issuer_name or common_name)]
        )
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key((key or account_key).public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before or now - timedelta(days=1))
            .not_valid_after(not_after or now + timedelta(days=90))
        )
        if sans is not None:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in sans]),
                critical=False,
            )
        return builder.sign(account_key, hashes.SHA256())

    return _make


class LogCapture:
    """Helper class to capture and inspect log records."""

    def __init__(self, handler: logging.handlers.MemoryHandler) -> None:
        self._handler = handler

    @property
    def records(self) -> list[logging.LogRecord]:
        """Get all captured log records."""
        return self._handler.buffer

    def get_records(
        self, level: int | None = None, name: str | None = None
    ) -> list[logging.LogRecord]:
        """Get log records filtered by level and/or logger name.

        Args:
            level: Filter by log level (e.g., logging.INFO).
            name: Filter by logger name prefix (e.g., "awsacme.client").

        Returns:
            List of matching log records.
        """
        records = self.records
        if level is not None:
            records = [r for r in records if r.levelno == level]
        if name is not None:
            records = [r for r in records if r.name.startswith(name)]
        return records

    def get_messages(self, level: int | None = None, name: str | None = None) -> list[str]:
        """Get log messages filtered by level and/or logger name."""
        return [r.getMessage() for r in self.get_records(level, name)]

    def clear(self) -> None:
        """Clear all captured log records."""
        self._handler.buffer.clear()


@pytest.fixture
def log_capture() -> Generator[LogCapture]:
    """Capture logs from the awsacme library during a test.

    Usage:
        def test_something(log_capture):
            # do something that logs
            assert "Certificate requested" in log_capture.get_messages(logging.INFO)
    """
    handler = logging.handlers.MemoryHandler(capacity=1000)
    handler.setLevel(logging.DEBUG)

    awsacme_logger = logging.getLogger("awsacme")
    original_level = awsacme_logger.level
    awsacme_logger.setLevel(logging.DEBUG)
    awsacme_logger.addHandler(handler)

    try:
        yield LogCapture(handler)
    finally:
        awsacme_logger.removeHandler(handler)
        awsacme_logger.setLevel(original_level)
        handler.close()


@pytest.fixture
def route53_factory() -> type[FakeRoute53]:
    """The Route 53 fake class, for tests that need custom zones or timings."""
    return FakeRoute53
