"""Blob stores addressed by hierarchical keys."""

import os
import posixpath
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from awsacme._logging import get_logger
from awsacme.exceptions import NotFound, StoreError

logger = get_logger(__name__)


class Filer(ABC):
    """Abstract content store used by the persistence layer.

    Keys are built with ``join`` and taken apart with ``split`` so the
    separator stays a backend concern.
    """

    @abstractmethod
    def write_file(self, key: str, data: bytes) -> None:
        """Write ``data`` at ``key``, replacing any previous content."""
        ...

    @abstractmethod
    def read_file(self, key: str) -> bytes:
        """Read the content stored at ``key``.

        Raises:
            NotFound: If nothing is stored at ``key``.
        """
        ...

    @abstractmethod
    def list_dir(self, prefix: str) -> list[str]:
        """List the keys of the direct children of ``prefix``.

        Each returned entry is the full child key (``join(prefix, name)``).
        A prefix with no children yields an empty list.
        """
        ...

    @abstractmethod
    def join(self, *elems: str) -> str: ...

    @abstractmethod
    def split(self, key: str) -> list[str]: ...


class OSFiler(Filer):
    """Filer backed by the local filesystem.

    Args:
        base_dir: Directory prepended to every key.
    """

    def __init__(self, base_dir: str | os.PathLike = "."):
        self.base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        return self.base_dir / key

    def write_file(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

            # Same directory keeps the rename atomic
            fd, temp_path = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(temp_path, 0o600)
                os.replace(temp_path, path)
            except BaseException:
                Path(temp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"failed to write {key}: {e}") from e

    def read_file(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            raise NotFound(key) from None
        except OSError as e:
            raise StoreError(f"failed to read {key}: {e}") from e

    def list_dir(self, prefix: str) -> list[str]:
        try:
            names = sorted(os.listdir(self._path(prefix)))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreError(f"failed to list {prefix}: {e}") from e
        return [self.join(prefix, name) for name in names if not name.startswith(".")]

    def join(self, *elems: str) -> str:
        return os.path.join(*elems)

    def split(self, key: str) -> list[str]:
        return key.split(os.sep)


class S3Filer(Filer):
    """Filer backed by an S3 bucket.

    Objects are written private; with ``kms_key_id`` they are encrypted
    with SSE-KMS under that key.

    Args:
        bucket: Bucket name.
        kms_key_id: Optional KMS key id for server-side encryption.
        client: boto3 S3 client (created on demand if omitted).
    """

    def __init__(self, bucket: str, kms_key_id: str | None = None, client: Any = None):
        self.bucket = bucket
        self.kms_key_id = kms_key_id
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def write_file(self, key: str, data: bytes) -> None:
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentLength": len(data),
            "ACL": "private",
        }
        if self.kms_key_id:
            params["ServerSideEncryption"] = "aws:kms"
            params["SSEKMSKeyId"] = self.kms_key_id

        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"failed to write s3://{self.bucket}/{key}: {e}") from e

    def read_file(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFound(key) from None
            raise StoreError(f"failed to read s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"failed to read s3://{self.bucket}/{key}: {e}") from e

        body = obj["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def list_dir(self, prefix: str) -> list[str]:
        dirs: list[str] = []
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Prefix": prefix.rstrip("/") + "/",
            "Delimiter": "/",
        }
        try:
            while True:
                resp = self.client.list_objects_v2(**params)
                for common_prefix in resp.get("CommonPrefixes", []):
                    dirs.append(common_prefix["Prefix"].rstrip("/"))
                if not resp.get("IsTruncated"):
                    break
                params["ContinuationToken"] = resp["NextContinuationToken"]
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"failed to list s3://{self.bucket}/{prefix}: {e}") from e
        return dirs

    def join(self, *elems: str) -> str:
        return posixpath.join(*elems)

    def split(self, key: str) -> list[str]:
        return key.split("/")
