"""Object storage backends.

Supports: local filesystem, S3, MinIO and Google Cloud Storage (through its
S3-compatible XML API with HMAC keys). Every backend can store bytes under a
key and hand out a time-limited signed URL for a key.
"""

import hashlib
import hmac
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

import boto3
from botocore.config import Config as BotoConfig

from streamvault.core.errors import SigningError, StorageWriteError

SEGMENT_CONTENT_TYPE = "video/MP2T"
MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"

SUPPORTED_BACKENDS = ("local", "s3", "minio", "gcs")


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class SignedURL:
    """A signed URL and how long it stays valid from the moment it was issued."""
    url: str
    ttl: timedelta


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio, gcs
    name: str = ""
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    base_url: str = ""
    signing_key: str = ""
    url_ttl_seconds: int = 3600


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.name = config.name or config.backend
        self.url_ttl = timedelta(seconds=config.url_ttl_seconds)

    @abstractmethod
    def upload_bytes(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Write content under key."""
        pass

    @abstractmethod
    def get_signed_url(self, key: str) -> SignedURL:
        """Sign a read URL for key."""
        pass

    @abstractmethod
    def check_available(self) -> None:
        """Raise StorageWriteError if the backend cannot accept writes."""
        pass

    def store(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Write content under key.

        Raises:
            StorageWriteError: If the backend reports a failed write
        """
        result = self.upload_bytes(key, content, content_type)
        if not result.success:
            raise StorageWriteError(
                f"Failed to write {key} to {self.name}",
                details={
                    "backend": self.name,
                    "key": key,
                    "error": result.error_message,
                },
            )

    def signed_url(self, key: str) -> SignedURL:
        """Sign a read URL for key.

        Raises:
            SigningError: If the backend cannot produce a URL
        """
        try:
            return self.get_signed_url(key)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(
                f"Failed to sign URL for {key} on {self.name}",
                details={"backend": self.name, "key": key, "error": str(e)},
            ) from e


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    URLs point at the API's media route and carry an HMAC-SHA256 signature
    over the key and the expiry timestamp.
    """

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        if not config.signing_key:
            raise ValueError("Local storage requires a signing key")
        self.base_path = Path(config.local_path).resolve()
        self.base_url = config.base_url.rstrip("/")
        self._signing_key = config.signing_key.encode("utf-8")

    def resolve_path(self, key: str) -> Path:
        """Map a key to a path under the storage root.

        Raises:
            ValueError: If the key escapes the storage root
        """
        full_path = (self.base_path / key).resolve()
        if full_path != self.base_path and self.base_path not in full_path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return full_path

    def upload_bytes(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            dest_path = self.resolve_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_bytes(content)
            return StorageResult(success=True, key=key, file_size=len(content))
        except (OSError, ValueError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def _sign(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def get_signed_url(self, key: str) -> SignedURL:
        expires = int(time.time()) + int(self.url_ttl.total_seconds())
        query = urlencode({"expires": expires, "signature": self._sign(key, expires)})
        url = f"{self.base_url}/{quote(key)}?{query}"
        return SignedURL(url=url, ttl=self.url_ttl)

    def verify_signature(
        self,
        key: str,
        expires: int,
        signature: str,
        now: Optional[float] = None,
    ) -> bool:
        """Check a signature issued by get_signed_url and that it has not expired."""
        now = time.time() if now is None else now
        if expires <= now:
            return False
        return hmac.compare_digest(self._sign(key, expires), signature)

    def check_available(self) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageWriteError(
                f"Cannot create storage directory {self.base_path}",
                details={"backend": self.name, "error": str(e)},
            ) from e
        if not os.access(self.base_path, os.W_OK):
            raise StorageWriteError(
                f"Storage directory {self.base_path} is not writable",
                details={"backend": self.name},
            )


class S3Storage(StorageBackend):
    """S3, MinIO and GCS (interoperability API) storage backend."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        if not config.bucket:
            raise ValueError(f"Storage backend {self.name} requires a bucket")
        self._client = None

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }

            # For MinIO, GCS or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                # Allow non-SSL for local MinIO
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload_bytes(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            response = self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except Exception as e:
            return StorageResult(success=False, key=key, error_message=str(e))

        return StorageResult(
            success=True,
            key=key,
            file_size=len(content),
            etag=response.get("ETag", "").strip('"'),
        )

    def get_signed_url(self, key: str) -> SignedURL:
        url = self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=int(self.url_ttl.total_seconds()),
        )
        return SignedURL(url=url, ttl=self.url_ttl)

    def check_available(self) -> None:
        try:
            self._get_client().head_bucket(Bucket=self.config.bucket)
        except Exception as e:
            raise StorageWriteError(
                f"Bucket {self.config.bucket} is not reachable on {self.name}",
                details={"backend": self.name, "error": str(e)},
            ) from e


def create_storage_backend(config: StorageConfig) -> StorageBackend:
    """Create the backend matching config.backend."""
    backend_type = config.backend.lower()

    if backend_type == "local":
        return LocalStorage(config)
    elif backend_type in ("s3", "minio", "gcs"):
        return S3Storage(config)
    else:
        raise ValueError(f"Unsupported storage backend: {backend_type}")


def build_storage_configs(settings) -> list[StorageConfig]:
    """Translate settings into one StorageConfig per configured backend."""
    if not settings.STORAGE_BACKENDS:
        raise ValueError("At least one storage backend must be configured")

    configs = []
    for backend in settings.STORAGE_BACKENDS:
        backend = backend.lower()
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(f"Unsupported storage backend: {backend}")

        if backend == "local":
            config = StorageConfig(
                backend="local",
                local_path=settings.LOCAL_STORAGE_PATH,
                base_url=settings.LOCAL_STORAGE_BASE_URL,
                signing_key=settings.STORAGE_SIGNING_KEY,
            )
        elif backend == "gcs":
            config = StorageConfig(
                backend="gcs",
                bucket=settings.GCS_BUCKET,
                region="auto",
                access_key=settings.GCS_HMAC_ACCESS_KEY,
                secret_key=settings.GCS_HMAC_SECRET,
                endpoint_url=settings.GCS_ENDPOINT_URL,
            )
        else:
            config = StorageConfig(
                backend=backend,
                bucket=settings.STORAGE_BUCKET,
                region=settings.STORAGE_REGION,
                access_key=settings.STORAGE_ACCESS_KEY,
                secret_key=settings.STORAGE_SECRET_KEY,
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                use_ssl=settings.STORAGE_USE_SSL,
            )
        config.name = backend
        config.url_ttl_seconds = settings.SIGNED_URL_TTL_SECONDS
        configs.append(config)

    return configs


def build_storage_backends(settings) -> list[StorageBackend]:
    """Create every configured backend; the first one is the canonical signer.

    Raises:
        ValueError: On an empty list, an unknown backend, a missing bucket or
            a missing local signing key
    """
    return [create_storage_backend(config) for config in build_storage_configs(settings)]


def find_local_storage(storages: list[StorageBackend]) -> Optional[LocalStorage]:
    """Return the configured local backend, if any."""
    for storage in storages:
        if isinstance(storage, LocalStorage):
            return storage
    return None
