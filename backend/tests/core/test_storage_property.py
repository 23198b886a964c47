"""Property-based tests for storage backends.

**Feature: streamvault, Property 1: Signed Storage Access**
"""

import os
import tempfile
from urllib.parse import parse_qs, urlparse

import pytest
from hypothesis import given, settings, strategies as st

from streamvault.core.config import Settings
from streamvault.core.errors import SigningError, StorageWriteError
from streamvault.core.storage import (
    LocalStorage,
    S3Storage,
    StorageConfig,
    build_storage_backends,
    find_local_storage,
)

from fakes import FakeStorage


key_strategy = st.from_regex(r"[a-z0-9\-]{1,16}/video_(360p|720p)_[0-9]{3}\.ts", fullmatch=True)


def make_local(path: str = "./storage", ttl_seconds: int = 3600) -> LocalStorage:
    return LocalStorage(
        StorageConfig(
            backend="local",
            local_path=path,
            base_url="http://localhost:8000/api/v1/media",
            signing_key="test-signing-key",
            url_ttl_seconds=ttl_seconds,
        )
    )


def signature_params(url: str) -> tuple[str, int, str]:
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    key = parsed.path.split("/api/v1/media/", 1)[1]
    return key, int(query["expires"][0]), query["signature"][0]


class TestLocalSigning:
    """Local URLs carry an HMAC over key and expiry."""

    @given(key=key_strategy)
    @settings(max_examples=100)
    def test_signed_url_verifies(self, key: str) -> None:
        storage = make_local()
        signed = storage.signed_url(key)
        url_key, expires, signature = signature_params(signed.url)

        assert url_key == key
        assert storage.verify_signature(key, expires, signature)
        assert signed.ttl == storage.url_ttl

    @given(key=key_strategy, other=key_strategy)
    @settings(max_examples=100)
    def test_signature_is_bound_to_key(self, key: str, other: str) -> None:
        storage = make_local()
        _, expires, signature = signature_params(storage.signed_url(key).url)

        assert storage.verify_signature(other, expires, signature) == (other == key)

    def test_expired_signature_rejected(self) -> None:
        storage = make_local()
        key = "abc/video_360p_000.ts"
        _, expires, signature = signature_params(storage.signed_url(key).url)

        assert not storage.verify_signature(key, expires, signature, now=expires)
        assert storage.verify_signature(key, expires, signature, now=expires - 1)

    def test_tampered_signature_rejected(self) -> None:
        storage = make_local()
        key = "abc/video_360p_000.ts"
        _, expires, signature = signature_params(storage.signed_url(key).url)

        assert not storage.verify_signature(key, expires, "0" * len(signature))

    def test_local_storage_requires_signing_key(self) -> None:
        with pytest.raises(ValueError):
            LocalStorage(StorageConfig(backend="local", signing_key=""))


class TestLocalWrites:
    """Local writes land under the storage root and nowhere else."""

    def test_store_writes_bytes(self) -> None:
        with tempfile.TemporaryDirectory() as root:
            storage = make_local(root)
            storage.store("vid/video_360p_000.ts", b"segment", "video/MP2T")

            with open(os.path.join(root, "vid", "video_360p_000.ts"), "rb") as f:
                assert f.read() == b"segment"

    def test_store_rejects_escaping_key(self) -> None:
        with tempfile.TemporaryDirectory() as root:
            storage = make_local(os.path.join(root, "store"))

            with pytest.raises(StorageWriteError):
                storage.store("../outside.ts", b"x", "video/MP2T")
            assert not os.path.exists(os.path.join(root, "outside.ts"))

    def test_check_available_creates_root(self) -> None:
        with tempfile.TemporaryDirectory() as root:
            path = os.path.join(root, "nested", "store")

            make_local(path).check_available()

            assert os.path.isdir(path)


class TestStorageErrors:
    """Backend failures surface as typed errors."""

    def test_failed_write_raises_storage_write_error(self) -> None:
        storage = FakeStorage(name="broken", fail_writes=True)

        with pytest.raises(StorageWriteError) as exc_info:
            storage.store("k", b"x", "video/MP2T")

        assert exc_info.value.details["backend"] == "broken"
        assert exc_info.value.details["error"] == "disk full"

    def test_signing_failure_raises_signing_error(self) -> None:
        storage = FakeStorage(fail_signing=True)

        with pytest.raises(SigningError):
            storage.signed_url("k")


class TestBuildStorageBackends:
    """Storage configuration is validated at startup."""

    def _settings(self, **overrides) -> Settings:
        values = {
            "STORAGE_BACKENDS": ["local"],
            "STORAGE_SIGNING_KEY": "secret",
            "SIGNED_URL_TTL_SECONDS": 900,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    def test_local_then_s3(self) -> None:
        backends = build_storage_backends(
            self._settings(STORAGE_BACKENDS=["local", "s3"], STORAGE_BUCKET="videos")
        )

        assert isinstance(backends[0], LocalStorage)
        assert isinstance(backends[1], S3Storage)
        assert [b.name for b in backends] == ["local", "s3"]
        assert all(b.url_ttl.total_seconds() == 900 for b in backends)
        assert find_local_storage(backends) is backends[0]

    def test_gcs_uses_interop_endpoint(self) -> None:
        backends = build_storage_backends(
            self._settings(STORAGE_BACKENDS=["gcs"], GCS_BUCKET="media")
        )

        assert isinstance(backends[0], S3Storage)
        assert backends[0].config.endpoint_url == "https://storage.googleapis.com"
        assert backends[0].config.bucket == "media"
        assert find_local_storage(backends) is None

    def test_empty_backend_list_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_storage_backends(self._settings(STORAGE_BACKENDS=[]))

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_storage_backends(self._settings(STORAGE_BACKENDS=["ftp"]))

    def test_missing_bucket_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_storage_backends(self._settings(STORAGE_BACKENDS=["minio"], STORAGE_BUCKET=""))

    def test_missing_signing_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_storage_backends(self._settings(STORAGE_SIGNING_KEY=""))
