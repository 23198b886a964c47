"""Replication of transcoded output across storage backends."""

import logging
import os
import shutil

from streamvault.core.errors import StorageWriteError
from streamvault.core.metrics import SEGMENTS_REPLICATED_TOTAL, STORAGE_WRITE_FAILURES_TOTAL
from streamvault.core.storage import StorageBackend

logger = logging.getLogger(__name__)


def replicate_object(
    storages: list[StorageBackend],
    key: str,
    content: bytes,
    content_type: str,
) -> None:
    """Write the same object to every backend, in configuration order.

    Blocking. Stops at the first failing backend.

    Raises:
        StorageWriteError: If any backend rejects the write
    """
    if not storages:
        raise StorageWriteError("No storage backends configured", details={"key": key})

    for storage in storages:
        try:
            storage.store(key, content, content_type)
        except StorageWriteError:
            STORAGE_WRITE_FAILURES_TOTAL.labels(backend=storage.name).inc()
            raise
        SEGMENTS_REPLICATED_TOTAL.labels(backend=storage.name).inc()


def read_local_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def cleanup_local_path(path: str) -> bool:
    """Remove a file or directory tree, logging instead of raising.

    Returns:
        True if nothing remains at path
    """
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        elif os.path.exists(path):
            os.remove(path)
        return True
    except OSError as e:
        logger.warning("Cleanup failed", extra={"path": path, "error": str(e)})
        return False
