# laudo_core/reports/storage.py
"""
Object storage used for report PDFs, signatures and certificate bundles.

The core only keeps the returned keys; bytes never touch the database.
"""
from __future__ import annotations

import structlog
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import Storage, default_storage
from django.utils.module_loading import import_string

from laudo_core.common.api.exceptions import ExternalServiceError

log = structlog.get_logger(__name__)


class DjangoObjectStorage:
    """
    Adapter over a Django storage backend (filesystem locally, S3 via
    django-storages in deployments that configure it in STORAGES).
    """

    service_name = "storage"

    def __init__(self, storage: Storage | None = None):
        self._storage = storage or default_storage

    def put_object(self, data: bytes, key_hint: str) -> str:
        try:
            return self._storage.save(key_hint, ContentFile(data))
        except Exception as exc:
            log.error("storage.put_failed", key_hint=key_hint, error=str(exc))
            raise ExternalServiceError(self.service_name, "Could not store the file.") from exc

    def get_object(self, key: str) -> bytes:
        try:
            with self._storage.open(key, "rb") as fh:
                return fh.read()
        except Exception as exc:
            log.error("storage.get_failed", key=key, error=str(exc))
            raise ExternalServiceError(self.service_name, "Could not read the file.") from exc

    def delete_object(self, key: str) -> None:
        try:
            self._storage.delete(key)
        except Exception as exc:
            log.error("storage.delete_failed", key=key, error=str(exc))
            raise ExternalServiceError(self.service_name, "Could not delete the file.") from exc


def get_object_storage() -> DjangoObjectStorage:
    return import_string(settings.LAUDO_OBJECT_STORAGE)()


def report_key(report, kind: str, ext: str = "pdf") -> str:
    return f"laudos/{report.tenant_id}/{report.chain_id}/v{report.version}/{kind}.{ext}"
