"""Blob store for source and generated invoice documents.

``StorageService`` is backed by S3-compatible object storage (MinIO) with:
- Lazy client initialization and bucket auto-creation
- Retry with exponential backoff on S3 errors
- Public URLs for stored objects

``InMemoryBlobStore`` serves development and tests.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
import threading
from abc import ABC, abstractmethod

from minio import Minio
from minio.error import S3Error
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings
from services.shared.errors import DownloadFailed, UploadFailed

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def source_document_key(owner_id: str, invoice_id: str, file_name: str) -> str:
    return f"{owner_id}/{invoice_id}/original-{file_name}"


def generated_document_key(owner_id: str, invoice_id: str, invoice_number: str) -> str:
    return f"{owner_id}/{invoice_id}/invoicenow-{invoice_number}.xml"


class BlobStore(ABC):
    """Get/put-by-key access to stored documents."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        """Store an object.

        Returns:
            Public URL of the stored object

        Raises:
            UploadFailed: If the object could not be written
        """
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Read an object.

        Raises:
            DownloadFailed: If the object could not be read
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def health_check(self) -> bool:
        return True


class StorageService(BlobStore):
    """S3-compatible object storage.

    Provides document storage with data sovereignty support
    through on-premises MinIO deployment.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self.bucket = settings.storage_bucket
        self._client: Minio | None = None
        self._bucket_ready = False

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage is enabled and credentials are set."""
        if not self.settings.storage_enabled:
            return False
        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if the storage backend is reachable."""
        if not self.is_available():
            return False

        try:
            self._get_client().list_buckets()
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        client = self._get_client()
        if not client.bucket_exists(self.bucket):
            client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_ready = True

    def public_url(self, key: str) -> str:
        base = self.settings.storage_public_base_url
        if not base:
            scheme = "https" if self.settings.storage_secure else "http"
            base = f"{scheme}://{self.settings.storage_endpoint}"
        return f"{base.rstrip('/')}/{self.bucket}/{key}"

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put_object(self, key: str, data: bytes, content_type: str) -> None:
        self._ensure_bucket()
        self._get_client().put_object(
            bucket_name=self.bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        try:
            self._put_object(key, data, content_type)
        except S3Error as e:
            logger.error(f"S3 error uploading {key}: {e}")
            raise UploadFailed(f"S3 error uploading {key}: {e.code} - {e.message}") from e
        except Exception as e:
            logger.error(f"Error uploading {key}: {e}")
            raise UploadFailed(f"Error uploading {key}: {e}") from e

        logger.info(f"Uploaded {key} to {self.bucket} ({len(data)} bytes)")
        return self.public_url(key)

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _get_object(self, key: str) -> bytes:
        response = self._get_client().get_object(bucket_name=self.bucket, object_name=key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def get(self, key: str) -> bytes:
        try:
            data = self._get_object(key)
        except S3Error as e:
            logger.error(f"S3 error downloading {key}: {e}")
            raise DownloadFailed(f"S3 error downloading {key}: {e.code} - {e.message}") from e
        except Exception as e:
            logger.error(f"Error downloading {key}: {e}")
            raise DownloadFailed(f"Error downloading {key}: {e}") from e

        logger.debug(f"Downloaded {key} from {self.bucket} ({len(data)} bytes)")
        return data

    def delete(self, key: str) -> None:
        self._get_client().remove_object(bucket_name=self.bucket, object_name=key)
        logger.info(f"Deleted {key} from {self.bucket}")


class InMemoryBlobStore(BlobStore):
    """Dictionary-backed blob store."""

    def __init__(self, base_url: str = "memory://invoices") -> None:
        self.base_url = base_url
        self.objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        with self._lock:
            self.objects[key] = (bytes(data), content_type)
        return f"{self.base_url}/{key}"

    def get(self, key: str) -> bytes:
        with self._lock:
            if key not in self.objects:
                raise DownloadFailed(f"Object not found: {key}")
            return self.objects[key][0]

    def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
