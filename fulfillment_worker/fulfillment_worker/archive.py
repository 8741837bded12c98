"""Document store clients for archived receipts."""

import threading
from typing import Protocol
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from order_common.errors import ArchiveError, ArchiveRejectedError

from .logger import logger

MEMORY_URL = "memory://"
# Client errors that can still succeed when retried.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def receipt_key(order_id: str) -> str:
    """Return the archive key of an order's receipt.

    The key depends only on the order id, so archiving the same order again
    overwrites the previous document instead of adding a second one.
    """
    return f"{order_id}.pdf"


class DocumentStore(Protocol):
    """Protocol defining the interface of the receipt archive."""

    def put(self, key: str, body: bytes, content_type: str) -> str:
        """Store a document under ``key`` and return its reference.

        Args:
            key: Object key
            body: Document content
            content_type: MIME type of the document

        Returns:
            str: The reference to record in the ledger
        """
        ...


class InMemoryDocumentStore:
    """Document store kept in process memory."""

    def __init__(self):
        """Initialize an empty store."""
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.writes = 0
        self._lock = threading.Lock()

    def put(self, key: str, body: bytes, content_type: str) -> str:
        with self._lock:
            self.objects[key] = (bytes(body), content_type)
            self.writes += 1
        return key

    def get(self, key: str) -> bytes | None:
        """Return the stored document body, if any."""
        with self._lock:
            stored = self.objects.get(key)
        return None if stored is None else stored[0]


class HttpDocumentStore:
    """Object store client using path-style HTTP PUTs (S3-compatible endpoints).

    Transient failures (connection errors, 5xx and 429 responses) are retried
    with exponential backoff by the session's transport adapter. Once the
    retries are exhausted the write fails with ``ArchiveError``. Any other 4xx
    response means the store refuses the write and fails at once with the
    non-retryable ``ArchiveRejectedError``.
    """

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        timeout: float = 5.0,
        retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """Initialize the HTTP session.

        Args:
            endpoint: Base URL of the object store, e.g. ``http://localstack:4566``
            bucket: Bucket holding the receipts
            timeout: Seconds to wait for each request
            retries: Retry attempts after the first failure
            backoff_factor: Base of the exponential backoff between retries
        """
        self.endpoint = endpoint.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout

        retry = Retry(
            total=retries,
            backoff_factor=backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"PUT"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session = requests.Session()
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def object_url(self, key: str) -> str:
        """Return the URL of an object in the bucket."""
        return f"{self.endpoint}/{self.bucket}/{quote(key)}"

    def put(self, key: str, body: bytes, content_type: str) -> str:
        url = self.object_url(key)
        try:
            response = self.session.put(
                url,
                data=body,
                headers={"Content-Type": content_type},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code is not None and 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_STATUSES:
                raise ArchiveRejectedError(
                    f"Document store refused {key} in {self.bucket} with status {status_code}", status_code
                ) from e
            raise ArchiveError(f"Failed to archive {key} to {self.bucket}: {e}") from e
        except requests.RequestException as e:
            raise ArchiveError(f"Failed to archive {key} to {self.bucket}: {e}") from e

        logger.info(f"Archived {key} to {self.bucket} ({len(body)} bytes)")
        return key

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()


def create_document_store(
    url: str, bucket: str, timeout: float = 5.0, retries: int = 3
) -> InMemoryDocumentStore | HttpDocumentStore:
    """Build the document store selected by ``url``.

    Args:
        url: ``memory://`` for a process-local store, otherwise the object store endpoint
        bucket: Bucket holding the receipts
        timeout: Seconds to wait for each request
        retries: Retry attempts for transient failures

    Returns:
        The document store client.
    """
    if url == MEMORY_URL:
        logger.warning("Using an in-memory document store; receipts will not survive a restart")
        return InMemoryDocumentStore()
    return HttpDocumentStore(url, bucket, timeout=timeout, retries=retries)
