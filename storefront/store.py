"""
Persistence gateway: whole-dataset load/save against a remote store.

Backends share the retry loop and payload checks in ``BaseDatasetStore`` and
only implement ``_fetch`` and ``_write``. Each backend translates its client
library's failures into ``TransientStoreError`` (retried) or ``StoreError``.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import ConnectTimeoutError, ReadTimeoutError

from storefront.errors import (
    SizeLimitError,
    StoreError,
    StoreTimeoutError,
    TransientStoreError,
    ValidationError,
)
from storefront.normalize import DEFAULT_CATEGORIES, PLACEHOLDER_IMAGE

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 50 * 1024 * 1024

_THROTTLING_CODES = {"SlowDown", "Throttling", "ThrottlingException", "RequestTimeout"}
_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Dataset:
    """Everything the store holds: products, categories and the admin credential."""

    products: List[Dict[str, Any]] = field(default_factory=list)
    categories: List[Any] = field(default_factory=list)
    admin_credentials: Optional[Dict[str, Any]] = None
    last_updated: Optional[str] = None
    # Set on the hardcoded dataset served when the store is unreachable.
    fallback: bool = False

    @classmethod
    def from_record(cls, record: Any) -> "Dataset":
        if not isinstance(record, dict):
            return cls()
        products = record.get("products")
        categories = record.get("categories")
        credentials = record.get("admin_credentials")
        return cls(
            products=products if isinstance(products, list) else [],
            categories=categories if isinstance(categories, list) else [],
            admin_credentials=credentials if isinstance(credentials, dict) else None,
            last_updated=record.get("lastUpdated"),
        )

    def as_dict(self) -> dict:
        return {
            "products": self.products,
            "categories": self.categories,
            "admin_credentials": self.admin_credentials,
            "lastUpdated": self.last_updated,
        }

    def touch(self) -> None:
        self.last_updated = utc_now_iso()


@dataclass
class SaveResult:
    backend: str
    bytes_written: int
    attempts: int
    last_updated: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "backend": self.backend,
            "bytesWritten": self.bytes_written,
            "attempts": self.attempts,
            "lastUpdated": self.last_updated,
        }


def default_dataset() -> Dataset:
    """Hardcoded dataset served when the store cannot be read."""
    sample_product = {
        "id": 1,
        "title": "Basic T-shirt",
        "category": DEFAULT_CATEGORIES[0]["id"],
        "price": 49.9,
        "description": "Cotton t-shirt with a regular fit",
        "status": "active",
        "colors": [
            {
                "name": "White",
                "image": PLACEHOLDER_IMAGE,
                "sizes": [
                    {"name": "S", "stock": 10},
                    {"name": "M", "stock": 15},
                    {"name": "L", "stock": 8},
                ],
            }
        ],
    }
    return Dataset(
        products=[sample_product],
        categories=copy.deepcopy(DEFAULT_CATEGORIES),
        admin_credentials=None,
        fallback=True,
    )


class DatasetStore(Protocol):
    """Interface the service needs from a persistence backend."""

    backend_name: str

    def load(self, *, allow_fallback: bool = True) -> Dataset:
        ...

    def save(self, dataset: Dataset) -> SaveResult:
        ...


class BaseDatasetStore:
    """Bounded linear-backoff retries and payload checks shared by all backends."""

    backend_name = "base"

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        backoff_step_seconds: float = 1.0,
        backoff_max_seconds: float = 3.0,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_step_seconds = backoff_step_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.max_payload_bytes = max_payload_bytes
        self._sleep = sleep

    def _fetch(self) -> Any:
        raise NotImplementedError

    def _write(self, payload: dict, body: bytes) -> None:
        raise NotImplementedError

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_step_seconds * attempt, self.backoff_max_seconds)

    def _with_retries(self, operation: str, fn: Callable[[], Any]) -> Tuple[Any, int]:
        last_exc: Optional[TransientStoreError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(), attempt
            except TransientStoreError as exc:
                last_exc = exc
                if attempt >= self.max_attempts:
                    break
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    self.backend_name,
                    operation,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                self._sleep(delay)
        logger.error(
            "%s %s failed after %d attempts: %s",
            self.backend_name,
            operation,
            self.max_attempts,
            last_exc,
        )
        raise last_exc

    def load(self, *, allow_fallback: bool = True) -> Dataset:
        """
        Fetch the whole dataset.

        With ``allow_fallback`` a store failure yields ``default_dataset()``
        instead of raising; write paths must pass False so defaults never get
        written over real data.
        """
        try:
            record, _ = self._with_retries("load", self._fetch)
        except StoreError as exc:
            if not allow_fallback:
                raise
            logger.error(
                "Could not load dataset from %s, serving defaults: %s",
                self.backend_name,
                exc,
            )
            return default_dataset()
        return Dataset.from_record(record)

    def encode(self, dataset: Any) -> Tuple[dict, bytes]:
        if not isinstance(dataset, Dataset):
            raise ValidationError("Dataset payload must be a structured record")
        if dataset.fallback:
            raise ValidationError("Refusing to overwrite the store with fallback data")
        payload = dataset.as_dict()
        body = json.dumps(payload, default=str).encode("utf-8")
        if len(body) > self.max_payload_bytes:
            raise SizeLimitError(
                f"Dataset is {len(body)} bytes; the limit is {self.max_payload_bytes} bytes"
            )
        return payload, body

    def save(self, dataset: Dataset) -> SaveResult:
        """Overwrite the whole dataset; errors propagate after the last retry."""
        payload, body = self.encode(dataset)
        _, attempts = self._with_retries("save", lambda: self._write(payload, body))
        logger.info(
            "Saved %d products and %d categories to %s (%d bytes)",
            len(dataset.products),
            len(dataset.categories),
            self.backend_name,
            len(body),
        )
        return SaveResult(
            backend=self.backend_name,
            bytes_written=len(body),
            attempts=attempts,
            last_updated=dataset.last_updated,
        )


class InMemoryDatasetStore(BaseDatasetStore):
    """Test double and development backend."""

    backend_name = "memory"

    def __init__(self, record: Optional[dict] = None, **kwargs):
        super().__init__(**kwargs)
        self.record: Optional[dict] = None
        self.writes = 0
        if record is not None:
            self.record = json.loads(json.dumps(record, default=str))

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.record = None
        self.writes = 0

    def _fetch(self) -> Any:
        if self.record is None:
            return None
        return json.loads(json.dumps(self.record))

    def _write(self, payload: dict, body: bytes) -> None:
        # Round-trip through JSON to mimic a real upload.
        self.record = json.loads(body)
        self.writes += 1


class JsonBinDatasetStore(BaseDatasetStore):
    """Single JSON document addressed by bin id, read and overwritten wholesale."""

    backend_name = "jsonbin"

    def __init__(
        self,
        bin_id: str,
        api_key: str,
        *,
        base_url: str = "https://api.jsonbin.io/v3",
        timeout_seconds: float = 30.0,
        session: Optional[requests.Session] = None,
        **kwargs,
    ):
        if not bin_id or not api_key:
            raise ValueError("JSONBIN_BIN_ID and JSONBIN_API_KEY are required")
        super().__init__(**kwargs)
        self.bin_id = bin_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, url, timeout=self.timeout_seconds, **kwargs
            )
        except requests.Timeout as exc:
            raise StoreTimeoutError(f"{method} {url} timed out") from exc
        except requests.ConnectionError as exc:
            raise TransientStoreError(f"{method} {url} failed: {exc}") from exc
        except requests.RequestException as exc:
            raise StoreError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientStoreError(
                f"{method} {url} returned {response.status_code} {response.reason}"
            )
        if not response.ok:
            raise StoreError(
                f"{method} {url} returned {response.status_code} {response.reason}"
            )
        return response

    def _fetch(self) -> Any:
        response = self._request(
            "GET",
            f"{self.base_url}/b/{self.bin_id}/latest",
            headers={"X-Master-Key": self.api_key},
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError("JSONBin returned a non-JSON body") from exc
        return body.get("record") if isinstance(body, dict) else None

    def _write(self, payload: dict, body: bytes) -> None:
        self._request(
            "PUT",
            f"{self.base_url}/b/{self.bin_id}",
            data=body,
            headers={
                "Content-Type": "application/json",
                "X-Master-Key": self.api_key,
                "X-Bin-Versioning": "false",
            },
        )


class ObjectStorageDatasetStore(BaseDatasetStore):
    """
    Dataset kept as one JSON object in S3-compatible storage.
    """

    backend_name = "object"

    def __init__(
        self,
        bucket: str,
        key: str,
        *,
        region: str = "",
        endpoint: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        timeout_seconds: float = 30.0,
        client: Any = None,
        **kwargs,
    ):
        if not bucket:
            raise ValueError("S3_BUCKET is required for ObjectStorageDatasetStore")
        super().__init__(**kwargs)
        self.bucket = bucket
        self.key = key
        if client is None:
            # Retries are ours; keep botocore to a single attempt.
            config = Config(
                s3={"addressing_style": "virtual"},
                signature_version="s3v4",
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            )
            client = boto3.client(
                "s3",
                endpoint_url=endpoint or None,
                region_name=region or None,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                config=config,
            )
        self._client = client

    def _translate(self, exc: Exception, operation: str) -> StoreError:
        if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError)):
            return StoreTimeoutError(f"{operation} {self.key} timed out")
        if isinstance(exc, BotoConnectionError):
            return TransientStoreError(f"{operation} {self.key} failed: {exc}")
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if code in _THROTTLING_CODES or status >= 500:
                return TransientStoreError(f"{operation} {self.key} failed: {code}")
        return StoreError(f"{operation} {self.key} failed: {exc}")

    def _fetch(self) -> Any:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self.key)
            raw = response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_OBJECT_CODES:
                logger.info("No dataset object at %s/%s yet", self.bucket, self.key)
                return None
            raise self._translate(exc, "GetObject") from exc
        except BotoCoreError as exc:
            raise self._translate(exc, "GetObject") from exc
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"{self.key} does not hold valid JSON") from exc

    def _write(self, payload: dict, body: bytes) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self.key,
                Body=body,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "PutObject") from exc
