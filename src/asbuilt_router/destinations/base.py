from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import logging
from threading import Lock
from typing import Any, Protocol

import httpx

from asbuilt_router.policy.section_types import Destination
from asbuilt_router.telemetry import DeliveryMetrics

LOGGER = logging.getLogger(__name__)

DEFAULT_RECEIPT_CACHE_SIZE = 1024


class DeliveryError(Exception):
    def __init__(self, destination: str, code: str, message: str) -> None:
        super().__init__(message)
        self.destination = destination
        self.code = code
        self.message = message


@dataclass(frozen=True)
class DeliveryContext:
    submission_id: str
    company_id: str
    utility_code: str
    section_id: str
    section_index: int
    section_type: str
    page_start: int
    page_end: int
    metadata: dict[str, Any] = field(default_factory=dict)
    extracted_metadata: dict[str, Any] = field(default_factory=dict)
    destination_metadata: dict[str, Any] = field(default_factory=dict)
    file_key: str | None = None
    file_hash: str | None = None
    document_name: str | None = None
    content: bytes = b""

    @property
    def source_document_id(self) -> str:
        return f"{self.submission_id}-{self.section_index:02d}-{self.section_type}"

    @property
    def pm_number(self) -> str | None:
        return self.metadata.get("pm_number")

    @property
    def filename(self) -> str:
        base = self.document_name or f"{self.pm_number or self.submission_id}_{self.section_type}"
        return base if base.lower().endswith(".pdf") else f"{base}.pdf"


@dataclass(frozen=True)
class DeliveryReceipt:
    destination: str
    external_reference_id: str
    delivered_at: datetime
    simulated: bool = False
    details: dict[str, Any] = field(default_factory=dict)


class DestinationAdapter(Protocol):
    destination: Destination

    def deliver(self, context: DeliveryContext) -> DeliveryReceipt: ...


def map_delivery_exception(destination: str, exc: Exception) -> DeliveryError:
    if isinstance(exc, DeliveryError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return DeliveryError(destination, "timeout", str(exc) or "Destination request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        code = "rate_limit" if status_code == 429 else "destination_error"
        return DeliveryError(
            destination,
            code,
            f"Destination returned HTTP {status_code}: {exc.response.text[:200]}",
        )
    if isinstance(exc, httpx.HTTPError):
        return DeliveryError(destination, "transport_error", str(exc))
    return DeliveryError(destination, "destination_error", str(exc) or type(exc).__name__)


def simulated_reference(prefix: str, section_id: str) -> str:
    digest = hashlib.sha256(section_id.encode("utf-8")).hexdigest()[:12].upper()
    return f"{prefix}-{digest}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdempotentDestinationAdapter:
    """Base for adapters whose delivery is keyed by the section id.

    A second ``deliver`` for a section that already has a receipt returns that
    receipt unchanged. Receipts live in a bounded LRU cache; once a section
    falls out of it, the section id still travels as the ``Idempotency-Key``
    header so the remote side can dedupe.
    """

    destination: Destination
    reference_prefix = "REF"

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        metrics: DeliveryMetrics | None = None,
        receipt_cache_size: int = DEFAULT_RECEIPT_CACHE_SIZE,
    ) -> None:
        if receipt_cache_size < 1:
            raise ValueError("receipt_cache_size must be >= 1")
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.metrics = metrics
        self.receipt_cache_size = receipt_cache_size
        self._lock = Lock()
        self._receipts: OrderedDict[str, DeliveryReceipt] = OrderedDict()

    @property
    def is_simulated(self) -> bool:
        return True

    def cached_receipt_count(self) -> int:
        with self._lock:
            return len(self._receipts)

    def deliver(self, context: DeliveryContext) -> DeliveryReceipt:
        with self._lock:
            cached = self._receipts.get(context.section_id)
            if cached is not None:
                self._receipts.move_to_end(context.section_id)
        if cached is not None:
            if self.metrics is not None:
                self.metrics.increment(destination=self.destination.value, event="idempotent_replay")
            LOGGER.info(
                "Returning cached delivery receipt",
                extra={
                    "destination": self.destination.value,
                    "submission_id": context.submission_id,
                    "section_index": context.section_index,
                },
            )
            return cached

        try:
            if self.is_simulated:
                receipt = self._simulate(context)
            else:
                receipt = self._send(context)
        except Exception as exc:
            raise map_delivery_exception(self.destination.value, exc) from exc

        with self._lock:
            receipt = self._receipts.setdefault(context.section_id, receipt)
            while len(self._receipts) > self.receipt_cache_size:
                self._receipts.popitem(last=False)
            return receipt

    def _simulate(self, context: DeliveryContext) -> DeliveryReceipt:
        LOGGER.info(
            "Destination credentials not configured; simulating delivery",
            extra={"destination": self.destination.value, "submission_id": context.submission_id},
        )
        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=simulated_reference(self.reference_prefix, context.section_id),
            delivered_at=utc_now(),
            simulated=True,
            details={"payload": self.build_payload(context)},
        )

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        raise NotImplementedError

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        raise NotImplementedError

    def _client(self, headers: dict[str, str] | None = None) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout_seconds,
            transport=self.transport,
            headers=headers,
        )

    def _idempotency_headers(self, context: DeliveryContext) -> dict[str, str]:
        return {"Idempotency-Key": context.section_id}


__all__ = [
    "DEFAULT_RECEIPT_CACHE_SIZE",
    "DeliveryContext",
    "DeliveryError",
    "DeliveryReceipt",
    "DestinationAdapter",
    "IdempotentDestinationAdapter",
    "map_delivery_exception",
    "simulated_reference",
    "utc_now",
]
