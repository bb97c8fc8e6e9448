"""
Payment processor port and the deterministic in-memory processor.

Contract:
    PaymentProcessor is the only way the engine reaches the external card/bank
    processor.  Implementations translate transport failures (timeouts,
    connection resets, 5xx) into ``ProcessorUnavailableError``; every other
    processor answer is returned as data.

    Intent statuses the engine acts on: ``succeeded``, ``processing`` and
    ``requires_action``.  Any other status is treated as a decline.

    ``create_payment_intent`` honours the request's idempotency key: a second
    request with the same key returns the original intent instead of
    charging again.  The same key with a different amount is refused with
    ``IdempotencyKeyReusedError``.

Architecture: dues_services.  No DB imports.

Usage:
    processor = InMemoryPaymentProcessor()
    customer_id = processor.get_or_create_customer("ada@example.org", "Ada")
    pm_id = processor.add_payment_method(customer_id, method_type="card")
    processor.script_outcomes("processing")
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from dues_kernel.exceptions import IdempotencyKeyReusedError, ProcessorUnavailableError
from dues_kernel.logging_config import get_logger

logger = get_logger("services.processor")

SUCCEEDED = "succeeded"
PROCESSING = "processing"
REQUIRES_ACTION = "requires_action"


@dataclass(frozen=True)
class ProcessorPaymentMethod:
    id: str
    customer_id: str | None
    method_type: str  # processor spelling: "card" | "us_bank_account"
    last4: str | None = None
    brand: str | None = None


@dataclass(frozen=True)
class PaymentIntentRequest:
    """
    One off-session, immediately confirmed charge.

    Amounts are integer minor units (cents).  ``transfer_amount_minor`` is
    routed to ``transfer_destination`` (the organization's payout account).
    """

    amount_minor: int
    currency: str
    customer_id: str
    payment_method_id: str
    idempotency_key: str
    transfer_destination: str
    transfer_amount_minor: int
    metadata: Mapping[str, str] = field(default_factory=dict)
    off_session: bool = True
    confirm: bool = True


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    status: str
    amount_minor: int
    client_secret: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


class PaymentProcessor(ABC):
    """Port to the external payment processor."""

    @abstractmethod
    def get_or_create_customer(
        self,
        email: str,
        name: str,
        existing_customer_id: str | None = None,
    ) -> str:
        """Return the processor customer id for the member, creating it if needed."""

    @abstractmethod
    def retrieve_payment_method(self, payment_method_id: str) -> ProcessorPaymentMethod | None:
        """None when the processor does not know the method."""

    @abstractmethod
    def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntent:
        ...

    @abstractmethod
    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent | None:
        ...


class InMemoryPaymentProcessor(PaymentProcessor):
    """
    Deterministic processor for tests and local runs.

    - ``script_outcomes`` queues the statuses of the next created intents
      (default ``succeeded``).
    - ``fail_next(operation)`` makes the next call of ``operation`` raise
      ``ProcessorUnavailableError``; with ``after_commit=True`` the charge is
      stored first and only the response is lost, the way a timeout after
      the processor accepted the request looks to the caller.
    - Replaying an idempotency key returns the stored intent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._customers: dict[str, str] = {}
        self._customer_by_email: dict[str, str] = {}
        self._methods: dict[str, ProcessorPaymentMethod] = {}
        self._intents: dict[str, PaymentIntent] = {}
        self._by_idempotency_key: dict[str, tuple[PaymentIntentRequest, str]] = {}
        self._outcomes: deque[str] = deque()
        self._failures: dict[str, deque[bool]] = {}
        self._counter = 0
        self.requests: list[PaymentIntentRequest] = []

    # -- test controls -------------------------------------------------------

    def add_payment_method(
        self,
        customer_id: str | None,
        method_type: str = "card",
        last4: str | None = "4242",
        brand: str | None = "visa",
    ) -> str:
        with self._lock:
            method_id = self._next_id("pm")
            self._methods[method_id] = ProcessorPaymentMethod(
                id=method_id,
                customer_id=customer_id,
                method_type=method_type,
                last4=last4,
                brand=brand if method_type == "card" else None,
            )
        return method_id

    def script_outcomes(self, *statuses: str) -> None:
        with self._lock:
            self._outcomes.extend(statuses)

    def fail_next(self, operation: str, after_commit: bool = False) -> None:
        with self._lock:
            self._failures.setdefault(operation, deque()).append(after_commit)

    def set_intent_status(self, payment_intent_id: str, status: str) -> PaymentIntent:
        with self._lock:
            intent = self._intents[payment_intent_id]
            updated = PaymentIntent(
                id=intent.id,
                status=status,
                amount_minor=intent.amount_minor,
                client_secret=intent.client_secret,
                metadata=intent.metadata,
            )
            self._intents[payment_intent_id] = updated
        return updated

    @property
    def charge_count(self) -> int:
        """Distinct intents created (replays excluded)."""
        return len(self._intents)

    # -- port ----------------------------------------------------------------

    def get_or_create_customer(
        self,
        email: str,
        name: str,
        existing_customer_id: str | None = None,
    ) -> str:
        self._maybe_fail("get_or_create_customer")
        with self._lock:
            if existing_customer_id and existing_customer_id in self._customers:
                return existing_customer_id
            key = email.lower()
            if key in self._customer_by_email:
                return self._customer_by_email[key]
            customer_id = self._next_id("cus")
            self._customers[customer_id] = name
            self._customer_by_email[key] = customer_id
        logger.debug("processor_customer_created", extra={"customer_id": customer_id})
        return customer_id

    def retrieve_payment_method(self, payment_method_id: str) -> ProcessorPaymentMethod | None:
        self._maybe_fail("retrieve_payment_method")
        with self._lock:
            return self._methods.get(payment_method_id)

    def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntent:
        after_commit = self._maybe_fail("create_payment_intent", deferred=True)
        with self._lock:
            self.requests.append(request)
            replay = self._by_idempotency_key.get(request.idempotency_key)
            if replay is not None:
                original, intent_id = replay
                if original.amount_minor != request.amount_minor:
                    raise IdempotencyKeyReusedError(
                        request.idempotency_key, original.amount_minor, request.amount_minor,
                    )
                intent = self._intents[intent_id]
            else:
                intent = self._create(request)

        if after_commit:
            raise ProcessorUnavailableError("create_payment_intent", "response lost after charge")
        return intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent | None:
        self._maybe_fail("retrieve_payment_intent")
        with self._lock:
            return self._intents.get(payment_intent_id)

    # -- internals -----------------------------------------------------------

    def _create(self, request: PaymentIntentRequest) -> PaymentIntent:
        status = self._outcomes.popleft() if self._outcomes else SUCCEEDED
        intent_id = self._next_id("pi")
        intent = PaymentIntent(
            id=intent_id,
            status=status,
            amount_minor=request.amount_minor,
            client_secret=f"{intent_id}_secret" if status == REQUIRES_ACTION else None,
            metadata=dict(request.metadata),
        )
        self._intents[intent_id] = intent
        self._by_idempotency_key[request.idempotency_key] = (request, intent_id)
        logger.debug("processor_intent_created", extra={
            "payment_intent_id": intent_id,
            "status": status,
            "amount_minor": request.amount_minor,
        })
        return intent

    def _maybe_fail(self, operation: str, deferred: bool = False) -> bool:
        with self._lock:
            queue = self._failures.get(operation)
            if not queue:
                return False
            after_commit = queue.popleft()
        if after_commit and deferred:
            return True
        raise ProcessorUnavailableError(operation, "simulated transport failure")

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter:06d}"


def describe_intent(intent: PaymentIntent) -> dict[str, Any]:
    return {
        "payment_intent_id": intent.id,
        "status": intent.status,
        "amount_minor": intent.amount_minor,
    }
