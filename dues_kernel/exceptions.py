"""
Typed Exception Hierarchy for the Dues Engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from DuesEngineError.  Each category carries a stable
``kind`` (the coarse failure class a caller switches on) and every concrete
class carries a ``code`` (machine-readable, API-safe).

    DuesEngineError (base)
    |
    +-- ValidationError                 kind=validation
    |   +-- InvalidAmountError
    |   +-- InvalidInstallmentCountError
    |   +-- AdjustmentReasonRequiredError
    |   +-- OverpaymentError
    |   +-- PaymentMethodRequiredError
    |   +-- PaymentMethodOwnershipError
    |
    +-- NotFoundError                   kind=not_found
    |   +-- ConfigurationNotFoundError
    |   +-- MemberNotFoundError
    |   +-- ObligationNotFoundError
    |   +-- EligibilityNotFoundError
    |   +-- PlanNotFoundError
    |   +-- PaymentNotFoundError
    |
    +-- ConflictError                   kind=conflict
    |   +-- AlreadyAssignedError
    |   +-- ActivePlanExistsError
    |   +-- PaymentsExistError
    |
    +-- PolicyError                     kind=policy
    |   +-- NotObligationOwnerError
    |   +-- ZeroBalanceError
    |   +-- ObligationWaivedError
    |   +-- IneligibleForInstallmentsError
    |   +-- PlanSizeNotAllowedError
    |   +-- NoDeadlineError
    |   +-- DeadlinePassedError
    |   +-- PayoutAccountNotReadyError
    |   +-- PlanNotActiveError
    |
    +-- ExternalServiceError            kind=external_service
    |   +-- ProcessorUnavailableError   (retryable)
    |   +-- ChargeDeclinedError
    |   +-- IdempotencyKeyReusedError
    |
    +-- ReconciliationError             kind=reconciliation
    |   +-- UnknownPaymentIntentError
    |   +-- SettlementMismatchError
    |
    +-- ConcurrencyError                kind=concurrency
        +-- OptimisticLockError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation / NotFound / Conflict / Policy errors are terminal.  Return them
   to the caller as-is; retrying the same request cannot succeed.

2. ExternalServiceError exposes ``retryable``.  The engine itself never
   retries a charge; the caller re-invokes the top-level operation and the
   idempotency barriers (active-plan check, processor idempotency key) make
   the replay safe.

3. ReconciliationError means the processor reported something the stored
   attempt does not explain.  It is logged at ERROR and must be reviewed by
   a person:

    try:
        service.reconcile_payment_intent(intent_id, status)
    except ReconciliationError as e:
        alert_treasurer(e.to_dict())

4. Use structured attributes, never message parsing:

    except PlanSizeNotAllowedError as e:
        return {"error": e.code, "allowed": e.allowed_sizes}

===============================================================================
"""

from decimal import Decimal
from typing import Any

# Attributes that belong to the exception machinery, not to the payload.
_RESERVED_ATTRS = frozenset({"args", "code", "kind", "retryable"})


class DuesEngineError(Exception):
    """
    Base exception for all dues engine errors.

    All subclasses have a ``code`` class attribute for machine-readable error
    identification and inherit a ``kind`` from their category.
    """

    code: str = "DUES_ENGINE_ERROR"
    kind: str = "error"
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a caller-facing payload."""
        payload: dict[str, Any] = {
            "kind": self.kind,
            "code": self.code,
            "message": str(self),
        }
        for key, value in vars(self).items():
            if key.startswith("_") or key in _RESERVED_ATTRS:
                continue
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, (tuple, frozenset, set)):
                value = sorted(value) if isinstance(value, (frozenset, set)) else list(value)
            elif value is not None and not isinstance(value, (str, int, float, bool, list, dict)):
                value = str(value)
            payload[key] = value
        if self.retryable:
            payload["retryable"] = True
        return payload


# Validation errors


class ValidationError(DuesEngineError):
    """Bad input shape or range.  Rejected before any mutation."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"


class InvalidAmountError(ValidationError):
    """Monetary input is missing, non-positive or out of range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Any, reason: str = "must be positive"):
        self.field = field
        self.amount = amount
        super().__init__(f"Invalid {field} {amount}: {reason}")


class InvalidInstallmentCountError(ValidationError):
    code: str = "INVALID_INSTALLMENT_COUNT"

    def __init__(self, num_installments: Any, minimum: int, maximum: int):
        self.num_installments = num_installments
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Number of installments must be between {minimum} and {maximum}, "
            f"got {num_installments}"
        )


class AdjustmentReasonRequiredError(ValidationError):
    """A nonzero adjustment must carry a reason."""

    code: str = "ADJUSTMENT_REASON_REQUIRED"

    def __init__(self, obligation_id: Any, adjustment: Decimal):
        self.obligation_id = obligation_id
        self.adjustment = adjustment
        super().__init__(
            f"Adjustment of {adjustment} on obligation {obligation_id} requires a reason"
        )


class OverpaymentError(ValidationError):
    """Payment would push amount_paid above the obligation total."""

    code: str = "OVERPAYMENT"

    def __init__(self, obligation_id: Any, amount: Decimal, balance: Decimal):
        self.obligation_id = obligation_id
        self.amount = amount
        self.balance = balance
        super().__init__(
            f"Payment of {amount} exceeds balance {balance} on obligation {obligation_id}"
        )


class PaymentMethodRequiredError(ValidationError):
    code: str = "PAYMENT_METHOD_REQUIRED"

    def __init__(self, member_id: Any, payment_method_ref: str | None = None):
        self.member_id = member_id
        self.payment_method_ref = payment_method_ref
        if payment_method_ref:
            msg = f"Payment method {payment_method_ref} is not saved for member {member_id}"
        else:
            msg = f"A payment method is required for member {member_id}"
        super().__init__(msg)


class PaymentMethodOwnershipError(ValidationError):
    """
    Referenced payment method is not attached to the member's processor
    customer profile.
    """

    code: str = "PAYMENT_METHOD_OWNERSHIP"

    def __init__(self, payment_method_ref: str, customer_id: str | None):
        self.payment_method_ref = payment_method_ref
        self.customer_id = customer_id
        super().__init__(
            f"Payment method {payment_method_ref} does not belong to customer {customer_id}"
        )


# Not-found errors


class NotFoundError(DuesEngineError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"


class ConfigurationNotFoundError(NotFoundError):
    code: str = "CONFIGURATION_NOT_FOUND"

    def __init__(self, configuration_id: Any):
        self.configuration_id = configuration_id
        super().__init__(f"Dues configuration not found: {configuration_id}")


class MemberNotFoundError(NotFoundError):
    code: str = "MEMBER_NOT_FOUND"

    def __init__(self, member_ref: Any):
        self.member_ref = member_ref
        super().__init__(f"Member not found: {member_ref}")


class ObligationNotFoundError(NotFoundError):
    code: str = "OBLIGATION_NOT_FOUND"

    def __init__(self, obligation_id: Any):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation not found: {obligation_id}")


class EligibilityNotFoundError(NotFoundError):
    code: str = "ELIGIBILITY_NOT_FOUND"

    def __init__(self, obligation_id: Any):
        self.obligation_id = obligation_id
        super().__init__(f"No installment eligibility recorded for obligation {obligation_id}")


class PlanNotFoundError(NotFoundError):
    code: str = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: Any):
        self.plan_id = plan_id
        super().__init__(f"Installment plan not found: {plan_id}")


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: Any):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


# Conflict errors


class ConflictError(DuesEngineError):
    """Request collides with existing state."""

    code: str = "CONFLICT"
    kind: str = "conflict"


class AlreadyAssignedError(ConflictError):
    """Member already has an obligation for this configuration."""

    code: str = "ALREADY_ASSIGNED"

    def __init__(self, member_id: Any, configuration_id: Any, obligation_id: Any = None):
        self.member_id = member_id
        self.configuration_id = configuration_id
        self.obligation_id = obligation_id
        super().__init__(
            f"Member {member_id} already has dues assigned for configuration {configuration_id}"
        )


class ActivePlanExistsError(ConflictError):
    code: str = "ACTIVE_PLAN_EXISTS"

    def __init__(self, obligation_id: Any, plan_id: Any):
        self.obligation_id = obligation_id
        self.plan_id = plan_id
        super().__init__(
            f"Obligation {obligation_id} already has an active installment plan {plan_id}"
        )


class PaymentsExistError(ConflictError):
    """Obligation cannot be deleted because payments reference it."""

    code: str = "PAYMENTS_EXIST"

    def __init__(self, obligation_id: Any, payment_count: int):
        self.obligation_id = obligation_id
        self.payment_count = payment_count
        super().__init__(
            f"Obligation {obligation_id} has {payment_count} payment(s) and cannot be deleted"
        )


# Policy errors


class PolicyError(DuesEngineError):
    """Request is well-formed but the business rules refuse it."""

    code: str = "POLICY_VIOLATION"
    kind: str = "policy"


class NotObligationOwnerError(PolicyError):
    code: str = "NOT_OBLIGATION_OWNER"

    def __init__(self, obligation_id: Any, member_id: Any):
        self.obligation_id = obligation_id
        self.member_id = member_id
        super().__init__(f"Obligation {obligation_id} does not belong to member {member_id}")


class ZeroBalanceError(PolicyError):
    code: str = "ZERO_BALANCE"

    def __init__(self, obligation_id: Any):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation {obligation_id} has no outstanding balance")


class ObligationWaivedError(PolicyError):
    """Waived obligations accept no further payments or edits; waive is one-way."""

    code: str = "OBLIGATION_WAIVED"

    def __init__(self, obligation_id: Any):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation {obligation_id} is waived")


class IneligibleForInstallmentsError(PolicyError):
    code: str = "INELIGIBLE_FOR_INSTALLMENTS"

    def __init__(self, obligation_id: Any):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation {obligation_id} is not eligible for installment plans")


class PlanSizeNotAllowedError(PolicyError):
    code: str = "PLAN_SIZE_NOT_ALLOWED"

    def __init__(self, obligation_id: Any, num_installments: int, allowed_sizes: tuple[int, ...]):
        self.obligation_id = obligation_id
        self.num_installments = num_installments
        self.allowed_sizes = tuple(allowed_sizes)
        super().__init__(
            f"{num_installments}-payment plan is not allowed for obligation "
            f"{obligation_id}; allowed: {list(self.allowed_sizes)}"
        )


class NoDeadlineError(PolicyError):
    code: str = "NO_DEADLINE"

    def __init__(self, obligation_id: Any):
        self.obligation_id = obligation_id
        super().__init__(f"No plan deadline can be resolved for obligation {obligation_id}")


class DeadlinePassedError(PolicyError):
    code: str = "DEADLINE_PASSED"

    def __init__(self, obligation_id: Any, deadline: Any, as_of: Any):
        self.obligation_id = obligation_id
        self.deadline = deadline
        self.as_of = as_of
        super().__init__(
            f"Plan deadline {deadline} for obligation {obligation_id} is not after {as_of}"
        )


class PayoutAccountNotReadyError(PolicyError):
    """Organization has no connected payout account able to accept charges."""

    code: str = "PAYOUT_ACCOUNT_NOT_READY"

    def __init__(self, organization_id: Any):
        self.organization_id = organization_id
        super().__init__(
            f"Organization {organization_id} payout account is not set up to accept payments"
        )


class PlanNotActiveError(PolicyError):
    code: str = "PLAN_NOT_ACTIVE"

    def __init__(self, plan_id: Any, status: str):
        self.plan_id = plan_id
        self.status = status
        super().__init__(f"Installment plan {plan_id} is {status}, not active")


# External service errors


class ExternalServiceError(DuesEngineError):
    """Processor or store unreachable or errored."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    kind: str = "external_service"


class ProcessorUnavailableError(ExternalServiceError):
    """
    Transport-level failure talking to the payment processor.

    Retryable by the caller only; the engine never retries a charge itself.
    """

    code: str = "PROCESSOR_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Payment processor unavailable during {operation}: {detail}")


class ChargeDeclinedError(ExternalServiceError):
    code: str = "CHARGE_DECLINED"

    def __init__(self, processor_status: str, payment_intent_id: str | None = None):
        self.processor_status = processor_status
        self.payment_intent_id = payment_intent_id
        super().__init__(f"Payment failed with status: {processor_status}")


class IdempotencyKeyReusedError(ExternalServiceError):
    """The processor refused a known idempotency key sent with different parameters."""

    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, idempotency_key: str, original_amount_minor: int, amount_minor: int):
        self.idempotency_key = idempotency_key
        self.original_amount_minor = original_amount_minor
        self.amount_minor = amount_minor
        super().__init__(
            f"Idempotency key {idempotency_key} reused with amount {amount_minor}, "
            f"originally {original_amount_minor}"
        )


# Reconciliation errors


class ReconciliationError(DuesEngineError):
    """
    Processor outcome does not match the stored expectation.

    Must be logged and surfaced for manual review, never swallowed.
    """

    code: str = "RECONCILIATION_ERROR"
    kind: str = "reconciliation"


class UnknownPaymentIntentError(ReconciliationError):
    code: str = "UNKNOWN_PAYMENT_INTENT"

    def __init__(self, payment_intent_id: str):
        self.payment_intent_id = payment_intent_id
        super().__init__(f"No stored attempt for payment intent {payment_intent_id}")


class SettlementMismatchError(ReconciliationError):
    code: str = "SETTLEMENT_MISMATCH"

    def __init__(self, payment_intent_id: str, stored_status: str, reported_status: str, reason: str):
        self.payment_intent_id = payment_intent_id
        self.stored_status = stored_status
        self.reported_status = reported_status
        self.reason = reason
        super().__init__(
            f"Payment intent {payment_intent_id} reported {reported_status} "
            f"but stored attempt is {stored_status}: {reason}"
        )


# Concurrency errors


class ConcurrencyError(DuesEngineError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    kind: str = "concurrency"
    retryable: bool = True


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
