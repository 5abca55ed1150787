import logging
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from .errors import (
    GatewayError,
    InvalidRequestError,
    PaymentMismatchError,
    PaymentNotCompletedError,
    PaymentNotFoundError,
)
from .gateway import PaymentGateway
from .models import (
    InitializePaymentRequest,
    InitializePaymentResponse,
    PaymentRecord,
    PaymentStatus,
    PendingPayment,
    VerifyPaymentResponse,
)
from .service import CreditService

logger = logging.getLogger(__name__)

CREDITS_PER_DOLLAR = 10


def credits_for_amount(amount: int, credits_per_dollar: int = CREDITS_PER_DOLLAR) -> int:
    return amount * credits_per_dollar // 100


def new_reference() -> str:
    return f"cover_{uuid4().hex}"


class PaymentService:
    """Two-phase settlement of credit purchases.

    ``initialize`` records what was agreed (amount, currency, credits) as a
    pending payment, then opens the remote transaction. ``verify`` asks the
    gateway for the authoritative status and, on success, stores the payment
    record and grants the credits in one storage transaction. Settled
    references are answered from the stored record.
    """

    def __init__(
        self,
        credits: CreditService,
        gateway: PaymentGateway,
        currency: str = "USD",
        credits_per_dollar: int = CREDITS_PER_DOLLAR,
        reference_factory: Callable[[], str] = new_reference,
    ):
        self.credits = credits
        self.storage = credits.storage
        self.gateway = gateway
        self.currency = currency
        self.credits_per_dollar = credits_per_dollar
        self.reference_factory = reference_factory

    def initialize(self, user_id: str, request: InitializePaymentRequest) -> InitializePaymentResponse:
        credits = credits_for_amount(request.amount, self.credits_per_dollar)
        if credits <= 0:
            raise InvalidRequestError(f"Amount {request.amount} buys no credits")

        self.credits.get_balance(user_id)
        reference = self.reference_factory()

        # The local row must exist before a checkout URL is handed out.
        now = datetime.now(timezone.utc)
        self.storage.add_pending_payment(PendingPayment(
            reference=reference,
            user_id=user_id,
            email=request.email,
            amount=request.amount,
            currency=self.currency,
            credits=credits,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        ))
        try:
            init = self.gateway.initialize(
                email=request.email,
                amount=request.amount,
                reference=reference,
                currency=self.currency,
                metadata={"user_id": user_id, "credits": credits},
            )
        except GatewayError:
            self.storage.set_pending_status(reference, PaymentStatus.FAILED)
            raise

        logger.info(
            "Initialized payment %s for user %s: %d %s -> %d credits",
            reference, user_id, request.amount, self.currency, credits,
        )
        return InitializePaymentResponse(
            reference=reference,
            authorization_url=init.authorization_url,
            access_code=init.access_code,
            amount=request.amount,
            currency=self.currency,
            credits=credits,
        )

    def verify(self, user_id: str, reference: str) -> VerifyPaymentResponse:
        existing = self.storage.get_payment(reference)
        if existing:
            logger.info("Payment %s already settled; returning recorded outcome", reference)
            return self._settled_response(existing, user_id, already_settled=True)

        pending = self.storage.get_pending_payment(reference)
        if pending is None:
            raise PaymentNotFoundError(f"Payment {reference} not found")
        if pending.user_id != user_id:
            logger.info("Payment %s verified by user %s on behalf of %s", reference, user_id, pending.user_id)

        try:
            transaction = self.gateway.verify(reference)
        except GatewayError:
            logger.exception("Verification of payment %s failed", reference)
            raise

        if transaction.status == PaymentStatus.PENDING:
            raise PaymentNotCompletedError(reference, transaction.status.value)

        if transaction.status == PaymentStatus.FAILED:
            self.storage.set_pending_status(reference, PaymentStatus.FAILED)
            logger.info("Payment %s failed at the gateway", reference)
            raise PaymentNotCompletedError(reference, transaction.status.value)

        if transaction.amount != pending.amount or (
            transaction.currency and transaction.currency.upper() != pending.currency.upper()
        ):
            self.storage.set_pending_status(reference, PaymentStatus.FAILED)
            logger.error(
                "Payment %s mismatch: gateway reported %s %s, expected %s %s",
                reference, transaction.amount, transaction.currency, pending.amount, pending.currency,
            )
            raise PaymentMismatchError(f"Payment {reference} does not match the initialized amount")

        self.credits.get_balance(pending.user_id)
        record, created = self.storage.settle_payment(PaymentRecord(
            reference=reference,
            user_id=pending.user_id,
            amount=pending.amount,
            currency=pending.currency,
            status=PaymentStatus.SUCCESS,
            credits_added=pending.credits,
            created_at=datetime.now(timezone.utc),
        ))
        if created:
            logger.info("Settled payment %s: +%d credits for user %s", reference, record.credits_added, record.user_id)
        return self._settled_response(record, user_id, already_settled=not created)

    def get_payment(self, reference: str) -> PaymentRecord:
        record = self.storage.get_payment(reference)
        if record is None:
            raise PaymentNotFoundError(f"Payment {reference} not found")
        return record

    def _settled_response(
        self, record: PaymentRecord, user_id: str, already_settled: bool,
    ) -> VerifyPaymentResponse:
        free_downloads = None
        if user_id == record.user_id:
            free_downloads = self.credits.get_balance(record.user_id).free_downloads
        if already_settled:
            message = "Payment already verified; no further credits granted"
        else:
            message = f"You've received {record.credits_added} additional downloads."
        return VerifyPaymentResponse(
            reference=record.reference,
            status=record.status,
            credits_added=record.credits_added,
            already_settled=already_settled,
            free_downloads=free_downloads,
            message=message,
        )

