from typing import Optional

import pytest

from covers.generator import ImageGenerator
from covers.service import CoverService
from ledger.errors import CoverGenerationError, GatewayError
from ledger.gateway import PaymentGateway
from ledger.models import GatewayInitialization, GatewayTransaction, GenerateCoverRequest, PaymentStatus
from ledger.payments import PaymentService
from ledger.service import CreditService
from ledger.storage import InMemoryStorage

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake-cover"


class FakeGateway(PaymentGateway):
    """Paystack stand-in: transactions start pending until completed by the test."""

    def __init__(self):
        self.transactions: dict[str, GatewayTransaction] = {}
        self.initialized: list[dict] = []
        self.verify_calls = 0
        self.error: Optional[GatewayError] = None

    def initialize(self, email, amount, reference, currency, metadata=None):
        if self.error:
            raise self.error
        self.initialized.append({
            "email": email, "amount": amount, "reference": reference,
            "currency": currency, "metadata": metadata or {},
        })
        self.transactions[reference] = GatewayTransaction(
            reference=reference, status=PaymentStatus.PENDING, amount=amount,
            currency=currency, metadata=metadata or {},
        )
        return GatewayInitialization(
            reference=reference,
            authorization_url=f"https://checkout.paystack.com/{reference}",
            access_code=f"ac_{reference[-6:]}",
        )

    def complete(self, reference: str, status: PaymentStatus = PaymentStatus.SUCCESS, amount: Optional[int] = None):
        tx = self.transactions[reference]
        self.transactions[reference] = tx.model_copy(update={
            "status": status,
            "amount": tx.amount if amount is None else amount,
        })

    def verify(self, reference):
        self.verify_calls += 1
        if self.error:
            raise self.error
        tx = self.transactions.get(reference)
        if tx is None:
            raise GatewayError("Transaction reference not found", 404)
        return tx


class FakeImageGenerator(ImageGenerator):
    def __init__(self, image: bytes = FAKE_PNG, fail: bool = False):
        self.image = image
        self.fail = fail
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        if self.fail:
            raise CoverGenerationError("image API unavailable")
        return self.image


def build_cover_request(title: str = "The Salt Road") -> GenerateCoverRequest:
    return GenerateCoverRequest(
        book_title=title,
        author_name="Ada Mensah",
        genre="fantasy",
        keywords="desert caravan",
        mood="epic",
    )


@pytest.fixture
def cover_request():
    return build_cover_request


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def credit_service(storage):
    return CreditService(storage, free_downloads=5)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def payment_service(credit_service, gateway):
    return PaymentService(credit_service, gateway, currency="USD", credits_per_dollar=10)


@pytest.fixture
def generator():
    return FakeImageGenerator()


@pytest.fixture
def cover_service(generator, storage):
    return CoverService(generator, storage)
