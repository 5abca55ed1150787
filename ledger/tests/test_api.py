"""
HTTP tests for the cover studio API.
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.config import Settings
from ledger.errors import GatewayError, PersistenceError
from ledger.models import PaymentStatus
from ledger.storage import InMemoryStorage

USER_ID = "visitor-001"
COVER_FORM = {"book_title": "The Salt Road", "author_name": "Ada Mensah", "genre": "fantasy", "mood": "epic"}
PAYMENT_FORM = {"email": "reader@coverstudio.io", "amount": 100}


class BrokenConsumeStorage(InMemoryStorage):
    def try_consume(self, user_id, cover_id=None):
        raise PersistenceError("database is locked")


class BrokenSettleStorage(InMemoryStorage):
    def settle_payment(self, record):
        raise PersistenceError("database is locked")


@pytest.fixture
def app(gateway, generator):
    settings = Settings(_env_file=None, free_downloads=5, credits_per_dollar=10, payment_currency="USD")
    return create_app(settings=settings, storage=InMemoryStorage(), gateway=gateway, generator=generator)


@pytest.fixture
def client(app):
    return TestClient(app, headers={"x-user-id": USER_ID})


def create_cover(client, **overrides):
    response = client.post("/covers", json={**COVER_FORM, **overrides})
    assert response.status_code == 201
    return response.json()


class TestStatusEndpoints:
    """Tests for health and balance endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_status_provisions_new_user(self, client):
        """Test that the first status call shows the default free downloads."""
        response = client.get("/status")

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == USER_ID
        assert body["free_downloads"] == 5
        assert body["total_downloads"] == 0

    def test_status_by_path(self, client):
        response = client.get("/status/someone")
        assert response.status_code == 200
        assert response.json()["user_id"] == "someone"

    def test_session_cookie_minted(self, app):
        """Test that a visitor without an id gets a stable cookie identity."""
        client = TestClient(app)

        first = client.get("/status")
        assert "cover_session" in first.cookies
        second = client.get("/status")

        assert first.json()["user_id"] == second.json()["user_id"]


class TestCoverEndpoints:
    """Tests for cover generation and listing."""

    def test_generate_cover(self, client, generator):
        """Test that generation stores a cover but does not hand out the image."""
        body = create_cover(client)

        assert body["book_title"] == "The Salt Road"
        assert body["owner_id"] == USER_ID
        assert body["downloaded"] is False
        assert "image_url" not in body
        assert "fantasy" in generator.prompts[0]
        assert client.get("/status").json()["free_downloads"] == 5

    def test_generate_cover_validation(self, client):
        response = client.post("/covers", json={"book_title": "No Author"})
        assert response.status_code == 422

    def test_generation_failure(self, client, generator):
        """Test that an image API failure is reported as a bad gateway."""
        generator.fail = True

        response = client.post("/covers", json=COVER_FORM)

        assert response.status_code == 502
        assert client.get("/covers").json() == []

    def test_list_covers_per_user(self, client, app):
        create_cover(client, book_title="Mine")
        other = TestClient(app, headers={"x-user-id": "visitor-002"})
        create_cover(other, book_title="Theirs")

        titles = [c["book_title"] for c in client.get("/covers").json()]
        assert titles == ["Mine"]

    def test_get_cover(self, client, app):
        """Test single-cover lookup for the owner, a stranger and an unknown id."""
        cover = create_cover(client)
        other = TestClient(app, headers={"x-user-id": "visitor-002"})

        response = client.get(f"/covers/{cover['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == cover["id"]
        assert "image_url" not in response.json()
        assert other.get(f"/covers/{cover['id']}").status_code == 404
        assert client.get(f"/covers/{uuid4()}").status_code == 404


class TestDownloadEndpoint:
    """Tests for the download gate."""

    def test_download_delivers_image(self, client):
        cover = create_cover(client)

        response = client.post("/download", json={"cover_id": cover["id"]})

        assert response.status_code == 200
        body = response.json()
        assert body["image_url"].startswith("data:image/png;base64,")
        assert body["remaining_free"] == 4

    def test_sixth_download_requires_payment(self, client):
        """Test that the sixth download answers 402 and consumes nothing."""
        cover = create_cover(client)
        for _ in range(5):
            assert client.post("/download", json={"cover_id": cover["id"]}).status_code == 200

        response = client.post("/download", json={"cover_id": cover["id"]})

        assert response.status_code == 402
        body = response.json()
        assert body["payment_required"] is True
        assert body["remaining_free"] == 0
        assert "image_url" not in body
        assert client.get("/status").json()["total_downloads"] == 5

    def test_unknown_cover(self, client):
        response = client.post("/download", json={"cover_id": str(uuid4())})
        assert response.status_code == 404
        assert client.get("/status").json()["free_downloads"] == 5

    def test_foreign_cover(self, client, app):
        other = TestClient(app, headers={"x-user-id": "visitor-002"})
        cover = create_cover(other)

        response = client.post("/download", json={"cover_id": cover["id"]})

        assert response.status_code == 404

    def test_storage_failure_is_generic_500(self, gateway, generator):
        """Test that a storage outage is reported without detail and delivers nothing."""
        storage = BrokenConsumeStorage()
        app = create_app(settings=Settings(_env_file=None), storage=storage, gateway=gateway, generator=generator)
        client = TestClient(app, headers={"x-user-id": USER_ID})
        cover = create_cover(client)

        response = client.post("/download", json={"cover_id": cover["id"]})

        assert response.status_code == 500
        assert response.json() == {"detail": "Storage is temporarily unavailable"}
        assert storage.get_user(USER_ID).free_downloads == 5

    @pytest.mark.parametrize("payload", [{}, {"cover_id": "not-a-uuid"}])
    def test_malformed_request(self, client, payload):
        assert client.post("/download", json=payload).status_code == 422


class TestPaymentEndpoints:
    """Tests for payment initialize and verify."""

    def test_initialize(self, client, gateway):
        response = client.post("/payment/initialize", json=PAYMENT_FORM)

        assert response.status_code == 200
        body = response.json()
        assert body["credits"] == 10
        assert body["authorization_url"].startswith("https://checkout.paystack.com/")
        assert gateway.initialized[0]["metadata"]["user_id"] == USER_ID

    @pytest.mark.parametrize("payload", [
        {"email": "reader@coverstudio.io", "amount": 50},
        {"email": "nope", "amount": 100},
        {"email": "reader@coverstudio.io", "amount": 10**19},
    ])
    def test_initialize_validation(self, client, payload):
        assert client.post("/payment/initialize", json=payload).status_code == 422

    def test_initialize_gateway_failure(self, client, gateway):
        gateway.error = GatewayError("connection refused")
        assert client.post("/payment/initialize", json=PAYMENT_FORM).status_code == 502

    def test_settlement_storage_failure(self, gateway, generator):
        """Test that a storage outage during settlement is a generic 500 with no grant."""
        storage = BrokenSettleStorage()
        app = create_app(settings=Settings(_env_file=None), storage=storage, gateway=gateway, generator=generator)
        client = TestClient(app, headers={"x-user-id": USER_ID})
        reference = client.post("/payment/initialize", json=PAYMENT_FORM).json()["reference"]
        gateway.complete(reference)

        response = client.post("/payment/verify", json={"reference": reference})

        assert response.status_code == 500
        assert response.json() == {"detail": "Storage is temporarily unavailable"}
        assert storage.get_payment(reference) is None
        assert client.get("/status").json()["free_downloads"] == 5

    def test_verify_grants_once(self, client, gateway):
        """Test that verification adds credits once and re-verification is a no-op."""
        reference = client.post("/payment/initialize", json=PAYMENT_FORM).json()["reference"]
        gateway.complete(reference)

        first = client.post("/payment/verify", json={"reference": reference})
        second = client.post("/payment/verify", json={"reference": reference})

        assert first.status_code == 200
        assert first.json()["credits_added"] == 10
        assert first.json()["already_settled"] is False
        assert second.status_code == 200
        assert second.json()["already_settled"] is True
        assert client.get("/status").json()["free_downloads"] == 15

    def test_verify_failed_payment(self, client, gateway):
        reference = client.post("/payment/initialize", json=PAYMENT_FORM).json()["reference"]
        gateway.complete(reference, status=PaymentStatus.FAILED)

        response = client.post("/payment/verify", json={"reference": reference})

        assert response.status_code == 400
        assert response.json()["detail"]["status"] == "failed"
        assert client.get("/status").json()["free_downloads"] == 5

    def test_verify_unknown_reference(self, client):
        response = client.post("/payment/verify", json={"reference": "cover_unknown"})
        assert response.status_code == 404

    def test_verify_gateway_down(self, client, gateway):
        reference = client.post("/payment/initialize", json=PAYMENT_FORM).json()["reference"]
        gateway.error = GatewayError("read timed out")

        response = client.post("/payment/verify", json={"reference": reference})

        assert response.status_code == 503
        assert client.get("/status").json()["free_downloads"] == 5

    def test_paid_download_after_exhaustion(self, client, gateway):
        """Test the full journey: five free downloads, payment, one more download."""
        cover = create_cover(client)
        for _ in range(5):
            client.post("/download", json={"cover_id": cover["id"]})
        assert client.post("/download", json={"cover_id": cover["id"]}).status_code == 402

        reference = client.post("/payment/initialize", json=PAYMENT_FORM).json()["reference"]
        gateway.complete(reference)
        client.post("/payment/verify", json={"reference": reference})

        response = client.post("/download", json={"cover_id": cover["id"]})
        assert response.status_code == 200
        assert response.json()["remaining_free"] == 9
