from datetime import date

import pytest
import stripe

from doula_crm.models import Customer


class FakeStripe:
    """Captures Stripe SDK calls made through asyncio.to_thread"""

    def __init__(self):
        self.intents = {}
        self.created = []
        self.customers = []

    def create_customer(self, **params):
        self.customers.append(params)
        return {"id": f"cus_{len(self.customers)}", "email": params.get("email")}

    def create_intent(self, **params):
        self.created.append(params)
        intent_id = f"pi_{len(self.created)}"
        intent = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "status": "requires_payment_method",
            "amount": params["amount"],
            "currency": params["currency"],
            "metadata": params["metadata"],
        }
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, id, **params):
        if id not in self.intents:
            raise stripe.InvalidRequestError(f"No such payment_intent: '{id}'", "id")
        return self.intents[id]


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe.Customer, "create", fake.create_customer)
    monkeypatch.setattr(stripe.PaymentIntent, "create", fake.create_intent)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake.retrieve_intent)
    return fake


def test_create_payment_requires_signed_contract(client, fake_stripe, make_contract, make_payment):
    contract = make_contract(status="draft")
    make_payment(contract)

    response = client.post(f"/stripe-payments/contract/{contract.id}/create-payment")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Contract must be signed before processing payment",
    }
    assert fake_stripe.created == []


def test_create_payment_charges_next_due_payment(client, db, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    make_payment(contract, amount="800.00", due_date=date(2024, 2, 1), payment_number=2, total_payments=2)
    deposit = make_payment(
        contract, amount="200.00", due_date=date(2024, 1, 1), payment_type="deposit", total_payments=2
    )

    response = client.post(f"/stripe-payments/contract/{contract.id}/create-payment")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["payment_id"] == deposit.id
    assert data["client_secret"] == "pi_1_secret"
    assert data["amount"] == 200.0

    params = fake_stripe.created[0]
    assert params["amount"] == 20000
    assert params["currency"] == "usd"
    assert params["customer"] == "cus_1"
    assert params["metadata"] == {
        "contract_id": str(contract.id),
        "payment_id": str(deposit.id),
        "payment_type": "deposit",
    }
    assert params["api_key"] == "sk_test_123"

    db.refresh(deposit)
    assert deposit.stripe_payment_intent_id == "pi_1"
    assert db.query(Customer).one().stripe_customer_id == "cus_1"


def test_new_attempt_reopens_failed_payment(client, db, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract, status="failed")

    response = client.post(f"/stripe-payments/contract/{contract.id}/payment/{payment.id}/create")

    assert response.status_code == 200
    db.refresh(payment)
    assert payment.status == "pending"
    assert payment.stripe_payment_intent_id == "pi_1"


def test_create_payment_without_outstanding_payments(client, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    make_payment(contract, status="succeeded")

    response = client.post(f"/stripe-payments/contract/{contract.id}/create-payment")

    assert response.status_code == 400
    assert response.json()["error"] == "No pending payments found for this contract"


def test_specific_payment_must_belong_to_contract(client, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    other = make_payment(make_contract(email="other@example.com"))

    response = client.post(f"/stripe-payments/contract/{contract.id}/payment/{other.id}/create")

    assert response.status_code == 404


def test_confirm_applies_succeeded_intent(client, db, job_queue, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract, amount="1000.00")
    client.post(f"/stripe-payments/contract/{contract.id}/create-payment")
    fake_stripe.intents["pi_1"]["status"] = "succeeded"

    response = client.post("/stripe-payments/payment-intent/pi_1/confirm")

    assert response.json()["data"] == {"payment_intent_id": "pi_1", "status": "succeeded"}
    db.refresh(payment)
    db.refresh(contract)
    assert payment.status == "succeeded"
    assert contract.status == "active"
    assert len(job_queue.jobs) == 1


def test_confirm_reports_processing_and_failure(client, db, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract)
    client.post(f"/stripe-payments/contract/{contract.id}/create-payment")

    fake_stripe.intents["pi_1"]["status"] = "processing"
    assert client.post("/stripe-payments/payment-intent/pi_1/confirm").json()["data"]["status"] == "processing"

    fake_stripe.intents["pi_1"]["status"] = "requires_payment_method"
    assert client.post("/stripe-payments/payment-intent/pi_1/confirm").json()["data"]["status"] == "failed"
    db.refresh(payment)
    assert payment.status == "pending"
    assert payment.failed_at is None
    assert payment.notes is None


def test_confirm_records_a_declined_card(client, db, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract)
    client.post(f"/stripe-payments/contract/{contract.id}/create-payment")

    fake_stripe.intents["pi_1"]["last_payment_error"] = {"message": "Your card was declined."}
    response = client.post("/stripe-payments/payment-intent/pi_1/confirm")

    assert response.json()["data"] == {"payment_intent_id": "pi_1", "status": "failed"}
    db.refresh(payment)
    assert payment.status == "failed"
    assert payment.failed_at is not None
    assert payment.notes == "Payment failed via Stripe: Your card was declined."


def test_payment_intent_status(client, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    make_payment(contract, amount="150.00")
    client.post(f"/stripe-payments/contract/{contract.id}/create-payment")

    data = client.get("/stripe-payments/payment-intent/pi_1/status").json()["data"]

    assert data["payment_status"] == "failed"
    assert data["amount"] == 150.0
    assert data["contract_id"] == str(contract.id)


def test_unknown_payment_intent_is_a_gateway_error(client, fake_stripe):
    response = client.get("/stripe-payments/payment-intent/pi_missing/status")
    assert response.status_code == 502
    assert response.json()["success"] is False


def test_record_payment(client, db, fake_stripe, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract)

    missing = client.post("/stripe-payments/record-payment", json={})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Payment intent ID is required"

    client.post(f"/stripe-payments/contract/{contract.id}/create-payment")
    not_paid = client.post("/stripe-payments/record-payment", json={"payment_intent_id": "pi_1"})
    assert not_paid.status_code == 400
    assert not_paid.json()["error"] == "Payment has not succeeded"

    fake_stripe.intents["pi_1"]["status"] = "succeeded"
    recorded = client.post("/stripe-payments/record-payment", json={"payment_intent_id": "pi_1"})
    assert recorded.status_code == 200
    assert recorded.json()["data"]["status"] == "succeeded"
    db.refresh(payment)
    assert payment.status == "succeeded"


def test_next_payment_and_summary(client, make_contract, make_payment):
    contract = make_contract()
    make_payment(contract, amount="300.00", due_date=date(2024, 3, 1), payment_number=2)
    first = make_payment(contract, amount="200.00", due_date=date(2024, 2, 1), payment_number=1)

    next_payment = client.get(f"/stripe-payments/contract/{contract.id}/next-payment").json()["data"]
    assert next_payment["id"] == first.id

    summary = client.get(f"/stripe-payments/contract/{contract.id}/payment-summary").json()["data"]
    assert summary["total_due"] == 500.0
    assert summary["payment_count"] == 2


def test_stripe_disabled(client, monkeypatch, make_contract, make_payment):
    from doula_crm import config

    monkeypatch.setattr(config, "FEATURE_STRIPE", False)
    contract = make_contract()
    make_payment(contract)

    response = client.post(f"/stripe-payments/contract/{contract.id}/create-payment")
    assert response.status_code == 503
