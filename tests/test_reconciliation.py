from datetime import date

import pytest

from doula_crm.domain.payments.reconciliation import (
    LEGACY_CHARGE_TASK,
    PaymentReconciler,
    legacy_charge_job_id,
    record_legacy_charge,
)
from doula_crm.models import Charge, Customer
from doula_crm.models_payments import StripeWebhookEvent


def intent_event(event_id, event_type, payment, intent_id="pi_123", **intent_fields):
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "metadata": {"contract_id": str(payment.contract_id), "payment_id": str(payment.id)},
    }
    intent.update(intent_fields)
    return {"id": event_id, "type": event_type, "data": {"object": intent}}


@pytest.mark.anyio
async def test_succeeded_event_marks_payment_and_queues_legacy_charge(
    db, job_queue, make_contract, make_payment
):
    contract = make_contract()
    payment = make_payment(contract, amount="1000.00")
    reconciler = PaymentReconciler(db, job_queue)

    outcome = await reconciler.handle_payment_webhook(
        intent_event("evt_1", "payment_intent.succeeded", payment)
    )

    assert outcome == "processed"
    db.refresh(payment)
    db.refresh(contract)
    assert payment.status == "succeeded"
    assert payment.stripe_payment_intent_id == "pi_123"
    assert payment.completed_at is not None
    assert contract.status == "active"
    assert job_queue.jobs == [
        {
            "function": LEGACY_CHARGE_TASK,
            "args": (payment.id, "pi_123"),
            "kwargs": {},
            "job_id": legacy_charge_job_id("pi_123"),
        }
    ]

    ledger = db.query(StripeWebhookEvent).filter(StripeWebhookEvent.stripe_event_id == "evt_1").one()
    assert ledger.ok is True
    assert ledger.processed_at is not None


@pytest.mark.anyio
async def test_duplicate_event_is_skipped(db, job_queue, make_contract, make_payment):
    payment = make_payment(make_contract())
    reconciler = PaymentReconciler(db, job_queue)
    event = intent_event("evt_dup", "payment_intent.succeeded", payment)

    assert await reconciler.handle_payment_webhook(event) == "processed"
    assert await reconciler.handle_payment_webhook(event) == "duplicate"

    assert len(job_queue.jobs) == 1
    assert db.query(StripeWebhookEvent).count() == 1


@pytest.mark.anyio
async def test_second_success_for_same_payment_is_a_no_op(db, job_queue, make_contract, make_payment):
    payment = make_payment(make_contract())
    reconciler = PaymentReconciler(db, job_queue)

    await reconciler.handle_payment_webhook(intent_event("evt_a", "payment_intent.succeeded", payment))
    completed_at = payment.completed_at
    outcome = await reconciler.handle_payment_webhook(
        intent_event("evt_b", "payment_intent.succeeded", payment)
    )

    assert outcome == "processed"
    db.refresh(payment)
    assert payment.completed_at == completed_at
    assert len(job_queue.jobs) == 1


@pytest.mark.anyio
async def test_failed_event_records_failure_and_keeps_contract_signed(
    db, job_queue, make_contract, make_payment
):
    contract = make_contract()
    payment = make_payment(contract, due_date=date(2024, 1, 1))
    reconciler = PaymentReconciler(db, job_queue)

    await reconciler.handle_payment_webhook(
        intent_event(
            "evt_fail",
            "payment_intent.payment_failed",
            payment,
            last_payment_error={"message": "Your card was declined."},
        )
    )

    db.refresh(payment)
    db.refresh(contract)
    assert payment.status == "failed"
    assert payment.failed_at is not None
    assert payment.notes == "Payment failed via Stripe: Your card was declined."
    assert contract.status == "signed"
    assert job_queue.jobs == []


@pytest.mark.anyio
async def test_success_after_failed_attempt_on_same_intent(db, job_queue, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract, amount="1000.00")
    reconciler = PaymentReconciler(db, job_queue)

    await reconciler.handle_payment_webhook(
        intent_event(
            "evt_declined",
            "payment_intent.payment_failed",
            payment,
            last_payment_error={"message": "Your card was declined."},
        )
    )
    db.refresh(payment)
    assert payment.status == "failed"

    outcome = await reconciler.handle_payment_webhook(
        intent_event("evt_retried", "payment_intent.succeeded", payment)
    )

    assert outcome == "processed"
    db.refresh(payment)
    db.refresh(contract)
    assert payment.status == "succeeded"
    assert payment.completed_at is not None
    assert contract.status == "active"
    assert [job["job_id"] for job in job_queue.jobs] == [legacy_charge_job_id("pi_123")]


@pytest.mark.anyio
async def test_cancel_after_failed_attempt(db, job_queue, make_contract, make_payment):
    payment = make_payment(make_contract(), status="failed")
    await PaymentReconciler(db, job_queue).handle_payment_webhook(
        intent_event("evt_give_up", "payment_intent.canceled", payment)
    )
    db.refresh(payment)
    assert payment.status == "canceled"


@pytest.mark.anyio
async def test_canceled_event(db, job_queue, make_contract, make_payment):
    payment = make_payment(make_contract())
    await PaymentReconciler(db, job_queue).handle_payment_webhook(
        intent_event("evt_cancel", "payment_intent.canceled", payment)
    )
    db.refresh(payment)
    assert payment.status == "canceled"
    assert payment.notes == "Payment canceled by user"


@pytest.mark.anyio
async def test_failure_after_success_is_ignored(db, job_queue, make_contract, make_payment):
    payment = make_payment(make_contract(), status="succeeded")
    outcome = await PaymentReconciler(db, job_queue).handle_payment_webhook(
        intent_event("evt_late_fail", "payment_intent.payment_failed", payment)
    )
    assert outcome == "processed"
    db.refresh(payment)
    assert payment.status == "succeeded"


@pytest.mark.anyio
async def test_events_without_usable_metadata_are_dropped(db, job_queue, make_contract, make_payment):
    contract = make_contract()
    payment = make_payment(contract)
    other = make_payment(make_contract(email="other@example.com"))
    reconciler = PaymentReconciler(db, job_queue)

    missing = {"id": "evt_m", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x", "metadata": {}}}}
    malformed = intent_event("evt_bad", "payment_intent.succeeded", payment)
    malformed["data"]["object"]["metadata"]["payment_id"] = "abc"
    mismatched = intent_event("evt_mis", "payment_intent.succeeded", other)
    mismatched["data"]["object"]["metadata"]["contract_id"] = str(contract.id)

    for event in (missing, malformed, mismatched):
        assert await reconciler.handle_payment_webhook(event) == "processed"

    db.refresh(payment)
    db.refresh(other)
    assert payment.status == "pending"
    assert other.status == "pending"
    assert job_queue.jobs == []


@pytest.mark.anyio
async def test_unhandled_event_type_is_ignored(db, job_queue):
    event = {"id": "evt_other", "type": "charge.refunded", "data": {"object": {}}}
    assert await PaymentReconciler(db, job_queue).handle_payment_webhook(event) == "ignored"
    ledger = db.query(StripeWebhookEvent).one()
    assert ledger.processed_at is not None


@pytest.mark.anyio
async def test_handler_error_is_recorded_and_event_can_be_retried(
    db, job_queue, make_contract, make_payment
):
    payment = make_payment(make_contract())
    event = intent_event("evt_retry", "payment_intent.succeeded", payment)
    reconciler = PaymentReconciler(db, job_queue)

    async def broken_handler(intent):
        raise RuntimeError("database unavailable")

    reconciler.handle_payment_succeeded = broken_handler
    with pytest.raises(RuntimeError):
        await reconciler.handle_payment_webhook(event)

    ledger = db.query(StripeWebhookEvent).filter(StripeWebhookEvent.stripe_event_id == "evt_retry").one()
    assert ledger.ok is False
    assert ledger.error == "database unavailable"
    assert ledger.processed_at is None

    outcome = await PaymentReconciler(db, job_queue).handle_payment_webhook(event)
    assert outcome == "processed"
    db.refresh(payment)
    assert payment.status == "succeeded"


def test_record_legacy_charge_reuses_customer_and_charge(db, make_contract, make_payment):
    payment = make_payment(make_contract(), amount="250.75", payment_type="deposit")

    charge = record_legacy_charge(db, payment, "pi_legacy")
    again = record_legacy_charge(db, payment, "pi_legacy")

    assert again.id == charge.id
    assert charge.amount == 25075
    assert charge.qb_sync_status == "pending"
    assert charge.contract_payment_id == payment.id
    assert db.query(Charge).count() == 1
    customer = db.query(Customer).one()
    assert customer.email == "jane@example.com"
    assert customer.name == "Jane Doe"
    assert charge.customer_id == customer.id
