from doula_crm.models import Client
from doula_crm.models_payments import ContractPayment, PaymentSchedule


def new_contract_body(**overrides):
    body = {
        "client": {
            "firstName": "Maya",
            "lastName": "Lopez",
            "email": "Maya@Example.com",
            "phone": "(555) 123-4567",
        },
        "title": "Postpartum Support",
        "totalAmount": "1800",
        "depositAmount": "300",
    }
    body.update(overrides)
    return body


def test_create_contract_with_new_client(client, db):
    response = client.post("/contracts", json=new_contract_body())

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "draft"
    assert data["clientName"] == "Maya Lopez"
    assert data["clientEmail"] == "maya@example.com"
    assert data["totalAmount"] == 1800.0
    assert data["depositAmount"] == 300.0

    stored = db.query(Client).one()
    assert stored.phone == "+15551234567"


def test_create_contract_reuses_client_by_email(client, db):
    client.post("/contracts", json=new_contract_body())
    second = client.post("/contracts", json=new_contract_body(title="Birth Support"))

    assert second.status_code == 201
    assert db.query(Client).count() == 1

    listed = client.get("/contracts", params={"client_id": second.json()["data"]["clientId"]})
    assert len(listed.json()["data"]) == 2


def test_create_contract_validation(client):
    no_client = client.post("/contracts", json={"title": "x", "totalAmount": "10"})
    assert no_client.status_code == 422
    assert no_client.json()["success"] is False

    deposit_too_big = client.post("/contracts", json=new_contract_body(depositAmount="5000"))
    assert deposit_too_big.status_code == 422

    unknown_client = client.post("/contracts", json={"clientId": 999, "title": "x", "totalAmount": "10"})
    assert unknown_client.status_code == 404
    assert unknown_client.json() == {"success": False, "error": "Client not found"}


def test_contract_signing_lifecycle(client):
    contract_id = client.post("/contracts", json=new_contract_body()).json()["data"]["id"]

    sent = client.post(f"/contracts/{contract_id}/sent")
    assert sent.json()["data"]["status"] == "sent"
    assert client.post(f"/contracts/{contract_id}/sent").status_code == 409

    signed = client.post(f"/contracts/{contract_id}/signed", json={"signedAt": "2024-05-01T10:00:00"})
    assert signed.status_code == 200
    assert signed.json()["data"]["status"] == "signed"
    assert signed.json()["data"]["signedAt"] == "2024-05-01T10:00:00"

    again = client.post(f"/contracts/{contract_id}/signed")
    assert again.status_code == 200
    assert again.json()["data"]["signedAt"] == "2024-05-01T10:00:00"


def test_active_contract_cannot_be_signed_again(client, make_contract):
    contract = make_contract(status="active")
    response = client.post(f"/contracts/{contract.id}/signed")
    assert response.status_code == 409


def test_list_and_get_contracts(client, make_contract):
    signed = make_contract()
    make_contract(status="draft", email="draft@example.com")

    only_signed = client.get("/contracts", params={"status": "signed"}).json()["data"]
    assert [c["id"] for c in only_signed] == [signed.id]

    detail = client.get(f"/contracts/{signed.id}").json()["data"]
    assert detail["title"] == "Birth Doula Package"
    assert client.get("/contracts/999").status_code == 404


def test_create_contract_with_payment_schedule(client, db):
    response = client.post(
        "/contracts",
        json=new_contract_body(
            paymentSchedule={
                "total_amount": "1800",
                "deposit_amount": "300",
                "number_of_installments": 3,
                "payment_frequency": "monthly",
                "start_date": "2024-03-01",
            }
        ),
    )

    assert response.status_code == 201
    contract_id = response.json()["data"]["id"]
    schedule = db.query(PaymentSchedule).one()
    assert schedule.contract_id == contract_id
    assert schedule.status == "active"
    payments = (
        db.query(ContractPayment)
        .filter(ContractPayment.contract_id == contract_id)
        .order_by(ContractPayment.payment_number)
        .all()
    )
    assert [p.payment_type for p in payments] == ["deposit", "installment", "installment", "installment"]
    assert sum(p.amount for p in payments) == 1800


def test_contract_is_kept_when_its_payment_schedule_is_invalid(client, db):
    response = client.post(
        "/contracts",
        json=new_contract_body(paymentSchedule={"total_amount": "100", "deposit_amount": "150"}),
    )

    assert response.status_code == 201
    assert response.json()["data"]["status"] == "draft"
    assert db.query(PaymentSchedule).count() == 0
    assert db.query(ContractPayment).count() == 0
