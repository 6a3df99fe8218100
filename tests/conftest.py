import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("FEATURE_STRIPE", "true")
os.environ.setdefault("FEATURE_QUICKBOOKS", "false")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from doula_crm.auth import AuthenticatedUser, get_current_user  # noqa: E402
from doula_crm.database import Base, get_db  # noqa: E402
from doula_crm.main import app  # noqa: E402
from doula_crm.models import Client, Contract  # noqa: E402
from doula_crm.models_payments import ContractPayment  # noqa: E402
from doula_crm.task_queue import JobQueue  # noqa: E402

ADMIN = AuthenticatedUser(id="admin-1", email="admin@example.com", role="admin")


class FakeJobQueue(JobQueue):
    """Records enqueued jobs instead of talking to Redis"""

    def __init__(self):
        super().__init__(None)
        self.jobs = []

    async def enqueue(self, function, *args, job_id=None, **kwargs):
        if job_id and any(job["job_id"] == job_id for job in self.jobs):
            return job_id
        self.jobs.append({"function": function, "args": args, "kwargs": kwargs, "job_id": job_id})
        return job_id or f"job-{len(self.jobs)}"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def job_queue():
    return FakeJobQueue()


@pytest.fixture
def current_user():
    return {"user": ADMIN}


@pytest.fixture
def client(db, job_queue, current_user):
    def override_get_db():
        yield db

    async def override_current_user():
        return current_user["user"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    app.state.job_queue = job_queue
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.job_queue = None


@pytest.fixture
def make_contract(db):
    def _make(
        status="signed",
        total_amount="1000.00",
        deposit_amount="200.00",
        email="jane@example.com",
        first_name="Jane",
        last_name="Doe",
    ):
        client = Client(first_name=first_name, last_name=last_name, email=email)
        db.add(client)
        db.flush()
        contract = Contract(
            client_id=client.id,
            title="Birth Doula Package",
            total_amount=Decimal(total_amount),
            deposit_amount=Decimal(deposit_amount),
            status=status,
        )
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract

    return _make


@pytest.fixture
def make_payment(db):
    def _make(contract, amount="200.00", due_date=date(2024, 1, 1), status="pending", **fields):
        payment = ContractPayment(
            contract_id=contract.id,
            payment_type=fields.pop("payment_type", "installment"),
            amount=Decimal(amount),
            due_date=due_date,
            payment_number=fields.pop("payment_number", 1),
            total_payments=fields.pop("total_payments", 1),
            status=status,
            is_overdue=fields.pop("is_overdue", False),
            **fields,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    return _make
