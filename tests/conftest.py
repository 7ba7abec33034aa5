import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Tests run against a throwaway SQLite file unless TEST_DATABASE_URL points elsewhere.
# These must be set before the application settings are first imported.
_TEST_DB_PATH = Path(tempfile.gettempdir()) / "medibook_test.db"
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{_TEST_DB_PATH}"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["ENVIRONMENT"] = "test"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["PAYMENT_CURRENCY"] = "LKR"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["LOG_FORMAT"] = "console"

from app.core.exceptions import ExternalServiceException  # noqa: E402
from app.core.payment_gateway import PaymentGateway, get_payment_gateway  # noqa: E402
from app.core.redis_client import get_redis_client  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.core.timeutils import utcnow  # noqa: E402
from app.database import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import metadata  # noqa: E402
from app.schemas.appointments import AppointmentCreate  # noqa: E402
from app.schemas.doctors import DoctorCreate  # noqa: E402
from app.schemas.payments import PaymentIntent  # noqa: E402
from app.services.appointment_service import AppointmentService  # noqa: E402
from app.services.doctor_service import DoctorService  # noqa: E402
from app.services.user_service import UserService  # noqa: E402

# Use NullPool so every test gets fresh connections on its own event loop
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class FakePaymentGateway(PaymentGateway):
    """In-memory processor double.

    Repeating an idempotency key returns the intent created for it, as the
    real processor does. Tests steer outcomes with ``set_status`` and
    simulate outages with ``fail_create`` / ``fail_retrieve``.
    """

    name = "fake"

    def __init__(self):
        self.create_calls: list[dict] = []
        self.retrieve_calls: list[str] = []
        self.intents: dict[str, PaymentIntent] = {}
        self._by_key: dict[str, str] = {}
        self.fail_create = False
        self.fail_retrieve = False

    async def create_payment_intent(self, amount, currency, metadata, idempotency_key):
        self.create_calls.append(
            {
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if self.fail_create:
            raise ExternalServiceException("Payment processor timed out", service=self.name)

        if idempotency_key in self._by_key:
            return self.intents[self._by_key[idempotency_key]]

        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            metadata=metadata,
        )
        self.intents[intent_id] = intent
        self._by_key[idempotency_key] = intent_id
        return intent

    async def retrieve_payment_intent(self, payment_intent_id):
        self.retrieve_calls.append(payment_intent_id)
        if self.fail_retrieve:
            raise ExternalServiceException("Payment processor is unreachable", service=self.name)
        if payment_intent_id not in self.intents:
            raise ExternalServiceException("No such payment_intent", service=self.name)
        return self.intents[payment_intent_id]

    def set_status(self, payment_intent_id: str, status: str, error: str | None = None) -> None:
        self.intents[payment_intent_id] = self.intents[payment_intent_id].model_copy(
            update={"status": status, "last_payment_error": error}
        )


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on freshly created tables."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    # Drop tables after test
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def fake_redis() -> MagicMock:
    """Redis double: every cache lookup misses, publishes are recorded."""
    redis_mock = MagicMock()
    redis_mock.get.return_value = None
    redis_mock.scan_iter.return_value = iter([])
    return redis_mock


@pytest.fixture
def fake_gateway() -> FakePaymentGateway:
    """Payment processor double."""
    return FakePaymentGateway()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    fake_redis: MagicMock,
    fake_gateway: FakePaymentGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = lambda: fake_redis
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def make_auth_headers(user: dict) -> dict:
    """Bearer headers for a user dict."""
    token = create_access_token(
        data={"sub": str(user["id"]), "username": user["username"]},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> dict:
    """Create a patient in the database."""
    return await UserService.create_user(
        db_session, username="patient", email="patient@example.com", full_name="Test Patient"
    )


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> dict:
    """Create a second patient in the database."""
    return await UserService.create_user(
        db_session, username="someone", email="someone@example.com", full_name="Someone Else"
    )


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> dict:
    """Create an admin in the database."""
    return await UserService.create_user(
        db_session,
        username="admin",
        email="admin@example.com",
        full_name="Admin User",
        role="admin",
    )


@pytest.fixture
def auth_headers(test_user: dict) -> dict:
    """Create authentication headers for the patient."""
    return make_auth_headers(test_user)


@pytest.fixture
def other_headers(other_user: dict) -> dict:
    """Create authentication headers for the second patient."""
    return make_auth_headers(other_user)


@pytest.fixture
def admin_headers(admin_user: dict) -> dict:
    """Create authentication headers for the admin."""
    return make_auth_headers(admin_user)


@pytest.fixture
def sample_doctor_data() -> dict:
    """Sample doctor data for testing."""
    return {
        "name": "Dr. Nimal Perera",
        "specialty": "Cardiology",
        "location": "Colombo General Hospital",
        "phone": "+94112345678",
        "email": "nimal.perera@example.com",
        "bio": "Consultant cardiologist.",
        "consultation_fee": 2990,
        "years_of_experience": 12,
    }


@pytest_asyncio.fixture
async def doctor(db_session: AsyncSession, sample_doctor_data: dict) -> dict:
    """Create a doctor in the database."""
    return await DoctorService().create_doctor(db_session, DoctorCreate(**sample_doctor_data))


@pytest.fixture
def sample_appointment_data(doctor: dict) -> dict:
    """Sample booking request for testing."""
    return {
        "doctor_id": str(doctor["id"]),
        "appointment_at": (utcnow() + timedelta(days=2)).isoformat(),
        "symptoms": "Chest pain when climbing stairs",
        "notes": "First visit",
    }


@pytest_asyncio.fixture
async def appointment(db_session: AsyncSession, test_user: dict, doctor: dict) -> dict:
    """Create a (pending, pending) appointment for the patient."""
    created = await AppointmentService(db_session).create_appointment(
        test_user["id"],
        AppointmentCreate(
            doctor_id=doctor["id"],
            appointment_at=utcnow() + timedelta(days=3),
            symptoms="Headache",
        ),
    )
    return created.model_dump()
