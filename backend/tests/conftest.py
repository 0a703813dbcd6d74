import os
import tempfile
import threading

# CRITICAL: Set environment variables BEFORE any tradeflow imports
# These must be set before tradeflow.config.settings is loaded
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_tradeflow.db")
_TEST_STORAGE_DIR = tempfile.mkdtemp(prefix="tradeflow-storage-")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"  # Ensure /api prefix is used in tests
os.environ["STORAGE_DIR"] = _TEST_STORAGE_DIR
os.environ["VERIFICATION_WORKER_ENABLED"] = "false"
os.environ["VERIFICATION_DELAY_SECONDS"] = "3"

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

# Now import tradeflow modules - they will use the test DATABASE_URL
from tradeflow import models  # noqa: E402
from tradeflow.api import deps  # noqa: E402
from tradeflow.database import Base, engine as app_engine, get_db  # noqa: E402
from tradeflow.main import app  # noqa: E402
from tradeflow.schemas.deals import DealCreate  # noqa: E402
from tradeflow.services import deal_matching  # noqa: E402

# Use the same engine that the app uses
TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True)


def override_get_db():
    """Test database session that uses the test engine."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


class StubUser:
    """Plain stand-in for an authenticated user row."""

    def __init__(self, user_id: int, role: models.PartyRole, company_id: int | None = None):
        self.id = user_id
        self.email = f"{role.value.lower()}{user_id}@test.com"
        self.full_name = f"{role.value.title()} {user_id}"
        self.active = True
        self.role = role
        self.company_id = company_id


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """
    Create all tables before each test and clean up after.
    Also cleans up dependency overrides to ensure test isolation.
    """
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def act_as():
    """Override the authenticated user for subsequent requests."""

    def _set(user: StubUser) -> StubUser:
        app.dependency_overrides[deps.get_current_user] = lambda: user
        return user

    yield _set
    app.dependency_overrides.pop(deps.get_current_user, None)


def _add_user(db, role: models.PartyRole, company_id: int | None, email: str) -> StubUser:
    row = models.User(email=email, full_name=email.split("@")[0], role=role, company_id=company_id)
    db.add(row)
    db.flush()
    return StubUser(row.id, role, company_id)


@pytest.fixture
def parties(db_session):
    """Buyer and seller companies with one user each, a broker, and an outsider."""

    buyer_co = models.Company(name="Buyer Refining Ltd", country="AE")
    seller_co = models.Company(name="Seller Petroleum SA", country="NL")
    other_co = models.Company(name="Unrelated Trading", country="SG")
    db_session.add_all([buyer_co, seller_co, other_co])
    db_session.flush()

    broker = _add_user(db_session, models.PartyRole.BROKER, None, "broker@test.com")
    buyer = _add_user(db_session, models.PartyRole.BUYER, buyer_co.id, "buyer@test.com")
    seller = _add_user(db_session, models.PartyRole.SELLER, seller_co.id, "seller@test.com")
    outsider = _add_user(db_session, models.PartyRole.BUYER, other_co.id, "outsider@test.com")
    db_session.commit()

    return SimpleNamespace(
        broker=broker,
        buyer=buyer,
        seller=seller,
        outsider=outsider,
        buyer_company_id=buyer_co.id,
        seller_company_id=seller_co.id,
        other_company_id=other_co.id,
    )


def deal_payload(
    *,
    buyer_type: str = "existing",
    seller_type: str = "existing",
    buyer_company_id: int | None = None,
    seller_company_id: int | None = None,
    commission: dict | None = None,
) -> dict:
    def party(kind: str, company_id: int | None, label: str) -> dict:
        if kind == "existing":
            return {"existingCompanyId": company_id}
        return {
            "company": f"New {label} Co",
            "contact": f"{label} Contact",
            "email": f"{label.lower()}@newco.test",
        }

    return {
        "dealData": {
            "product_type": "EN590",
            "quantity": 50000,
            "quantity_unit": "MT",
            "estimated_value": 35000000,
            "currency": "USD",
            "delivery_terms": "CIF",
            "location": "Rotterdam",
        },
        "buyerData": party(buyer_type, buyer_company_id, "Buyer"),
        "buyerType": buyer_type,
        "sellerData": party(seller_type, seller_company_id, "Seller"),
        "sellerType": seller_type,
        "commissionData": commission,
    }


@pytest.fixture
def deal_json(parties):
    """Request body for POST /deals against the ``parties`` companies."""

    def _build(**overrides) -> dict:
        kwargs = {
            "buyer_company_id": parties.buyer_company_id,
            "seller_company_id": parties.seller_company_id,
        }
        kwargs.update(overrides)
        return deal_payload(**kwargs)

    return _build


@pytest.fixture
def make_deal(db_session, parties):
    """Create a deal through the matching service; matched by default."""

    def _make(*, buyer_type: str = "existing", seller_type: str = "existing") -> models.Deal:
        payload = DealCreate.model_validate(
            deal_payload(
                buyer_type=buyer_type,
                seller_type=seller_type,
                buyer_company_id=parties.buyer_company_id,
                seller_company_id=parties.seller_company_id,
            )
        )
        creation = deal_matching.create_deal(db_session, payload, broker_id=parties.broker.id)
        return creation.deal

    return _make


@pytest.fixture
def run_concurrently():
    """Run each ``call(db)`` on its own thread and session, released together.

    Returns ``(results, errors)``; a call's result is kept only if its commit succeeded.
    """

    def _run(*calls):
        barrier = threading.Barrier(len(calls))
        results, errors = [], []

        def _worker(call):
            db = TestingSessionLocal()
            try:
                barrier.wait()
                result = call(db)
                db.commit()
                results.append(result)
            except Exception as exc:
                db.rollback()
                errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=_worker, args=(call,)) for call in calls]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        return results, errors

    return _run
