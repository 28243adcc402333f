"""
Shared fixtures: an in-memory SQLite database per test, a recording email
provider, access contexts and an HTTP client with its dependencies
pointed at both.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from taxcrm.api.dependencies import get_email_provider
from taxcrm.core.access import StaffAccess, TaxPreparerAccess, UserRole
from taxcrm.core.database import create_db_engine, get_db, init_db
from taxcrm.core.exceptions import NotificationError
from taxcrm.core.security import create_access_token
from taxcrm.main import create_application
from taxcrm.models import ContactType
from taxcrm.services.contact_service import CRMService
from taxcrm.services.notifications import NotificationDispatcher, SendResult


class FakeEmailProvider:
    """Records every send; fails for addresses in ``fail_for`` or when ``fail_all``."""

    def __init__(self):
        self.sent = []
        self.fail_all = False
        self.fail_for = set()

    def send(self, from_address, to, subject, html):
        if self.fail_all or to in self.fail_for:
            raise NotificationError(f"provider rejected {to}")
        message_id = f"msg-{len(self.sent) + 1}"
        self.sent.append(
            {"id": message_id, "from": from_address, "to": to, "subject": subject, "html": html}
        )
        return SendResult(id=message_id)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def provider():
    return FakeEmailProvider()


@pytest.fixture
def dispatcher(provider):
    return NotificationDispatcher(provider=provider, enabled=True, from_address="CRM <crm@example.com>")


@pytest.fixture
def crm(db, dispatcher):
    return CRMService(db, dispatcher)


# =============================================================================
# Access contexts
# =============================================================================

@pytest.fixture
def admin():
    return StaffAccess(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def super_admin():
    return StaffAccess(user_id="root-1", role=UserRole.SUPER_ADMIN)


@pytest.fixture
def preparer():
    return TaxPreparerAccess(user_id="user-p1", preparer_id="prep-1")


@pytest.fixture
def other_preparer():
    return TaxPreparerAccess(user_id="user-p2", preparer_id="prep-2")


@pytest.fixture
def affiliate():
    return StaffAccess(user_id="aff-1", role=UserRole.AFFILIATE)


# =============================================================================
# Data helpers
# =============================================================================

@pytest.fixture
def make_contact(crm):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "contact_type": ContactType.LEAD,
            "first_name": "Test",
            "last_name": f"Contact{counter['n']}",
            "email": f"contact{counter['n']}@example.com",
        }
        data.update(overrides)
        return crm.create_contact(data)

    return _make


# =============================================================================
# HTTP client
# =============================================================================

def auth_header(sub, role, preparer_id=None):
    claims = {"sub": sub, "role": role}
    if preparer_id is not None:
        claims["preparer_id"] = preparer_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def client(session_factory, provider):
    app = create_application()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_provider] = lambda: provider
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return auth_header("admin-1", "admin")


@pytest.fixture
def preparer_headers():
    return auth_header("user-p1", "tax_preparer", "prep-1")


@pytest.fixture
def other_preparer_headers():
    return auth_header("user-p2", "tax_preparer", "prep-2")
