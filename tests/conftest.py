import os
import re
import sys
import tempfile
from pathlib import Path

_test_tmp_dir = tempfile.mkdtemp(prefix="crm_auth_test_")
os.environ.setdefault("DATA_DIR", _test_tmp_dir)
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_test_tmp_dir, 'unused.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.core.config import settings  # noqa: E402
from app.core.rbac import Role  # noqa: E402
from app.core.revocation import RevokedTokenStore  # noqa: E402
from app.crud.security_event import RequestContext  # noqa: E402
from app.crud.user import user_crud  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.services.mail import MailResult  # noqa: E402
from app.services.session_issuer import SessionIssuer  # noqa: E402

PASSWORD = "Correct-Horse-42"


class RecordingMailer:
    """Collects outgoing mail instead of sending it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send(self, to, subject, html, text=None):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text or ""})
        if self.fail:
            return MailResult(sent=False, error="smtp down")
        return MailResult(sent=True)

    def last_code(self, to=None):
        for msg in reversed(self.sent):
            if to is not None and msg["to"] != to:
                continue
            match = re.search(r"code is (\d+)", msg["text"])
            if match:
                return match.group(1)
        raise AssertionError("no OTP mail recorded")


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ctx():
    return RequestContext(ip_address="203.0.113.7", user_agent="pytest-agent/1.0")


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def revoked():
    return RevokedTokenStore()


@pytest.fixture
def issuer(mailer, revoked):
    return SessionIssuer(revoked=revoked, mailer=mailer)


@pytest.fixture
def make_user(db):
    def _make(email="agent@acme-support.com", role=Role.USER, permissions=None, password=PASSWORD,
              name="Agent Smith", is_active=True):
        return user_crud.create(db, name=name, email=email, password=password, role=role,
                                permissions=permissions, is_active=is_active)
    return _make


@pytest.fixture
def app(issuer, session_factory):
    from app.main import create_app

    application = create_app(issuer=issuer, instrument=False)

    def _override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = _override_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def login(client, mailer):
    """Run both login steps over HTTP and return the client holding the cookies."""
    def _login(email, password=PASSWORD, http=None):
        http = http or client
        step1 = http.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert step1.status_code == 200, step1.text
        code = mailer.last_code(to=email.strip().lower())
        step2 = http.post("/api/v1/auth/verify-otp", json={"otp_token": step1.json()["otp_token"], "otp": code})
        assert step2.status_code == 200, step2.text
        return step2
    return _login


@pytest.fixture
def super_admin_email():
    return settings.SUPER_ADMIN_EMAIL


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def failing_mailer():
    return RecordingMailer(fail=True)
