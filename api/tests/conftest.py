import os
import tempfile

# must be set before spinwheel.config is imported
_tmp = tempfile.mkdtemp(prefix="spinwheel-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["ADMIN_PASSWORD"] = "letmein"
os.environ["ADMIN_PASSWORD_HASH"] = ""
os.environ["WHEEL_SLOTS"] = "8"
os.environ["TOKEN_TTL_HOURS"] = "48"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from spinwheel import security, tokens
from spinwheel.db import Base, SessionLocal, engine
from spinwheel.main import app
from spinwheel.models import Prize


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    security._failed.clear()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    resp = client.post("/api/admin/login", json={"password": "letmein"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def make_prize(db):
    def _make(name, probability, position=None, is_active=True, **kw):
        p = Prize(name=name, probability=probability, position=position, is_active=is_active, **kw)
        db.add(p)
        db.commit()
        db.refresh(p)
        return p
    return _make


@pytest.fixture
def make_token(db):
    def _make(code, expires_in=timedelta(days=2), created_by="admin"):
        return tokens.create_token(db, code, created_by, expires_at=tokens.utcnow() + expires_in)
    return _make
