# conftest.py
import os
import time

os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("COURIER_NOTIFY_DELAY_MS", "20")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pdv.db import Base, get_db
from pdv.deps import Printers, get_messenger, get_printers
from pdv.errors import PrintError
from pdv.main import app
from pdv.services.courier import Messenger
from pdv.services.receipts import PrintSurface


class RecordingSurface(PrintSurface):
    """Print surface that keeps every document with the moment it was printed."""

    def __init__(self):
        self.documents = []
        self.fail = False

    async def print(self, document):
        if self.fail:
            raise PrintError("printer offline")
        self.documents.append({**document, "at": time.monotonic()})


class RecordingMessenger(Messenger):
    def __init__(self):
        self.sent = []
        self.ok = True

    async def send(self, phone, text):
        self.sent.append((phone, text))
        return self.ok


@pytest.fixture(scope="session")
def base_url():
    return "http://testserver"


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def printers():
    return Printers(billing=RecordingSurface(), kitchen=RecordingSurface())


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def client(session_factory, printers, messenger):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_printers] = lambda: printers
    app.dependency_overrides[get_messenger] = lambda: messenger
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def boot(client, base_url):
    # seed dev data
    r = client.post(f"{base_url}/admin/dev-bootstrap")
    assert r.status_code == 200, f"/admin/dev-bootstrap failed: {r.text}"
    return r.json()


@pytest.fixture
def auth_headers(client, base_url, boot):
    r = client.post(f"{base_url}/auth/login", params={"mobile": "9999999999", "password": "admin"})
    assert r.status_code == 200, f"/auth/login failed: {r.text}"
    tok = r.json()["access_token"]
    return {"Authorization": f"Bearer {tok}"}


@pytest.fixture(scope="session")
def rng_suffix():
    import random, string
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
