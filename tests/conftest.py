from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from context import AppContext
from database import create_document
from mailer import EmailDeliveryError
from main import create_app


class FakeClock:
    def __init__(self):
        # Starts at wall-clock time so mongomock's TTL sweep leaves records alone
        self.now = datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_email(self, message):
        if self.fail:
            raise EmailDeliveryError("Email sending failed: provider unavailable")
        self.sent.append(message)
        return {"success": True, "message_id": f"msg-{len(self.sent)}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def db():
    return mongomock.MongoClient().smFurnishing_test


@pytest.fixture
def ctx(db, mailer, clock):
    settings = Settings(jwt_secret="test-secret-with-at-least-32-bytes!!", cart_max_retries=3)
    return AppContext(db=db, settings=settings, mailer=mailer, clock=clock)


@pytest.fixture
def client(ctx):
    with TestClient(create_app(ctx)) as c:
        yield c


@pytest.fixture
def make_product(db):
    def _make(name="Oak Sofa", price=100.0, stock=5, image_url="https://img.example.com/sofa.jpg", **extra):
        data = {
            "name": name,
            "description": f"{name} description",
            "price": price,
            "stock": stock,
            "status": "Active",
            "image_url": image_url,
            "category_id": None,
            **extra,
        }
        return create_document(db, "product", data)
    return _make


@pytest.fixture
def auth_headers(client):
    response = client.post("/api/users/register", json={
        "name": "Asha Rao",
        "email": "asha@example.com",
        "password": "s3cret-pass",
    })
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}
