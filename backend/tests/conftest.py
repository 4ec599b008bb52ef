"""Shared fixtures: in-memory MongoDB, Flask test client, captured emails.

Every test gets a fresh mongomock client, so no state leaks between tests.
Outbound mail never leaves the process: resend.Emails.send is replaced by a
recorder that returns a fake message id.
"""

import mongomock
import pytest
import resend

from gadgetzworld import create_app

TEST_DB_NAME = "gadgetzworld-test"
CUSTOMER_EMAIL = "buyer@example.com"


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def db(mongo_client):
    return mongo_client[TEST_DB_NAME]


@pytest.fixture
def customer_email():
    return CUSTOMER_EMAIL


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(payload):
        sent.append(payload)
        return {"id": f"email_{len(sent)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return sent


@pytest.fixture
def app(mongo_client, sent_emails):
    return create_app(
        {
            "TESTING": True,
            "MONGO_DBNAME": TEST_DB_NAME,
            "JWT_SECRET_KEY": "test-secret",
            "JWT_COOKIE_SECURE": False,
            "JWT_COOKIE_SAMESITE": "Strict",
            "RESEND_API_KEY": "re_test_key",
            "ORDER_MAIL_SENDER": "orders@test.shop",
        },
        mongo_client=mongo_client,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client, customer_email):
    """Test client holding a session cookie for customer_email."""
    response = client.post("/jwt", json={"email": customer_email})
    assert response.status_code == 200
    return client
