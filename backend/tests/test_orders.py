"""Order placement, lookup, status transitions and cancellation."""

import pytest
from bson import ObjectId


ORDER = {
    "customer": {"email": "shopper@example.com", "name": "Shopper"},
    "productName": "Pixel Buds Pro",
    "quantity": 2,
    "totalPrice": 398.0,
    "paymentMethod": "card",
    "transactionId": "txn_123",
}


def place_order(client, **overrides):
    response = client.post("/orders", json={**ORDER, **overrides})
    assert response.status_code == 200
    return response.get_json()["insertedId"]


def test_place_order_requires_token(client):
    assert client.post("/orders", json=ORDER).status_code == 401


def test_place_order_stamps_date_and_status(auth_client, db):
    order_id = place_order(auth_client)

    stored = db.orders.find_one({"_id": ObjectId(order_id)})
    assert stored["status"] == "Pending"
    assert stored["created_at"].strftime("%d/%m/%Y") == stored["orderDate"]
    assert stored["transactionId"] == "txn_123"


def test_place_order_sends_confirmation_email(auth_client, sent_emails):
    response = auth_client.post("/orders", json=ORDER)

    assert response.get_json()["emailSent"] is True
    assert len(sent_emails) == 1
    email = sent_emails[0]
    assert email["to"] == ["shopper@example.com"]
    assert email["from"] == "GadgetzWorld <orders@test.shop>"
    assert "Pixel Buds Pro x2" in email["text"]
    assert "txn_123" in email["html"]


def test_place_order_defaults_customer_to_token_identity(
    auth_client, db, sent_emails, customer_email
):
    order_id = place_order(auth_client, customer={"name": "No Email"})

    stored = db.orders.find_one({"_id": ObjectId(order_id)})
    assert stored["customer"] == {"name": "No Email", "email": customer_email}
    assert sent_emails[0]["to"] == [customer_email]


def test_place_order_survives_mail_failure(app, auth_client, db):
    app.config["RESEND_API_KEY"] = ""

    response = auth_client.post("/orders", json=ORDER)

    body = response.get_json()
    assert response.status_code == 200
    assert body["emailSent"] is False
    assert body["emailError"] == "Resend API key is not configured."
    assert db.orders.count_documents({}) == 1


def test_place_order_rejects_unknown_status(auth_client):
    response = auth_client.post("/orders", json={**ORDER, "status": "Teleported"})

    assert response.status_code == 400


def test_list_orders_newest_first(auth_client):
    first = place_order(auth_client, productName="First")
    second = place_order(auth_client, productName="Second")

    orders = auth_client.get("/orders").get_json()

    assert [order["_id"] for order in orders] == [second, first]


def test_get_order(auth_client):
    order_id = place_order(auth_client)

    response = auth_client.get(f"/orders/{order_id}")

    body = response.get_json()
    assert body["_id"] == order_id
    assert body["created_at"].endswith("Z")


def test_get_missing_order(auth_client):
    assert auth_client.get(f"/orders/{ObjectId()}").status_code == 404
    assert auth_client.get("/orders/nope").status_code == 400


def test_customer_orders(auth_client):
    place_order(auth_client)
    place_order(auth_client, customer={"email": "other@example.com"})

    orders = auth_client.get("/customer-orders/shopper@example.com").get_json()

    assert len(orders) == 1
    assert orders[0]["customer"]["email"] == "shopper@example.com"


def test_update_order_status(auth_client, db, sent_emails):
    order_id = place_order(auth_client)

    response = auth_client.patch(
        f"/update-order-status/{order_id}", json={"status": "shipped"}
    )

    assert response.status_code == 200
    assert response.get_json()["modifiedCount"] == 1
    assert db.orders.find_one({"_id": ObjectId(order_id)})["status"] == "Shipped"
    assert sent_emails[-1]["subject"] == "Your order is shipped"


def test_update_order_status_to_same_value_sends_no_email(auth_client, sent_emails):
    order_id = place_order(auth_client)
    sent_before = len(sent_emails)

    auth_client.patch(f"/update-order-status/{order_id}", json={"status": "Pending"})

    assert len(sent_emails) == sent_before


@pytest.mark.parametrize("payload", [{}, {"status": ""}, {"status": "Lost"}])
def test_update_order_status_validates_status(auth_client, payload):
    order_id = place_order(auth_client)

    response = auth_client.patch(f"/update-order-status/{order_id}", json=payload)

    assert response.status_code == 400


def test_update_status_of_missing_order(auth_client):
    response = auth_client.patch(
        f"/update-order-status/{ObjectId()}", json={"status": "Shipped"}
    )

    assert response.status_code == 404


def test_delivered_order_cannot_be_marked_cancelled(auth_client, db):
    order_id = place_order(auth_client, status="Delivered")

    response = auth_client.patch(
        f"/update-order-status/{order_id}", json={"status": "Cancelled"}
    )

    assert response.status_code == 409
    assert db.orders.find_one({"_id": ObjectId(order_id)})["status"] == "Delivered"


def test_cancel_order(auth_client, db):
    order_id = place_order(auth_client)

    response = auth_client.delete(f"/orders/{order_id}")

    assert response.status_code == 200
    assert response.get_json() == {"deletedCount": 1, "message": "Order cancelled"}
    assert db.orders.count_documents({}) == 0


def test_cancel_missing_order(auth_client):
    assert auth_client.delete(f"/orders/{ObjectId()}").status_code == 404


def test_delivered_order_cannot_be_cancelled(auth_client, db):
    order_id = place_order(auth_client)
    auth_client.patch(f"/update-order-status/{order_id}", json={"status": "Delivered"})

    response = auth_client.delete(f"/orders/{order_id}")

    assert response.status_code == 409
    assert response.get_json() == {"message": "Delivered orders cannot be cancelled."}
    assert db.orders.count_documents({}) == 1


@pytest.mark.parametrize("customer", ["Alice", ["alice@example.com"], 42])
def test_place_order_rejects_non_object_customer(auth_client, db, customer):
    response = auth_client.post("/orders", json={**ORDER, "customer": customer})

    assert response.status_code == 400
    assert db.orders.count_documents({}) == 0
