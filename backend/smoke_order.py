import os

import requests

base_url = os.getenv("SMOKE_BASE_URL", "http://localhost:5000").rstrip("/")
customer_email = os.getenv("SMOKE_EMAIL", "test@example.com")

order_payload = {
    "customer": {"email": customer_email, "name": "Test User"},
    "productName": "Test Product",
    "quantity": 1,
    "totalPrice": 10.00,
    "paymentMethod": "card",
    "transactionId": "txn_smoke_test",
}

try:
    session = requests.Session()
    print(f"Requesting a session token for {customer_email}...")
    token_response = session.post(f"{base_url}/jwt", json={"email": customer_email})
    print(f"Status Code: {token_response.status_code}")

    print(f"Sending POST request to {base_url}/orders...")
    response = session.post(f"{base_url}/orders", json=order_payload)
    print(f"Status Code: {response.status_code}")
    print("Response Body:")
    print(response.text)
except requests.RequestException as e:
    print(f"Error: {e}")
