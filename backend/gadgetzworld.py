import os
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import quote_plus

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
)
from flask_pymongo import PyMongo
from pymongo.server_api import ServerApi
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from gadgetzworld_mail import send_order_confirmation_email, send_order_status_email

load_dotenv()

DEFAULT_DB_HOST = "cluster0.nnldx.mongodb.net"
DEFAULT_DB_NAME = "GadgetzWorld-client"
DEFAULT_ALLOWED_ORIGINS = ["http://localhost:5173", "http://localhost:5174"]
DEFAULT_ORDER_MAIL_SENDER = "orders@gadgetzworld.shop"

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
ORDER_DATE_FORMAT = "%d/%m/%Y"
STAT_WINDOW_DAYS = 30


def build_mongo_uri() -> str:
    explicit_uri = (os.getenv("MONGO_URI") or "").strip()
    if explicit_uri:
        return explicit_uri

    db_user = (os.getenv("DB_USER") or "").strip()
    if not db_user:
        return "mongodb://localhost:27017"

    db_password = os.getenv("DB_PASS") or ""
    db_host = (os.getenv("DB_HOST") or DEFAULT_DB_HOST).strip()
    return (
        f"mongodb+srv://{quote_plus(db_user)}:{quote_plus(db_password)}@{db_host}/"
        "?retryWrites=true&w=majority&appName=Cluster0"
    )


def is_production() -> bool:
    environment = os.getenv("NODE_ENV") or os.getenv("APP_ENV") or ""
    return environment.strip().lower() == "production"


def utc_now() -> datetime:
    """Naive UTC timestamp, matching what the driver hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_millis() -> int:
    return int(time.time() * 1000)


def clean_text(value) -> str:
    return str(value or "").strip()


def safe_float(value, default=0.0):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_order_status(value) -> Optional[str]:
    candidate = clean_text(value).lower()
    for status in ORDER_STATUSES:
        if status.lower() == candidate:
            return status
    return None


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.isoformat()
        return f"{value.isoformat()}Z"
    if isinstance(value, dict):
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_document(document):
    if not document:
        return None
    return serialize_value(document)


def insert_result_payload(result) -> Dict[str, object]:
    return {
        "acknowledged": bool(result.acknowledged),
        "insertedId": str(result.inserted_id),
    }


def update_result_payload(result) -> Dict[str, object]:
    upserted_id = result.upserted_id
    return {
        "acknowledged": bool(result.acknowledged),
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedId": str(upserted_id) if upserted_id is not None else None,
    }


def delete_result_payload(result) -> Dict[str, object]:
    return {
        "acknowledged": bool(result.acknowledged),
        "deletedCount": result.deleted_count,
    }


def without_identifier(payload: Dict) -> Dict:
    return {key: value for key, value in payload.items() if key != "_id"}


def create_app(test_config: Optional[Dict] = None, mongo_client=None) -> Flask:
    """Create and configure the Flask application.

    ``test_config`` overrides any configuration key. ``mongo_client`` replaces
    the Flask-PyMongo connection, which lets tests hand in an in-memory client.
    """
    app = Flask(__name__)

    # Honor proxy headers so the secure session cookie survives TLS termination.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    production = is_production()
    app.config.update(
        JWT_SECRET_KEY=os.getenv("ACCESS_TOKEN_SECRET", "change-me-in-production"),
        JWT_TOKEN_LOCATION=["cookies"],
        JWT_ACCESS_COOKIE_NAME="token",
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(days=365),
        JWT_SESSION_COOKIE=False,
        JWT_COOKIE_CSRF_PROTECT=False,
        JWT_COOKIE_SECURE=production,
        JWT_COOKIE_SAMESITE="None" if production else "Strict",
        MONGO_URI=build_mongo_uri(),
        MONGO_DBNAME=(os.getenv("DB_NAME") or DEFAULT_DB_NAME).strip(),
        RESEND_API_KEY=(os.getenv("RESEND_API_KEY") or "").strip(),
        ORDER_MAIL_SENDER=(
            os.getenv("ORDER_MAIL_SENDER") or DEFAULT_ORDER_MAIL_SENDER
        ).strip(),
        LOG_LEVEL=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )
    if test_config:
        app.config.update(test_config)

    try:
        app.logger.setLevel(app.config["LOG_LEVEL"])
    except (TypeError, ValueError):
        app.logger.setLevel("INFO")
        app.logger.warning(
            "Unknown LOG_LEVEL %r, falling back to INFO.", app.config["LOG_LEVEL"]
        )

    # --- Initialize extensions ---
    allowed_origins = list(DEFAULT_ALLOWED_ORIGINS)
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed and trimmed not in allowed_origins:
                allowed_origins.append(trimmed)

    CORS(app, supports_credentials=True, origins=allowed_origins)

    jwt = JWTManager(app)

    if mongo_client is None:
        mongo = PyMongo(
            app,
            server_api=ServerApi("1", strict=True, deprecation_errors=True),
        )
        mongo_client = mongo.cx
    db = mongo_client[app.config["MONGO_DBNAME"]]

    app.logger.info(
        "Using database %s (allowed origins: %s)",
        app.config["MONGO_DBNAME"],
        ", ".join(allowed_origins),
    )

    def unauthorized_response(reason: str):
        app.logger.info("Rejected session token: %s", reason)
        return jsonify({"message": "unauthorized access"}), 401

    @jwt.unauthorized_loader
    def handle_missing_token(reason):
        return unauthorized_response(reason)

    @jwt.invalid_token_loader
    def handle_invalid_token(reason):
        return unauthorized_response(reason)

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return unauthorized_response("token has expired")

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return error
        app.logger.exception(
            "Request %s %s failed: %s", request.method, request.path, error
        )
        return jsonify({"message": "Internal server error"}), 500

    # --- Helpers ---

    def read_json_object() -> Dict:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def parse_object_id(value: str, label: str):
        try:
            return ObjectId(value), None
        except (InvalidId, TypeError):
            return None, (jsonify({"message": f"Invalid {label} identifier."}), 400)

    def not_found(label: str):
        return jsonify({"message": f"{label.capitalize()} not found."}), 404

    def fetch_document(collection, document_id: str, label: str):
        object_id, id_error = parse_object_id(document_id, label)
        if id_error:
            return None, id_error

        document = collection.find_one({"_id": object_id})
        if not document:
            return None, not_found(label)

        return document, None

    def update_document_by_id(collection, document_id: str, label: str):
        object_id, id_error = parse_object_id(document_id, label)
        if id_error:
            return id_error

        updates = without_identifier(read_json_object())
        if not updates:
            return jsonify({"message": "Provide at least one field to update."}), 400

        result = collection.update_one({"_id": object_id}, {"$set": updates})
        if result.matched_count == 0:
            return not_found(label)
        return jsonify(update_result_payload(result))

    def delete_document_by_id(collection, document_id: str, label: str):
        object_id, id_error = parse_object_id(document_id, label)
        if id_error:
            return id_error

        result = collection.delete_one({"_id": object_id})
        if result.deleted_count == 0:
            return not_found(label)
        return jsonify(delete_result_payload(result))

    def list_documents(cursor):
        return jsonify([serialize_document(document) for document in cursor])

    def mail_settings() -> Dict[str, object]:
        return {
            "api_key": app.config.get("RESEND_API_KEY", ""),
            "sender": app.config.get("ORDER_MAIL_SENDER", DEFAULT_ORDER_MAIL_SENDER),
            "logger": app.logger,
        }

    def order_recipient(order_document) -> str:
        customer = order_document.get("customer")
        if isinstance(customer, dict):
            return clean_text(customer.get("email"))
        return ""

    def build_order_chart(now: datetime):
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        window_start = today - timedelta(days=STAT_WINDOW_DAYS - 1)
        day_labels = [
            (window_start + timedelta(days=offset)).strftime(ORDER_DATE_FORMAT)
            for offset in range(STAT_WINDOW_DAYS)
        ]
        # Older orders carry only orderDate, so the window is matched on the label.
        pipeline = [
            {"$match": {"orderDate": {"$in": day_labels}}},
            {
                "$group": {
                    "_id": "$orderDate",
                    "orders": {"$sum": 1},
                    "revenue": {"$sum": "$totalPrice"},
                }
            },
        ]
        buckets = {entry.get("_id"): entry for entry in db.orders.aggregate(pipeline)}

        chart = []
        for day_label in day_labels:
            entry = buckets.get(day_label) or {}
            chart.append(
                {
                    "date": day_label,
                    "orders": int(entry.get("orders", 0) or 0),
                    "revenue": round(safe_float(entry.get("revenue")), 2),
                }
            )
        return chart

    # --- ROUTES ---

    @app.route("/")
    def index():
        return "gadgetzworld is running"

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    # Session token
    @app.route("/jwt", methods=["POST"])
    def issue_token():
        payload = read_json_object()
        email = clean_text(payload.get("email"))
        if not email:
            return jsonify({"message": "Email is required to issue a token."}), 400

        token = create_access_token(identity=email)
        response = jsonify({"success": True})
        set_access_cookies(response, token)
        return response

    @app.route("/logout", methods=["GET"])
    def logout():
        response = jsonify({"success": True})
        unset_jwt_cookies(response)
        return response

    # Users
    @app.route("/users/<email>", methods=["POST"])
    def save_user(email: str):
        existing_user = db.users.find_one({"email": email})
        if existing_user:
            return jsonify(serialize_document(existing_user))

        user_document = {
            **without_identifier(read_json_object()),
            "email": email,
            "role": "customer",
            "timestamp": epoch_millis(),
        }
        result = db.users.insert_one(user_document)
        app.logger.info("Registered user %s", email)
        return jsonify(insert_result_payload(result))

    @app.route("/users/role/<email>", methods=["GET"])
    def get_user_role(email: str):
        user_document = db.users.find_one({"email": email})
        return jsonify({"role": user_document.get("role") if user_document else None})

    @app.route("/users", methods=["GET"])
    @jwt_required()
    def list_users():
        return list_documents(db.users.find().sort("timestamp", -1))

    @app.route("/users/role/<email>", methods=["PATCH"])
    @jwt_required()
    def update_user_role(email: str):
        role = clean_text(read_json_object().get("role"))
        if not role:
            return jsonify({"message": "A role is required."}), 400

        result = db.users.update_one({"email": email}, {"$set": {"role": role}})
        if result.matched_count == 0:
            return not_found("user")
        return jsonify(update_result_payload(result))

    # Products
    @app.route("/products", methods=["POST"])
    @jwt_required()
    def create_product():
        product_document = without_identifier(read_json_object())
        result = db.products.insert_one(product_document)
        app.logger.info(
            "Product %s added by %s", result.inserted_id, get_jwt_identity()
        )
        return jsonify(insert_result_payload(result))

    @app.route("/products", methods=["GET"])
    def list_products():
        query: Dict[str, object] = {}
        category = clean_text(request.args.get("category"))
        if category:
            query["category"] = category
        search_term = clean_text(request.args.get("search"))
        if search_term:
            query["productName"] = {"$regex": re.escape(search_term), "$options": "i"}

        cursor = db.products.find(query)
        sort_order = clean_text(request.args.get("sort")).lower()
        if sort_order in ("asc", "desc"):
            cursor = cursor.sort("price", 1 if sort_order == "asc" else -1)
        return list_documents(cursor)

    @app.route("/product/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document, load_error = fetch_document(db.products, product_id, "product")
        if load_error:
            return load_error
        return jsonify(serialize_document(product_document))

    @app.route("/seller-products/<email>", methods=["GET"])
    @jwt_required()
    def list_seller_products(email: str):
        return list_documents(db.products.find({"seller.email": email}))

    @app.route("/product/<product_id>", methods=["PATCH"])
    @jwt_required()
    def update_product(product_id: str):
        return update_document_by_id(db.products, product_id, "product")

    @app.route("/product/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        return delete_document_by_id(db.products, product_id, "product")

    # Wishlist
    @app.route("/wishlist", methods=["POST"])
    def add_to_wishlist():
        result = db.wishlist.insert_one(without_identifier(read_json_object()))
        return jsonify(insert_result_payload(result))

    @app.route("/wishlist", methods=["GET"])
    def list_wishlist():
        email = clean_text(request.args.get("email"))
        if not email:
            return jsonify({"message": "Email query is required"}), 400
        return list_documents(db.wishlist.find({"user.email": email}))

    @app.route("/wishlist", methods=["DELETE"])
    def remove_from_wishlist():
        payload = read_json_object()
        product_id = clean_text(payload.get("productId"))
        email = clean_text(payload.get("email"))
        if not product_id or not email:
            return jsonify({"message": "Product ID and email are required"}), 400

        result = db.wishlist.delete_one(
            {"product._id": product_id, "user.email": email}
        )
        if result.deleted_count == 0:
            return jsonify({"message": "Wishlist item not found"}), 404
        return jsonify({"message": "Wishlist item removed"})

    # Carts
    @app.route("/carts", methods=["POST"])
    def add_to_cart():
        result = db.carts.insert_one(without_identifier(read_json_object()))
        return jsonify(insert_result_payload(result))

    @app.route("/carts", methods=["GET"])
    def list_cart():
        email = clean_text(request.args.get("email"))
        if not email:
            return jsonify({"message": "Email query is required"}), 400
        return list_documents(db.carts.find({"userEmail": email}))

    @app.route("/carts", methods=["DELETE"])
    def clear_cart():
        email = clean_text(request.args.get("email"))
        if not email:
            return jsonify({"message": "Email query is required"}), 400
        result = db.carts.delete_many({"userEmail": email})
        return jsonify(delete_result_payload(result))

    @app.route("/carts/<cart_id>", methods=["DELETE"])
    def remove_cart_item(cart_id: str):
        object_id, id_error = parse_object_id(cart_id, "cart item")
        if id_error:
            return id_error

        result = db.carts.delete_one({"_id": object_id})
        if result.deleted_count == 0:
            return jsonify({"message": "Cart item not found"}), 404
        return jsonify(
            {"deletedCount": result.deleted_count, "message": "Cart item removed"}
        )

    @app.route("/carts/<cart_id>", methods=["PATCH"])
    def update_cart_quantity(cart_id: str):
        quantity = read_json_object().get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            return jsonify({"message": "Quantity must be at least 1"}), 400

        object_id, id_error = parse_object_id(cart_id, "cart item")
        if id_error:
            return id_error

        result = db.carts.update_one(
            {"_id": object_id}, {"$set": {"quantity": quantity}}
        )
        return jsonify(update_result_payload(result))

    # Orders
    @app.route("/orders", methods=["POST"])
    @jwt_required()
    def place_order():
        payload = without_identifier(read_json_object())
        current_email = clean_text(get_jwt_identity())

        status = "Pending"
        if payload.get("status") is not None:
            status = normalize_order_status(payload.get("status"))
            if not status:
                return (
                    jsonify(
                        {"message": f"Status must be one of: {', '.join(ORDER_STATUSES)}."}
                    ),
                    400,
                )

        customer = payload.get("customer")
        if customer is None:
            customer = {}
        elif not isinstance(customer, dict):
            return (
                jsonify({"message": "Customer must be an object with an email."}),
                400,
            )
        if not clean_text(customer.get("email")) and current_email:
            customer = {**customer, "email": current_email}

        now = utc_now()
        order_document = {
            **payload,
            "customer": customer,
            "status": status,
            "orderDate": now.strftime(ORDER_DATE_FORMAT),
            "created_at": now,
        }
        result = db.orders.insert_one(order_document)
        order_document["_id"] = result.inserted_id
        app.logger.info("Order %s placed by %s", result.inserted_id, current_email)

        email_sent, email_error = send_order_confirmation_email(
            order_document, order_recipient(order_document), **mail_settings()
        )

        response_payload = insert_result_payload(result)
        response_payload["emailSent"] = email_sent
        if email_error:
            response_payload["emailError"] = email_error
        return jsonify(response_payload)

    @app.route("/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        return list_documents(db.orders.find().sort([("created_at", -1), ("_id", -1)]))

    @app.route("/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order(order_id: str):
        order_document, load_error = fetch_document(db.orders, order_id, "order")
        if load_error:
            return load_error
        return jsonify(serialize_document(order_document))

    @app.route("/customer-orders/<email>", methods=["GET"])
    @jwt_required()
    def list_customer_orders(email: str):
        cursor = db.orders.find({"customer.email": email}).sort(
            [("created_at", -1), ("_id", -1)]
        )
        return list_documents(cursor)

    @app.route("/update-order-status/<order_id>", methods=["PATCH"])
    @jwt_required()
    def update_order_status(order_id: str):
        raw_status = read_json_object().get("status")
        if not clean_text(raw_status):
            return jsonify({"message": "Order status is required."}), 400

        status = normalize_order_status(raw_status)
        if not status:
            return (
                jsonify(
                    {"message": f"Status must be one of: {', '.join(ORDER_STATUSES)}."}
                ),
                400,
            )

        order_document, load_error = fetch_document(db.orders, order_id, "order")
        if load_error:
            return load_error

        previous_status = normalize_order_status(order_document.get("status"))
        if status == "Cancelled" and previous_status == "Delivered":
            return jsonify({"message": "Delivered orders cannot be cancelled."}), 409

        result = db.orders.update_one(
            {"_id": order_document["_id"]},
            {"$set": {"status": status, "updated_at": utc_now()}},
        )

        if previous_status != status:
            order_document["status"] = status
            send_order_status_email(
                order_document, order_recipient(order_document), **mail_settings()
            )

        return jsonify(update_result_payload(result))

    @app.route("/orders/<order_id>", methods=["DELETE"])
    @jwt_required()
    def cancel_order(order_id: str):
        order_document, load_error = fetch_document(db.orders, order_id, "order")
        if load_error:
            return load_error

        if normalize_order_status(order_document.get("status")) == "Delivered":
            return jsonify({"message": "Delivered orders cannot be cancelled."}), 409

        result = db.orders.delete_one({"_id": order_document["_id"]})
        app.logger.info("Order %s cancelled by %s", order_id, get_jwt_identity())
        return jsonify(
            {"deletedCount": result.deleted_count, "message": "Order cancelled"}
        )

    # Admin statistics
    @app.route("/admin-stat", methods=["GET"])
    @jwt_required()
    def admin_stat():
        revenue_entries = list(
            db.orders.aggregate(
                [{"$group": {"_id": None, "revenue": {"$sum": "$totalPrice"}}}]
            )
        )
        total_revenue = (
            safe_float(revenue_entries[0].get("revenue")) if revenue_entries else 0.0
        )

        orders_by_status: Dict[str, int] = {}
        for entry in db.orders.aggregate(
            [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        ):
            status_label = (
                normalize_order_status(entry.get("_id"))
                or clean_text(entry.get("_id"))
                or "Unknown"
            )
            orders_by_status[status_label] = orders_by_status.get(
                status_label, 0
            ) + int(entry.get("count", 0) or 0)

        return jsonify(
            {
                "totalUsers": db.users.count_documents({}),
                "totalProducts": db.products.count_documents({}),
                "totalOrders": db.orders.count_documents({}),
                "totalRevenue": round(total_revenue, 2),
                "ordersByStatus": orders_by_status,
                "chartData": build_order_chart(utc_now()),
            }
        )

    # Banners and marquee share the same content routes.
    def register_content_routes(collection_name: str, label: str):
        collection = db[collection_name]

        @jwt_required()
        def create_entry():
            result = collection.insert_one(without_identifier(read_json_object()))
            return jsonify(insert_result_payload(result))

        def list_entries():
            return list_documents(collection.find())

        @jwt_required()
        def update_entry(entry_id: str):
            return update_document_by_id(collection, entry_id, label)

        @jwt_required()
        def delete_entry(entry_id: str):
            return delete_document_by_id(collection, entry_id, label)

        base_path = f"/{collection_name}"
        app.add_url_rule(
            base_path, f"create_{collection_name}", create_entry, methods=["POST"]
        )
        app.add_url_rule(
            base_path, f"list_{collection_name}", list_entries, methods=["GET"]
        )
        app.add_url_rule(
            f"{base_path}/<entry_id>",
            f"update_{collection_name}",
            update_entry,
            methods=["PATCH"],
        )
        app.add_url_rule(
            f"{base_path}/<entry_id>",
            f"delete_{collection_name}",
            delete_entry,
            methods=["DELETE"],
        )

    register_content_routes("banners", "banner")
    register_content_routes("marquee", "marquee item")

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
