import os

# Avant l'import de l'app: pas de Redis réel pendant les tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import copy
import pytest
from typing import Generator, Dict, Any, List, Optional
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from marketplace.app_setup.factory import create_app
from marketplace.utils.security import require_user
from marketplace.payments.gateway import StripeGateway

TEST_USER_ID = "test-user"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return create_app()

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    fake_user: Dict[str, Any] = {
        "id": TEST_USER_ID,
        "email": "test@example.com",
        "role": "customer",
        "metadata": {"full_name": "Test User"},
        "token": "fake-token",
    }
    app.dependency_overrides[require_user] = lambda: fake_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)

# Aucun test ne doit joindre Supabase
@pytest.fixture(autouse=True)
def mock_supabase_clients(monkeypatch):
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("marketplace.infra.supabase_client.get_service_supabase", lambda: MagicMock())


class FakeStore:
    """
    Remplace les tables products / carts / orders en mémoire.
    compare_and_set_quantity respecte la sémantique conditionnelle (WHERE quantity = expected).
    """

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.carts: Dict[str, Dict[str, Any]] = {}
        self.orders: List[Dict[str, Any]] = []
        self.cas_calls: List[Dict[str, Any]] = []
        self.fail_insert = False
        self.fail_cart_save = False

    def add_product(self, product_id, name="Tomatoes", price=100, quantity=5,
                    farmer_id="farmer-1", is_available=True, unit="kg", image=None):
        self.products[product_id] = {
            "id": product_id,
            "name": name,
            "price": price,
            "quantity": quantity,
            "unit": unit,
            "image": image,
            "is_available": is_available,
            "farmer_id": farmer_id,
        }
        return self.products[product_id]

    def set_cart(self, user_id, lines):
        self.carts[user_id] = {"user_id": user_id, "items": copy.deepcopy(lines)}

    def line(self, product_id, quantity):
        p = self.products[product_id]
        return {"productId": product_id, "name": p["name"], "price": p["price"], "quantity": quantity, "unit": p["unit"]}

    # products
    def get_product(self, product_id) -> Optional[Dict[str, Any]]:
        p = self.products.get(product_id)
        return dict(p) if p else None

    def compare_and_set_quantity(self, product_id, *, expected, new_quantity, is_available=None) -> bool:
        self.cas_calls.append({"product_id": product_id, "expected": expected, "new_quantity": new_quantity})
        p = self.products.get(product_id)
        if not p or p["quantity"] != expected:
            return False
        p["quantity"] = new_quantity
        if is_available is not None:
            p["is_available"] = is_available
        return True

    # carts
    def find_cart(self, user_id):
        cart = self.carts.get(user_id)
        return copy.deepcopy(cart) if cart else None

    def save_cart_items(self, user_id, items):
        if self.fail_cart_save:
            return None
        self.carts[user_id] = {"user_id": user_id, "items": copy.deepcopy(list(items))}
        return self.carts[user_id]

    # orders
    def insert_order(self, row):
        if self.fail_insert:
            return None
        # contraintes unique(order_id) et unique(payment_intent_id) de schema.sql
        if any(o["order_id"] == row["order_id"] or o["payment_intent_id"] == row["payment_intent_id"] for o in self.orders):
            return None
        self.orders.append(dict(row))
        return dict(row)

    def find_order_by_payment_intent(self, payment_intent_id):
        return next((o for o in self.orders if o["payment_intent_id"] == payment_intent_id), None)

    def list_customer_orders(self, customer_id, limit=50):
        rows = [o for o in self.orders if o["customer_id"] == customer_id]
        return sorted(rows, key=lambda o: o["created_at"], reverse=True)[:limit]


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    s = FakeStore()
    monkeypatch.setattr("marketplace.products.repository.get_product", s.get_product)
    monkeypatch.setattr("marketplace.products.repository.compare_and_set_quantity", s.compare_and_set_quantity)
    monkeypatch.setattr("marketplace.cart.repository.find_cart", s.find_cart)
    monkeypatch.setattr("marketplace.cart.repository.save_cart_items", s.save_cart_items)
    monkeypatch.setattr("marketplace.orders.repository.insert_order", s.insert_order)
    monkeypatch.setattr("marketplace.orders.repository.find_order_by_payment_intent", s.find_order_by_payment_intent)
    monkeypatch.setattr("marketplace.orders.repository.list_customer_orders", s.list_customer_orders)
    return s

@pytest.fixture
def stripe_client() -> MagicMock:
    """Faux module stripe: PaymentIntent.create / retrieve et Webhook.construct_event."""
    fake = MagicMock()
    fake.PaymentIntent.create.return_value = {
        "id": "pi_test_123",
        "client_secret": "pi_test_123_secret_abc",
        "status": "requires_payment_method",
        "metadata": {"userId": TEST_USER_ID},
    }
    fake.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123",
        "client_secret": "pi_test_123_secret_abc",
        "status": "succeeded",
        "metadata": {"userId": TEST_USER_ID},
    }
    return fake

@pytest.fixture
def gateway(stripe_client) -> StripeGateway:
    return StripeGateway(api_key="sk_test_dummy", webhook_secret="whsec_dummy", client=stripe_client)

@pytest.fixture
def shipping_address() -> Dict[str, str]:
    return {
        "streetAddress": "Main Boulevard",
        "houseNo": "12-B",
        "town": "Gulberg",
        "city": "Lahore",
        "country": "Pakistan",
        "postalCode": "54000",
    }
