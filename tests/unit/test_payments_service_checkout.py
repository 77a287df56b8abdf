import logging
import re
import pytest

from marketplace.errors import (
    AmountTooSmall,
    CheckoutError,
    EmptyCart,
    InsufficientStock,
    InvalidCartItem,
    MultiFarmerCartError,
    OrderPersistenceError,
    PaymentAlreadyUsed,
    PaymentIntentMismatch,
    PaymentNotCompleted,
    PaymentUnavailable,
    ProductUnavailable,
)
from marketplace.payments import service as payments_service
from marketplace.payments.gateway import StripeGateway
from marketplace.payments.intents import CardIntent, CashIntent, new_cash_intent


USER = "u1"


def _tomatoes_cart(store, quantity=2, stock=5):
    store.add_product("p1", name="Tomatoes", price=100, quantity=stock)
    store.set_cart(USER, [store.line("p1", quantity)])


# ---- phase 1: create_payment_intent ----

def test_cash_intent_makes_no_stripe_call(store, gateway, stripe_client, shipping_address):
    _tomatoes_cart(store)

    intent = payments_service.create_payment_intent(USER, shipping_address, "cash", gateway=gateway)

    assert isinstance(intent, CashIntent)
    assert intent.client_secret == "cash_payment"
    assert re.fullmatch(r"cash_\d+_u1", intent.id)
    stripe_client.PaymentIntent.create.assert_not_called()
    # aucune écriture: ni stock ni commande
    assert store.products["p1"]["quantity"] == 5
    assert store.orders == []

def test_cash_intent_works_without_stripe_configuration(store, shipping_address):
    _tomatoes_cart(store)
    unconfigured = StripeGateway(api_key="")

    intent = payments_service.create_payment_intent(USER, shipping_address, "cash", gateway=unconfigured)

    assert intent.kind == "cash"

def test_card_intent_converts_amount_and_sets_metadata(store, gateway, stripe_client, shipping_address):
    _tomatoes_cart(store, quantity=3)

    intent = payments_service.create_payment_intent(USER, shipping_address, "card", gateway=gateway)

    assert intent == CardIntent(
        id="pi_test_123",
        client_secret="pi_test_123_secret_abc",
        status="requires_payment_method",
        metadata={"userId": "test-user"},
    )
    kwargs = stripe_client.PaymentIntent.create.call_args.kwargs
    assert kwargs["amount"] == 107  # 300 PKR / 280 = 1.0714 USD
    assert kwargs["currency"] == "usd"
    assert kwargs["automatic_payment_methods"] == {"enabled": True}
    assert kwargs["description"] == "Order payment - Rs. 300.00 PKR"
    assert kwargs["metadata"] == {
        "userId": USER,
        "orderType": "cart",
        "originalAmountPKR": "300",
        "conversionRate": "280",
    }
    assert kwargs["api_key"] == "sk_test_dummy"

def test_card_intent_requires_stripe(store, shipping_address):
    _tomatoes_cart(store)
    with pytest.raises(PaymentUnavailable):
        payments_service.create_payment_intent(USER, shipping_address, "card", gateway=StripeGateway(api_key=""))

def test_card_intent_amount_too_small(store, gateway, stripe_client, shipping_address):
    store.add_product("p1", price=50, quantity=5)
    store.set_cart(USER, [store.line("p1", 2)])

    with pytest.raises(AmountTooSmall) as exc:
        payments_service.create_payment_intent(USER, shipping_address, "card", gateway=gateway)

    assert exc.value.message == "Order total must be at least Rs. 140"
    stripe_client.PaymentIntent.create.assert_not_called()

def test_create_intent_empty_cart(store, gateway, shipping_address):
    with pytest.raises(EmptyCart):
        payments_service.create_payment_intent(USER, shipping_address, "cash", gateway=gateway)
    store.set_cart(USER, [])
    with pytest.raises(EmptyCart):
        payments_service.create_payment_intent(USER, shipping_address, "card", gateway=gateway)

def test_create_intent_insufficient_stock_leaves_state(store, gateway, shipping_address):
    _tomatoes_cart(store, quantity=2, stock=1)

    with pytest.raises(InsufficientStock) as exc:
        payments_service.create_payment_intent(USER, shipping_address, "cash", gateway=gateway)

    assert exc.value.message == "Insufficient stock for Tomatoes. Only 1 available"
    assert store.products["p1"]["quantity"] == 1
    assert store.cas_calls == []

def test_create_intent_rejects_unknown_method(store, gateway, shipping_address):
    _tomatoes_cart(store)
    with pytest.raises(CheckoutError):
        payments_service.create_payment_intent(USER, shipping_address, "cheque", gateway=gateway)


# ---- phase 2: confirm_payment ----

def test_cash_checkout_creates_pending_order(store, gateway, stripe_client, shipping_address):
    _tomatoes_cart(store, quantity=2, stock=5)
    intent = payments_service.create_payment_intent(USER, shipping_address, "cash", gateway=gateway)

    order = payments_service.confirm_payment(USER, intent, shipping_address, gateway=gateway)

    assert order["totalAmount"] == 200.0
    assert order["status"] == "pending"
    assert order["paymentMethod"] == "cash"
    assert order["paymentIntentId"] == intent.id
    assert order["farmerId"] == "farmer-1"
    assert order["customerId"] == USER
    assert order["shippingAddress"] == shipping_address
    assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{8}", order["orderId"])
    assert order["items"] == [{
        "productId": "p1",
        "productName": "Tomatoes",
        "quantity": 2,
        "unit": "kg",
        "price": 100.0,
        "total": 200.0,
    }]
    assert store.products["p1"]["quantity"] == 3
    assert store.products["p1"]["is_available"] is True
    assert store.carts[USER]["items"] == []
    assert len(store.orders) == 1
    stripe_client.PaymentIntent.retrieve.assert_not_called()

def test_card_checkout_creates_confirmed_order(store, gateway, stripe_client, shipping_address):
    stripe_client.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123", "status": "succeeded", "metadata": {"userId": USER},
    }
    _tomatoes_cart(store, quantity=2, stock=2)

    order = payments_service.confirm_payment(USER, "pi_test_123", shipping_address, gateway=gateway)

    assert order["status"] == "confirmed"
    assert order["paymentMethod"] == "card"
    assert order["paymentIntentId"] == "pi_test_123"
    # stock épuisé: le produit devient indisponible
    assert store.products["p1"]["quantity"] == 0
    assert store.products["p1"]["is_available"] is False
    stripe_client.PaymentIntent.retrieve.assert_called_once_with("pi_test_123", api_key="sk_test_dummy")

def test_checkout_with_several_lines_sums_total(store, gateway, shipping_address):
    store.add_product("p1", name="Tomatoes", price=100, quantity=5)
    store.add_product("p2", name="Potatoes", price=60, quantity=10)
    store.set_cart(USER, [store.line("p1", 2), store.line("p2", 5)])

    order = payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert order["totalAmount"] == 500.0
    assert store.products["p1"]["quantity"] == 3
    assert store.products["p2"]["quantity"] == 5

def test_confirm_card_not_succeeded(store, gateway, stripe_client, shipping_address):
    stripe_client.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123", "status": "requires_payment_method", "metadata": {"userId": USER},
    }
    _tomatoes_cart(store)

    with pytest.raises(PaymentNotCompleted):
        payments_service.confirm_payment(USER, CardIntent(id="pi_test_123"), shipping_address, gateway=gateway)
    assert store.orders == []
    assert store.products["p1"]["quantity"] == 5

def test_confirm_card_belongs_to_other_user(store, gateway, stripe_client, shipping_address):
    stripe_client.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123", "status": "succeeded", "metadata": {"userId": "someone-else"},
    }
    _tomatoes_cart(store)

    with pytest.raises(PaymentIntentMismatch) as exc:
        payments_service.confirm_payment(USER, CardIntent(id="pi_test_123"), shipping_address, gateway=gateway)
    assert exc.value.status_code == 403

def test_confirm_cash_intent_of_other_user(store, gateway, shipping_address):
    _tomatoes_cart(store)
    with pytest.raises(PaymentIntentMismatch):
        payments_service.confirm_payment(USER, CashIntent(id="cash_1_someone-else"), shipping_address, gateway=gateway)
    assert store.orders == []

def test_confirm_empty_cart(store, gateway, shipping_address):
    with pytest.raises(EmptyCart):
        payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

def test_confirm_insufficient_stock_no_mutation(store, gateway, shipping_address):
    _tomatoes_cart(store, quantity=2, stock=1)

    with pytest.raises(InsufficientStock):
        payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert store.products["p1"]["quantity"] == 1
    assert store.orders == []
    assert store.carts[USER]["items"][0]["quantity"] == 2

def test_confirm_two_farmers_rejected(store, gateway, shipping_address):
    store.add_product("a", farmer_id="f1", quantity=5)
    store.add_product("b", farmer_id="f2", quantity=5)
    store.set_cart(USER, [store.line("a", 1), store.line("b", 1)])

    with pytest.raises(MultiFarmerCartError):
        payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert store.orders == []
    assert store.products["a"]["quantity"] == 5
    assert store.products["b"]["quantity"] == 5

def test_confirm_duplicate_intent(store, gateway, shipping_address):
    _tomatoes_cart(store, quantity=1, stock=5)
    intent = new_cash_intent(USER)
    payments_service.confirm_payment(USER, intent, shipping_address, gateway=gateway)
    store.set_cart(USER, [store.line("p1", 1)])

    with pytest.raises(PaymentAlreadyUsed) as exc:
        payments_service.confirm_payment(USER, intent, shipping_address, gateway=gateway)

    assert exc.value.status_code == 409
    assert len(store.orders) == 1
    assert store.products["p1"]["quantity"] == 4

def test_confirm_failure_on_later_line_releases_earlier_stock(store, gateway, shipping_address, monkeypatch):
    store.add_product("p1", name="Tomatoes", quantity=5)
    store.add_product("p2", name="Okra", quantity=5)
    store.set_cart(USER, [store.line("p1", 2), store.line("p2", 1)])
    real_cas = store.compare_and_set_quantity

    def cas_disabling_p2(product_id, **kw):
        # p2 retiré de la vente pendant la confirmation
        if product_id == "p2":
            store.products["p2"]["is_available"] = False
            return False
        return real_cas(product_id, **kw)

    monkeypatch.setattr("marketplace.products.repository.compare_and_set_quantity", cas_disabling_p2)

    with pytest.raises(ProductUnavailable):
        payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert store.products["p1"]["quantity"] == 5
    assert store.orders == []

def test_confirm_insert_failure_releases_stock(store, gateway, shipping_address):
    _tomatoes_cart(store, quantity=5, stock=5)
    store.fail_insert = True

    with pytest.raises(OrderPersistenceError):
        payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert store.products["p1"]["quantity"] == 5
    assert store.products["p1"]["is_available"] is True
    assert store.carts[USER]["items"][0]["quantity"] == 5

def test_confirm_keeps_order_when_cart_clear_fails(store, gateway, shipping_address):
    _tomatoes_cart(store)
    store.fail_cart_save = True

    order = payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert order["status"] == "pending"
    assert len(store.orders) == 1

def test_confirm_uses_cart_at_confirmation_time(store, gateway, shipping_address):
    _tomatoes_cart(store, quantity=1)
    intent = payments_service.create_payment_intent(USER, shipping_address, "cash", gateway=gateway)
    store.set_cart(USER, [store.line("p1", 4)])

    order = payments_service.confirm_payment(USER, intent, shipping_address, gateway=gateway)

    assert order["items"][0]["quantity"] == 4
    assert store.products["p1"]["quantity"] == 1


# ---- webhook ----

def test_handle_webhook_event_acknowledges_all_types():
    succeeded = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1", "metadata": {"userId": USER}}}}
    assert payments_service.handle_webhook_event(succeeded) == {"received": True}
    assert payments_service.handle_webhook_event({"type": "payment_intent.payment_failed"}) == {"received": True}
    assert payments_service.handle_webhook_event({"type": "charge.refunded"}) == {"received": True}
    assert payments_service.handle_webhook_event({}) == {"received": True}


# ---- confirmations concurrentes / intégrité ----

def test_concurrent_confirmation_rejected_by_unique_intent(store, gateway, stripe_client, shipping_address, monkeypatch):
    stripe_client.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123", "status": "succeeded",
        "metadata": {"userId": USER, "originalAmountPKR": "200"},
    }
    _tomatoes_cart(store, quantity=2, stock=8)
    payments_service.confirm_payment(USER, CardIntent(id="pi_test_123"), shipping_address, gateway=gateway)
    store.set_cart(USER, [store.line("p1", 2)])

    # La seconde requête passe le contrôle préalable avant que la première commande ne soit visible
    real_find = store.find_order_by_payment_intent
    calls = {"n": 0}
    def find_after_first_call(payment_intent_id):
        calls["n"] += 1
        return None if calls["n"] == 1 else real_find(payment_intent_id)
    monkeypatch.setattr("marketplace.orders.repository.find_order_by_payment_intent", find_after_first_call)

    with pytest.raises(PaymentAlreadyUsed) as exc:
        payments_service.confirm_payment(USER, CardIntent(id="pi_test_123"), shipping_address, gateway=gateway)

    assert exc.value.status_code == 409
    assert len([o for o in store.orders if o["payment_intent_id"] == "pi_test_123"]) == 1
    # le stock engagé par la seconde requête est restitué
    assert store.products["p1"]["quantity"] == 6
    assert store.carts[USER]["items"][0]["quantity"] == 2

def test_confirm_rejects_invalid_cart_line_without_mutation(store, gateway, shipping_address):
    store.add_product("p1", name="Tomatoes", quantity=5)
    store.set_cart(USER, [store.line("p1", 1), {"productId": "p1", "name": "Tomatoes", "quantity": 0}])

    with pytest.raises(InvalidCartItem):
        payments_service.confirm_payment(USER, new_cash_intent(USER), shipping_address, gateway=gateway)

    assert store.orders == []
    assert store.products["p1"]["quantity"] == 5

def test_confirm_warns_when_cart_total_differs_from_paid_amount(store, gateway, stripe_client, shipping_address, caplog):
    stripe_client.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123", "status": "succeeded",
        "metadata": {"userId": USER, "originalAmountPKR": "200"},
    }
    # panier grossi après le paiement: 4 x 100 au lieu de 2 x 100
    _tomatoes_cart(store, quantity=4, stock=5)

    with caplog.at_level(logging.WARNING, logger="marketplace.payments.service"):
        order = payments_service.confirm_payment(USER, CardIntent(id="pi_test_123"), shipping_address, gateway=gateway)

    assert order["totalAmount"] == 400.0
    mismatches = [r for r in caplog.records if "amount mismatch" in r.getMessage()]
    assert len(mismatches) == 1
    assert "paid_pkr=200" in mismatches[0].getMessage()
    assert "order_total=400.0" in mismatches[0].getMessage()

def test_confirm_no_warning_when_amount_matches(store, gateway, stripe_client, shipping_address, caplog):
    stripe_client.PaymentIntent.retrieve.return_value = {
        "id": "pi_test_123", "status": "succeeded",
        "metadata": {"userId": USER, "originalAmountPKR": "200"},
    }
    _tomatoes_cart(store, quantity=2, stock=5)

    with caplog.at_level(logging.WARNING, logger="marketplace.payments.service"):
        payments_service.confirm_payment(USER, CardIntent(id="pi_test_123"), shipping_address, gateway=gateway)

    assert not [r for r in caplog.records if "amount mismatch" in r.getMessage()]
