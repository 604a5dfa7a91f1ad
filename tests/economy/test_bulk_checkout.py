from __future__ import annotations

from types import SimpleNamespace

import pytest
import stripe

from app.economy.purchases import checkout as checkout_module
from app.economy.purchases.catalog import BULK_PURCHASE_TYPE
from app.economy.purchases.errors import (
    BillingCustomerMissingError,
    BillingProviderTimeoutError,
    PurchaseIssuerNotFoundError,
    PurchaseValidationError,
)
from app.services.stripe_client import StripeTimeoutError


def _price(**overrides) -> dict[str, object]:
    values: dict[str, object] = {
        "id": "price_quarterly",
        "active": True,
        "unit_amount": 2500,
        "currency": "eur",
        "nickname": None,
        "recurring": {"interval": "month", "interval_count": 3},
        "product": {"id": "prod_1", "name": "Quarterly Plan"},
    }
    values.update(overrides)
    return values


class _FakeStripe:
    def __init__(self, *, price: dict[str, object]) -> None:
        self.price = price
        self.calls: list[tuple[str, dict[str, object]]] = []

    async def __call__(self, operation, /, *args, **kwargs):
        if operation == stripe.Price.retrieve:
            self.calls.append(("price", kwargs))
            return self.price
        if operation == stripe.Customer.create:
            self.calls.append(("customer", kwargs))
            return {"id": "cus_new"}
        if operation == stripe.checkout.Session.create:
            self.calls.append(("checkout", kwargs))
            return {"id": "cs_1", "url": "https://checkout.example/cs_1"}
        if operation == stripe.billing_portal.Session.create:
            self.calls.append(("portal", kwargs))
            return {"url": "https://billing.example/portal"}
        raise AssertionError(f"unexpected stripe call: {operation!r}")


@pytest.fixture
def issuer_store(monkeypatch) -> dict[str, object]:
    store: dict[str, object] = {
        "issuer": SimpleNamespace(id=5, email="admin@example.com", name="Admin", stripe_customer_id=None),
        "customer_updates": [],
    }

    async def _get_issuer(session, user_id: int):
        issuer = store["issuer"]
        return issuer if issuer is not None and issuer.id == user_id else None

    async def _set_stripe_customer_id(session, *, user_id: int, stripe_customer_id: str) -> bool:
        store["customer_updates"].append((user_id, stripe_customer_id))
        return True

    monkeypatch.setattr(checkout_module.UsersRepo, "get_by_id_for_update", _get_issuer)
    monkeypatch.setattr(checkout_module.UsersRepo, "get_by_id", _get_issuer)
    monkeypatch.setattr(checkout_module.UsersRepo, "set_stripe_customer_id", _set_stripe_customer_id)
    monkeypatch.setattr(
        checkout_module,
        "get_settings",
        lambda: SimpleNamespace(
            checkout_success_url="https://app.example/success",
            checkout_cancel_url="https://app.example/cancel",
            portal_return_url="https://app.example/billing",
        ),
    )
    return store


async def test_checkout_creates_customer_and_tags_bulk_metadata(monkeypatch, issuer_store) -> None:
    fake_stripe = _FakeStripe(price=_price())
    monkeypatch.setattr(checkout_module, "call_stripe", fake_stripe)

    result = await checkout_module.create_bulk_checkout_session(
        object(),
        issuer_user_id=5,
        stripe_price_id="price_quarterly",
        quantity=4,
    )

    assert result.session_id == "cs_1"
    assert result.url == "https://checkout.example/cs_1"
    assert result.duration_days == 90
    assert result.unit_amount == 2500
    assert result.currency == "eur"
    assert issuer_store["customer_updates"] == [(5, "cus_new")]

    checkout_kwargs = dict(fake_stripe.calls)["checkout"]
    assert checkout_kwargs["customer"] == "cus_new"
    assert checkout_kwargs["line_items"] == [{"price": "price_quarterly", "quantity": 4}]
    metadata = checkout_kwargs["metadata"]
    assert metadata["type"] == BULK_PURCHASE_TYPE
    assert metadata["adminId"] == "5"
    assert metadata["quantity"] == "4"
    assert metadata["subscriptionDurationDays"] == "90"
    assert metadata["planName"] == "Quarterly Plan"
    assert checkout_kwargs["subscription_data"] == {"metadata": metadata}


async def test_checkout_reuses_existing_customer(monkeypatch, issuer_store) -> None:
    issuer_store["issuer"].stripe_customer_id = "cus_existing"
    fake_stripe = _FakeStripe(price=_price(product="prod_plain", nickname="Monthly"))
    monkeypatch.setattr(checkout_module, "call_stripe", fake_stripe)

    await checkout_module.create_bulk_checkout_session(
        object(),
        issuer_user_id=5,
        stripe_price_id="price_quarterly",
        quantity=1,
    )

    call_names = [name for name, _ in fake_stripe.calls]
    assert "customer" not in call_names
    metadata = dict(fake_stripe.calls)["checkout"]["metadata"]
    assert metadata["stripeProductId"] == "prod_plain"
    assert metadata["planName"] == "Monthly"


@pytest.mark.parametrize(
    "price_overrides",
    [
        {"active": False},
        {"recurring": None},
    ],
)
async def test_checkout_rejects_unusable_price(monkeypatch, issuer_store, price_overrides) -> None:
    monkeypatch.setattr(checkout_module, "call_stripe", _FakeStripe(price=_price(**price_overrides)))

    with pytest.raises(PurchaseValidationError):
        await checkout_module.create_bulk_checkout_session(
            object(),
            issuer_user_id=5,
            stripe_price_id="price_quarterly",
            quantity=2,
        )


async def test_checkout_rejects_quantity_before_provider_call(monkeypatch, issuer_store) -> None:
    fake_stripe = _FakeStripe(price=_price())
    monkeypatch.setattr(checkout_module, "call_stripe", fake_stripe)

    with pytest.raises(PurchaseValidationError):
        await checkout_module.create_bulk_checkout_session(
            object(),
            issuer_user_id=5,
            stripe_price_id="price_quarterly",
            quantity=101,
        )
    assert fake_stripe.calls == []


async def test_checkout_unknown_issuer(monkeypatch, issuer_store) -> None:
    issuer_store["issuer"] = None
    monkeypatch.setattr(checkout_module, "call_stripe", _FakeStripe(price=_price()))

    with pytest.raises(PurchaseIssuerNotFoundError):
        await checkout_module.create_bulk_checkout_session(
            object(),
            issuer_user_id=5,
            stripe_price_id="price_quarterly",
            quantity=2,
        )


async def test_checkout_provider_timeout_is_mapped(monkeypatch, issuer_store) -> None:
    async def _timeout(operation, /, *args, **kwargs):
        raise StripeTimeoutError("slow")

    monkeypatch.setattr(checkout_module, "call_stripe", _timeout)

    with pytest.raises(BillingProviderTimeoutError):
        await checkout_module.create_bulk_checkout_session(
            object(),
            issuer_user_id=5,
            stripe_price_id="price_quarterly",
            quantity=2,
        )


async def test_portal_requires_billing_customer(monkeypatch, issuer_store) -> None:
    monkeypatch.setattr(checkout_module, "call_stripe", _FakeStripe(price=_price()))

    with pytest.raises(BillingCustomerMissingError):
        await checkout_module.create_portal_session(object(), issuer_user_id=5)


async def test_portal_uses_default_return_url(monkeypatch, issuer_store) -> None:
    issuer_store["issuer"].stripe_customer_id = "cus_existing"
    fake_stripe = _FakeStripe(price=_price())
    monkeypatch.setattr(checkout_module, "call_stripe", fake_stripe)

    url = await checkout_module.create_portal_session(object(), issuer_user_id=5)

    assert url == "https://billing.example/portal"
    assert dict(fake_stripe.calls)["portal"] == {
        "customer": "cus_existing",
        "return_url": "https://app.example/billing",
    }
