import asyncio
from datetime import date, datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import RecordingSleep, make_config, mock_http
from migrator.clients.billing import BillingClient, billing_anchor, encode_params
from migrator.exceptions import BillingError, MaxRetriesExceeded


def form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class TestEncodeParams:
    """Test flattening of nested params into bracket notation."""

    def test_nested_values(self):
        encoded = encode_params({
            "customer": "cus_1",
            "items": [{"price": "price_1", "quantity": 1}],
            "automatic_tax": {"enabled": False},
            "coupon": None,
        })

        assert encoded == {
            "customer": "cus_1",
            "items[0][price]": "price_1",
            "items[0][quantity]": "1",
            "automatic_tax[enabled]": "false",
        }

    def test_list_of_scalars(self):
        assert encode_params({"expand": ["data.product"]}) == {"expand[0]": "data.product"}


class TestBillingAnchor:
    """Test the one-year billing anchor."""

    def test_regular_date(self):
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)

        assert billing_anchor(start) == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_leap_day_rolls_to_march_first(self):
        start = datetime(2024, 2, 29, tzinfo=timezone.utc)

        assert billing_anchor(start) == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_feb_28_stays_feb_28(self):
        start = datetime(2023, 2, 28, tzinfo=timezone.utc)

        assert billing_anchor(start) == datetime(2024, 2, 28, tzinfo=timezone.utc)


class TestBillingClient:
    """Test the billing client against a mock transport."""

    def setup_method(self):
        self.requests = []
        self.responses = {}
        self.sleep = RecordingSleep()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        queued = self.responses.get(key)
        if queued is None:
            return httpx.Response(404, json={"error": {"message": f"Unrouted {key}"}})
        if isinstance(queued, list):
            return queued.pop(0) if len(queued) > 1 else queued[0]
        return queued

    def client(self) -> BillingClient:
        return BillingClient("sk_test_123", http_client=mock_http(self.handler), sleep=self.sleep)

    def run(self, coro):
        return asyncio.run(coro)

    def test_find_customer_by_email(self):
        self.responses[("GET", "/v1/customers/search")] = httpx.Response(
            200, json={"data": [{"id": "cus_1", "email": "a@example.com", "currency": "usd"}]}
        )

        customer = self.run(self.client().find_customer_by_email("a@example.com"))

        assert customer["id"] == "cus_1"
        request = self.requests[0]
        assert request.url.params["query"] == "email:'a@example.com'"
        assert request.url.params["limit"] == "1"
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        assert request.headers["Stripe-Version"] == "2023-10-16"

    def test_find_customer_escapes_quotes(self):
        self.responses[("GET", "/v1/customers/search")] = httpx.Response(200, json={"data": []})

        self.run(self.client().find_customer_by_email("o'brien@example.com"))

        assert self.requests[0].url.params["query"] == "email:'o\\'brien@example.com'"

    def test_find_customer_not_found(self):
        self.responses[("GET", "/v1/customers/search")] = httpx.Response(200, json={"data": []})

        assert self.run(self.client().find_customer_by_email("nobody@example.com")) is None

    def test_rate_limited_twice_then_success(self):
        self.responses[("GET", "/v1/customers/search")] = [
            httpx.Response(429, json={"error": {"message": "Too many requests"}}),
            httpx.Response(400, json={"error": {"message": "Slow down", "code": "rate_limit"}}),
            httpx.Response(200, json={"data": [{"id": "cus_1"}]}),
        ]

        customer = self.run(self.client().find_customer_by_email("a@example.com"))

        assert customer["id"] == "cus_1"
        assert len(self.requests) == 3
        assert self.sleep.delays == [1.0, 2.0]

    def test_rate_limit_exhaustion(self):
        self.responses[("GET", "/v1/customers/search")] = httpx.Response(
            429, json={"error": {"message": "Too many requests"}}
        )

        with pytest.raises(MaxRetriesExceeded):
            self.run(self.client().find_customer_by_email("a@example.com"))

        assert len(self.requests) == 3

    def test_other_errors_not_retried(self):
        self.responses[("GET", "/v1/customers/search")] = httpx.Response(
            500, json={"error": {"message": "Server error"}}
        )

        with pytest.raises(BillingError) as exc_info:
            self.run(self.client().find_customer_by_email("a@example.com"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Server error"
        assert len(self.requests) == 1
        assert self.sleep.delays == []

    def test_cancel_active_subscriptions(self):
        self.responses[("GET", "/v1/subscriptions")] = httpx.Response(200, json={
            "data": [
                {"id": "sub_a", "status": "active"},
                {"id": "sub_b", "status": "canceled"},
                {"id": "sub_c", "status": "trialing"},
                {"id": "sub_d", "status": "past_due"},
            ],
            "has_more": False,
        })
        for sub in ("sub_a", "sub_c", "sub_d"):
            self.responses[("DELETE", f"/v1/subscriptions/{sub}")] = httpx.Response(200, json={"id": sub})

        assert self.run(self.client().cancel_active_subscriptions("cus_1")) is True

        deleted = [r.url.path for r in self.requests if r.method == "DELETE"]
        assert deleted == ["/v1/subscriptions/sub_a", "/v1/subscriptions/sub_c", "/v1/subscriptions/sub_d"]
        assert self.requests[1].url.params["prorate"] == "false"
        assert self.requests[0].url.params["customer"] == "cus_1"

    def test_cancel_continues_after_a_failure(self):
        self.responses[("GET", "/v1/subscriptions")] = httpx.Response(200, json={
            "data": [{"id": "sub_a", "status": "active"}, {"id": "sub_b", "status": "active"}],
        })
        self.responses[("DELETE", "/v1/subscriptions/sub_a")] = httpx.Response(
            400, json={"error": {"message": "Cannot cancel"}}
        )
        self.responses[("DELETE", "/v1/subscriptions/sub_b")] = httpx.Response(200, json={"id": "sub_b"})

        assert self.run(self.client().cancel_active_subscriptions("cus_1")) is False
        assert len([r for r in self.requests if r.method == "DELETE"]) == 2

    def test_cancel_with_nothing_active(self):
        self.responses[("GET", "/v1/subscriptions")] = httpx.Response(200, json={"data": []})

        assert self.run(self.client().cancel_active_subscriptions("cus_1")) is True

    def test_cancel_list_failure(self):
        self.responses[("GET", "/v1/subscriptions")] = httpx.Response(500, json={"error": {"message": "down"}})

        assert self.run(self.client().cancel_active_subscriptions("cus_1")) is False

    def test_clear_billing_objects(self):
        self.responses[("GET", "/v1/invoices")] = httpx.Response(200, json={"data": [{"id": "in_1"}]})
        self.responses[("POST", "/v1/invoices/in_1/void")] = httpx.Response(200, json={"id": "in_1"})
        self.responses[("GET", "/v1/invoiceitems")] = httpx.Response(
            200, json={"data": [{"id": "ii_1"}, {"id": "ii_2"}]}
        )
        self.responses[("DELETE", "/v1/invoiceitems/ii_1")] = httpx.Response(200, json={"deleted": True})
        self.responses[("DELETE", "/v1/invoiceitems/ii_2")] = httpx.Response(
            400, json={"error": {"message": "already invoiced"}}
        )

        assert self.run(self.client().clear_billing_objects("cus_1")) is True

        paths = [(r.method, r.url.path) for r in self.requests]
        assert ("POST", "/v1/invoices/in_1/void") in paths
        assert ("DELETE", "/v1/invoiceitems/ii_2") in paths
        items_request = next(r for r in self.requests if r.url.path == "/v1/invoiceitems")
        assert items_request.url.params["pending"] == "true"

    def test_clear_billing_objects_list_failure(self):
        self.responses[("GET", "/v1/invoices")] = httpx.Response(500, json={"error": {"message": "down"}})

        assert self.run(self.client().clear_billing_objects("cus_1")) is False

    def test_create_subscription(self):
        self.responses[("POST", "/v1/subscriptions")] = httpx.Response(
            200, json={"id": "sub_new", "status": "active", "currency": "cad"}
        )

        subscription = self.run(self.client().create_subscription("cus_1", make_config()))

        assert subscription["id"] == "sub_new"
        request = self.requests[0]
        body = form(request)
        assert body["customer"] == "cus_1"
        assert body["items[0][price]"] == "price_annual"
        assert body["items[0][quantity]"] == "1"
        assert body["currency"] == "cad"
        assert body["discounts[0][coupon]"] == "LOYAL50"
        assert body["backdate_start_date"] == "1709251200"  # 2024-03-01 UTC
        assert body["billing_cycle_anchor"] == "1740787200"  # 2025-03-01 UTC
        assert body["proration_behavior"] == "none"
        assert body["collection_method"] == "charge_automatically"
        assert body["automatic_tax[enabled]"] == "false"
        assert request.headers["Idempotency-Key"].startswith("subscription-cus_1-")

    def test_create_subscription_leap_day_start_anchors_on_march_first(self):
        self.responses[("POST", "/v1/subscriptions")] = httpx.Response(200, json={"id": "sub_new"})

        self.run(self.client().create_subscription("cus_1", make_config(start_date=date(2024, 2, 29))))

        body = form(self.requests[0])
        assert body["backdate_start_date"] == "1709164800"  # 2024-02-29 UTC
        assert body["billing_cycle_anchor"] == "1740787200"  # 2025-03-01 UTC

    def test_create_subscription_retry_reuses_idempotency_key(self):
        self.responses[("POST", "/v1/subscriptions")] = [
            httpx.Response(429, json={"error": {"message": "Too many requests"}}),
            httpx.Response(200, json={"id": "sub_new"}),
        ]

        self.run(self.client().create_subscription("cus_1", make_config()))

        keys = {r.headers["Idempotency-Key"] for r in self.requests}
        assert len(self.requests) == 2
        assert len(keys) == 1

    def test_create_subscription_rejected(self):
        self.responses[("POST", "/v1/subscriptions")] = httpx.Response(
            400, json={"error": {"message": "No such coupon: 'LOYAL50'", "code": "resource_missing"}}
        )

        with pytest.raises(BillingError) as exc_info:
            self.run(self.client().create_subscription("cus_1", make_config()))

        assert "No such coupon" in str(exc_info.value)
        assert exc_info.value.code == "resource_missing"

    def test_get_config_options_paginates(self):
        self.responses[("GET", "/v1/prices")] = [
            httpx.Response(200, json={
                "data": [{
                    "id": "price_1", "nickname": "Annual", "currency": "cad", "unit_amount": 12000,
                    "recurring": {"interval": "year", "interval_count": 1},
                    "product": {"id": "prod_1", "name": "Pro"},
                }],
                "has_more": True,
            }),
            httpx.Response(200, json={
                "data": [
                    {"id": "price_2", "currency": "usd", "unit_amount": 9900, "product": "prod_2"},
                    {"id": "price_3", "currency": "cad", "unit_amount": 500, "product": "prod_3"},
                ],
                "has_more": False,
            }),
        ]
        self.responses[("GET", "/v1/coupons")] = httpx.Response(200, json={"data": [
            {"id": "LOYAL50", "name": "Loyalty", "percent_off": 50, "duration": "forever", "valid": True},
            {"id": "OLD", "name": "Expired", "percent_off": 10, "duration": "once", "valid": False},
        ]})

        options = self.run(self.client().get_config_options())

        assert [p["id"] for p in options.prices] == ["price_1", "price_2", "price_3"]
        assert options.prices[0]["product"] == {"id": "prod_1", "name": "Pro"}
        assert options.prices[0]["recurring"] == {"interval": "year", "interval_count": 1}
        assert options.prices[1]["product"] == {"id": "prod_2", "name": None}
        assert [c["id"] for c in options.coupons] == ["LOYAL50"]
        assert options.currencies == ["cad", "usd"]

        price_requests = [r for r in self.requests if r.url.path == "/v1/prices"]
        assert "starting_after" not in price_requests[0].url.params
        assert price_requests[1].url.params["starting_after"] == "price_1"
        assert price_requests[0].url.params["expand[0]"] == "data.product"
