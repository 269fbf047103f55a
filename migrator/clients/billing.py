"""Billing provider client (Stripe REST API)."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Dict, List, Optional

import httpx
from dateutil.relativedelta import relativedelta

from .base import BaseClient
from ..exceptions import BillingError, MigratorError, RateLimitError
from ..models.config import ProcessingConfig
from ..services.retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"
STRIPE_API_VERSION = "2023-10-16"

# Subscriptions in these states still bill the customer
ACTIVE_SUBSCRIPTION_STATES = ("active", "trialing", "past_due")


def encode_params(params: Dict[str, Any], prefix: Optional[str] = None) -> Dict[str, str]:
    """
    Flatten nested params into Stripe's bracket notation.

    ``{"items": [{"price": "p"}]}`` becomes ``{"items[0][price]": "p"}``.
    """
    encoded: Dict[str, str] = {}
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        encoded.update(_encode_value(name, value))
    return encoded


def _encode_value(name: str, value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return encode_params(value, name)
    if isinstance(value, (list, tuple)):
        encoded = {}
        for idx, item in enumerate(value):
            encoded.update(_encode_value(f"{name}[{idx}]", item))
        return encoded
    if isinstance(value, bool):
        return {name: "true" if value else "false"}
    return {name: str(value)}


def _escape_search_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _timestamp(moment: datetime) -> int:
    return int(moment.timestamp())


def billing_anchor(start: datetime) -> datetime:
    """
    One year after ``start``.

    A Feb 29 start rolls forward to Mar 1 of the next year rather than
    clamping to Feb 28.
    """
    anchor = start + relativedelta(years=1)
    if start.month == 2 and start.day == 29 and anchor.day != 29:
        anchor += relativedelta(days=1)
    return anchor


@dataclass
class ConfigOptions:
    """Prices, coupons and currencies available for a run."""
    prices: List[Dict[str, Any]] = field(default_factory=list)
    coupons: List[Dict[str, Any]] = field(default_factory=list)
    currencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "prices": self.prices,
            "coupons": self.coupons,
            "currencies": self.currencies,
        }


class BillingClient(BaseClient):
    """
    Client for the billing provider.

    Handles:
    - Customer lookup by email
    - Cancelling active subscriptions
    - Voiding open invoices and deleting pending invoice items
    - Creating backdated, discounted subscriptions
    - Listing prices and coupons for run configuration

    Every request goes through a rate-limit retry policy.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = STRIPE_API_BASE,
        timeout: float = 80.0,
        retry: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Sleep] = None,
    ):
        """
        Initialize the billing client.

        Args:
            api_key: Secret API key
            base_url: API base URL
            timeout: Per-request timeout in seconds
            retry: Retry policy for rate-limited requests
            http_client: Pre-built HTTP client
            sleep: Awaitable sleep used for backoff
        """
        super().__init__("billing", api_key, base_url, timeout, http_client, sleep)
        self.retry = retry or RetryPolicy(
            max_attempts=3,
            base_delay=1.0,
            retryable=RateLimitError,
            sleep=self._sleep,
            name="billing request",
        )

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Stripe-Version": STRIPE_API_VERSION,
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a request under the rate-limit retry policy."""
        return await self.retry.call(self._send, method, path, params, idempotency_key)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]],
        idempotency_key: Optional[str],
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = self._headers()
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        encoded = encode_params(params or {})

        try:
            if method in ("GET", "DELETE"):
                response = await self.client.request(method, url, params=encoded, headers=headers)
            else:
                response = await self.client.request(method, url, data=encoded, headers=headers)
        except httpx.HTTPError as e:
            raise BillingError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise self._error_from_response(response)

        try:
            return response.json()
        except ValueError:
            raise BillingError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            )

    @staticmethod
    def _error_from_response(response: httpx.Response) -> BillingError:
        message = f"HTTP {response.status_code}"
        code = None
        try:
            error = response.json().get("error") or {}
            message = error.get("message") or message
            code = error.get("code")
        except (ValueError, AttributeError):
            pass

        if response.status_code == 429 or code == "rate_limit":
            return RateLimitError(message, status_code=response.status_code, code=code)
        return BillingError(message, status_code=response.status_code, code=code)

    async def _list_all(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Follow cursor pagination until ``has_more`` is false."""
        items: List[Dict[str, Any]] = []
        query = dict(params, limit=100)

        while True:
            page = await self._request("GET", path, query)
            data = page.get("data", [])
            items.extend(data)
            if not page.get("has_more") or not data:
                return items
            query["starting_after"] = data[-1]["id"]

    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Find a customer by exact email match.

        Returns:
            The customer object, or None when nobody matches
        """
        query = f"email:'{_escape_search_value(email)}'"
        logger.debug(f"Searching customers with query: {query}")

        result = await self._request("GET", "/customers/search", {"query": query, "limit": 1})
        customers = result.get("data", [])

        if not customers:
            logger.info(f"No customer found with email: {email}")
            return None

        customer = customers[0]
        logger.info(f"Customer found for {email}: {customer.get('id')} (currency: {customer.get('currency') or 'none'})")
        return customer

    async def cancel_active_subscriptions(self, customer_id: str) -> bool:
        """
        Cancel every active, trialing or past-due subscription without proration.

        A failed cancellation does not stop the others from being attempted.

        Returns:
            True if the customer has no billing subscription left
        """
        try:
            subscriptions = await self._list_all(
                "/subscriptions", {"customer": customer_id, "status": "all"}
            )
        except MigratorError as e:
            logger.error(f"Failed to list subscriptions for {customer_id}: {e}")
            return False

        active = [s for s in subscriptions if s.get("status") in ACTIVE_SUBSCRIPTION_STATES]
        if not active:
            logger.info(f"No active subscriptions to cancel for {customer_id}")
            return True

        logger.info(f"Cancelling {len(active)} subscription(s) for {customer_id}")
        failed = 0
        for subscription in active:
            try:
                await self._request("DELETE", f"/subscriptions/{subscription['id']}", {"prorate": False})
                logger.info(f"Cancelled {subscription['id']} (status: {subscription.get('status')})")
            except MigratorError as e:
                failed += 1
                logger.error(f"Failed to cancel {subscription['id']}: {e}")

        return failed == 0

    async def clear_billing_objects(self, customer_id: str) -> bool:
        """
        Void open invoices and delete pending invoice items.

        Best effort: a single object failing is logged and skipped.

        Returns:
            False only if the objects could not be listed
        """
        try:
            invoices = await self._list_all("/invoices", {"customer": customer_id, "status": "open"})
            for invoice in invoices:
                try:
                    await self._request("POST", f"/invoices/{invoice['id']}/void")
                    logger.info(f"Voided invoice {invoice['id']}")
                except MigratorError as e:
                    logger.warning(f"Could not void invoice {invoice['id']}: {e}")

            items = await self._list_all("/invoiceitems", {"customer": customer_id, "pending": True})
            for item in items:
                try:
                    await self._request("DELETE", f"/invoiceitems/{item['id']}")
                    logger.info(f"Deleted invoice item {item['id']}")
                except MigratorError as e:
                    logger.warning(f"Could not delete invoice item {item['id']}: {e}")

        except MigratorError as e:
            logger.error(f"Failed to clear billing objects for {customer_id}: {e}")
            return False

        return True

    async def create_subscription(
        self,
        customer_id: str,
        config: ProcessingConfig,
    ) -> Dict[str, Any]:
        """
        Create the replacement subscription.

        Backdated to ``config.start_date``, anchored one year later, with the
        configured coupon applied and no proration or automatic tax.

        Raises:
            BillingError: If the provider rejects the subscription
            MaxRetriesExceeded: If the provider keeps rate limiting us
        """
        start = datetime.combine(config.start_date, time.min, tzinfo=timezone.utc)
        anchor = billing_anchor(start)

        params = {
            "customer": customer_id,
            "items": [{"price": config.price_ref, "quantity": 1}],
            "currency": config.currency,
            "discounts": [{"coupon": config.coupon_ref}],
            "backdate_start_date": _timestamp(start),
            "billing_cycle_anchor": _timestamp(anchor),
            "proration_behavior": "none",
            "collection_method": "charge_automatically",
            "automatic_tax": {"enabled": False},
        }
        logger.debug(
            f"Creating subscription for {customer_id}: price={config.price_ref}, "
            f"coupon={config.coupon_ref}, currency={config.currency}, "
            f"start={start.date()}, anchor={anchor.date()}"
        )

        # Same key on every retry so a rate-limited create is never doubled
        idempotency_key = f"subscription-{customer_id}-{uuid.uuid4().hex}"
        subscription = await self._request("POST", "/subscriptions", params, idempotency_key)

        logger.info(
            f"Created subscription {subscription.get('id')} for {customer_id} "
            f"(status: {subscription.get('status')}, currency: {subscription.get('currency')})"
        )
        return subscription

    async def get_config_options(self) -> ConfigOptions:
        """List active prices, valid coupons and the currencies they use."""
        prices = await self._list_all("/prices", {"active": True, "expand": ["data.product"]})
        coupons = await self._list_all("/coupons", {})

        options = ConfigOptions()
        for price in prices:
            product = price.get("product")
            if not isinstance(product, dict):
                product = {"id": product, "name": None}
            recurring = price.get("recurring")
            options.prices.append({
                "id": price.get("id"),
                "nickname": price.get("nickname"),
                "currency": price.get("currency"),
                "unit_amount": price.get("unit_amount"),
                "recurring": {
                    "interval": recurring.get("interval"),
                    "interval_count": recurring.get("interval_count"),
                } if recurring else None,
                "product": {"id": product.get("id"), "name": product.get("name")},
            })

        for coupon in coupons:
            if not coupon.get("valid"):
                continue
            options.coupons.append({
                key: coupon.get(key)
                for key in (
                    "id", "name", "percent_off", "amount_off", "currency", "duration",
                    "duration_in_months", "max_redemptions", "times_redeemed",
                )
            })

        seen = []
        for price in options.prices:
            if price["currency"] and price["currency"] not in seen:
                seen.append(price["currency"])
        options.currencies = seen

        logger.info(
            f"Found {len(options.prices)} prices, {len(options.coupons)} coupons, "
            f"currencies: {', '.join(options.currencies) or 'none'}"
        )
        return options
