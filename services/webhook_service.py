"""
Webhook Service - verifies payment-provider callbacks and maps them to
Subscription Ledger transitions.

Signatures follow the Standard-Webhooks style used by Polar:
    webhook-signature: t=<unix-timestamp>,v1=<hex hmac-sha256>
where the HMAC covers "<t>.<raw body>".
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import (
    settings,
    IS_PRODUCTION,
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_PAST_DUE,
    STATUS_TRIALING,
)
from services.subscription_ledger import SubscriptionLedger, TransitionOutcome
from utils.errors import InvalidSignatureError, MalformedEventError

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("webhook-signature", "polar-signature")

# Provider subscription statuses that end access
TERMINAL_PROVIDER_STATUSES = {"canceled", "revoked", "unpaid", "incomplete_expired"}


@dataclass
class IngestResult:
    accepted: bool
    status_code: int
    event_type: Optional[str] = None
    outcome: Optional[str] = None
    detail: Optional[str] = None


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of "<timestamp>.<raw body>"."""
    signed_payload = timestamp.encode("utf-8") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(secret: str, raw_body: bytes, timestamp: Optional[int] = None) -> str:
    """Produce a header value the verifier accepts (used by tests and local tooling)."""
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={timestamp},v1={compute_signature(secret, timestamp, raw_body)}"


def parse_signature_header(header: str) -> tuple[str, list[str]]:
    """
    Split a signature header into its timestamp and v1 digests.

    Raises:
        InvalidSignatureError: If the timestamp or every v1 digest is missing
    """
    timestamp = None
    digests = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value.strip()
        elif key == "v1":
            digests.extend(d for d in value.split() if d)

    # ASCII only: str.isdigit() also accepts digits like "²" that int() cannot parse
    if not timestamp or not (timestamp.isascii() and timestamp.isdigit()) or not digests:
        raise InvalidSignatureError("Invalid signature format")
    return timestamp, digests


def verify_signature(raw_body: bytes, header: Optional[str], secret: str,
                     tolerance_seconds: int = 0, now: Optional[float] = None) -> None:
    """
    Check a signature header against the raw body.

    Raises:
        InvalidSignatureError: On a missing, malformed, expired or mismatched signature
    """
    if not header:
        raise InvalidSignatureError("Missing signature header")

    timestamp, digests = parse_signature_header(header)

    if tolerance_seconds > 0:
        now = time.time() if now is None else now
        if abs(now - int(timestamp)) > tolerance_seconds:
            raise InvalidSignatureError("Signature timestamp outside tolerance")

    expected = compute_signature(secret, timestamp, raw_body).encode("ascii")
    # Check every candidate so the work done does not depend on which one matches
    matched = False
    for digest in digests:
        if not digest.isascii():
            continue
        if hmac.compare_digest(expected, digest.lower().encode("ascii")):
            matched = True
    if not matched:
        raise InvalidSignatureError("Signature mismatch")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider timestamp into a naive UTC datetime.

    Accepts ISO-8601 strings (with or without "Z") and epoch numbers in
    seconds or milliseconds. Returns None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if value > 1e11 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Unparseable timestamp in webhook payload: {value!r}")
    return None


def _get(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def extract_email(data: dict) -> Optional[str]:
    email = (
        _get(data, "customer_email")
        or _get(data, "customer", "email")
        or _get(data, "user", "email")
        or _get(data, "email")
    )
    if not isinstance(email, str) or not email.strip():
        return None
    return email.strip().lower()


def extract_customer_id(data: dict) -> Optional[str]:
    customer_id = _get(data, "customer_id") or _get(data, "customer", "id")
    return str(customer_id) if customer_id else None


class WebhookService:
    """
    Authenticates inbound payment-provider events and applies the matching
    Subscription Ledger transition.

    The provider, not the end user, is the caller: transitions are keyed by
    customer email, and "no such user" is acknowledged rather than failed so
    the provider does not redeliver forever.
    """

    def __init__(self, db: AsyncSession, secret: Optional[str] = None,
                 tolerance_seconds: Optional[int] = None, production: Optional[bool] = None):
        self.db = db
        self.ledger = SubscriptionLedger(db)
        self.secret = settings.polar_webhook_secret if secret is None else secret
        self.tolerance_seconds = (
            settings.webhook_tolerance_seconds if tolerance_seconds is None else tolerance_seconds
        )
        self.production = IS_PRODUCTION if production is None else production
        self.default_period = timedelta(days=settings.default_subscription_days)

        self._handlers = {
            "checkout.created": self._handle_checkout_in_progress,
            "checkout.updated": self._handle_checkout_in_progress,
            "checkout.completed": self._handle_checkout_completed,
            "order.created": self._handle_order_created,
            "subscription.created": self._handle_subscription_active,
            "subscription.updated": self._handle_subscription_active,
            "subscription.active": self._handle_subscription_active,
            "subscription.canceled": self._handle_subscription_canceled,
            "subscription.revoked": self._handle_subscription_canceled,
            "customer.state_changed": self._handle_customer_state_changed,
        }

    def _authenticate(self, raw_body: bytes, signature_header: Optional[str]) -> None:
        if not self.secret:
            if self.production:
                logger.error("POLAR_WEBHOOK_SECRET is not set in production. Rejecting webhook.")
                raise InvalidSignatureError("Webhook secret not configured")
            logger.warning("Webhook signature verification skipped - POLAR_WEBHOOK_SECRET not configured")
            return
        verify_signature(raw_body, signature_header, self.secret, self.tolerance_seconds)

    @staticmethod
    def parse_envelope(raw_body: bytes) -> dict:
        """
        Raises:
            MalformedEventError: If the body is not a JSON object with an event type
        """
        try:
            body = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedEventError(f"Invalid JSON: {e}")
        if not isinstance(body, dict):
            raise MalformedEventError("Event envelope must be a JSON object")
        event_type = body.get("type") or body.get("event")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedEventError("Event type missing")
        data = body.get("data")
        if data is None:
            body["data"] = {}
        elif not isinstance(data, dict):
            raise MalformedEventError("Event data must be an object")
        return body

    async def ingest(self, raw_body: bytes, signature_header: Optional[str]) -> IngestResult:
        """
        Verify, parse and apply one webhook delivery.

        Verification and parse failures come back as a rejected result and
        never touch the ledger. Database errors propagate so the caller can
        answer with a 5xx and let the provider retry.
        """
        try:
            self._authenticate(raw_body, signature_header)
            body = self.parse_envelope(raw_body)
        except (InvalidSignatureError, MalformedEventError) as e:
            logger.warning(f"Webhook rejected: {e.message}")
            return IngestResult(accepted=False, status_code=401, detail=e.message)

        event_type = body.get("type") or body.get("event")
        event_at = parse_timestamp(body.get("timestamp"))
        logger.info(f"Polar webhook received: {event_type}")

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled Polar webhook event: {event_type}")
            return IngestResult(accepted=True, status_code=200, event_type=event_type, outcome="ignored")

        outcome = await handler(body["data"], event_at)
        await self.db.commit()
        return IngestResult(accepted=True, status_code=200, event_type=event_type, outcome=outcome)

    async def _apply(self, data: dict, status: str, expires_at: datetime,
                     event_at: Optional[datetime]) -> str:
        email = extract_email(data)
        customer_id = extract_customer_id(data)
        if not email and customer_id:
            known = await self.ledger.user_repo.get_user_by_customer_id(customer_id)
            email = known.email if known else None
        if not email:
            logger.warning(f"Webhook event without a resolvable customer email; cannot apply {status}")
            return "no_email"
        outcome = await self.ledger.apply_transition(
            email,
            status,
            customer_id=customer_id,
            expires_at=expires_at,
            event_at=event_at,
        )
        if outcome is TransitionOutcome.USER_NOT_FOUND:
            logger.warning(f"Webhook for unknown customer {email}; acknowledged without changes")
        return outcome.value

    def _period_end_or_default(self, *candidates: Any) -> datetime:
        for candidate in candidates:
            parsed = parse_timestamp(candidate)
            if parsed is not None:
                return parsed
        return datetime.utcnow() + self.default_period

    async def _handle_checkout_in_progress(self, data: dict, event_at: Optional[datetime]) -> str:
        logger.info("Checkout in progress")
        return "ignored"

    async def _handle_checkout_completed(self, data: dict, event_at: Optional[datetime]) -> str:
        expires_at = self._period_end_or_default(
            _get(data, "subscription", "current_period_end"),
            _get(data, "current_period_end"),
        )
        return await self._apply(data, STATUS_ACTIVE, expires_at, event_at)

    async def _handle_order_created(self, data: dict, event_at: Optional[datetime]) -> str:
        expires_at = self._period_end_or_default(_get(data, "subscription", "current_period_end"))
        return await self._apply(data, STATUS_ACTIVE, expires_at, event_at)

    async def _handle_subscription_active(self, data: dict, event_at: Optional[datetime]) -> str:
        """
        Provider past_due stays past_due and terminal provider statuses become
        canceled; only trialing and active-like statuses grant access.
        """
        provider_status = str(data.get("status") or "active").lower()
        if provider_status in TERMINAL_PROVIDER_STATUSES:
            return await self._apply(data, STATUS_CANCELED, datetime.utcnow(), event_at)

        if provider_status == "trialing":
            status = STATUS_TRIALING
        elif provider_status == "past_due":
            status = STATUS_PAST_DUE
        else:
            status = STATUS_ACTIVE
        expires_at = self._period_end_or_default(data.get("current_period_end"))
        return await self._apply(data, status, expires_at, event_at)

    async def _handle_subscription_canceled(self, data: dict, event_at: Optional[datetime]) -> str:
        return await self._apply(data, STATUS_CANCELED, datetime.utcnow(), event_at)

    async def _handle_customer_state_changed(self, data: dict, event_at: Optional[datetime]) -> str:
        # The customer itself can be the payload, in which case its id is data.id
        if not extract_customer_id(data) and data.get("id"):
            data = {**data, "customer_id": data["id"]}

        subscriptions = data.get("subscriptions")
        if subscriptions is None:
            subscriptions = data.get("active_subscriptions") or []
        if not isinstance(subscriptions, list):
            subscriptions = []

        active = next(
            (
                sub for sub in subscriptions
                if isinstance(sub, dict) and str(sub.get("status", "")).lower() in (STATUS_ACTIVE, STATUS_TRIALING)
            ),
            None,
        )
        if active is None:
            return await self._apply(data, STATUS_CANCELED, datetime.utcnow(), event_at)

        status = STATUS_TRIALING if str(active.get("status")).lower() == STATUS_TRIALING else STATUS_ACTIVE
        expires_at = self._period_end_or_default(active.get("current_period_end"))
        return await self._apply(data, status, expires_at, event_at)
