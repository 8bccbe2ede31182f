"""
PayHere checkout codec.

Builds the signed form that the browser POSTs to the PayHere checkout page and
parses what comes back: the browser return/cancel navigation and the
server-to-server notification. Everything here is pure; the sales service
decides what to do with the results.

Signing scheme (PayHere "hash"):

    UPPER(MD5(merchant_id + order_id + amount + currency + UPPER(MD5(merchant_secret))))

Notification scheme ("md5sig"):

    UPPER(MD5(merchant_id + order_id + payhere_amount + payhere_currency + status_code + UPPER(MD5(merchant_secret))))
"""
import enum
import hashlib
import hmac
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.core.config import settings
from app.core.errors import NotConfigured, PaymentVerificationError

logger = logging.getLogger(__name__)

ORDER_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,96}$")

class ReturnOutcome(str, enum.Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"

class GatewayStatus(int, enum.Enum):
    SUCCESS = 2
    PENDING = 0
    CANCELLED = -1
    FAILED = -2
    CHARGEDBACK = -3

@dataclass(frozen=True)
class GatewayConfig:
    merchant_id: str
    merchant_secret: str
    currency: str
    checkout_url: str
    notify_url: Optional[str] = None

    @classmethod
    def from_settings(cls, s=None) -> "GatewayConfig":
        s = s or settings
        return cls(
            merchant_id=s.PAYHERE_MERCHANT_ID.strip(),
            merchant_secret=s.PAYHERE_MERCHANT_SECRET.strip(),
            currency=s.PAYHERE_CURRENCY,
            checkout_url=s.payhere_checkout_url,
            notify_url=s.PAYHERE_NOTIFY_URL,
        )

    @property
    def configured(self) -> bool:
        return bool(self.merchant_id and self.merchant_secret)

@dataclass
class Buyer:
    first_name: str
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    country: str = "Sri Lanka"

@dataclass(frozen=True)
class PaymentRequest:
    checkout_url: str
    fields: Dict[str, str] = field(default_factory=dict)

@dataclass(frozen=True)
class ReturnResult:
    outcome: ReturnOutcome
    order_id: Optional[str]
    # True only when the gateway signature on the return was present and valid
    verified: bool = False
    amount: Optional[Decimal] = None
    currency: Optional[str] = None

@dataclass(frozen=True)
class Notification:
    order_id: str
    status: GatewayStatus
    amount: Decimal
    currency: str
    payment_id: Optional[str] = None

def format_amount(amount) -> str:
    """Two decimals, dot separator, no grouping. Same formatting both sides of the hash."""
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    return f"{value:.2f}"

def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()

def sign_checkout(config: GatewayConfig, order_id: str, amount) -> str:
    secret_digest = _md5_upper(config.merchant_secret)
    return _md5_upper(f"{config.merchant_id}{order_id}{format_amount(amount)}{config.currency}{secret_digest}")

def sign_notification(config: GatewayConfig, order_id: str, amount: str, currency: str, status_code: str) -> str:
    secret_digest = _md5_upper(config.merchant_secret)
    return _md5_upper(f"{config.merchant_id}{order_id}{amount}{currency}{status_code}{secret_digest}")

def ensure_configured(config: GatewayConfig) -> None:
    if not config.configured:
        logger.error("[PayHere] Merchant credentials missing, refusing to start checkout")
        raise NotConfigured()

def is_valid_order_id(order_id: Optional[str]) -> bool:
    return bool(order_id) and ORDER_ID_PATTERN.fullmatch(order_id) is not None

def _with_query(url: str, params: Mapping[str, str]) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

def build_return_urls(base_url: str, order_id: str) -> Tuple[str, str]:
    """(return_url, cancel_url), both carrying order_id so the return trip needs no session state."""
    return_url = _with_query(base_url, {"payment": ReturnOutcome.SUCCESS.value, "order_id": order_id})
    cancel_url = _with_query(base_url, {"payment": ReturnOutcome.CANCELLED.value, "order_id": order_id})
    return return_url, cancel_url

def build_payment_request(
    order_id: str,
    item_description: str,
    amount,
    buyer: Buyer,
    return_url: str,
    cancel_url: str,
    config: Optional[GatewayConfig] = None,
) -> PaymentRequest:
    config = config or GatewayConfig.from_settings()
    ensure_configured(config)

    if not is_valid_order_id(order_id):
        raise ValueError(f"Order id is not URL safe: {order_id!r}")

    fields = {
        "merchant_id": config.merchant_id,
        "return_url": return_url,
        "cancel_url": cancel_url,
        "order_id": order_id,
        "items": item_description,
        "currency": config.currency,
        "amount": format_amount(amount),
        "first_name": buyer.first_name,
        "last_name": buyer.last_name,
        "email": buyer.email,
        "phone": buyer.phone,
        "address": buyer.address,
        "city": buyer.city,
        "country": buyer.country,
        "hash": sign_checkout(config, order_id, amount),
    }
    if config.notify_url:
        fields["notify_url"] = config.notify_url

    return PaymentRequest(checkout_url=config.checkout_url, fields=fields)

def _signature_matches(config: GatewayConfig, params: Mapping[str, str]) -> bool:
    if not config.configured:
        # No secret, nothing can be verified
        return False
    expected = sign_notification(
        config,
        params.get("order_id", ""),
        params.get("payhere_amount", ""),
        params.get("payhere_currency", ""),
        params.get("status_code", ""),
    )
    return hmac.compare_digest(expected, (params.get("md5sig") or "").upper())

def _parse_status(raw: Optional[str]) -> Optional[GatewayStatus]:
    try:
        return GatewayStatus(int(raw))
    except (TypeError, ValueError):
        return None

def parse_return(query_params: Mapping[str, str], config: Optional[GatewayConfig] = None) -> ReturnResult:
    """
    Classify a browser return. No side effects.

    A plain ``payment=success`` is reported as an unverified success; only a
    return carrying a valid gateway signature is marked verified. Any signature
    mismatch is an error outcome.
    """
    config = config or GatewayConfig.from_settings()
    order_id = (query_params.get("order_id") or "").strip()
    if not is_valid_order_id(order_id):
        return ReturnResult(outcome=ReturnOutcome.ERROR, order_id=None)

    if query_params.get("md5sig"):
        if not _signature_matches(config, query_params):
            logger.warning(f"[PayHere] Return signature mismatch for order {order_id}")
            return ReturnResult(outcome=ReturnOutcome.ERROR, order_id=order_id)

        status = _parse_status(query_params.get("status_code"))
        try:
            amount = Decimal(query_params.get("payhere_amount", ""))
        except InvalidOperation:
            return ReturnResult(outcome=ReturnOutcome.ERROR, order_id=order_id)
        currency = query_params.get("payhere_currency")

        if status == GatewayStatus.SUCCESS:
            return ReturnResult(ReturnOutcome.SUCCESS, order_id, verified=True, amount=amount, currency=currency)
        if status in (GatewayStatus.CANCELLED, GatewayStatus.FAILED):
            return ReturnResult(ReturnOutcome.CANCELLED, order_id, verified=True, amount=amount, currency=currency)
        return ReturnResult(outcome=ReturnOutcome.ERROR, order_id=order_id)

    payment = (query_params.get("payment") or "").strip().lower()
    if payment == ReturnOutcome.SUCCESS.value:
        return ReturnResult(outcome=ReturnOutcome.SUCCESS, order_id=order_id)
    if payment == ReturnOutcome.CANCELLED.value:
        return ReturnResult(outcome=ReturnOutcome.CANCELLED, order_id=order_id)
    return ReturnResult(outcome=ReturnOutcome.ERROR, order_id=order_id)

def parse_notification(form: Mapping[str, str], config: Optional[GatewayConfig] = None) -> Notification:
    """Verify and decode the server-to-server notification. Raises PaymentVerificationError on any doubt."""
    config = config or GatewayConfig.from_settings()

    required = ("merchant_id", "order_id", "payhere_amount", "payhere_currency", "status_code", "md5sig")
    missing = [k for k in required if not form.get(k)]
    if missing:
        raise PaymentVerificationError(f"Notification missing fields: {', '.join(missing)}")

    if not config.configured:
        raise NotConfigured()

    if form.get("merchant_id") != config.merchant_id:
        raise PaymentVerificationError("Notification is for a different merchant")

    if not _signature_matches(config, form):
        logger.warning(f"[PayHere] Notification signature mismatch for order {form.get('order_id')}")
        raise PaymentVerificationError()

    status = _parse_status(form.get("status_code"))
    if status is None:
        raise PaymentVerificationError(f"Unknown status code: {form.get('status_code')}")

    try:
        amount = Decimal(form["payhere_amount"])
    except InvalidOperation as e:
        raise PaymentVerificationError("Invalid amount in notification") from e

    return Notification(
        order_id=form["order_id"],
        status=status,
        amount=amount,
        currency=form["payhere_currency"],
        payment_id=form.get("payment_id"),
    )
