"""
Adaptateur PayChangu: paiement hébergé, vérification et webhooks signés.
- POST {base}/payment avec le secret en Bearer -> checkout_url
- GET  {base}/verify-payment/{tx_ref}
- Webhook: en-tête x-paychangu-signature = HMAC-SHA256 hex du corps brut
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional
import hashlib
import hmac
import json
import logging

import httpx

from storefront import config
from storefront.errors import UpstreamFailure
from storefront.payments.gateway import InvalidSignatureError, PaymentGateway
from storefront.payments.models import CheckoutSession, GatewayCallback

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paychangu-signature"
_EVENT_STATUS = {"payment.success": "success", "payment.failed": "failed"}


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature.strip())


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def callback_from_data(data: Dict[str, Any], status: Optional[str] = None) -> GatewayCallback:
    """Normalise le bloc 'data' PayChangu (vérification ou webhook)."""
    customer = data.get("customer") or {}
    authorization = data.get("authorization") or {}
    name = " ".join(p for p in (customer.get("first_name"), customer.get("last_name")) if p) or None
    raw_status = (status or data.get("status") or "").lower()
    return GatewayCallback(
        tx_ref=str(data.get("tx_ref") or ""),
        status=raw_status,
        amount=_decimal(data.get("amount")),
        currency=(data.get("currency") or "").upper() or None,
        reference=data.get("reference"),
        channel=authorization.get("channel") or data.get("channel"),
        customer_email=customer.get("email"),
        customer_name=name,
        failure_reason=data.get("failure_reason") or data.get("message"),
        raw=data,
    )


class PayChanguGateway(PaymentGateway):
    name = "paychangu"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        strict_signature: Optional[bool] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else config.PAYCHANGU_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else config.PAYCHANGU_WEBHOOK_SECRET
        self.base_url = (base_url or config.PAYCHANGU_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.PAYCHANGU_TIMEOUT_SECONDS
        self.strict_signature = config.IS_PRODUCTION if strict_signature is None else strict_signature
        self._client = http_client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Accept": "application/json",
                },
            )
        return self._client

    def create_checkout(self, *, tx_ref, amount, currency, customer_email, first_name, last_name,
                        callback_url, return_url, metadata) -> CheckoutSession:
        payload = {
            "amount": f"{Decimal(amount):.2f}",
            "currency": currency,
            "tx_ref": tx_ref,
            "callback_url": callback_url,
            "return_url": return_url,
            "first_name": first_name,
            "last_name": last_name,
            "email": customer_email,
            "customization": {
                "title": metadata.get("title") or "Paiement",
                "description": metadata.get("description") or tx_ref,
            },
            "meta": metadata,
        }
        try:
            resp = self._http().post(f"{self.base_url}/payment", json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("paychangu.create_checkout failed tx_ref=%s", tx_ref)
            raise UpstreamFailure("Création du paiement impossible", service="payment") from e

        data = body.get("data") or {}
        checkout_url = data.get("checkout_url") or body.get("checkout_url")
        if not checkout_url:
            logger.error("paychangu.create_checkout: checkout_url absent tx_ref=%s body=%s", tx_ref, body)
            raise UpstreamFailure("Réponse passerelle sans URL de paiement", service="payment")
        return CheckoutSession(checkout_url=checkout_url, gateway_reference=data.get("reference"))

    def verify(self, tx_ref: str, gateway_reference: Optional[str] = None) -> GatewayCallback:
        try:
            resp = self._http().get(f"{self.base_url}/verify-payment/{tx_ref}")
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("paychangu.verify failed tx_ref=%s", tx_ref)
            raise UpstreamFailure("Vérification du paiement impossible", service="payment") from e

        data = body.get("data") or {}
        data.setdefault("tx_ref", tx_ref)
        if body.get("status") == "success" and (data.get("status") or "").lower() == "success":
            return callback_from_data(data, "success")
        return callback_from_data(data, (data.get("status") or "failed"))

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[GatewayCallback]:
        signature = _header(headers, SIGNATURE_HEADER)
        if not verify_signature(payload, signature, self.webhook_secret or ""):
            if self.strict_signature:
                raise InvalidSignatureError()
            logger.warning("paychangu: signature webhook absente ou invalide (mode non strict)")

        try:
            body = json.loads(payload.decode("utf-8") or "{}")
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidSignatureError("Corps de webhook illisible") from e

        status = _EVENT_STATUS.get(body.get("event_type") or body.get("event") or "")
        if status is None:
            logger.info("paychangu: événement ignoré %s", body.get("event_type") or body.get("event"))
            return None
        data = body.get("data") or body
        if not data.get("tx_ref"):
            return None
        return callback_from_data(data, status)
