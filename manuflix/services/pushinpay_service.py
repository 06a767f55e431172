"""
PushinPay Gateway Integration Service
Creates PIX charges and reads their status
"""
import httpx
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from manuflix.core.config import Settings
from manuflix.core.exceptions import GatewayError
from manuflix.schemas.checkout import ChargeStatus, Customer, PixCharge

logger = logging.getLogger(__name__)

_PAID = {"COMPLETED", "CONFIRMED", "PAID"}
_PENDING = {"PENDING", "CREATED", "WAITING"}
_FAILED = {"FAILED", "CANCELED", "CANCELLED", "REFUSED", "ERROR"}


def normalize_status(raw: Optional[str]) -> ChargeStatus:
    """Map PushinPay's uncontrolled status strings onto ChargeStatus"""
    value = (raw or "").strip().upper()
    if value in _PAID:
        return ChargeStatus.PAID
    if value in _PENDING:
        return ChargeStatus.PENDING
    if value in _FAILED:
        return ChargeStatus.FAILED
    if value == "EXPIRED":
        return ChargeStatus.EXPIRED
    return ChargeStatus.UNKNOWN


def clean_cpf(cpf: Optional[str]) -> Optional[str]:
    """Digits-only CPF, or None unless exactly 11 digits remain"""
    if not cpf:
        return None
    digits = re.sub(r"\D", "", cpf)
    return digits if len(digits) == 11 else None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if body.get("message"):
            return str(body["message"])
        if body.get("error"):
            return str(body["error"])
    return f"HTTP {response.status_code}"


class PushinPayClient:
    """PushinPay PIX gateway"""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.pushinpay.com.br/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize PushinPay client

        Args:
            token: API token from the PushinPay dashboard
            base_url: API root, without trailing slash
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushinPayClient":
        return cls(
            token=settings.PUSHINPAY_TOKEN,
            base_url=settings.PUSHINPAY_API_URL,
            timeout=settings.PUSHINPAY_TIMEOUT,
        )

    async def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.info(f"PushinPay request: {method} {path}")

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    json=payload,
                    headers=self.headers,
                    timeout=self.timeout,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"PushinPay {method} {path} transport error: {e}")
            raise GatewayError(f"Payment provider unreachable: {e}") from e

        logger.info(f"PushinPay response: {method} {path} -> {response.status_code}")

        if response.is_error:
            message = _error_message(response)
            logger.error(f"PushinPay {method} {path} failed ({response.status_code}): {message}")
            raise GatewayError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("Payment provider returned invalid JSON", status_code=response.status_code) from e

        if not isinstance(data, dict):
            raise GatewayError("Payment provider returned an unexpected body", status_code=response.status_code)
        return data

    async def create_pix_charge(
        self,
        amount: int,  # Amount in centavos (29.90 BRL = 2990)
        description: str,
        customer: Customer,
        expiration: int,
        callback_url: str,
    ) -> PixCharge:
        """
        Create a PIX charge

        Args:
            amount: Amount in centavos
            description: Text shown to the payer
            customer: Payer name, email and optional CPF
            expiration: Seconds until the charge expires
            callback_url: Webhook URL for status notifications

        Returns:
            Charge with QR code image, copy-paste code and expiration date
        """
        payload = {
            "amount": amount,
            "description": description,
            "customer": {
                "email": customer.email,
                "name": customer.name,
            },
            "expiration": expiration,
            "callback_url": callback_url,
        }

        cpf = clean_cpf(customer.cpf)
        if cpf:
            payload["customer"]["cpf"] = cpf

        data = await self._request("POST", "/pix/charges", payload)

        if not data.get("id") or not data.get("qrcode_image") or not data.get("copy_paste"):
            logger.error(f"PushinPay charge response incomplete: {sorted(data)}")
            raise GatewayError("Incomplete charge response: missing QR code data or identifier")

        try:
            return PixCharge.model_validate({**data, "id": str(data["id"])})
        except PydanticValidationError as e:
            raise GatewayError(f"Malformed charge response: {e}") from e

    async def get_pix_charge_status(self, charge_id: str) -> str:
        """
        Get the raw status of a PIX charge

        Args:
            charge_id: Charge id from create_pix_charge

        Returns:
            Status string as reported by PushinPay
        """
        data = await self._request("GET", f"/pix/charges/{charge_id}")
        status = data.get("status")
        if not isinstance(status, str):
            raise GatewayError("Charge status missing from provider response")
        logger.info(f"Payment status for ID {charge_id}: {status}")
        return status
