"""Hubtel HTTP client for mobile money charges, status checks and direct debit mandates"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import httpx
from hirepay.config import settings
from hirepay.domain.exceptions import (
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    UnsupportedNetworkError,
)
from hirepay.domain.models import ChargeResponse, PreapprovalResponse, ProviderOutcome, StatusResponse
from hirepay.domain.provider_codes import decode_initiation_code, decode_status_value
from hirepay.infrastructure.observability.metrics import gateway_failure_counter, gateway_latency_histogram

logger = logging.getLogger(__name__)

# Ghana mobile number prefixes (local 0XX form)
NETWORK_PREFIXES = {
    "MTN": ("024", "054", "055", "059"),
    "VODAFONE": ("020", "050"),
    "AIRTELTIGO": ("026", "027", "056", "057"),
}

DIRECT_DEBIT_NETWORKS = ("MTN", "VODAFONE", "TELECEL")


def format_phone(raw: str) -> str:
    """Canonical MSISDN without '+': 0241234567 / +233 24 123 4567 -> 233241234567"""
    cleaned = raw.replace(" ", "").replace("+", "")
    if cleaned.startswith("0"):
        cleaned = "233" + cleaned[1:]
    if not cleaned.startswith("233"):
        cleaned = "233" + cleaned
    return cleaned


def network_from_phone(phone: str) -> Optional[str]:
    """Network owning the number's prefix, None when unknown"""
    msisdn = format_phone(phone)
    local_prefix = "0" + msisdn[3:5]
    for network, prefixes in NETWORK_PREFIXES.items():
        if local_prefix in prefixes:
            return network
    return None


def channel_for(network: str, is_direct_debit: bool = False) -> str:
    """
    Hubtel channel code for a network.

    Raises:
        UnsupportedNetworkError: Unknown network, or AirtelTigo for direct debit
    """
    suffix = "-direct-debit" if is_direct_debit else ""
    name = (network or "").upper()

    if name == "MTN":
        return f"mtn-gh{suffix}"
    if name in ("VODAFONE", "TELECEL"):
        return f"vodafone-gh{suffix}"
    if name == "AIRTELTIGO":
        if is_direct_debit:
            raise UnsupportedNetworkError("AirtelTigo does not support Direct Debit")
        return "tigo-gh"
    raise UnsupportedNetworkError(f"Unsupported network: {network}")


def pesewas_to_cedis(amount_pesewas: int) -> Decimal:
    return (Decimal(amount_pesewas) / Decimal(100)).quantize(Decimal("0.01"))


def cedis_to_pesewas(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _get(data: Dict[str, Any], *keys: str, default=None):
    """First present key; Hubtel mixes PascalCase and camelCase between APIs"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


class HubtelClient:
    """Client for the Hubtel receive money, transaction status and preapproval APIs"""

    def __init__(
        self,
        pos_sales_id: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        receive_money_base: str | None = None,
        status_base: str | None = None,
        preapproval_base: str | None = None,
        callback_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.pos_sales_id = pos_sales_id or settings.hubtel_pos_sales_id
        self.api_key = api_key if api_key is not None else settings.hubtel_api_key
        self.api_secret = api_secret if api_secret is not None else settings.hubtel_api_secret
        self.receive_money_base = (receive_money_base or settings.hubtel_receive_money_base).rstrip("/")
        self.status_base = (status_base or settings.hubtel_status_base).rstrip("/")
        self.preapproval_base = (preapproval_base or settings.hubtel_preapproval_base).rstrip("/")
        self.callback_url = callback_url or settings.hubtel_callback_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    @property
    def _preapproval_root(self) -> str:
        return f"{self.preapproval_base}/api/v2/merchant/{self.pos_sales_id}/preapproval"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=httpx.BasicAuth(self.api_key, self.api_secret),
            transport=self.transport,
        )

    async def _send(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Issue one request, mapping transport problems to GatewayError.

        4xx responses are returned to the caller: Hubtel puts business
        rejections in the body of a 4xx.

        Raises:
            GatewayTimeoutError: No answer within the timeout
            GatewayUnavailableError: 5xx or transport failure
        """
        async with self._client() as client:
            try:
                with gateway_latency_histogram.labels(operation=operation).time():
                    response = await client.request(method, url, **kwargs)
                if response.status_code >= 500:
                    response.raise_for_status()
                return response

            except httpx.ConnectTimeout as e:
                gateway_failure_counter.labels(operation=operation, kind="unavailable").inc()
                raise GatewayUnavailableError(f"Hubtel {operation}: connection timed out", ambiguous=False) from e
            except httpx.TimeoutException as e:
                gateway_failure_counter.labels(operation=operation, kind="timeout").inc()
                raise GatewayTimeoutError(f"Hubtel {operation} timeout after {self.timeout}s") from e
            except httpx.ConnectError as e:
                gateway_failure_counter.labels(operation=operation, kind="unavailable").inc()
                raise GatewayUnavailableError(f"Hubtel {operation}: connection failed", ambiguous=False) from e
            except httpx.HTTPStatusError as e:
                gateway_failure_counter.labels(operation=operation, kind="unavailable").inc()
                raise GatewayUnavailableError(f"Hubtel {operation} error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                gateway_failure_counter.labels(operation=operation, kind="unavailable").inc()
                raise GatewayUnavailableError(f"Hubtel {operation} transport error: {e}") from e

    def _json(self, operation: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            gateway_failure_counter.labels(operation=operation, kind="response").inc()
            raise GatewayResponseError(
                f"Invalid JSON from Hubtel {operation} ({response.status_code})",
                ambiguous=response.is_success,
            ) from e
        if not isinstance(body, dict):
            gateway_failure_counter.labels(operation=operation, kind="response").inc()
            raise GatewayResponseError(
                f"Unexpected body from Hubtel {operation} ({response.status_code})",
                ambiguous=response.is_success,
            )
        return body

    async def initiate_charge(
        self,
        amount_pesewas: int,
        phone: str,
        channel: str,
        reference: str,
        description: str,
        customer_name: str,
        customer_email: str | None = None,
    ) -> ChargeResponse:
        """
        Ask the customer's wallet for a payment (regular or direct debit channel).

        The answer is only an acknowledgement: the final result arrives on
        the callback URL. Accepted requests decode to PENDING.

        Raises:
            GatewayError: Timeout, transport failure, 5xx or undecodable body
        """
        payload = {
            "CustomerName": customer_name,
            "CustomerMsisdn": format_phone(phone),
            "CustomerEmail": customer_email,
            "Channel": channel,
            "Amount": float(pesewas_to_cedis(amount_pesewas)),
            "PrimaryCallbackUrl": self.callback_url,
            "Description": description,
            "ClientReference": reference,
        }
        url = f"{self.receive_money_base}/merchantaccount/merchants/{self.pos_sales_id}/receive/mobilemoney"

        response = await self._send("initiate_charge", "POST", url, json=payload)
        body = self._json("initiate_charge", response)

        code = _get(body, "ResponseCode", "responseCode")
        if code is None:
            gateway_failure_counter.labels(operation="initiate_charge", kind="response").inc()
            raise GatewayResponseError(
                f"Hubtel initiate_charge answered {response.status_code} without a response code",
                ambiguous=response.is_success,
            )

        data = _get(body, "Data", "data", default={}) or {}
        outcome = decode_initiation_code(code)
        logger.info(
            "Hubtel charge initiated",
            extra={"transaction_ref": reference, "response_code": str(code), "outcome": outcome.value},
        )
        return ChargeResponse(
            outcome=outcome,
            response_code=str(code),
            message=_get(body, "Message", "message", default=""),
            external_ref=_get(data, "TransactionId", "transactionId"),
            raw=body,
        )

    async def query_status(self, reference: str) -> StatusResponse:
        """
        Look up a charge by client reference.

        Raises:
            GatewayError: Timeout, transport failure, 5xx or undecodable body
        """
        url = f"{self.status_base}/transactions/{self.pos_sales_id}/status"
        response = await self._send("query_status", "GET", url, params={"clientReference": reference})

        if response.status_code == 404:
            return StatusResponse(outcome=ProviderOutcome.UNKNOWN_CODE, found=False)

        body = self._json("query_status", response)
        if response.is_client_error:
            raise GatewayResponseError(
                f"Hubtel query_status rejected: {response.status_code} {_get(body, 'message', 'Message', default='')}",
                ambiguous=False,
            )

        data = _get(body, "data", "Data", default={}) or {}
        provider_status = _get(data, "status", "Status")
        return StatusResponse(
            outcome=decode_status_value(provider_status),
            found=True,
            provider_status=provider_status,
            external_ref=_get(data, "externalTransactionId", "ExternalTransactionId", "transactionId", "TransactionId"),
            raw=body,
        )

    def _preapproval_response(self, body: Dict[str, Any], default_status: str = "PENDING") -> PreapprovalResponse:
        data = _get(body, "data", "Data", default={})
        if not isinstance(data, dict):
            data = {}
        return PreapprovalResponse(
            status=str(_get(data, "preapprovalStatus", "PreapprovalStatus", default=default_status)).upper(),
            message=_get(body, "message", "Message", default=""),
            provider_preapproval_id=_get(data, "hubtelPreApprovalId", "hubtelPreapprovalId", "HubtelPreapprovalId"),
            client_reference_id=_get(data, "clientReferenceId", "ClientReferenceId"),
            verification_type=_get(data, "verificationType", "VerificationType"),
            otp_prefix=_get(data, "otpPrefix", "OtpPrefix"),
            raw=body,
        )

    def _raise_for_rejection(self, operation: str, response: httpx.Response, body: Dict[str, Any]) -> None:
        if response.is_client_error:
            raise GatewayResponseError(
                f"Hubtel {operation} rejected: {_get(body, 'message', 'Message', default=response.status_code)}",
                ambiguous=False,
            )

    async def initiate_preapproval(self, phone: str, network: str, client_reference_id: str) -> PreapprovalResponse:
        """Start a direct debit mandate; the customer approves by USSD or OTP"""
        payload = {
            "clientReferenceId": client_reference_id,
            "customerMsisdn": format_phone(phone),
            "channel": channel_for(network, is_direct_debit=True),
            "callbackUrl": f"{self.callback_url}/preapproval",
        }
        response = await self._send("initiate_preapproval", "POST", f"{self._preapproval_root}/initiate", json=payload)
        body = self._json("initiate_preapproval", response)
        self._raise_for_rejection("initiate_preapproval", response, body)
        return self._preapproval_response(body)

    async def verify_preapproval_otp(
        self, phone: str, provider_preapproval_id: str, client_reference_id: str, otp_code: str
    ) -> PreapprovalResponse:
        payload = {
            "customerMsisdn": format_phone(phone),
            "hubtelPreApprovalId": provider_preapproval_id,
            "clientReferenceId": client_reference_id,
            "otpCode": otp_code,
        }
        response = await self._send("verify_preapproval_otp", "POST", f"{self._preapproval_root}/verifyotp", json=payload)
        body = self._json("verify_preapproval_otp", response)
        self._raise_for_rejection("verify_preapproval_otp", response, body)
        return self._preapproval_response(body)

    async def get_preapproval_status(self, client_reference_id: str) -> PreapprovalResponse:
        response = await self._send(
            "get_preapproval_status", "GET", f"{self._preapproval_root}/{client_reference_id}/status"
        )
        body = self._json("get_preapproval_status", response)
        self._raise_for_rejection("get_preapproval_status", response, body)
        return self._preapproval_response(body)

    async def cancel_preapproval(self, phone: str) -> bool:
        response = await self._send(
            "cancel_preapproval", "GET", f"{self._preapproval_root}/{format_phone(phone)}/cancel"
        )
        body = self._json("cancel_preapproval", response)
        self._raise_for_rejection("cancel_preapproval", response, body)
        return _get(body, "data", "Data") is True

