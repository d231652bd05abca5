"""
Servicio de envio de SMS.

Two gateways share one contract: ``send(to, body)`` returns the provider
message id or raises TransientSendFailure, PermanentSendFailure or
GatewayUnavailable.
"""

import logging
from typing import Optional
from uuid import uuid4

import httpx

from config import config
from errors import GatewayUnavailable, PermanentSendFailure, TransientSendFailure

logger = logging.getLogger(__name__)

# Twilio error codes that will never succeed on retry
PERMANENT_TWILIO_CODES = {21211, 21214, 21408, 21610, 21612, 21614, 21617, 30003, 30005, 30006, 30007}


class SmsGateway:
    name = "base"

    async def send(self, to: str, body: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LoggingSmsGateway(SmsGateway):
    """Development gateway: logs the message instead of sending it."""

    name = "log"

    async def send(self, to: str, body: str) -> str:
        logger.info(f"[SMS] (dev) to={to} body={body!r}")
        return f"dev_{uuid4().hex[:12]}"


class TwilioSmsGateway(SmsGateway):
    """Twilio Messages REST API over httpx."""

    name = "twilio"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.account_sid = account_sid if account_sid is not None else config.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else config.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else config.TWILIO_FROM_NUMBER
        self.api_base = (api_base or config.TWILIO_API_BASE).rstrip("/")
        self.timeout = timeout or config.SMS_TIMEOUT_SECONDS
        self._http_client = client

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def send(self, to: str, body: str) -> str:
        if not self.configured:
            raise GatewayUnavailable("Twilio credentials not configured")

        url = f"{self.api_base}/Accounts/{self.account_sid}/Messages.json"
        client = await self._get_client()
        try:
            response = await client.post(
                url,
                data={"To": to, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
            )
        except httpx.ConnectError as exc:
            raise GatewayUnavailable(f"cannot connect: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransientSendFailure("gateway timeout") from exc
        except httpx.TransportError as exc:
            raise TransientSendFailure(f"transport error: {exc}") from exc

        return self._handle_response(response)

    @staticmethod
    def _error_detail(response: httpx.Response) -> tuple:
        try:
            data = response.json()
        except ValueError:
            return None, response.text[:200]
        return data.get("code"), data.get("message") or response.text[:200]

    def _handle_response(self, response: httpx.Response) -> str:
        status = response.status_code
        if status in (200, 201):
            try:
                data = response.json()
            except ValueError:
                logger.warning(f"[SMS] Twilio accepted message but body is not JSON: {response.text[:80]!r}")
                return ""
            return str(data.get("sid") or "") if isinstance(data, dict) else ""

        code, message = self._error_detail(response)
        detail = f"HTTP {status}" + (f" code {code}" if code else "") + (f": {message}" if message else "")

        if status in (401, 403):
            raise GatewayUnavailable(f"authentication rejected ({detail})")
        if status == 429 or status >= 500:
            raise TransientSendFailure(detail)
        if code in PERMANENT_TWILIO_CODES or status in (400, 404, 422):
            raise PermanentSendFailure(detail)
        raise TransientSendFailure(detail)

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()


_sms_gateway: Optional[SmsGateway] = None


def build_sms_gateway() -> SmsGateway:
    if config.SMS_GATEWAY == "twilio":
        return TwilioSmsGateway()
    if config.SMS_GATEWAY != "log":
        logger.warning(f"[SMS] Unknown SMS_GATEWAY '{config.SMS_GATEWAY}', using log gateway")
    return LoggingSmsGateway()


def get_sms_gateway() -> SmsGateway:
    global _sms_gateway
    if _sms_gateway is None:
        _sms_gateway = build_sms_gateway()
    return _sms_gateway


async def close_sms_gateway() -> None:
    global _sms_gateway
    if _sms_gateway:
        await _sms_gateway.close()
        _sms_gateway = None
