"""SMS delivery gateways for verification codes.

Gateways never raise for provider-side failures: they return a
``DeliveryResult`` and the verification service decides what the caller
sees. Codes are never logged; numbers only in masked form.

- ``LoggingSmsGateway``: development gateway, logs the send and succeeds
- ``HttpSmsGateway``: JSON POST to an SMS provider's send endpoint
"""

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from smsauth.core.codec import mask_phone

logger = structlog.get_logger()

_PROVIDER_OK = "Ok"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one send attempt.

    Attributes:
        success: Whether the provider accepted the message.
        reference_id: Provider request id, when one was returned.
        message: Provider error message on failure.
    """

    success: bool
    reference_id: str | None = None
    message: str | None = None


class DeliveryGateway(Protocol):
    """Sends a verification code to a phone number."""

    async def send(
        self, phone_e164: str, code: str, ttl_minutes: int
    ) -> DeliveryResult: ...


def to_e164(phone: str, country_prefix: str) -> str:
    """Prefix national numbers with the country code.

    Args:
        phone: Phone number, with or without a leading '+'.
        country_prefix: Prefix such as '+86'.

    Returns:
        Number in E.164 form.
    """
    if phone.startswith("+"):
        return phone
    return f"{country_prefix}{phone}"


class LoggingSmsGateway:
    """Development gateway: logs the send without disclosing the code."""

    async def send(
        self, phone_e164: str, code: str, ttl_minutes: int  # noqa: ARG002
    ) -> DeliveryResult:
        logger.info(
            "sms_stub_send",
            to_masked=mask_phone(phone_e164),
            ttl_minutes=ttl_minutes,
            code="redacted",
        )
        return DeliveryResult(success=True, reference_id="log")


class HttpSmsGateway:
    """Provider gateway speaking a JSON send-SMS API.

    Request body::

        {"phone_numbers": [e164], "sign_name": ..., "template_id": ...,
         "template_params": [code, ttl_minutes]}

    Response body::

        {"request_id": ..., "send_status": [{"code": "Ok", "message": ...}]}

    Args:
        api_url: Send endpoint.
        api_key: Bearer credential.
        sign_name: Approved SMS signature.
        template_id: Approved template taking [code, ttl_minutes].
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        sign_name: str,
        template_id: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._sign_name = sign_name
        self._template_id = template_id
        self._timeout = timeout
        self._transport = transport

    async def send(
        self, phone_e164: str, code: str, ttl_minutes: int
    ) -> DeliveryResult:
        payload = {
            "phone_numbers": [phone_e164],
            "sign_name": self._sign_name,
            "template_id": self._template_id,
            "template_params": [code, str(ttl_minutes)],
        }
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    self._api_url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=payload,
                    timeout=self._timeout,
                )
                resp.raise_for_status()
                body: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError):
            logger.warning(
                "sms_send_failed",
                to_masked=mask_phone(phone_e164),
                exc_info=True,
            )
            return DeliveryResult(success=False, message="SMS provider request failed")

        request_id = body.get("request_id")
        statuses = body.get("send_status") or []
        if not statuses:
            logger.error("sms_send_malformed_response", request_id=request_id)
            return DeliveryResult(
                success=False,
                reference_id=request_id,
                message="Malformed SMS provider response",
            )

        status = statuses[0]
        if status.get("code") != _PROVIDER_OK:
            logger.error(
                "sms_send_rejected",
                to_masked=mask_phone(phone_e164),
                request_id=request_id,
                provider_code=status.get("code"),
                provider_message=status.get("message"),
            )
            return DeliveryResult(
                success=False,
                reference_id=request_id,
                message=status.get("message"),
            )

        logger.info(
            "sms_sent",
            to_masked=mask_phone(phone_e164),
            request_id=request_id,
        )
        return DeliveryResult(success=True, reference_id=request_id)
