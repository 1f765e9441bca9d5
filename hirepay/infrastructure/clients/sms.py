"""SMS gateway client (Nalo) with exponential backoff retry logic"""

import asyncio
import logging
import httpx
from hirepay.config import settings
from hirepay.infrastructure.observability.metrics import sms_failure_counter

logger = logging.getLogger(__name__)


class SmsClient:
    """Client for sending single SMS messages"""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url or settings.sms_api_url
        self.api_key = api_key if api_key is not None else settings.sms_api_key
        self.sender_id = sender_id or settings.sms_sender_id
        self.max_retries = settings.sms_max_retries
        self.backoff_base = settings.sms_backoff_base
        self.transport = transport

    async def send(self, msisdn: str, message: str) -> None:
        """
        Send one SMS with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s (base * 2^attempt)
        - Retries on 5xx errors and network failures, 4xx fails immediately

        Raises:
            httpx.HTTPStatusError / httpx.RequestError: After the last attempt
        """
        payload = {
            "key": self.api_key,
            "msisdn": msisdn,
            "message": message,
            "sender_id": self.sender_id,
        }

        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    response = await client.post(self.api_url, json=payload, timeout=10.0)
                    response.raise_for_status()
                    return  # Success

                except httpx.HTTPStatusError as e:
                    attempt += 1
                    sms_failure_counter.inc()
                    if e.response.status_code < 500 or attempt >= self.max_retries:
                        raise
                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

                except httpx.RequestError:
                    attempt += 1
                    sms_failure_counter.inc()
                    if attempt >= self.max_retries:
                        # Final failure after all retries
                        raise
                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))
