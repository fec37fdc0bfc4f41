# core/mpesa.py
import asyncio
import base64
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import httpx

from app.core.config import Settings, settings
from app.core.errors import AuthError, NetworkError
from app.models.mpesa_model import AccessToken
from app.models.subscription_model import utcnow

logger = logging.getLogger("tikiti.mpesa")

# Daraja endpoint paths
TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

MIN_SAFETY_MARGIN = 30


def make_timestamp(now: datetime) -> str:
    return now.strftime("%Y%m%d%H%M%S")


def make_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """Daraja's STK signing scheme: base64(shortcode + passkey + timestamp)."""
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("utf-8")


def describe_result(code, fallback: str, messages: Dict[str, str]) -> str:
    """User-facing sentence for a Daraja result code, else the gateway's own text."""
    if code is not None and str(code) in messages:
        return messages[str(code)]
    return fallback or "Payment failed"


class TokenCache:
    """
    Holds the single Daraja OAuth token for the whole process.

    Built once (empty) and shared by every outgoing call. When the token is
    missing or about to expire, the first caller starts one refresh task and
    every concurrent caller awaits that same task, so a burst of requests
    produces one token exchange and they all see the same token (or the same
    AuthError).
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        base_url: str,
        timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 2.0,
        safety_margin: float = 60,
        clock: Callable[[], datetime] = utcnow,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.safety_margin = max(safety_margin, MIN_SAFETY_MARGIN)
        self.clock = clock
        self._transport = transport

        self._token: Optional[AccessToken] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings = settings, **kwargs) -> "TokenCache":
        return cls(
            consumer_key=config.MPESA_CONSUMER_KEY,
            consumer_secret=config.MPESA_CONSUMER_SECRET,
            base_url=config.MPESA_BASE_URL,
            timeout=config.MPESA_TOKEN_TIMEOUT,
            retries=config.MPESA_TOKEN_RETRIES,
            retry_delay=config.MPESA_TOKEN_RETRY_DELAY,
            safety_margin=config.MPESA_TOKEN_SAFETY_MARGIN,
            **kwargs,
        )

    async def get_token(self) -> AccessToken:
        async with self._lock:
            token = self._token
            if token is not None and token.is_fresh(self.clock(), self.safety_margin):
                return token

            if self._refresh_task is None or self._refresh_task.done():
                self._refresh_task = asyncio.create_task(self._refresh())
            task = self._refresh_task

        # shield: one caller giving up must not cancel the refresh the others wait on
        return await asyncio.shield(task)

    def invalidate(self, token: Optional[AccessToken] = None):
        """Drop the cached token (only if it is still `token`, when given)."""
        if token is None or self._token == token:
            self._token = None
            logger.info("[M-Pesa] Access token invalidated")

    async def _refresh(self) -> AccessToken:
        if not self.consumer_key or not self.consumer_secret:
            raise AuthError("M-Pesa credentials not configured")

        attempts = self.retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            logger.info(f"[M-Pesa] Fetching access token (attempt {attempt}/{attempts})")
            try:
                token = await self._exchange()
            except httpx.TimeoutException as e:
                logger.error(f"[M-Pesa] Token request timed out: {e}")
                raise AuthError(f"M-Pesa token request timed out: {e}") from e
            except (httpx.HTTPError, ValueError, KeyError) as e:
                last_error = e
                logger.warning(f"[M-Pesa] Token fetch failed ({attempts - attempt} retries left): {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.retry_delay)
                continue

            self._token = token
            logger.info(f"[M-Pesa] Access token retrieved, expires {token.expires_at.isoformat()}")
            return token

        raise AuthError(f"Failed to get M-Pesa access token: {last_error}") from last_error

    async def _exchange(self) -> AccessToken:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                f"{self.base_url}{TOKEN_PATH}",
                params={"grant_type": "client_credentials"},
                auth=(self.consumer_key, self.consumer_secret),
                headers={"Cache-Control": "no-cache"},
            )

        if 400 <= response.status_code < 500:
            # Bad credentials don't get better by asking again
            raise AuthError(f"M-Pesa token request rejected ({response.status_code}): {response.text}")
        response.raise_for_status()

        data = response.json()
        if data.get("error"):
            raise ValueError(data["error"])
        if not data.get("access_token"):
            raise ValueError("No access token received")

        now = self.clock()
        return AccessToken(
            value=data["access_token"],
            issued_at=now,
            expires_at=now + timedelta(seconds=int(data.get("expires_in", 3599))),
        )


class MpesaGateway:
    """Signed, authenticated POSTs to the Daraja STK endpoints."""

    def __init__(
        self,
        token_cache: TokenCache,
        shortcode: str,
        passkey: str,
        base_url: str,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_cache = token_cache
        self.shortcode = str(shortcode)
        self.passkey = passkey
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.clock = clock
        self._transport = transport

    @classmethod
    def from_settings(cls, token_cache: TokenCache, config: Settings = settings, **kwargs) -> "MpesaGateway":
        return cls(
            token_cache,
            shortcode=config.MPESA_SHORTCODE,
            passkey=config.MPESA_PASSKEY,
            base_url=config.MPESA_BASE_URL,
            timeout=config.MPESA_REQUEST_TIMEOUT,
            **kwargs,
        )

    def signed_envelope(self) -> dict:
        timestamp = make_timestamp(self.clock())
        return {
            "BusinessShortCode": self.shortcode,
            "Password": make_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
        }

    async def post(self, path: str, payload: dict) -> httpx.Response:
        if not self.shortcode or not self.passkey:
            raise AuthError("M-Pesa shortcode or passkey not configured")

        token = await self.token_cache.get_token()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {token.value}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TransportError as e:
            logger.error(f"[M-Pesa] No response from {path}: {e!r}")
            raise NetworkError(f"M-Pesa request to {path} failed: {e!r}") from e

        if response.status_code == 401:
            self.token_cache.invalidate(token)
            raise AuthError(f"M-Pesa rejected the access token on {path}")

        return response
