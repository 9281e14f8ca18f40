import logging

import httpx

from live_transcriber.domain.errors import AuthError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://mp.speechmatics.com/v1/api_keys"


class SpeechmaticsTemporaryKeyProvider:
    """Exchanges the long-lived API key for a short-lived real-time key."""

    def __init__(
        self,
        api_key: str,
        token_url: str = DEFAULT_TOKEN_URL,
        ttl_seconds: int = 60,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._token_url = token_url
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout
        self._transport = transport

    async def get_short_lived_credential(self) -> str:
        if not self._api_key:
            raise AuthError("No recognition API key configured")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self._token_url,
                    params={"type": "rt"},
                    json={"ttl": self._ttl_seconds},
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise AuthError(
                f"Temporary key request failed (HTTP {status})",
                transient=status >= 500 or status == 429,
            ) from exc
        except httpx.TransportError as exc:
            raise AuthError(f"Temporary key request failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise AuthError("Temporary key response was not JSON") from exc

        key = payload.get("key_value") if isinstance(payload, dict) else None
        if not isinstance(key, str) or not key:
            raise AuthError("Temporary key response has no key_value")
        logger.info("Obtained temporary recognition key (ttl=%ds)", self._ttl_seconds)
        return key
