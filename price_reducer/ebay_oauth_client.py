import base64
import logging
from typing import Any

import httpx

from price_reducer.exceptions import NeedsReconnect, TransientProtocolError
from price_reducer.http_retry import DEFAULT_TIMEOUT, network_retry

logger = logging.getLogger(__name__)

# 재연결(사용자 재인증)이 필요한 OAuth 오류
RECONNECT_ERRORS = {"invalid_grant"}
RECONNECT_HINTS = ("expired", "revoked", "invalid refresh token")


def is_reconnect_error(error: str | None, description: str | None) -> bool:
    if error and error in RECONNECT_ERRORS:
        return True
    lowered = (description or "").lower()
    return any(hint in lowered for hint in RECONNECT_HINTS)


class EbayOAuthClient:
    """
    eBay OAuth refresh_token -> access_token 교환.
    발급받은 access token 은 저장하지 않고 호출자에게 그대로 돌려줍니다.
    """

    def __init__(
        self,
        token_url: str,
        scopes: list[str],
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_url = token_url
        self._scopes = scopes
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport

    @staticmethod
    def _basic_auth(client_id: str, client_secret: str) -> str:
        raw = f"{client_id}:{client_secret}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"

    @network_retry("TOKEN")
    async def _post(self, headers: dict[str, str], form: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.post(self._token_url, headers=headers, data=form)

    async def refresh_access_token(self, client_id: str, client_secret: str, refresh_token: str, account_ref: Any = None) -> dict[str, Any]:
        """
        Returns:
            {"access_token": str, "expires_in": int}

        Raises:
            NeedsReconnect: invalid_grant / 만료 / 폐기
            TransientProtocolError: 그 외 HTTP/네트워크 오류
        """
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": self._basic_auth(client_id, client_secret),
        }
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": " ".join(self._scopes),
        }

        try:
            response = await self._post(headers, form)
        except httpx.TransportError as e:
            raise TransientProtocolError(f"토큰 교환 네트워크 오류: {e}", protocol="oauth") from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if response.status_code != 200:
            error = data.get("error")
            description = data.get("error_description")
            logger.error(f"[TOKEN] Token refresh failed for account {account_ref} ({response.status_code}): {error}")
            if is_reconnect_error(error, description):
                raise NeedsReconnect(
                    f"eBay 재연결이 필요합니다: {description or error}",
                    account_id=account_ref,
                    oauth_error=error,
                )
            raise TransientProtocolError(
                f"토큰 교환 실패: {description or error or 'unknown error'}",
                status_code=response.status_code,
                protocol="oauth",
            )

        access_token = data.get("access_token")
        if not access_token:
            raise TransientProtocolError("토큰 응답에 access_token 이 없습니다", status_code=response.status_code, protocol="oauth")

        return {"access_token": access_token, "expires_in": int(data.get("expires_in") or 7200)}
