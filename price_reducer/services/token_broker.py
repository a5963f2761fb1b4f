"""
Token Broker

계정별 eBay access token 발급기.
- 저장된 refresh token 을 복호화해서 OAuth 토큰 엔드포인트와 교환합니다.
- access token 은 DB 에 저장하지 않고, 브로커 인스턴스(= 1회 실행) 동안만 메모리에 캐시합니다.
- invalid_grant/만료/폐기는 NeedsReconnect 로 분류하고 계정 연결을 disconnected 로 표시합니다.
"""
import logging
import uuid
from typing import Optional

from price_reducer.clock import Clock, SystemClock
from price_reducer.ebay_oauth_client import EbayOAuthClient
from price_reducer.exceptions import AuthError, NeedsReconnect
from price_reducer.models import ConnectionStatus
from price_reducer.services.credential_cipher import CredentialCipher, CredentialDecryptError
from price_reducer.services.listing_store import ListingStore

logger = logging.getLogger(__name__)


class TokenBroker:
    def __init__(
        self,
        store: ListingStore,
        oauth_client: EbayOAuthClient,
        cipher: Optional[CredentialCipher],
        clock: Optional[Clock] = None,
        platform_client_id: str = "",
        platform_client_secret: str = "",
    ):
        self._store = store
        self._oauth_client = oauth_client
        self._cipher = cipher
        self._clock = clock or SystemClock()
        self._platform_client_id = platform_client_id
        self._platform_client_secret = platform_client_secret
        self._cache: dict[uuid.UUID, str] = {}

    def clear(self) -> None:
        self._cache.clear()

    def _decrypt(self, value: Optional[str]) -> str:
        if not value:
            return ""
        if self._cipher is None:
            raise AuthError("ENCRYPTION_KEY가 설정되어 있지 않아 토큰을 복호화할 수 없습니다")
        return self._cipher.decrypt(value)

    def _disconnect(self, account_id: uuid.UUID, reason: str) -> NeedsReconnect:
        self._store.mark_disconnected(account_id, reason, self._clock.now())
        return NeedsReconnect(reason, account_id=account_id)

    async def get_access_token(self, account_id: uuid.UUID) -> str:
        cached = self._cache.get(account_id)
        if cached:
            return cached

        credential = self._store.get_credential(account_id)
        if credential is None:
            raise NeedsReconnect("연결된 eBay 계정 정보가 없습니다", account_id=account_id)
        if credential.connection_status == ConnectionStatus.DISCONNECTED.value:
            # 사용자가 다시 연결하기 전까지 자동 재시도하지 않음
            raise NeedsReconnect("eBay 연결이 해제된 계정입니다. 재연결이 필요합니다", account_id=account_id)
        if not credential.refresh_token_encrypted:
            raise self._disconnect(account_id, "저장된 refresh token 이 없습니다")

        try:
            refresh_token = self._decrypt(credential.refresh_token_encrypted)
            client_secret = self._decrypt(credential.client_secret_encrypted) or self._platform_client_secret
        except CredentialDecryptError:
            raise self._disconnect(account_id, "refresh token 을 복호화할 수 없습니다")

        client_id = credential.app_id or self._platform_client_id
        if not client_id or not client_secret:
            raise AuthError("eBay 앱 자격 증명(client id/secret)이 설정되어 있지 않습니다", account_id=account_id)

        try:
            result = await self._oauth_client.refresh_access_token(
                client_id=client_id,
                client_secret=client_secret,
                refresh_token=refresh_token,
                account_ref=account_id,
            )
        except NeedsReconnect as e:
            raise self._disconnect(account_id, e.message) from e

        token = result["access_token"]
        self._cache[account_id] = token
        logger.info(f"[TOKEN] Access token issued for account {account_id} (expires in {result['expires_in']}s)")
        return token
