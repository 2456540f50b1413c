"""
Account directory adapters - privacy and display identity lookup
"""
import httpx
from typing import Optional
import logging

from .config import settings
from .domain.models import AccountPrivacy, AccountProfile
from .domain.repositories import IAccountDirectory
from .exceptions import TransportError
from .store import RelationshipStore

logger = logging.getLogger(__name__)


class StoreAccountDirectory(IAccountDirectory):
    """Reads the profile fields kept on the relationship document"""

    def __init__(self, store: RelationshipStore):
        self.store = store

    async def get(self, account_id: str) -> Optional[AccountProfile]:
        account = await self.store.get(account_id)
        if account is None:
            return None
        return AccountProfile(
            account_id=account.id,
            account_privacy=account.account_privacy,
            display_name=account.display_name,
        )


class HttpAccountDirectory(IAccountDirectory):
    """Looks accounts up in the Auth Service"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url or settings.AUTH_SERVICE_URL
        self.timeout = httpx.Timeout(timeout or settings.AUTH_SERVICE_TIMEOUT)
        self.client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        logger.info("Account directory client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            logger.info("Account directory client closed")

    async def get(self, account_id: str) -> Optional[AccountProfile]:
        """
        Get account profile from Auth Service

        Returns:
            AccountProfile if found, None on 404

        Raises:
            TransportError: If the Auth Service cannot be reached
        """
        if not self.client:
            await self.start()

        try:
            response = await self.client.get(f"/api/v1/users/{account_id}")
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.error(f"Account directory unreachable: {e}")
            raise TransportError("directory_unavailable")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.error(
                f"Account lookup failed for {account_id}: {response.status_code} - {response.text}"
            )
            raise TransportError("directory_unavailable")

        data = response.json()
        privacy = data.get("account_privacy")
        if privacy is None:
            privacy = AccountPrivacy.PRIVATE.value if data.get("is_private") else AccountPrivacy.PUBLIC.value

        return AccountProfile(
            account_id=str(data.get("id", account_id)),
            account_privacy=AccountPrivacy(privacy),
            display_name=data.get("full_name") or data.get("username"),
        )
