"""
FastAPI dependencies for authentication and service wiring
"""
import httpx
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from .cache import RedisCache, get_cache
from .config import settings
from .directory import HttpAccountDirectory, StoreAccountDirectory
from .domain.repositories import IAccountDirectory
from .exceptions import NotAuthenticated, TransportError
from .kafka_producer import KafkaProducerManager, get_kafka_producer
from .membership import MembershipService
from .schemas import User
from .service import RelationshipService
from .store import GroupStore, RelationshipStore, create_backend

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class Stores:
    """Holds the stores and directory built at startup"""

    def __init__(self):
        self.accounts: Optional[RelationshipStore] = None
        self.groups: Optional[GroupStore] = None
        self.directory: Optional[IAccountDirectory] = None

    def init(self):
        backend = create_backend()
        self.accounts = RelationshipStore(backend)
        self.groups = GroupStore(backend)
        if settings.ACCOUNT_DIRECTORY_BACKEND == "http":
            self.directory = HttpAccountDirectory()
        else:
            self.directory = StoreAccountDirectory(self.accounts)


stores = Stores()


async def verify_token_with_auth_service(token: str) -> Optional[dict]:
    """
    Verify JWT token with Auth Service

    Args:
        token: JWT access token

    Returns:
        User data if token is valid, None otherwise
    """
    try:
        async with httpx.AsyncClient(timeout=settings.AUTH_SERVICE_TIMEOUT) as client:
            response = await client.get(
                f"{settings.AUTH_SERVICE_URL}/api/v1/auth/me",
                headers={"Authorization": f"Bearer {token}"},
            )

            if response.status_code == 200:
                return response.json()
            else:
                logger.warning(
                    f"Token verification failed: {response.status_code} - {response.text}"
                )
                return None

    except httpx.TimeoutException:
        logger.error("Auth service timeout during token verification")
        raise TransportError("auth_unavailable")
    except httpx.TransportError:
        logger.error("Failed to connect to auth service")
        raise TransportError("auth_unavailable")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> User:
    """
    Get current authenticated user

    Raises:
        NotAuthenticated: If the token is missing, invalid or the user is inactive
    """
    if not credentials:
        raise NotAuthenticated()

    user_data = await verify_token_with_auth_service(credentials.credentials)
    if not user_data:
        raise NotAuthenticated()

    user_data["id"] = str(user_data.get("id", ""))
    try:
        user = User(**user_data)
    except ValueError as e:
        logger.error(f"Error parsing user data: {e}")
        raise NotAuthenticated()

    if not user.is_active:
        raise NotAuthenticated("account_inactive")
    return user


def get_relationship_service(
    cache: RedisCache = Depends(get_cache),
    kafka: KafkaProducerManager = Depends(get_kafka_producer),
) -> RelationshipService:
    """Get RelationshipService instance with dependencies"""
    return RelationshipService(stores.accounts, stores.directory, kafka, cache)


def get_membership_service() -> MembershipService:
    """Get MembershipService instance"""
    return MembershipService(stores.groups)
