"""
FastAPI application for Relationship Service
"""
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from .cache import cache
from .config import settings
from .dependencies import (
    get_current_user,
    get_membership_service,
    get_relationship_service,
    stores,
)
from .directory import HttpAccountDirectory
from .domain.models import FollowStatus
from .exceptions import (
    BlockedRelationship,
    CannotRemoveOwner,
    InsufficientRole,
    NotAuthenticated,
    NotFoundError,
    RelationshipError,
    TransportError,
)
from .infrastructure.mongodb import mongodb
from .kafka_producer import kafka_producer
from .membership import MembershipService
from .schemas import (
    AccountListResponse,
    AccountRegistration,
    FollowRequestAction,
    FollowResponse,
    MessageResponse,
    MessagingPermissionResponse,
    PrivacyUpdate,
    RegistrationResponse,
    RelationshipResponse,
    RequestAction,
    StatsResponse,
    User,
)
from .service import RelationshipService

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Relationship Service...")

    if settings.STORE_BACKEND == "mongodb":
        await mongodb.connect()
    stores.init()
    logger.info(f"Store initialized ({settings.STORE_BACKEND})")

    if isinstance(stores.directory, HttpAccountDirectory):
        await stores.directory.start()

    await cache.connect()
    logger.info("Redis cache initialized")

    await kafka_producer.start()
    logger.info("Kafka producer started")

    logger.info(f"Relationship Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down Relationship Service...")

    await kafka_producer.stop()
    await cache.disconnect()

    if isinstance(stores.directory, HttpAccountDirectory):
        await stores.directory.stop()

    if settings.STORE_BACKEND == "mongodb":
        await mongodb.disconnect()

    logger.info("Relationship Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Follow graph, follow requests, blocks and group roles",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_for(exc: RelationshipError) -> int:
    if isinstance(exc, NotAuthenticated):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, (BlockedRelationship, InsufficientRole, CannotRemoveOwner)):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, TransportError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_409_CONFLICT


@app.exception_handler(RelationshipError)
async def relationship_error_handler(request: Request, exc: RelationshipError):
    """Map domain errors to HTTP responses"""
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}")
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content={"detail": exc.reason}, headers=headers)


def _page(items, total, page, page_size, has_more) -> AccountListResponse:
    return AccountListResponse(
        accounts=items, total=total, page=page, page_size=page_size, has_more=has_more
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": settings.APP_NAME}


# Account provisioning
@app.post(
    "/api/v1/accounts",
    response_model=RegistrationResponse,
    tags=["Accounts"],
    summary="Register the current user's relationship document",
)
async def register_account(
    payload: AccountRegistration,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    """Idempotent: an existing document is left untouched"""
    created = await service.register_account(
        current_user.id,
        payload.account_privacy,
        payload.display_name or current_user.full_name or current_user.username,
    )
    return RegistrationResponse(account_id=current_user.id, created=created)


@app.put(
    "/api/v1/relationships/privacy",
    response_model=MessageResponse,
    tags=["Accounts"],
    summary="Set account privacy",
)
async def set_privacy(
    payload: PrivacyUpdate,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    await service.set_account_privacy(current_user.id, payload.account_privacy)
    return MessageResponse(message=f"Account is now {payload.account_privacy.value}")


# Follow/Unfollow endpoints
@app.post(
    "/api/v1/relationships/follow/{target_id}",
    response_model=FollowResponse,
    tags=["Follow"],
    summary="Follow an account",
)
async def follow(
    target_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    """
    Follow an account

    - If the target account is private, a follow request is sent
    - If the target account is public, you follow it immediately
    """
    follow_status = await service.request_or_direct_follow(current_user.id, target_id)

    if follow_status == FollowStatus.PENDING:
        message = "Follow request sent"
    else:
        message = "Successfully followed account"

    return FollowResponse(success=True, status=follow_status, message=message)


@app.delete(
    "/api/v1/relationships/follow/{target_id}",
    response_model=MessageResponse,
    tags=["Follow"],
    summary="Unfollow an account",
)
async def unfollow(
    target_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    """Unfollowing an account you do not follow is a no-op"""
    await service.unfollow(current_user.id, target_id)
    return MessageResponse(message="Unfollowed account")


# Follow requests endpoints
@app.get(
    "/api/v1/relationships/requests",
    response_model=AccountListResponse,
    tags=["Follow Requests"],
    summary="Get pending follow requests",
)
async def get_pending_requests(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"
    ),
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    items, total, has_more = await service.list_pending_requests(current_user.id, page, page_size)
    return _page(items, total, page, page_size, has_more)


@app.post(
    "/api/v1/relationships/requests/{requester_id}",
    response_model=MessageResponse,
    tags=["Follow Requests"],
    summary="Accept or reject follow request",
)
async def handle_follow_request(
    requester_id: str,
    action: FollowRequestAction,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    """
    Accept or reject a follow request

    - action: 'accept' or 'reject'
    """
    if action.action == RequestAction.ACCEPT:
        await service.accept_follow_request(current_user.id, requester_id)
        return MessageResponse(message="Follow request accepted")

    await service.reject_follow_request(current_user.id, requester_id)
    return MessageResponse(message="Follow request rejected")


@app.delete(
    "/api/v1/relationships/requests/{owner_id}",
    response_model=MessageResponse,
    tags=["Follow Requests"],
    summary="Cancel your follow request",
)
async def cancel_follow_request(
    owner_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    await service.cancel_follow_request(current_user.id, owner_id)
    return MessageResponse(message="Follow request cancelled")


# Block endpoints
@app.post(
    "/api/v1/relationships/block/{target_id}",
    response_model=MessageResponse,
    tags=["Block"],
    summary="Block an account",
)
async def block(
    target_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    await service.block(current_user.id, target_id)
    return MessageResponse(message="Account blocked")


@app.delete(
    "/api/v1/relationships/block/{target_id}",
    response_model=MessageResponse,
    tags=["Block"],
    summary="Unblock an account",
)
async def unblock(
    target_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    await service.unblock(current_user.id, target_id)
    return MessageResponse(message="Account unblocked")


@app.get(
    "/api/v1/relationships/blocked",
    response_model=AccountListResponse,
    tags=["Block"],
    summary="Get blocked accounts",
)
async def get_blocked(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"
    ),
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    items, total, has_more = await service.list_blocked(current_user.id, page, page_size)
    return _page(items, total, page, page_size, has_more)


# Relationship endpoints
@app.get(
    "/api/v1/relationships/relationship/{target_id}",
    response_model=RelationshipResponse,
    tags=["Relationship"],
    summary="Get relationship with account",
)
async def get_relationship(
    target_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    """
    Get relationship between current user (a) and target account (b)

    - pending: a has asked to follow b
    - requested: b has asked to follow a
    """
    state = await service.query_relationship(current_user.id, target_id)
    return RelationshipResponse(**state.__dict__)


@app.get(
    "/api/v1/relationships/messaging/{target_id}",
    response_model=MessagingPermissionResponse,
    tags=["Relationship"],
    summary="Check messaging permission",
)
async def get_messaging_permission(
    target_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    permission = await service.can_message(current_user.id, target_id)
    return MessagingPermissionResponse(
        target_account_id=target_id, allowed=permission.allowed, reason=permission.reason
    )


# Followers/Following endpoints
@app.get(
    "/api/v1/relationships/followers/{account_id}",
    response_model=AccountListResponse,
    tags=["Followers"],
    summary="Get account's followers",
)
async def get_followers(
    account_id: str,
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"
    ),
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    items, total, has_more = await service.list_followers(account_id, page, page_size)
    return _page(items, total, page, page_size, has_more)


@app.get(
    "/api/v1/relationships/following/{account_id}",
    response_model=AccountListResponse,
    tags=["Following"],
    summary="Get accounts the account follows",
)
async def get_following(
    account_id: str,
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"
    ),
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    items, total, has_more = await service.list_following(account_id, page, page_size)
    return _page(items, total, page, page_size, has_more)


@app.get(
    "/api/v1/relationships/stats/{account_id}",
    response_model=StatsResponse,
    tags=["Stats"],
    summary="Get account's relationship counts",
)
async def get_stats(
    account_id: str,
    current_user: User = Depends(get_current_user),
    service: RelationshipService = Depends(get_relationship_service),
):
    stats = await service.get_stats(account_id)
    return StatsResponse(**stats.__dict__)


# Group role endpoints
@app.post(
    "/api/v1/groups/{group_id}/admins/{member_id}",
    response_model=MessageResponse,
    tags=["Groups"],
    summary="Promote a member to admin",
)
async def promote_member(
    group_id: str,
    member_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
):
    await service.promote(current_user.id, group_id, member_id)
    return MessageResponse(message="Member promoted to admin")


@app.delete(
    "/api/v1/groups/{group_id}/admins/{member_id}",
    response_model=MessageResponse,
    tags=["Groups"],
    summary="Demote an admin",
)
async def demote_admin(
    group_id: str,
    member_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
):
    await service.demote(current_user.id, group_id, member_id)
    return MessageResponse(message="Admin demoted to member")


@app.delete(
    "/api/v1/groups/{group_id}/members/{member_id}",
    response_model=MessageResponse,
    tags=["Groups"],
    summary="Remove a member",
)
async def remove_member(
    group_id: str,
    member_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
):
    await service.remove_member(current_user.id, group_id, member_id)
    return MessageResponse(message="Member removed")


@app.post(
    "/api/v1/groups/{group_id}/owner/{member_id}",
    response_model=MessageResponse,
    tags=["Groups"],
    summary="Transfer group ownership",
)
async def transfer_ownership(
    group_id: str,
    member_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
):
    await service.transfer_ownership(current_user.id, group_id, member_id)
    return MessageResponse(message="Ownership transferred")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "relationship_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
