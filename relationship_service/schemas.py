"""
Pydantic schemas for request/response validation
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum

from .domain.models import AccountPrivacy, FollowStatus


class RequestAction(str, Enum):
    """Owner's answer to a follow request"""

    ACCEPT = "accept"
    REJECT = "reject"


# Request Schemas
class FollowRequestAction(BaseModel):
    """Accept or reject follow request"""

    action: RequestAction = Field(..., description="Action: 'accept' or 'reject'")


class PrivacyUpdate(BaseModel):
    """Change account visibility"""

    account_privacy: AccountPrivacy


class AccountRegistration(BaseModel):
    """Provision the relationship document of the current user"""

    account_privacy: AccountPrivacy = AccountPrivacy.PUBLIC
    display_name: Optional[str] = None


# Response Schemas
class MessageResponse(BaseModel):
    """Generic message response"""

    message: str


class FollowResponse(BaseModel):
    """Response after follow action"""

    success: bool
    status: FollowStatus
    message: str


class AccountListResponse(BaseModel):
    """Paginated list of account ids"""

    accounts: List[str]
    total: int
    page: int
    page_size: int
    has_more: bool


class RelationshipResponse(BaseModel):
    """Relationship between the current user and another account"""

    account_id: str
    other_account_id: str
    a_follows_b: bool
    b_follows_a: bool
    pending: bool
    requested: bool
    blocked_by_a: bool
    blocked_by_b: bool


class MessagingPermissionResponse(BaseModel):
    """Whether the current user may message another account"""

    target_account_id: str
    allowed: bool
    reason: str


class StatsResponse(BaseModel):
    """Account relationship counts"""

    account_id: str
    follower_count: int
    following_count: int
    pending_requests_count: int
    blocked_count: int


class RegistrationResponse(BaseModel):
    """Result of account provisioning"""

    account_id: str
    created: bool


# Internal Models
class User(BaseModel):
    """User model from Auth Service"""

    id: str
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_private: bool = False
    is_active: bool = True
