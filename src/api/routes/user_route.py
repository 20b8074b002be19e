"""User document routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from api.routes.auth import get_current_user
from core.dependencies import ClassManagerDep, UserManagerDep
from core.exceptions import UserNotFoundError, ValidationError
from schemas.class_schema import ClaimInvitesResponse
from schemas.user import AuthenticatedUser, UpsertUserRequest, User, UserProfileResponse
from utils.user_manager import canonical_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["User"])


@router.get("/me", response_model=User, summary="Get own user document")
def get_me(
    user_manager: UserManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> User:
    try:
        return user_manager.get_user(current_user.uid)
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )


@router.put("/me", response_model=UserProfileResponse, summary="Create or update own user")
def upsert_me(
    req: UpsertUserRequest,
    user_manager: UserManagerDep,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> UserProfileResponse:
    """Upsert the caller's user document, then claim invites sent to its email.

    Raises:
        HTTPException: 403 if the token carries no email claim or a different
            one, 400 on validation errors.
    """
    if not current_user.email or canonical_email(current_user.email) != canonical_email(req.email):
        logger.warning("User %s tried to register a different email", current_user.uid)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email does not match the authenticated account.",
        )
    try:
        user = user_manager.upsert_user(
            current_user.uid,
            req.email,
            first_name=req.first_name,
            last_name=req.last_name,
            school_id=req.school_id,
        )
        claimed = class_manager.claim_pending_invites(current_user.uid, req.email)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        )
    return UserProfileResponse(user=user, claimed_class_ids=claimed)


@router.post(
    "/me/claim-invites", response_model=ClaimInvitesResponse, summary="Claim pending invites"
)
def claim_invites(
    user_manager: UserManagerDep,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> ClaimInvitesResponse:
    try:
        user = user_manager.get_user(current_user.uid)
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    if not user.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User has no email on record.",
        )
    if not current_user.email or canonical_email(current_user.email) != canonical_email(user.email):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email does not match the authenticated account.",
        )
    return ClaimInvitesResponse(
        class_ids=class_manager.claim_pending_invites(current_user.uid, user.email)
    )
