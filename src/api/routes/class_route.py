"""Class management routes."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.routes.auth import get_current_user
from core.dependencies import ClassManagerDep, UserManagerDep
from core.exceptions import ClassNotFoundError, ValidationError
from schemas.class_schema import (
    ClassSection,
    CreateClassRequest,
    InviteRequest,
    InviteResponse,
    MemberWithUser,
    MyClass,
    PendingInvite,
    UpdateMemberRequest,
)
from schemas.user import AuthenticatedUser
from utils.class_manager import ClassManager
from utils.user_manager import canonical_email

router = APIRouter(prefix="/api/classes", tags=["Class"])


def _get_class_or_404(class_manager: ClassManager, class_id: str) -> ClassSection:
    try:
        return class_manager.get_class(class_id)
    except ClassNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Class not found",
        )


def _require_staff(class_manager: ClassManager, class_id: str, uid: str) -> ClassSection:
    """Return the class if ``uid`` is one of its instructors or TAs."""
    section = _get_class_or_404(class_manager, class_id)
    if not class_manager.is_staff(class_id, uid):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only instructors and TAs can manage this class.",
        )
    return section


@router.post("", response_model=ClassSection, summary="Create a class")
def create_class(
    req: CreateClassRequest,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> ClassSection:
    try:
        class_id = class_manager.create_class(req.course_id, req.title, current_user.uid)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        )
    return class_manager.get_class(class_id)


@router.get("", response_model=List[MyClass], summary="List my classes")
def list_my_classes(
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> List[MyClass]:
    return class_manager.list_my_classes(current_user.uid)


@router.get("/teaching", response_model=List[ClassSection], summary="Classes I own")
def list_teaching(
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> List[ClassSection]:
    return class_manager.list_classes_for_instructor(current_user.uid)


@router.get("/{class_id}", response_model=ClassSection, summary="Get a class")
def get_class(
    class_id: str,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> ClassSection:
    section = _get_class_or_404(class_manager, class_id)
    if class_manager.member_role(class_id, current_user.uid) is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this class.",
        )
    return section


@router.delete("/{class_id}", summary="Delete a class")
def delete_class(
    class_id: str,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    """Delete a class and everything under it.

    Only the instructor who owns the class may delete it.
    """
    section = _get_class_or_404(class_manager, class_id)
    if section.instructor_id != current_user.uid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the class owner can delete it.",
        )
    class_manager.delete_class(class_id)
    return {"success": True, "message": "Class deleted"}


# --- Members ---


@router.get(
    "/{class_id}/members", response_model=List[MemberWithUser], summary="List members"
)
def list_members(
    class_id: str,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> List[MemberWithUser]:
    _require_staff(class_manager, class_id, current_user.uid)
    return class_manager.list_members_with_users(class_id)


@router.put("/{class_id}/members/{uid}", summary="Add a member or change its role")
def update_member(
    class_id: str,
    uid: str,
    req: UpdateMemberRequest,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    try:
        role = class_manager.add_or_update_member(class_id, uid, req.role)
    except ClassNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Class not found",
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        )
    return {"uid": uid, "role": role}


@router.delete("/{class_id}/members/{uid}", summary="Remove a member")
def remove_member(
    class_id: str,
    uid: str,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    section = _require_staff(class_manager, class_id, current_user.uid)
    if uid == section.instructor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The class owner cannot be removed.",
        )
    if not class_manager.remove_member(class_id, uid):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Member not found",
        )
    return {"success": True, "message": "Member removed"}


# --- Invitations ---


@router.post("/{class_id}/invites", response_model=InviteResponse, summary="Invite by email")
def invite_member(
    class_id: str,
    req: InviteRequest,
    class_manager: ClassManagerDep,
    user_manager: UserManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> InviteResponse:
    """Add the user owning the email, or record a pending invite for it.

    Raises:
        HTTPException: 400 on self-invite or invalid input, 403 if the caller
            is not staff, 404 if the class does not exist.
    """
    _require_staff(class_manager, class_id, current_user.uid)
    me = user_manager.find_user(current_user.uid)
    my_email = (me.email if me else None) or current_user.email
    if my_email and canonical_email(my_email) == canonical_email(req.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot invite yourself.",
        )
    try:
        uid = class_manager.invite_by_email_or_create_pending(
            class_id, req.email, req.role, invited_by=current_user.uid
        )
    except ClassNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Class not found",
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        )
    return InviteResponse(uid=uid, pending=uid is None)


@router.get(
    "/{class_id}/invites", response_model=List[PendingInvite], summary="List pending invites"
)
def list_invites(
    class_id: str,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> List[PendingInvite]:
    _require_staff(class_manager, class_id, current_user.uid)
    return class_manager.list_pending_invites(class_id)


@router.delete("/{class_id}/invites/{invite_id}", summary="Cancel a pending invite")
def cancel_invite(
    class_id: str,
    invite_id: str,
    class_manager: ClassManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    class_manager.cancel_invite(class_id, invite_id)
    return {"success": True, "message": "Invite canceled"}
