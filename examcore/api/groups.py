"""
Teacher groups, their members and invitations, and the questions shared into them.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from examcore.api.schemas import GroupOut, InvitationOut, MemberOut, QuestionOut
from examcore.core.auth import TokenData, require_teacher
from examcore.core.database import get_db
from examcore.models.orm import GroupRole
from examcore.services import groups as svc
from examcore.services import sharing

router = APIRouter()
invitations_router = APIRouter()


class GroupCreate(BaseModel):
    name: str
    description: Optional[str] = None


class GroupUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class RoleIn(BaseModel):
    role: GroupRole


class InvitationIn(BaseModel):
    invited_teacher_id: str = Field(min_length=1)


@router.get("", response_model=List[GroupOut])
def list_groups(user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return [GroupOut.build(g) for g in svc.list_my_groups(db, user.sub)]


@router.post("", response_model=GroupOut, status_code=201)
def create_group(payload: GroupCreate, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return GroupOut.build(svc.create_group(db, user.sub, name=payload.name, description=payload.description))


@router.get("/{group_id}", response_model=GroupOut)
def get_group(group_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return GroupOut.build(svc.get_group(db, group_id, user.sub))


@router.patch("/{group_id}", response_model=GroupOut)
def update_group(group_id: str, payload: GroupUpdate, user: TokenData = Depends(require_teacher),
                 db: Session = Depends(get_db)):
    return GroupOut.build(svc.update_group(db, user.sub, group_id, payload.model_dump(exclude_unset=True)))


@router.delete("/{group_id}", status_code=204)
def delete_group(group_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    svc.delete_group(db, user.sub, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{group_id}/members", response_model=List[MemberOut])
def list_members(group_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.list_members(db, user.sub, group_id)


@router.patch("/{group_id}/members/{teacher_id}", response_model=MemberOut)
def update_member(group_id: str, teacher_id: str, payload: RoleIn, user: TokenData = Depends(require_teacher),
                  db: Session = Depends(get_db)):
    return svc.update_member_role(db, user.sub, group_id, teacher_id, payload.role)


@router.delete("/{group_id}/members/{teacher_id}", status_code=204)
def remove_member(group_id: str, teacher_id: str, user: TokenData = Depends(require_teacher),
                  db: Session = Depends(get_db)):
    svc.remove_member(db, user.sub, group_id, teacher_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/leave", status_code=204)
def leave_group(group_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    svc.leave_group(db, user.sub, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{group_id}/invitations", response_model=List[InvitationOut])
def list_group_invitations(group_id: str, user: TokenData = Depends(require_teacher),
                           db: Session = Depends(get_db)):
    return svc.list_group_invitations(db, user.sub, group_id)


@router.post("/{group_id}/invitations", response_model=InvitationOut, status_code=201)
def invite(group_id: str, payload: InvitationIn, user: TokenData = Depends(require_teacher),
           db: Session = Depends(get_db)):
    return svc.send_invitation(db, user.sub, group_id, payload.invited_teacher_id)


@router.delete("/{group_id}/invitations/{invitation_id}", status_code=204)
def cancel_invitation(group_id: str, invitation_id: str, user: TokenData = Depends(require_teacher),
                      db: Session = Depends(get_db)):
    svc.cancel_invitation(db, user.sub, group_id, invitation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{group_id}/questions", response_model=List[QuestionOut])
def group_questions(group_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return sharing.list_group_questions(db, user.sub, group_id)


# Invitations addressed to the caller

@invitations_router.get("", response_model=List[InvitationOut])
def my_invitations(user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.list_my_invitations(db, user.sub)


@invitations_router.post("/{invitation_id}/accept", response_model=MemberOut)
def accept(invitation_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.accept_invitation(db, user.sub, invitation_id)


@invitations_router.post("/{invitation_id}/decline", response_model=InvitationOut)
def decline(invitation_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.decline_invitation(db, user.sub, invitation_id)
