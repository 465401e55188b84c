"""
Teacher groups: the unit questions are shared with.

A group has exactly one owner (its creator). Owners and admins manage
membership and invitations; only the owner can delete the group or change
roles. Teachers are addressed by the subject id of their bearer token.
Groups the caller does not belong to are reported as not found.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from examcore.core.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from examcore.models.orm import GroupInvitation, GroupMember, GroupRole, InvitationStatus, TeacherGroup

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"name", "description"}
MANAGERS = (GroupRole.OWNER, GroupRole.ADMIN)


@dataclass
class GroupSummary:
    group: TeacherGroup
    my_role: GroupRole
    member_count: int


def _name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("Group name is required")
    return name.strip()


def membership(db: Session, group_id: str, teacher_id: str) -> Optional[GroupMember]:
    return db.get(GroupMember, (group_id, teacher_id))


def member_group_ids(db: Session, teacher_id: str) -> List[str]:
    return list(db.scalars(select(GroupMember.group_id).where(GroupMember.teacher_id == teacher_id)))


def _member_group(db: Session, group_id: str, teacher_id: str, roles=None) -> tuple:
    group = db.get(TeacherGroup, group_id)
    member = membership(db, group_id, teacher_id) if group is not None else None
    if member is None:
        raise NotFound("Group", group_id)
    if roles is not None and member.role not in roles:
        raise Forbidden(f"Role {member.role.value} cannot do this in group {group_id}")
    return group, member


def get_group(db: Session, group_id: str, teacher_id: str) -> GroupSummary:
    group, member = _member_group(db, group_id, teacher_id)
    return GroupSummary(group, member.role, len(group.members))


# ========== Groups ==========

def create_group(db: Session, teacher_id: str, *, name: str, description: Optional[str] = None) -> GroupSummary:
    group = TeacherGroup(name=_name(name), description=description, created_by=teacher_id)
    group.members.append(GroupMember(teacher_id=teacher_id, role=GroupRole.OWNER))
    db.add(group)
    db.commit()
    db.refresh(group)
    logger.info("Group %s created by %s", group.id, teacher_id)
    return GroupSummary(group, GroupRole.OWNER, 1)


def list_my_groups(db: Session, teacher_id: str) -> List[GroupSummary]:
    counts = (
        select(GroupMember.group_id, func.count().label("n"))
        .group_by(GroupMember.group_id)
        .subquery()
    )
    rows = db.execute(
        select(TeacherGroup, GroupMember.role, counts.c.n)
        .join(GroupMember, GroupMember.group_id == TeacherGroup.id)
        .join(counts, counts.c.group_id == TeacherGroup.id)
        .where(GroupMember.teacher_id == teacher_id)
        .order_by(TeacherGroup.name)
    ).all()
    return [GroupSummary(group, role, n) for group, role, n in rows]


def update_group(db: Session, teacher_id: str, group_id: str, changes: Dict[str, Any]) -> GroupSummary:
    group, member = _member_group(db, group_id, teacher_id, MANAGERS)
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be changed: {sorted(unknown)}")
    if "name" in changes:
        group.name = _name(changes["name"])
    if "description" in changes:
        group.description = changes["description"]
    db.commit()
    db.refresh(group)
    return GroupSummary(group, member.role, len(group.members))


def delete_group(db: Session, teacher_id: str, group_id: str) -> None:
    """Owner only. Shares into the group go with it; the questions stay with their owners."""
    group, _ = _member_group(db, group_id, teacher_id, (GroupRole.OWNER,))
    db.delete(group)
    db.commit()
    logger.info("Group %s deleted by %s", group_id, teacher_id)


# ========== Members ==========

def list_members(db: Session, teacher_id: str, group_id: str) -> List[GroupMember]:
    group, _ = _member_group(db, group_id, teacher_id)
    return list(group.members)


def update_member_role(db: Session, teacher_id: str, group_id: str, member_id: str, role: GroupRole) -> GroupMember:
    _member_group(db, group_id, teacher_id, (GroupRole.OWNER,))
    role = GroupRole(role)
    if role == GroupRole.OWNER:
        raise ValidationError("A group has exactly one owner")
    target = membership(db, group_id, member_id)
    if target is None:
        raise NotFound("Member", member_id)
    if target.role == GroupRole.OWNER:
        raise InvalidState("The owner's role cannot be changed")
    target.role = role
    db.commit()
    db.refresh(target)
    logger.info("Group %s: %s is now %s", group_id, member_id, role.value)
    return target


def remove_member(db: Session, teacher_id: str, group_id: str, member_id: str) -> None:
    group, actor = _member_group(db, group_id, teacher_id, MANAGERS)
    target = membership(db, group_id, member_id)
    if target is None:
        raise NotFound("Member", member_id)
    if target.role == GroupRole.OWNER:
        raise InvalidState("The group owner cannot be removed")
    if target.role == GroupRole.ADMIN and actor.role != GroupRole.OWNER:
        raise Forbidden("Only the owner can remove an admin")
    group.members.remove(target)
    db.commit()
    logger.info("Group %s: %s removed by %s", group_id, member_id, teacher_id)


def leave_group(db: Session, teacher_id: str, group_id: str) -> None:
    group, member = _member_group(db, group_id, teacher_id)
    if member.role == GroupRole.OWNER:
        raise InvalidState("The owner cannot leave; delete the group instead")
    group.members.remove(member)
    db.commit()
    logger.info("Group %s: %s left", group_id, teacher_id)


# ========== Invitations ==========

def send_invitation(db: Session, teacher_id: str, group_id: str, invited_teacher_id: str) -> GroupInvitation:
    group, _ = _member_group(db, group_id, teacher_id, MANAGERS)
    invitee = (invited_teacher_id or "").strip()
    if not invitee:
        raise ValidationError("invited_teacher_id is required")
    if membership(db, group_id, invitee) is not None:
        raise Conflict(f"{invitee} is already a member of group {group_id}")
    pending = db.scalar(select(GroupInvitation.id).where(
        GroupInvitation.group_id == group_id,
        GroupInvitation.invited_teacher_id == invitee,
        GroupInvitation.status == InvitationStatus.PENDING,
    ))
    if pending is not None:
        raise Conflict(f"{invitee} already has a pending invitation to group {group_id}")
    invitation = GroupInvitation(invited_teacher_id=invitee, invited_by=teacher_id)
    group.invitations.append(invitation)
    db.commit()
    db.refresh(invitation)
    logger.info("Group %s: %s invited %s", group_id, teacher_id, invitee)
    return invitation


def list_group_invitations(db: Session, teacher_id: str, group_id: str) -> List[GroupInvitation]:
    _member_group(db, group_id, teacher_id, MANAGERS)
    return list(db.scalars(
        select(GroupInvitation).where(GroupInvitation.group_id == group_id).order_by(GroupInvitation.created_at)
    ))


def list_my_invitations(db: Session, teacher_id: str) -> List[GroupInvitation]:
    return list(db.scalars(
        select(GroupInvitation)
        .where(GroupInvitation.invited_teacher_id == teacher_id,
               GroupInvitation.status == InvitationStatus.PENDING)
        .order_by(GroupInvitation.created_at)
    ))


def _pending_for(db: Session, invitation_id: str, teacher_id: str) -> GroupInvitation:
    invitation = db.get(GroupInvitation, invitation_id)
    if invitation is None or invitation.invited_teacher_id != teacher_id:
        raise NotFound("Invitation", invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise InvalidState(f"Invitation {invitation_id} is already {invitation.status.value}")
    return invitation


def accept_invitation(db: Session, teacher_id: str, invitation_id: str) -> GroupMember:
    invitation = _pending_for(db, invitation_id, teacher_id)
    invitation.status = InvitationStatus.ACCEPTED
    member = membership(db, invitation.group_id, teacher_id)
    if member is None:
        member = GroupMember(teacher_id=teacher_id, role=GroupRole.MEMBER)
        invitation.group.members.append(member)
    db.commit()
    db.refresh(member)
    logger.info("Group %s: %s joined", invitation.group_id, teacher_id)
    return member


def decline_invitation(db: Session, teacher_id: str, invitation_id: str) -> GroupInvitation:
    invitation = _pending_for(db, invitation_id, teacher_id)
    invitation.status = InvitationStatus.DECLINED
    db.commit()
    db.refresh(invitation)
    return invitation


def cancel_invitation(db: Session, teacher_id: str, group_id: str, invitation_id: str) -> None:
    group, _ = _member_group(db, group_id, teacher_id, MANAGERS)
    invitation = db.get(GroupInvitation, invitation_id)
    if invitation is None or invitation.group_id != group.id:
        raise NotFound("Invitation", invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise InvalidState(f"Invitation {invitation_id} is already {invitation.status.value}")
    group.invitations.remove(invitation)
    db.commit()
