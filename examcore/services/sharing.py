"""
Question sharing between teachers through groups.

A teacher can read and copy a question, or put it into an exam, when they
own it or when it is shared into a group they belong to. Everything else is
reported as not found, so ids of private questions reveal nothing.
"""
import logging
from typing import Iterable, List, Set

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from examcore.core.errors import NotFound, ValidationError
from examcore.models.orm import GroupMember, Question, QuestionShare
from examcore.services import groups

logger = logging.getLogger(__name__)


def _shared_with(teacher_id: str):
    """Subquery of question ids shared into any group the teacher belongs to."""
    return (
        select(QuestionShare.question_id)
        .join(GroupMember, GroupMember.group_id == QuestionShare.group_id)
        .where(GroupMember.teacher_id == teacher_id)
    )


def accessible_question_ids(db: Session, teacher_id: str, question_ids: Iterable[str]) -> Set[str]:
    ids = set(question_ids)
    if not ids:
        return set()
    stmt = select(Question.id).where(
        Question.id.in_(ids),
        or_(Question.owner_id == teacher_id, Question.id.in_(_shared_with(teacher_id))),
    )
    return set(db.scalars(stmt))


def get_accessible_question(db: Session, teacher_id: str, question_id: str) -> Question:
    if question_id not in accessible_question_ids(db, teacher_id, [question_id]):
        raise NotFound("Question", question_id)
    return db.get(Question, question_id)


def _own_question(db: Session, owner_id: str, question_id: str) -> Question:
    q = db.get(Question, question_id)
    if q is None or q.owner_id != owner_id:
        raise NotFound("Question", question_id)
    return q


def share_question(db: Session, owner_id: str, question_id: str, group_ids: Iterable[str]) -> List[QuestionShare]:
    """Share an owned question into groups the owner belongs to. Existing shares are kept as they are."""
    q = _own_question(db, owner_id, question_id)
    wanted = list(dict.fromkeys(group_ids))
    if not wanted:
        raise ValidationError("At least one group id is required")
    mine = set(groups.member_group_ids(db, owner_id))
    for gid in wanted:
        if gid not in mine:
            raise NotFound("Group", gid)
    existing = {s.group_id for s in q.shares}
    for gid in wanted:
        if gid not in existing:
            q.shares.append(QuestionShare(group_id=gid, shared_by=owner_id))
    db.commit()
    db.refresh(q)
    logger.info("Question %s shared with %d group(s) by %s", q.id, len(wanted), owner_id)
    return list(q.shares)


def unshare_question(db: Session, owner_id: str, question_id: str, group_id: str) -> None:
    q = _own_question(db, owner_id, question_id)
    share = next((s for s in q.shares if s.group_id == group_id), None)
    if share is None:
        raise NotFound("Share", group_id)
    q.shares.remove(share)
    db.commit()
    logger.info("Question %s unshared from group %s", q.id, group_id)


def list_question_shares(db: Session, owner_id: str, question_id: str) -> List[QuestionShare]:
    return list(_own_question(db, owner_id, question_id).shares)


def list_shared_questions(db: Session, teacher_id: str) -> List[Question]:
    """Questions other teachers shared into the caller's groups, each listed once."""
    stmt = (
        select(Question)
        .where(Question.id.in_(_shared_with(teacher_id)), Question.owner_id != teacher_id)
        .order_by(Question.created_at.desc())
    )
    return list(db.scalars(stmt))


def list_group_questions(db: Session, teacher_id: str, group_id: str) -> List[Question]:
    groups.get_group(db, group_id, teacher_id)
    stmt = (
        select(Question)
        .join(QuestionShare, QuestionShare.question_id == Question.id)
        .where(QuestionShare.group_id == group_id)
        .order_by(QuestionShare.shared_at.desc())
    )
    return list(db.scalars(stmt))
