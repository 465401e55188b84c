"""
Subjects: a teacher's private tags for organising their own questions.

Subjects never travel with a question: copies drop them, and a question may
only point at a subject of its own owner.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from examcore.core.errors import Conflict, NotFound, ValidationError
from examcore.models.orm import Question, Subject

logger = logging.getLogger(__name__)


def _name(name: str) -> str:
    if not name or not name.strip():
        raise ValidationError("Subject name is required")
    return name.strip()


def get_subject(db: Session, subject_id: str, owner_id: str) -> Subject:
    subject = db.get(Subject, subject_id)
    if subject is None or subject.owner_id != owner_id:
        raise NotFound("Subject", subject_id)
    return subject


def require_own_subject(db: Session, owner_id: str, subject_id: Optional[str]) -> Optional[str]:
    """Pass-through for question writes; a foreign or unknown subject is NotFound."""
    if subject_id is None:
        return None
    return get_subject(db, subject_id, owner_id).id


def list_subjects(db: Session, owner_id: str) -> List[Subject]:
    return list(db.scalars(select(Subject).where(Subject.owner_id == owner_id).order_by(Subject.name)))


def _commit_unique(db: Session, name: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"Subject {name!r} already exists")


def create_subject(db: Session, owner_id: str, name: str) -> Subject:
    subject = Subject(owner_id=owner_id, name=_name(name))
    db.add(subject)
    _commit_unique(db, subject.name)
    db.refresh(subject)
    logger.info("Subject %s created by %s", subject.id, owner_id)
    return subject


def rename_subject(db: Session, owner_id: str, subject_id: str, name: str) -> Subject:
    subject = get_subject(db, subject_id, owner_id)
    subject.name = _name(name)
    _commit_unique(db, subject.name)
    db.refresh(subject)
    return subject


def delete_subject(db: Session, owner_id: str, subject_id: str) -> None:
    """Delete the subject; its questions stay, untagged."""
    subject = get_subject(db, subject_id, owner_id)
    db.execute(
        update(Question).where(Question.subject_id == subject.id).values(subject_id=None)
        .execution_options(synchronize_session="fetch")
    )
    db.delete(subject)
    db.commit()
    logger.info("Subject %s deleted by %s", subject_id, owner_id)
