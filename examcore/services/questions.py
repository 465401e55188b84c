import copy
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from examcore.core.errors import InvalidState, NotFound, ValidationError
from examcore.models.content import BloomLevel, QuestionType, dump, validate_question_content, variant_for
from examcore.models.orm import ExamQuestion, Question
from examcore.services.sharing import get_accessible_question
from examcore.services.subjects import require_own_subject

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"title", "type", "content", "points", "bloom_level", "subject_id"}


def _bloom(value) -> Optional[BloomLevel]:
    if not value:
        return None
    try:
        return BloomLevel(value)
    except ValueError:
        raise ValidationError(f"Unknown Bloom level: {value!r}")


def _check_scalars(title: str, points: int) -> None:
    if not title or not title.strip():
        raise ValidationError("Title is required")
    if not isinstance(points, int) or isinstance(points, bool) or points < 1:
        raise ValidationError("Points must be a positive integer")


def get_question(db: Session, question_id: str, owner_id: Optional[str] = None) -> Question:
    q = db.get(Question, question_id)
    if q is None or (owner_id is not None and q.owner_id != owner_id):
        raise NotFound("Question", question_id)
    return q


def list_questions(db: Session, owner_id: str, qtype: Optional[QuestionType] = None,
                   subject_id: Optional[str] = None) -> List[Question]:
    stmt = select(Question).where(Question.owner_id == owner_id)
    if qtype is not None:
        stmt = stmt.where(Question.type == variant_for(qtype).type)
    if subject_id is not None:
        stmt = stmt.where(Question.subject_id == subject_id)
    return list(db.scalars(stmt.order_by(Question.created_at.desc())))


def create_question(db: Session, owner_id: str, *, type: QuestionType, title: str, content: Dict[str, Any],
                    points: int, bloom_level: Optional[BloomLevel] = None, subject_id: Optional[str] = None) -> Question:
    _check_scalars(title, points)
    parsed = validate_question_content(type, content)
    q = Question(
        owner_id=owner_id, type=variant_for(type).type, title=title.strip(), content=dump(parsed),
        points=points, bloom_level=_bloom(bloom_level), subject_id=require_own_subject(db, owner_id, subject_id),
    )
    db.add(q)
    db.commit()
    db.refresh(q)
    logger.info("Question %s (%s) created by %s", q.id, q.type.value, owner_id)
    return q


def update_question(db: Session, owner_id: str, question_id: str, changes: Dict[str, Any]) -> Question:
    q = get_question(db, question_id, owner_id)
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be changed: {sorted(unknown)}")
    qtype = variant_for(changes.get("type", q.type)).type
    content = changes.get("content", q.content)
    title = changes.get("title", q.title)
    points = changes.get("points", q.points)
    _check_scalars(title, points)
    # switching type without new content fails here: no cross-type content survives
    parsed = validate_question_content(qtype, content)
    if "subject_id" in changes:
        subject_id = require_own_subject(db, owner_id, changes["subject_id"])
    q.type = qtype
    q.content = dump(parsed)
    q.title = title.strip()
    q.points = points
    if "bloom_level" in changes:
        q.bloom_level = _bloom(changes["bloom_level"])
    if "subject_id" in changes:
        q.subject_id = subject_id
    db.commit()
    db.refresh(q)
    return q


def delete_question(db: Session, owner_id: str, question_id: str) -> None:
    q = get_question(db, question_id, owner_id)
    in_use = db.scalar(select(ExamQuestion.exam_id).where(ExamQuestion.question_id == q.id).limit(1))
    if in_use is not None:
        raise InvalidState(f"Question {q.id} is used by exam {in_use}")
    db.delete(q)
    db.commit()
    logger.info("Question %s deleted by %s", question_id, owner_id)


def clone_as_unshared(question: Question, new_owner_id: str) -> Question:
    """Unsaved copy under a new owner. Subjects are private to their owner and are not carried over."""
    return Question(
        owner_id=new_owner_id,
        type=question.type,
        title=f"{question.title} (copy)",
        content=copy.deepcopy(question.content),
        points=question.points,
        bloom_level=question.bloom_level,
        subject_id=None,
    )


def copy_question(db: Session, question_id: str, new_owner_id: str) -> Question:
    """Copy an owned question, or one shared into a group of the new owner."""
    original = get_accessible_question(db, new_owner_id, question_id)
    clone = clone_as_unshared(original, new_owner_id)
    db.add(clone)
    db.commit()
    db.refresh(clone)
    logger.info("Question %s copied to %s for %s", original.id, clone.id, new_owner_id)
    return clone
