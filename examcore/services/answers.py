"""
Answer persistence: one row per (session, question), written by upsert.

Students call ``save_answer`` on every change; the write is a single
INSERT ... ON CONFLICT DO UPDATE so bursts never produce duplicate rows and
the last write wins per key. ``points_awarded`` is only ever written by
``award_points``.
"""
import logging
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from examcore.core import cache
from examcore.core.errors import ExamNotActive, NotFound, SessionSubmitted, ValidationError
from examcore.models.content import check_answer_fits, dump, parse_question_content, validate_answer_content
from examcore.models.orm import Answer, ExamQuestion, ExamStatus, Question, new_id, utcnow
from examcore.services.sessions import get_session

logger = logging.getLogger(__name__)

_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _upsert_statement(db: Session, values: dict):
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"answer upsert is not available for dialect {dialect!r}")
    stmt = insert(Answer).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[Answer.session_id, Answer.question_id],
        set_={"content": stmt.excluded.content, "updated_at": stmt.excluded.updated_at},
    )


def get_answer(db: Session, session_id: str, question_id: str) -> Optional[Answer]:
    return db.scalar(select(Answer).where(Answer.session_id == session_id, Answer.question_id == question_id))


def get_answer_by_id(db: Session, answer_id: str) -> Answer:
    answer = db.get(Answer, answer_id)
    if answer is None:
        raise NotFound("Answer", answer_id)
    return answer


def list_answers(db: Session, session_id: str) -> List[Answer]:
    get_session(db, session_id)
    return list(db.scalars(select(Answer).where(Answer.session_id == session_id).order_by(Answer.updated_at)))


def save_answer(db: Session, session_id: str, question_id: str, content: Any) -> Answer:
    session = get_session(db, session_id)
    if session.is_submitted:
        raise SessionSubmitted(f"Session {session.id} is submitted; answers are frozen")
    if session.exam.status != ExamStatus.ACTIVE:
        raise ExamNotActive(f"Exam {session.exam_id} no longer accepts answers")
    question = db.scalar(
        select(Question)
        .join(ExamQuestion, ExamQuestion.question_id == Question.id)
        .where(ExamQuestion.exam_id == session.exam_id, Question.id == question_id)
    )
    if question is None:
        raise NotFound("Question", question_id)
    parsed = validate_answer_content(question.type, content)
    check_answer_fits(parse_question_content(question.type, question.content), parsed, question.id)

    db.execute(_upsert_statement(db, {
        "id": new_id(), "session_id": session.id, "question_id": question.id,
        "content": dump(parsed), "updated_at": utcnow(),
    }))
    db.commit()
    answer = get_answer(db, session.id, question.id)
    # a cached instance from an earlier read would still hold the old content
    db.refresh(answer)
    cache.publish_change("answer_saved", session.exam_id, session_id=session.id, question_id=question.id)
    return answer


def award_points(db: Session, answer_id: str, points: int) -> Answer:
    """Teacher grading. Allowed whatever the session state; only range-checked."""
    answer = get_answer_by_id(db, answer_id)
    question = db.get(Question, answer.question_id)
    if isinstance(points, bool) or not isinstance(points, int) or not 0 <= points <= question.points:
        raise ValidationError(f"Points must be an integer between 0 and {question.points}")
    answer.points_awarded = points
    db.commit()
    db.refresh(answer)
    logger.info("Answer %s awarded %d/%d", answer.id, points, question.points)
    cache.publish_change("points_awarded", answer.session.exam_id, session_id=answer.session_id,
                         answer_id=answer.id, points_awarded=points)
    return answer
