"""
Student exam sessions: join, tab-leave lock, unlock, submit.

A session is Active from the moment it exists; ``is_locked`` is an
orthogonal flag; ``submitted_at`` makes it terminal. Time limits are never
enforced here: callers read ``remaining_seconds`` and call ``submit``.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from examcore.core import cache
from examcore.core.errors import AlreadySubmitted, ExamNotActive, NotFound, ValidationError
from examcore.models.orm import Exam, ExamSession, ExamStatus, utcnow

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def as_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def get_session(db: Session, session_id: str) -> ExamSession:
    session = db.get(ExamSession, session_id)
    if session is None:
        raise NotFound("Session", session_id)
    return session


def get_session_with_answers(db: Session, session_id: str) -> ExamSession:
    session = db.scalar(
        select(ExamSession).options(selectinload(ExamSession.answers)).where(ExamSession.id == session_id)
    )
    if session is None:
        raise NotFound("Session", session_id)
    return session


def list_sessions(db: Session, exam_id: str) -> List[ExamSession]:
    return list(db.scalars(
        select(ExamSession).where(ExamSession.exam_id == exam_id).order_by(ExamSession.started_at.desc())
    ))


def _find(db: Session, exam_id: str, email: str) -> Optional[ExamSession]:
    return db.scalar(select(ExamSession).where(ExamSession.exam_id == exam_id, ExamSession.student_email == email))


def join(db: Session, exam_id: str, student_name: str, student_email: str) -> ExamSession:
    """Start or resume the student's attempt; (exam, email) identifies it."""
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise NotFound("Exam", exam_id)
    if exam.status != ExamStatus.ACTIVE:
        raise ExamNotActive(f"Exam {exam_id} is not open for students")
    email = normalize_email(student_email)
    if not email:
        raise ValidationError("Email is required")
    if not student_name or not student_name.strip():
        raise ValidationError("Name is required")

    existing = _find(db, exam_id, email)
    if existing is not None:
        return existing
    session = ExamSession(exam_id=exam_id, student_name=student_name.strip(), student_email=email)
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent join for the same pair won the insert
        db.rollback()
        existing = _find(db, exam_id, email)
        if existing is None:
            raise
        return existing
    db.refresh(session)
    logger.info("Session %s joined exam %s", session.id, exam_id)
    cache.publish_change("session_joined", exam_id, session_id=session.id)
    return session


def record_tab_leave(db: Session, session_id: str) -> ExamSession:
    """Count a tab leave and lock the session, when the exam asks for it."""
    session = get_session(db, session_id)
    if session.is_submitted or not session.exam.lock_on_tab_leave:
        return session
    db.execute(
        update(ExamSession)
        .where(ExamSession.id == session.id)
        .values(tab_leave_count=ExamSession.tab_leave_count + 1, is_locked=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(session)
    logger.info("Session %s locked after tab leave #%d", session.id, session.tab_leave_count)
    cache.publish_change("session_locked", session.exam_id, session_id=session.id,
                         tab_leave_count=session.tab_leave_count)
    return session


def unlock(db: Session, session_id: str) -> ExamSession:
    session = get_session(db, session_id)
    if not session.is_locked:
        return session
    session.is_locked = False
    db.commit()
    db.refresh(session)
    logger.info("Session %s unlocked", session.id)
    cache.publish_change("session_unlocked", session.exam_id, session_id=session.id)
    return session


def submit(db: Session, session_id: str) -> ExamSession:
    """Freeze the attempt. Unanswered questions are fine; a second call fails."""
    session = get_session(db, session_id)
    if session.is_submitted:
        raise AlreadySubmitted(f"Session {session.id} was already submitted")
    if session.exam.status != ExamStatus.ACTIVE:
        raise ExamNotActive(f"Exam {session.exam_id} no longer accepts submissions")
    # conditional update so concurrent submits stamp the session exactly once
    result = db.execute(
        update(ExamSession)
        .where(ExamSession.id == session.id, ExamSession.submitted_at.is_(None))
        .values(submitted_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise AlreadySubmitted(f"Session {session.id} was already submitted")
    db.commit()
    db.refresh(session)
    logger.info("Session %s submitted", session.id)
    cache.publish_change("session_submitted", session.exam_id, session_id=session.id)
    return session


def remaining_seconds(session: ExamSession, exam: Exam, now: Optional[datetime] = None) -> Optional[int]:
    """Seconds left on the clock, or None for untimed exams. Advisory only."""
    if exam.time_limit_minutes is None:
        return None
    now = now or datetime.now(timezone.utc)
    elapsed = (as_utc(now) - as_utc(session.started_at)).total_seconds()
    return max(0, int(exam.time_limit_minutes * 60 - elapsed))
