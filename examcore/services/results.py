import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from examcore.core.errors import ValidationError
from examcore.models.content import parse_question_content, validate_answer_content
from examcore.models.orm import Answer, ExamSession
from examcore.services.composition import ComposedQuestion, Composition, get_composition
from examcore.services.scoring import QuestionScore, ScoreTotal, auto_score, total
from examcore.services.sessions import get_session, list_sessions

logger = logging.getLogger(__name__)


@dataclass
class SectionResult:
    section_id: str
    title: str
    score: ScoreTotal


@dataclass
class SessionResult:
    session: ExamSession
    exam: ScoreTotal
    sections: List[SectionResult]
    unsectioned: ScoreTotal


def score_question(cq: ComposedQuestion, answer: Optional[Answer]) -> QuestionScore:
    q = cq.question
    content = parse_question_content(q.type, q.content)
    parsed = None
    if answer is not None:
        try:
            parsed = content.resolve_answer(q.id, validate_answer_content(q.type, answer.content))
        except ValidationError:
            # stored before the question was edited into another shape
            logger.warning("Answer %s no longer matches question %s; scoring as unanswered", answer.id, q.id)
    return QuestionScore(
        question_id=q.id,
        type=q.type,
        max_points=q.points,
        answered=answer is not None,
        auto_points=auto_score(q.type, content, q.points, parsed),
        points_awarded=answer.points_awarded if answer is not None else None,
    )


def build_result(composition: Composition, session: ExamSession, answers: List[Answer]) -> SessionResult:
    by_question: Dict[str, Answer] = {a.question_id: a for a in answers}
    scores = {cq.question.id: score_question(cq, by_question.get(cq.question.id)) for cq in composition.questions}
    sections = [
        SectionResult(cs.section.id, cs.section.title, total(scores[cq.question.id] for cq in cs.questions))
        for cs in composition.sections
    ]
    return SessionResult(
        session=session,
        exam=total(scores[cq.question.id] for cq in composition.questions),
        sections=sections,
        unsectioned=total(scores[cq.question.id] for cq in composition.unsectioned),
    )


def grade_session(db: Session, session_id: str) -> SessionResult:
    session = get_session(db, session_id)
    composition = get_composition(db, session.exam_id)
    answers = list(db.scalars(select(Answer).where(Answer.session_id == session.id)))
    return build_result(composition, session, answers)


def exam_results(db: Session, owner_id: str, exam_id: str) -> List[SessionResult]:
    composition = get_composition(db, exam_id, owner_id)
    sessions = list_sessions(db, exam_id)
    answers: Dict[str, List[Answer]] = {}
    if sessions:
        rows = db.scalars(select(Answer).where(Answer.session_id.in_([s.id for s in sessions])))
        for a in rows:
            answers.setdefault(a.session_id, []).append(a)
    return [build_result(composition, s, answers.get(s.id, [])) for s in sessions]
