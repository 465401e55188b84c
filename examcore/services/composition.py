"""
Exams, their sections and question assignments.

An exam's composition is always read and written as one shape: an ordered
list of sections, each with its ordered questions, plus the questions that
sit directly on the exam. Flat (legacy) exams simply have no sections.
Writes replace the whole composition inside one transaction.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examcore.core.errors import ExamNotActive, InvalidState, NotFound, ValidationError
from examcore.models.content import parse_question_content
from examcore.models.orm import Exam, ExamQuestion, ExamSection, ExamStatus, Question
from examcore.services.sharing import accessible_question_ids

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"title", "description", "time_limit_minutes", "lock_on_tab_leave"}


@dataclass
class SectionSpec:
    title: str
    order_index: int
    question_ids: List[str] = field(default_factory=list)
    description: Optional[str] = None
    id: Optional[str] = None


@dataclass
class ComposedQuestion:
    question: Question
    order_index: int
    section_id: Optional[str] = None


@dataclass
class ComposedSection:
    section: ExamSection
    questions: List[ComposedQuestion]

    @property
    def total_points(self) -> int:
        return sum(cq.question.points for cq in self.questions)


@dataclass
class Composition:
    exam: Exam
    sections: List[ComposedSection]
    unsectioned: List[ComposedQuestion]

    @property
    def has_sections(self) -> bool:
        return bool(self.sections)

    @property
    def questions(self) -> List[ComposedQuestion]:
        """Every question in presentation order: sections first, then loose questions."""
        ordered = [cq for s in self.sections for cq in s.questions]
        return ordered + self.unsectioned

    @property
    def total_points(self) -> int:
        return sum(cq.question.points for cq in self.questions)


# ========== Exams ==========

def get_exam(db: Session, exam_id: str, owner_id: Optional[str] = None) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None or (owner_id is not None and exam.owner_id != owner_id):
        raise NotFound("Exam", exam_id)
    return exam


def list_exams(db: Session, owner_id: str) -> List[Exam]:
    return list(db.scalars(select(Exam).where(Exam.owner_id == owner_id).order_by(Exam.created_at.desc())))


def _check_time_limit(minutes: Optional[int]) -> None:
    if minutes is not None and (isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 1):
        raise ValidationError("time_limit_minutes must be a positive integer")


def _require_draft(exam: Exam) -> None:
    if exam.status != ExamStatus.DRAFT:
        raise InvalidState(f"Exam {exam.id} is {exam.status.value}; only draft exams can be changed")


def create_exam(db: Session, owner_id: str, *, title: str, description: Optional[str] = None,
                time_limit_minutes: Optional[int] = None, lock_on_tab_leave: bool = False) -> Exam:
    if not title or not title.strip():
        raise ValidationError("Title is required")
    _check_time_limit(time_limit_minutes)
    exam = Exam(owner_id=owner_id, title=title.strip(), description=description,
                time_limit_minutes=time_limit_minutes, lock_on_tab_leave=lock_on_tab_leave)
    db.add(exam)
    db.commit()
    db.refresh(exam)
    logger.info("Exam %s created by %s", exam.id, owner_id)
    return exam


def update_exam(db: Session, owner_id: str, exam_id: str, changes: Dict[str, Any]) -> Exam:
    exam = get_exam(db, exam_id, owner_id)
    _require_draft(exam)
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be changed: {sorted(unknown)}")
    if "title" in changes and (not changes["title"] or not changes["title"].strip()):
        raise ValidationError("Title is required")
    _check_time_limit(changes.get("time_limit_minutes"))
    for key, value in changes.items():
        setattr(exam, key, value.strip() if key == "title" else value)
    db.commit()
    db.refresh(exam)
    return exam


def delete_exam(db: Session, owner_id: str, exam_id: str) -> None:
    exam = get_exam(db, exam_id, owner_id)
    if exam.status == ExamStatus.ACTIVE:
        raise InvalidState(f"Exam {exam.id} is active; close it before deleting")
    db.delete(exam)
    db.commit()
    logger.info("Exam %s deleted by %s", exam_id, owner_id)


# ========== Lifecycle ==========

def _transition(db: Session, exam: Exam, expected: ExamStatus, target: ExamStatus) -> Exam:
    if exam.status != expected:
        raise InvalidState(f"Exam {exam.id} is {exam.status.value}; expected {expected.value}")
    exam.status = target
    db.commit()
    db.refresh(exam)
    logger.info("Exam %s %s -> %s", exam.id, expected.value, target.value)
    return exam


def activate(db: Session, owner_id: str, exam_id: str) -> Exam:
    return _transition(db, get_exam(db, exam_id, owner_id), ExamStatus.DRAFT, ExamStatus.ACTIVE)


def close(db: Session, owner_id: str, exam_id: str) -> Exam:
    return _transition(db, get_exam(db, exam_id, owner_id), ExamStatus.ACTIVE, ExamStatus.CLOSED)


def duplicate(db: Session, owner_id: str, exam_id: str) -> Exam:
    """Copy an exam and its composition into a new draft. Sessions and answers stay behind."""
    source = get_exam(db, exam_id, owner_id)
    composition = get_composition(db, source.id)
    copy = Exam(owner_id=source.owner_id, title=f"{source.title} (copy)", description=source.description,
                time_limit_minutes=source.time_limit_minutes, lock_on_tab_leave=source.lock_on_tab_leave)
    try:
        db.add(copy)
        db.flush()
        for cs in composition.sections:
            section = ExamSection(exam_id=copy.id, title=cs.section.title, description=cs.section.description,
                                  order_index=cs.section.order_index)
            db.add(section)
            db.flush()
            for cq in cs.questions:
                db.add(ExamQuestion(exam_id=copy.id, question_id=cq.question.id, section_id=section.id,
                                    order_index=cq.order_index))
        for cq in composition.unsectioned:
            db.add(ExamQuestion(exam_id=copy.id, question_id=cq.question.id, order_index=cq.order_index))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(copy)
    logger.info("Exam %s duplicated as %s", source.id, copy.id)
    return copy


# ========== Composition ==========

def _coerce_specs(sections: Iterable[Any]) -> List[SectionSpec]:
    specs = []
    for s in sections:
        if isinstance(s, SectionSpec):
            specs.append(s)
        elif isinstance(s, dict):
            specs.append(SectionSpec(
                title=s.get("title", ""), order_index=s.get("order_index", s.get("orderIndex")),
                question_ids=list(s.get("question_ids", s.get("questionIds", []))),
                description=s.get("description"), id=s.get("id"),
            ))
        else:
            raise ValidationError(f"Unsupported section payload: {type(s).__name__}")
    return specs


def _check_questions_exist(db: Session, owner_id: str, question_ids: Sequence[str]) -> None:
    """Every id once, each owned by the exam owner or shared with them."""
    seen = set()
    for qid in question_ids:
        if qid in seen:
            raise ValidationError(f"Question {qid} appears more than once in the exam")
        seen.add(qid)
    if not seen:
        return
    found = accessible_question_ids(db, owner_id, seen)
    missing = seen - found
    if missing:
        raise NotFound("Question", sorted(missing)[0])


def _validate_specs(db: Session, exam: Exam, specs: List[SectionSpec]) -> None:
    indexes = [s.order_index for s in specs]
    if any(isinstance(i, bool) or not isinstance(i, int) for i in indexes) or sorted(indexes) != list(range(len(specs))):
        raise ValidationError("Section order_index values must be 0..n-1 without gaps or repeats")
    for s in specs:
        if not s.title or not s.title.strip():
            raise ValidationError("Section title is required")
    own_ids = set(db.scalars(select(ExamSection.id).where(ExamSection.exam_id == exam.id)))
    reused = [s.id for s in specs if s.id]
    if len(reused) != len(set(reused)):
        raise ValidationError("Section ids must be unique")
    foreign = [sid for sid in reused if sid not in own_ids]
    if foreign:
        raise ValidationError(f"Section {foreign[0]} does not belong to exam {exam.id}")
    _check_questions_exist(db, exam.owner_id, [qid for s in specs for qid in s.question_ids])


def _clear(db: Session, exam: Exam) -> None:
    exam.exam_questions.clear()
    exam.sections.clear()
    # deletes must reach the database before re-inserting rows under the same keys
    db.flush()


def save_composition(db: Session, owner_id: str, exam_id: str, sections: Iterable[Any]) -> Composition:
    """Replace the exam's sections and question assignments as one unit.

    Section order follows the caller's ``order_index``; question order inside
    a section follows the order of ``question_ids``. Nothing is written when
    validation fails, and a database failure rolls everything back.
    """
    exam = get_exam(db, exam_id, owner_id)
    _require_draft(exam)
    specs = sorted(_coerce_specs(sections), key=lambda s: s.order_index if isinstance(s.order_index, int) else -1)
    _validate_specs(db, exam, specs)
    try:
        _clear(db, exam)
        for spec in specs:
            section = ExamSection(exam_id=exam.id, title=spec.title.strip(), description=spec.description,
                                  order_index=spec.order_index)
            if spec.id:
                section.id = spec.id
            exam.sections.append(section)
            db.flush()
            for position, qid in enumerate(spec.question_ids):
                exam.exam_questions.append(
                    ExamQuestion(exam_id=exam.id, question_id=qid, section_id=section.id, order_index=position)
                )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Composition replace failed for exam %s; nothing was changed", exam_id)
        raise
    logger.info("Exam %s composition replaced: %d section(s)", exam_id, len(specs))
    return get_composition(db, exam_id)


def assign_questions(db: Session, owner_id: str, exam_id: str, question_ids: Sequence[str]) -> Composition:
    """Flat replace: the exam ends up without sections, questions in list order."""
    exam = get_exam(db, exam_id, owner_id)
    _require_draft(exam)
    _check_questions_exist(db, exam.owner_id, question_ids)
    try:
        _clear(db, exam)
        for position, qid in enumerate(question_ids):
            exam.exam_questions.append(ExamQuestion(exam_id=exam.id, question_id=qid, order_index=position))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("Exam %s assigned %d unsectioned question(s)", exam_id, len(question_ids))
    return get_composition(db, exam_id)


def delete_section(db: Session, owner_id: str, exam_id: str, section_id: str) -> Composition:
    exam = get_exam(db, exam_id, owner_id)
    _require_draft(exam)
    section = db.get(ExamSection, section_id)
    if section is None or section.exam_id != exam.id:
        raise NotFound("Section", section_id)
    try:
        for eq in [eq for eq in exam.exam_questions if eq.section_id == section.id]:
            exam.exam_questions.remove(eq)
        exam.sections.remove(section)
        db.flush()
        for position, remaining in enumerate(sorted(exam.sections, key=lambda s: s.order_index)):
            if remaining.order_index != position:
                remaining.order_index = position
                db.flush()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return get_composition(db, exam_id)


def get_composition(db: Session, exam_id: str, owner_id: Optional[str] = None) -> Composition:
    exam = get_exam(db, exam_id, owner_id)
    sections = list(db.scalars(
        select(ExamSection).where(ExamSection.exam_id == exam.id).order_by(ExamSection.order_index)
    ))
    rows = db.execute(
        select(ExamQuestion, Question)
        .join(Question, Question.id == ExamQuestion.question_id)
        .where(ExamQuestion.exam_id == exam.id)
        .order_by(ExamQuestion.order_index)
    ).all()
    by_section: Dict[Optional[str], List[ComposedQuestion]] = {}
    for eq, q in rows:
        by_section.setdefault(eq.section_id, []).append(ComposedQuestion(q, eq.order_index, eq.section_id))
    return Composition(
        exam=exam,
        sections=[ComposedSection(s, by_section.get(s.id, [])) for s in sections],
        unsectioned=by_section.get(None, []),
    )


def _student_question(cq: ComposedQuestion) -> Dict[str, Any]:
    q = cq.question
    return {
        "id": q.id, "type": q.type.value, "title": q.title, "points": q.points, "order_index": cq.order_index,
        "content": parse_question_content(q.type, q.content).student_view(q.id),
    }


def get_student_view(db: Session, exam_id: str) -> Dict[str, Any]:
    """What a student may see of an active exam: structure and prompts, no answer keys."""
    composition = get_composition(db, exam_id)
    exam = composition.exam
    if exam.status != ExamStatus.ACTIVE:
        raise ExamNotActive(f"Exam {exam.id} is not active")
    return {
        "id": exam.id, "title": exam.title, "description": exam.description,
        "time_limit_minutes": exam.time_limit_minutes, "lock_on_tab_leave": exam.lock_on_tab_leave,
        "total_points": composition.total_points,
        "sections": [
            {"id": cs.section.id, "title": cs.section.title, "description": cs.section.description,
             "order_index": cs.section.order_index, "total_points": cs.total_points,
             "questions": [_student_question(cq) for cq in cs.questions]}
            for cs in composition.sections
        ],
        "questions": [_student_question(cq) for cq in composition.unsectioned],
    }
