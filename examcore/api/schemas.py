from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from examcore.models.content import BloomLevel, QuestionType
from examcore.models.orm import ExamStatus, GroupRole, InvitationStatus
from examcore.services.composition import ComposedQuestion, Composition
from examcore.services.groups import GroupSummary
from examcore.services.results import SessionResult
from examcore.services.scoring import QuestionScore, ScoreTotal


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    owner_id: str
    type: QuestionType
    title: str
    content: Dict[str, Any]
    points: int
    bloom_level: Optional[BloomLevel] = None
    subject_id: Optional[str] = None
    created_at: datetime


class SubjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    created_at: datetime


class GroupOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_by: str
    created_at: datetime
    my_role: GroupRole
    member_count: int

    @classmethod
    def build(cls, s: GroupSummary) -> "GroupOut":
        g = s.group
        return cls(id=g.id, name=g.name, description=g.description, created_by=g.created_by,
                   created_at=g.created_at, my_role=s.my_role, member_count=s.member_count)


class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    group_id: str
    teacher_id: str
    role: GroupRole
    joined_at: datetime


class InvitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    group_id: str
    invited_teacher_id: str
    invited_by: str
    status: InvitationStatus
    created_at: datetime


class ShareOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    question_id: str
    group_id: str
    shared_by: str
    shared_at: datetime


class ExamOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    status: ExamStatus
    time_limit_minutes: Optional[int] = None
    lock_on_tab_leave: bool
    created_at: datetime


class ComposedQuestionOut(QuestionOut):
    order_index: int
    section_id: Optional[str] = None

    @classmethod
    def build(cls, cq: ComposedQuestion) -> "ComposedQuestionOut":
        base = QuestionOut.model_validate(cq.question).model_dump()
        return cls(**base, order_index=cq.order_index, section_id=cq.section_id)


class SectionOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    order_index: int
    total_points: int
    questions: List[ComposedQuestionOut]


class CompositionOut(BaseModel):
    exam: ExamOut
    total_points: int
    sections: List[SectionOut]
    questions: List[ComposedQuestionOut]

    @classmethod
    def build(cls, c: Composition) -> "CompositionOut":
        return cls(
            exam=ExamOut.model_validate(c.exam),
            total_points=c.total_points,
            sections=[
                SectionOut(id=s.section.id, title=s.section.title, description=s.section.description,
                           order_index=s.section.order_index, total_points=s.total_points,
                           questions=[ComposedQuestionOut.build(cq) for cq in s.questions])
                for s in c.sections
            ],
            questions=[ComposedQuestionOut.build(cq) for cq in c.unsectioned],
        )


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    exam_id: str
    student_name: str
    student_email: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    is_locked: bool
    tab_leave_count: int


class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    session_id: str
    question_id: str
    content: Dict[str, Any]
    points_awarded: Optional[int] = None
    updated_at: datetime


class SessionWithAnswersOut(SessionOut):
    answers: List[AnswerOut]


class QuestionScoreOut(BaseModel):
    question_id: str
    type: QuestionType
    max_points: int
    answered: bool
    auto_points: Optional[int] = None
    points_awarded: Optional[int] = None
    effective_points: int
    needs_manual_grading: bool

    @classmethod
    def build(cls, s: QuestionScore) -> "QuestionScoreOut":
        return cls(question_id=s.question_id, type=s.type, max_points=s.max_points, answered=s.answered,
                   auto_points=s.auto_points, points_awarded=s.points_awarded,
                   effective_points=s.effective_points, needs_manual_grading=s.needs_manual_grading)


class ScoreTotalOut(BaseModel):
    max_points: int
    awarded_points: int
    pending_manual: int
    questions: List[QuestionScoreOut]

    @classmethod
    def build(cls, t: ScoreTotal) -> "ScoreTotalOut":
        return cls(max_points=t.max_points, awarded_points=t.awarded_points, pending_manual=t.pending_manual,
                   questions=[QuestionScoreOut.build(q) for q in t.questions])


class SectionScoreOut(BaseModel):
    section_id: str
    title: str
    score: ScoreTotalOut


class SessionResultOut(BaseModel):
    session: SessionOut
    exam: ScoreTotalOut
    sections: List[SectionScoreOut]
    unsectioned: ScoreTotalOut

    @classmethod
    def build(cls, r: SessionResult) -> "SessionResultOut":
        return cls(
            session=SessionOut.model_validate(r.session),
            exam=ScoreTotalOut.build(r.exam),
            sections=[SectionScoreOut(section_id=s.section_id, title=s.title, score=ScoreTotalOut.build(s.score))
                      for s in r.sections],
            unsectioned=ScoreTotalOut.build(r.unsectioned),
        )
