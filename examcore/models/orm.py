import enum
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from examcore.core.database import Base
from examcore.models.content import BloomLevel, QuestionType


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(cls):
    return SQLEnum(cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])


class ExamStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class GroupRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Subject(Base):
    """Private tag for a teacher's own questions."""
    __tablename__ = "subjects"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_subject_owner_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (Index("idx_questions_owner", "owner_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[QuestionType] = mapped_column(_enum(QuestionType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    bloom_level: Mapped[Optional[BloomLevel]] = mapped_column(_enum(BloomLevel), nullable=True)
    subject_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    shares: Mapped[List["QuestionShare"]] = relationship(back_populates="question", cascade="all, delete-orphan")


class TeacherGroup(Base):
    __tablename__ = "teacher_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    members: Mapped[List["GroupMember"]] = relationship(
        back_populates="group", cascade="all, delete-orphan", order_by="GroupMember.joined_at"
    )
    invitations: Mapped[List["GroupInvitation"]] = relationship(back_populates="group", cascade="all, delete-orphan")
    shares: Mapped[List["QuestionShare"]] = relationship(back_populates="group", cascade="all, delete-orphan")


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (Index("idx_group_members_teacher", "teacher_id"),)

    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teacher_groups.id", ondelete="CASCADE"), primary_key=True
    )
    teacher_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    role: Mapped[GroupRole] = mapped_column(_enum(GroupRole), nullable=False, default=GroupRole.MEMBER)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    group: Mapped["TeacherGroup"] = relationship(back_populates="members")


class GroupInvitation(Base):
    __tablename__ = "group_invitations"
    __table_args__ = (Index("idx_group_invitations_invitee", "invited_teacher_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    group_id: Mapped[str] = mapped_column(String(36), ForeignKey("teacher_groups.id", ondelete="CASCADE"), nullable=False)
    invited_teacher_id: Mapped[str] = mapped_column(String(255), nullable=False)
    invited_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        _enum(InvitationStatus), nullable=False, default=InvitationStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    group: Mapped["TeacherGroup"] = relationship(back_populates="invitations")


class QuestionShare(Base):
    __tablename__ = "question_shares"

    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teacher_groups.id", ondelete="CASCADE"), primary_key=True
    )
    shared_by: Mapped[str] = mapped_column(String(255), nullable=False)
    shared_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    question: Mapped["Question"] = relationship(back_populates="shares")
    group: Mapped["TeacherGroup"] = relationship(back_populates="shares")


class Exam(Base):
    __tablename__ = "exams"
    __table_args__ = (Index("idx_exams_owner", "owner_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ExamStatus] = mapped_column(_enum(ExamStatus), nullable=False, default=ExamStatus.DRAFT)
    time_limit_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lock_on_tab_leave: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sections: Mapped[List["ExamSection"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", order_by="ExamSection.order_index"
    )
    exam_questions: Mapped[List["ExamQuestion"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", order_by="ExamQuestion.order_index"
    )
    sessions: Mapped[List["ExamSession"]] = relationship(back_populates="exam", cascade="all, delete-orphan")


class ExamSection(Base):
    __tablename__ = "exam_sections"
    __table_args__ = (UniqueConstraint("exam_id", "order_index", name="uq_section_order"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    exam: Mapped["Exam"] = relationship(back_populates="sections")


class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (Index("idx_eq_section", "section_id"),)

    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), primary_key=True)
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id"), primary_key=True)
    section_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("exam_sections.id", ondelete="CASCADE"), nullable=True
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    exam: Mapped["Exam"] = relationship(back_populates="exam_questions")
    question: Mapped["Question"] = relationship()


class ExamSession(Base):
    __tablename__ = "exam_sessions"
    __table_args__ = (UniqueConstraint("exam_id", "student_email", name="uq_session_exam_email"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    student_email: Mapped[str] = mapped_column(String(320), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tab_leave_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    exam: Mapped["Exam"] = relationship(back_populates="sessions")
    answers: Mapped[List["Answer"]] = relationship(back_populates="session", cascade="all, delete-orphan")

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("session_id", "question_id", name="uq_answer_session_question"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id"), nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    points_awarded: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    session: Mapped["ExamSession"] = relationship(back_populates="answers")
