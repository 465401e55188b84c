from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from examcore.api.schemas import CompositionOut, ExamOut, SessionOut, SessionResultOut
from examcore.core.auth import TokenData, require_teacher
from examcore.core.database import get_db
from examcore.services import composition as svc
from examcore.services import results as results_svc
from examcore.services import sessions as sessions_svc
from examcore.services.invitations import dispatch_invitations

router = APIRouter()


class ExamCreate(BaseModel):
    title: str
    description: Optional[str] = None
    time_limit_minutes: Optional[int] = Field(default=None, ge=1)
    lock_on_tab_leave: bool = False


class ExamUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    time_limit_minutes: Optional[int] = Field(default=None, ge=1)
    lock_on_tab_leave: Optional[bool] = None


class SectionIn(BaseModel):
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    order_index: int = Field(ge=0)
    question_ids: List[str] = Field(default_factory=list)


class CompositionIn(BaseModel):
    sections: List[SectionIn]


class QuestionAssignment(BaseModel):
    question_ids: List[str]


class ActivateIn(BaseModel):
    emails: List[str] = Field(default_factory=list)


class InvitationsOut(BaseModel):
    recipients: List[str]
    invalid: List[str]
    queued: bool
    job_id: Optional[str] = None
    error: Optional[str] = None


class ActivationOut(BaseModel):
    exam: ExamOut
    invitations: Optional[InvitationsOut] = None


@router.post("", response_model=ExamOut, status_code=201)
def create_exam(payload: ExamCreate, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.create_exam(db, user.sub, **payload.model_dump())


@router.get("", response_model=List[ExamOut])
def list_exams(user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.list_exams(db, user.sub)


@router.get("/{exam_id}", response_model=ExamOut)
def get_exam(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.get_exam(db, exam_id, user.sub)


@router.patch("/{exam_id}", response_model=ExamOut)
def update_exam(exam_id: str, payload: ExamUpdate, user: TokenData = Depends(require_teacher),
                db: Session = Depends(get_db)):
    return svc.update_exam(db, user.sub, exam_id, payload.model_dump(exclude_unset=True))


@router.delete("/{exam_id}", status_code=204)
def delete_exam(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    svc.delete_exam(db, user.sub, exam_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{exam_id}/composition", response_model=CompositionOut)
def get_composition(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return CompositionOut.build(svc.get_composition(db, exam_id, user.sub))


@router.put("/{exam_id}/composition", response_model=CompositionOut)
def save_composition(exam_id: str, payload: CompositionIn, user: TokenData = Depends(require_teacher),
                     db: Session = Depends(get_db)):
    specs = [svc.SectionSpec(**s.model_dump()) for s in payload.sections]
    return CompositionOut.build(svc.save_composition(db, user.sub, exam_id, specs))


@router.put("/{exam_id}/questions", response_model=CompositionOut)
def assign_questions(exam_id: str, payload: QuestionAssignment, user: TokenData = Depends(require_teacher),
                     db: Session = Depends(get_db)):
    return CompositionOut.build(svc.assign_questions(db, user.sub, exam_id, payload.question_ids))


@router.delete("/{exam_id}/sections/{section_id}", response_model=CompositionOut)
def delete_section(exam_id: str, section_id: str, user: TokenData = Depends(require_teacher),
                   db: Session = Depends(get_db)):
    return CompositionOut.build(svc.delete_section(db, user.sub, exam_id, section_id))


@router.post("/{exam_id}/activate", response_model=ActivationOut)
def activate_exam(exam_id: str, payload: Optional[ActivateIn] = None, user: TokenData = Depends(require_teacher),
                  db: Session = Depends(get_db)):
    exam = svc.activate(db, user.sub, exam_id)
    invitations = None
    if payload is not None and payload.emails:
        dispatch = dispatch_invitations(exam, payload.emails)
        invitations = InvitationsOut(**dispatch.__dict__)
    return ActivationOut(exam=ExamOut.model_validate(exam), invitations=invitations)


@router.post("/{exam_id}/close", response_model=ExamOut)
def close_exam(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.close(db, user.sub, exam_id)


@router.post("/{exam_id}/duplicate", response_model=ExamOut, status_code=201)
def duplicate_exam(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.duplicate(db, user.sub, exam_id)


@router.get("/{exam_id}/sessions", response_model=List[SessionOut])
def list_sessions(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    svc.get_exam(db, exam_id, user.sub)
    return sessions_svc.list_sessions(db, exam_id)


@router.get("/{exam_id}/results", response_model=List[SessionResultOut])
def exam_results(exam_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return [SessionResultOut.build(r) for r in results_svc.exam_results(db, user.sub, exam_id)]
