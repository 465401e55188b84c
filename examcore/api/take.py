"""
Student-facing routes. Students are identified by their session id only;
no bearer token is involved.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from examcore.api.schemas import AnswerOut, SessionOut, SessionWithAnswersOut
from examcore.core.database import get_db
from examcore.services import answers as answers_svc
from examcore.services import sessions as svc
from examcore.services.composition import get_student_view

router = APIRouter()


class JoinIn(BaseModel):
    name: str
    email: EmailStr


class AnswerIn(BaseModel):
    content: Dict[str, Any]


class SessionStateOut(SessionWithAnswersOut):
    remaining_seconds: Optional[int] = None


@router.get("/{exam_id}")
def student_view(exam_id: str, db: Session = Depends(get_db)):
    return get_student_view(db, exam_id)


@router.post("/{exam_id}/join", response_model=SessionOut)
def join_exam(exam_id: str, payload: JoinIn, db: Session = Depends(get_db)):
    return svc.join(db, exam_id, payload.name, str(payload.email))


@router.get("/sessions/{session_id}", response_model=SessionStateOut)
def get_session(session_id: str, db: Session = Depends(get_db)):
    session = svc.get_session_with_answers(db, session_id)
    state = SessionWithAnswersOut.model_validate(session).model_dump()
    return SessionStateOut(**state, remaining_seconds=svc.remaining_seconds(session, session.exam))


@router.put("/sessions/{session_id}/answers/{question_id}", response_model=AnswerOut)
def save_answer(session_id: str, question_id: str, payload: AnswerIn, db: Session = Depends(get_db)):
    return answers_svc.save_answer(db, session_id, question_id, payload.content)


@router.post("/sessions/{session_id}/tab-leave", response_model=SessionOut)
def tab_leave(session_id: str, db: Session = Depends(get_db)):
    return svc.record_tab_leave(db, session_id)


@router.post("/sessions/{session_id}/submit", response_model=SessionOut)
def submit(session_id: str, db: Session = Depends(get_db)):
    return svc.submit(db, session_id)
