from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from examcore.api.schemas import AnswerOut, SessionOut, SessionResultOut, SessionWithAnswersOut
from examcore.core.auth import TokenData, require_teacher
from examcore.core.database import get_db
from examcore.core.errors import NotFound
from examcore.services import answers as answers_svc
from examcore.services import results as results_svc
from examcore.services import sessions as sessions_svc

router = APIRouter()


class PointsIn(BaseModel):
    points: int


class GradingOut(BaseModel):
    session: SessionWithAnswersOut
    result: SessionResultOut


def _owned_session(db: Session, session_id: str, owner_id: str):
    session = sessions_svc.get_session(db, session_id)
    if session.exam.owner_id != owner_id:
        raise NotFound("Session", session_id)
    return session


@router.get("/sessions/{session_id}", response_model=GradingOut)
def grading_view(session_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    _owned_session(db, session_id, user.sub)
    session = sessions_svc.get_session_with_answers(db, session_id)
    result = results_svc.grade_session(db, session_id)
    return GradingOut(session=SessionWithAnswersOut.model_validate(session), result=SessionResultOut.build(result))


@router.post("/sessions/{session_id}/unlock", response_model=SessionOut)
def unlock_session(session_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    _owned_session(db, session_id, user.sub)
    return sessions_svc.unlock(db, session_id)


@router.put("/answers/{answer_id}/points", response_model=AnswerOut)
def award_points(answer_id: str, payload: PointsIn, user: TokenData = Depends(require_teacher),
                 db: Session = Depends(get_db)):
    answer = answers_svc.get_answer_by_id(db, answer_id)
    _owned_session(db, answer.session_id, user.sub)
    return answers_svc.award_points(db, answer_id, payload.points)
