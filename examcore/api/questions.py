from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from examcore.api.schemas import QuestionOut, ShareOut
from examcore.core.auth import TokenData, require_teacher
from examcore.core.database import get_db
from examcore.models.content import BloomLevel, QuestionType
from examcore.services import questions as svc
from examcore.services import sharing

router = APIRouter()


class QuestionCreate(BaseModel):
    type: QuestionType
    title: str
    content: Dict[str, Any]
    points: int = Field(ge=1)
    bloom_level: Optional[BloomLevel] = None
    subject_id: Optional[str] = None


class QuestionUpdate(BaseModel):
    type: Optional[QuestionType] = None
    title: Optional[str] = None
    content: Optional[Dict[str, Any]] = None
    points: Optional[int] = Field(default=None, ge=1)
    bloom_level: Optional[BloomLevel] = None
    subject_id: Optional[str] = None


class ShareIn(BaseModel):
    group_ids: List[str] = Field(min_length=1)


@router.post("", response_model=QuestionOut, status_code=201)
def create_question(payload: QuestionCreate, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.create_question(db, user.sub, **payload.model_dump())


@router.get("", response_model=List[QuestionOut])
def list_questions(type: Optional[QuestionType] = None, subject_id: Optional[str] = None,
                   user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.list_questions(db, user.sub, qtype=type, subject_id=subject_id)


@router.get("/shared", response_model=List[QuestionOut])
def shared_with_me(user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    """Questions other teachers shared into the caller's groups."""
    return sharing.list_shared_questions(db, user.sub)


@router.get("/{question_id}", response_model=QuestionOut)
def get_question(question_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.get_question(db, question_id, user.sub)


@router.patch("/{question_id}", response_model=QuestionOut)
def update_question(question_id: str, payload: QuestionUpdate, user: TokenData = Depends(require_teacher),
                    db: Session = Depends(get_db)):
    return svc.update_question(db, user.sub, question_id, payload.model_dump(exclude_unset=True))


@router.delete("/{question_id}", status_code=204)
def delete_question(question_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    svc.delete_question(db, user.sub, question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{question_id}/copy", response_model=QuestionOut, status_code=201)
def copy_question(question_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    """Copy a question shared with the caller into their own collection."""
    return svc.copy_question(db, question_id, user.sub)


@router.get("/{question_id}/shares", response_model=List[ShareOut])
def list_shares(question_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return sharing.list_question_shares(db, user.sub, question_id)


@router.post("/{question_id}/shares", response_model=List[ShareOut])
def share(question_id: str, payload: ShareIn, user: TokenData = Depends(require_teacher),
          db: Session = Depends(get_db)):
    return sharing.share_question(db, user.sub, question_id, payload.group_ids)


@router.delete("/{question_id}/shares/{group_id}", status_code=204)
def unshare(question_id: str, group_id: str, user: TokenData = Depends(require_teacher),
            db: Session = Depends(get_db)):
    sharing.unshare_question(db, user.sub, question_id, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
