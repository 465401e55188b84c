from typing import List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from examcore.api.schemas import SubjectOut
from examcore.core.auth import TokenData, require_teacher
from examcore.core.database import get_db
from examcore.services import subjects as svc

router = APIRouter()


class SubjectIn(BaseModel):
    name: str


@router.get("", response_model=List[SubjectOut])
def list_subjects(user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.list_subjects(db, user.sub)


@router.post("", response_model=SubjectOut, status_code=201)
def create_subject(payload: SubjectIn, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    return svc.create_subject(db, user.sub, payload.name)


@router.patch("/{subject_id}", response_model=SubjectOut)
def rename_subject(subject_id: str, payload: SubjectIn, user: TokenData = Depends(require_teacher),
                   db: Session = Depends(get_db)):
    return svc.rename_subject(db, user.sub, subject_id, payload.name)


@router.delete("/{subject_id}", status_code=204)
def delete_subject(subject_id: str, user: TokenData = Depends(require_teacher), db: Session = Depends(get_db)):
    """Delete a subject. Its questions are kept and lose the tag."""
    svc.delete_subject(db, user.sub, subject_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
