"""
Question content and answer payloads, one variant per question type.

Every question type maps to a ``QuestionVariant`` holding its content model,
its answer model and whether it can be auto-scored. Validation, scoring and
the student view all dispatch through ``VARIANTS``; the module refuses to
import if a ``QuestionType`` member has no variant.
"""
import enum
import hashlib
import hmac
import os
import random
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from examcore.core.config import settings
from examcore.core.errors import ValidationError

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    FREE_TEXT = "free_text"
    FILE_UPLOAD = "file_upload"
    KPRIM = "kprim"
    CLOZE = "cloze"
    MATCHING = "matching"
    ESSAY = "essay"


class BloomLevel(str, enum.Enum):
    """Cognitive-demand tag, reporting only."""
    K1 = "K1"
    K2 = "K2"
    K3 = "K3"
    K4 = "K4"
    K5 = "K5"
    K6 = "K6"


def cloze_placeholders(text: str) -> List[str]:
    """Placeholder identifiers in order of first appearance."""
    seen: List[str] = []
    for raw in PLACEHOLDER.findall(text):
        ident = raw.strip()
        if ident not in seen:
            seen.append(ident)
    return seen


def _require_text(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{what} must not be blank")
    return value


def _unique_ids(items, what: str) -> None:
    ids = [i.id for i in items]
    if len(ids) != len(set(ids)):
        raise ValueError(f"{what} ids must be unique")


def _unique_keys(keys: List[str], what: str) -> None:
    if len(keys) != len(set(keys)):
        raise ValueError(f"each {what} may be answered only once")


def matching_token(question_id: str, pair_id: str) -> str:
    """Right-side id shown to students, stable per question and pair."""
    key = settings.APP_SECRET.get_secret_value().encode()
    return hmac.new(key, f"{question_id}:{pair_id}".encode(), hashlib.sha256).hexdigest()[:20]


# ========== Content ==========

class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class QuestionContent(_Strict):
    question: str

    @field_validator("question")
    @classmethod
    def _question_text(cls, v: str) -> str:
        return _require_text(v, "question text")

    def student_view(self, question_id: str) -> Dict[str, Any]:
        """Content as shown to a student: no answer keys, no grading notes."""
        return self.model_dump(mode="json", exclude_none=True)

    def resolve_answer(self, question_id: str, answer: BaseModel) -> BaseModel:
        """Stored answer in the terms the scorers use."""
        return answer


class MultipleChoiceOption(_Strict):
    id: str = Field(min_length=1)
    text: str
    is_correct: bool = False


class MultipleChoiceContent(QuestionContent):
    options: List[MultipleChoiceOption]

    @model_validator(mode="after")
    def _check_options(self):
        if len(self.options) < 2:
            raise ValueError("multiple choice needs at least 2 options")
        _unique_ids(self.options, "option")
        for o in self.options:
            _require_text(o.text, "option text")
        if not any(o.is_correct for o in self.options):
            raise ValueError("at least one option must be correct")
        return self

    def student_view(self, question_id: str) -> Dict[str, Any]:
        return {"question": self.question, "options": [{"id": o.id, "text": o.text} for o in self.options]}


class FreeTextContent(QuestionContent):
    expected_length: Optional[Literal["word", "short", "medium", "long"]] = None
    sample_answer: Optional[str] = None

    def student_view(self, question_id: str) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, exclude={"sample_answer"})


class FileUploadContent(QuestionContent):
    allowed_types: List[str] = Field(default_factory=lambda: list(settings.FILE_UPLOAD_DEFAULT_TYPES))
    max_file_size_mb: int = Field(default_factory=lambda: settings.FILE_UPLOAD_DEFAULT_MAX_MB, gt=0)
    max_files: int = Field(default=1, ge=1)

    @field_validator("allowed_types")
    @classmethod
    def _normalize_types(cls, v: List[str]) -> List[str]:
        types = []
        for t in v:
            ext = t.strip().lstrip(".").lower()
            if ext and ext not in types:
                types.append(ext)
        if not types:
            raise ValueError("at least one file type must be allowed")
        return types


class KPrimStatement(_Strict):
    id: str = Field(min_length=1)
    text: str
    is_true: bool


class KPrimContent(QuestionContent):
    statements: List[KPrimStatement]

    @model_validator(mode="after")
    def _check_statements(self):
        if len(self.statements) != 4:
            raise ValueError("K-Prim needs exactly 4 statements")
        _unique_ids(self.statements, "statement")
        for s in self.statements:
            _require_text(s.text, "statement text")
        return self

    def student_view(self, question_id: str) -> Dict[str, Any]:
        return {"question": self.question, "statements": [{"id": s.id, "text": s.text} for s in self.statements]}


class ClozeBlank(_Strict):
    id: str = Field(min_length=1)
    correct_answers: List[str] = Field(min_length=1)
    case_sensitive: bool = False


class ClozeContent(QuestionContent):
    text: str
    blanks: List[ClozeBlank]

    @model_validator(mode="after")
    def _check_blanks(self):
        found = cloze_placeholders(self.text)
        if not found:
            raise ValueError("cloze text must contain at least one {{blank}} placeholder")
        _unique_ids(self.blanks, "blank")
        declared = {b.id for b in self.blanks}
        if declared != set(found):
            missing = sorted(set(found) - declared)
            extra = sorted(declared - set(found))
            raise ValueError(f"blanks do not match placeholders (missing: {missing}, unused: {extra})")
        for b in self.blanks:
            if any(not a.strip() for a in b.correct_answers):
                raise ValueError(f"blank {b.id} has an empty accepted answer")
        return self

    def student_view(self, question_id: str) -> Dict[str, Any]:
        return {"question": self.question, "text": self.text, "blanks": [{"id": b.id} for b in self.blanks]}


class MatchingPair(_Strict):
    id: str = Field(min_length=1)
    left: str
    right: str


class MatchingContent(QuestionContent):
    pairs: List[MatchingPair]

    @model_validator(mode="after")
    def _check_pairs(self):
        if len(self.pairs) < 2:
            raise ValueError("matching needs at least 2 pairs")
        _unique_ids(self.pairs, "pair")
        for p in self.pairs:
            _require_text(p.left, "left side")
            _require_text(p.right, "right side")
        return self

    def right_tokens(self, question_id: str) -> Dict[str, str]:
        """Opaque right-side id -> pair id."""
        return {matching_token(question_id, p.id): p.id for p in self.pairs}

    def student_view(self, question_id: str) -> Dict[str, Any]:
        # right sides carry tokens: a pair id there would give the match away
        rights = [{"id": matching_token(question_id, p.id), "text": p.right} for p in self.pairs]
        random.shuffle(rights)
        return {"question": self.question, "left": [{"id": p.id, "text": p.left} for p in self.pairs], "right": rights}

    def resolve_answer(self, question_id: str, answer: "MatchingAnswer") -> "MatchingAnswer":
        """Map right-side tokens back to pair ids. Entries with unknown tokens are dropped."""
        tokens = self.right_tokens(question_id)
        return MatchingAnswer(matches=[
            MatchingEntry(left_id=m.left_id, right_id=tokens[m.right_id])
            for m in answer.matches if m.right_id in tokens
        ])


class EssayContent(QuestionContent):
    min_words: Optional[int] = Field(default=None, ge=0)
    max_words: Optional[int] = Field(default=None, ge=1)
    rubric: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_words is not None and self.max_words is not None and self.min_words > self.max_words:
            raise ValueError("min_words must not exceed max_words")
        return self

    def student_view(self, question_id: str) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, exclude={"rubric"})


# ========== Answers ==========

class MultipleChoiceAnswer(_Strict):
    selected_option_id: Optional[str] = None


class FreeTextAnswer(_Strict):
    text: str = ""


class UploadedFile(_Strict):
    """Metadata only; ``path`` is an opaque handle into the object store."""
    name: str = Field(min_length=1)
    path: str = Field(min_length=1)
    size: int = Field(ge=0)
    type: str
    uploaded_at: datetime


class FileUploadAnswer(_Strict):
    files: List[UploadedFile] = Field(default_factory=list)


class KPrimSelection(_Strict):
    statement_id: str
    selected: bool


class KPrimAnswer(_Strict):
    answers: List[KPrimSelection] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_per_statement(self):
        _unique_keys([a.statement_id for a in self.answers], "statement")
        return self


class ClozeEntry(_Strict):
    blank_id: str
    text: str


class ClozeAnswer(_Strict):
    answers: List[ClozeEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_per_blank(self):
        _unique_keys([a.blank_id for a in self.answers], "blank")
        return self


class MatchingEntry(_Strict):
    left_id: str
    right_id: str


class MatchingAnswer(_Strict):
    matches: List[MatchingEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_per_left_side(self):
        _unique_keys([m.left_id for m in self.matches], "left side")
        return self


class EssayAnswer(_Strict):
    text: str = ""


AnswerContent = Union[
    MultipleChoiceAnswer, FreeTextAnswer, FileUploadAnswer, KPrimAnswer, ClozeAnswer, MatchingAnswer, EssayAnswer
]


# ========== Variant registry ==========

@dataclass(frozen=True)
class QuestionVariant:
    type: QuestionType
    content_model: Type[QuestionContent]
    answer_model: Type[BaseModel]
    auto_scored: bool


VARIANTS: Dict[QuestionType, QuestionVariant] = {
    v.type: v
    for v in (
        QuestionVariant(QuestionType.MULTIPLE_CHOICE, MultipleChoiceContent, MultipleChoiceAnswer, True),
        QuestionVariant(QuestionType.FREE_TEXT, FreeTextContent, FreeTextAnswer, False),
        QuestionVariant(QuestionType.FILE_UPLOAD, FileUploadContent, FileUploadAnswer, False),
        QuestionVariant(QuestionType.KPRIM, KPrimContent, KPrimAnswer, True),
        QuestionVariant(QuestionType.CLOZE, ClozeContent, ClozeAnswer, True),
        QuestionVariant(QuestionType.MATCHING, MatchingContent, MatchingAnswer, True),
        QuestionVariant(QuestionType.ESSAY, EssayContent, EssayAnswer, False),
    )
}

_missing = set(QuestionType) - set(VARIANTS)
if _missing:
    raise RuntimeError(f"question types without a variant: {sorted(t.value for t in _missing)}")


def variant_for(qtype: Union[QuestionType, str]) -> QuestionVariant:
    try:
        return VARIANTS[QuestionType(qtype)]
    except ValueError:
        raise ValidationError(f"Unknown question type: {qtype!r}")


def _errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return exc.errors(include_url=False, include_context=False, include_input=False)


def validate_question_content(qtype: Union[QuestionType, str], content: Any) -> QuestionContent:
    variant = variant_for(qtype)
    try:
        return variant.content_model.model_validate(content)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {variant.type.value} content", details=_errors(exc))


def parse_question_content(qtype: Union[QuestionType, str], content: Any) -> QuestionContent:
    """Parse stored content. Stored content was validated on write, so this only fails on corrupt rows."""
    return validate_question_content(qtype, content)


def validate_answer_content(qtype: Union[QuestionType, str], content: Any) -> BaseModel:
    variant = variant_for(qtype)
    try:
        return variant.answer_model.model_validate(content)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {variant.type.value} answer", details=_errors(exc))


def check_answer_fits(content: QuestionContent, answer: BaseModel, question_id: str) -> None:
    """Bounds an answer must respect given its question's content."""
    if isinstance(content, MatchingContent) and isinstance(answer, MatchingAnswer):
        lefts = {p.id for p in content.pairs}
        tokens = content.right_tokens(question_id)
        for m in answer.matches:
            if m.left_id not in lefts:
                raise ValidationError(f"Unknown left side: {m.left_id}")
            if m.right_id not in tokens:
                raise ValidationError(f"Unknown right side: {m.right_id}")
    if isinstance(content, FileUploadContent) and isinstance(answer, FileUploadAnswer):
        if len(answer.files) > content.max_files:
            raise ValidationError(f"At most {content.max_files} file(s) may be uploaded")
        limit = content.max_file_size_mb * 1024 * 1024
        for f in answer.files:
            ext = os.path.splitext(f.name)[1].lstrip(".").lower()
            if ext not in content.allowed_types:
                raise ValidationError(f"File type .{ext or '?'} is not allowed for {f.name}")
            if f.size > limit:
                raise ValidationError(f"{f.name} exceeds {content.max_file_size_mb} MB")


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)
