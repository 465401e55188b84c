"""
Auto-scoring and result aggregation.

Scorers are pure: they take parsed question content, the question's maximum
points and the parsed answer (``None`` when unanswered) and return an integer
in ``[0, points]``. Types that need a human return ``None`` from
``auto_score``; an unanswered auto-gradable question scores 0.
"""
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from examcore.models.content import (
    ClozeAnswer,
    ClozeContent,
    KPrimAnswer,
    KPrimContent,
    MatchingAnswer,
    MatchingContent,
    MultipleChoiceAnswer,
    MultipleChoiceContent,
    QuestionContent,
    QuestionType,
    VARIANTS,
)


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def proportional(points: int, correct: int, total: int) -> int:
    return round_half_up(Decimal(points) * correct / total)


def score_multiple_choice(content: MultipleChoiceContent, points: int, answer: Optional[MultipleChoiceAnswer]) -> int:
    if answer is None or answer.selected_option_id is None:
        return 0
    selected = next((o for o in content.options if o.id == answer.selected_option_id), None)
    return points if selected is not None and selected.is_correct else 0


def score_kprim(content: KPrimContent, points: int, answer: Optional[KPrimAnswer]) -> int:
    if answer is None:
        return 0
    judged = {a.statement_id: a.selected for a in answer.answers}
    correct = sum(1 for s in content.statements if s.id in judged and judged[s.id] == s.is_true)
    if correct == 4:
        return points
    if correct == 3:
        return round_half_up(Decimal(points) / 2)
    return 0


def normalize_cloze(text: str, case_sensitive: bool) -> str:
    text = text.strip()
    return text if case_sensitive else text.lower()


def score_cloze(content: ClozeContent, points: int, answer: Optional[ClozeAnswer]) -> int:
    if answer is None:
        return 0
    given = {a.blank_id: a.text for a in answer.answers}
    correct = 0
    for blank in content.blanks:
        if blank.id not in given:
            continue
        student = normalize_cloze(given[blank.id], blank.case_sensitive)
        if any(student == normalize_cloze(c, blank.case_sensitive) for c in blank.correct_answers):
            correct += 1
    return proportional(points, correct, len(content.blanks))


def score_matching(content: MatchingContent, points: int, answer: Optional[MatchingAnswer]) -> int:
    if answer is None:
        return 0
    chosen = {m.left_id: m.right_id for m in answer.matches}
    correct = sum(1 for p in content.pairs if chosen.get(p.id) == p.id)
    return proportional(points, correct, len(content.pairs))


SCORERS: Dict[QuestionType, Callable[[QuestionContent, int, Optional[BaseModel]], int]] = {
    QuestionType.MULTIPLE_CHOICE: score_multiple_choice,
    QuestionType.KPRIM: score_kprim,
    QuestionType.CLOZE: score_cloze,
    QuestionType.MATCHING: score_matching,
}

_unscored = {t for t, v in VARIANTS.items() if v.auto_scored} ^ set(SCORERS)
if _unscored:
    raise RuntimeError(f"auto-scored types and scorers disagree: {sorted(t.value for t in _unscored)}")


def auto_score(qtype: QuestionType, content: QuestionContent, points: int, answer: Optional[BaseModel]) -> Optional[int]:
    """Score for auto-gradable types, ``None`` when a teacher must grade."""
    scorer = SCORERS.get(QuestionType(qtype))
    if scorer is None:
        return None
    return max(0, min(points, scorer(content, points, answer)))


# ========== Aggregation ==========

@dataclass
class QuestionScore:
    question_id: str
    type: QuestionType
    max_points: int
    answered: bool
    auto_points: Optional[int]
    points_awarded: Optional[int]

    @property
    def needs_manual_grading(self) -> bool:
        return self.auto_points is None and self.answered and self.points_awarded is None

    @property
    def effective_points(self) -> int:
        if self.points_awarded is not None:
            return self.points_awarded
        if self.auto_points is not None:
            return self.auto_points
        return 0


@dataclass
class ScoreTotal:
    max_points: int = 0
    awarded_points: int = 0
    questions: List[QuestionScore] = field(default_factory=list)

    @property
    def pending_manual(self) -> int:
        return sum(1 for q in self.questions if q.needs_manual_grading)


def total(scores: Iterable[QuestionScore]) -> ScoreTotal:
    result = ScoreTotal()
    for s in scores:
        result.questions.append(s)
        result.max_points += s.max_points
        result.awarded_points += s.effective_points
    return result
