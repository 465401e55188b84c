import pytest
from sqlalchemy import func, select

from conftest import TEACHER
from examcore.core.errors import ExamNotActive, NotFound, SessionSubmitted, ValidationError
from examcore.models.content import QuestionType
from examcore.models.orm import Answer
from examcore.services import answers, composition, results, sessions


@pytest.fixture
def setup(db, factory):
    mc = factory.question(QuestionType.MULTIPLE_CHOICE, points=2)
    essay = factory.question(QuestionType.ESSAY, points=10)
    kprim = factory.question(QuestionType.KPRIM, points=7)
    exam = factory.active_exam([mc, essay, kprim])
    session = sessions.join(db, exam.id, "Ada", "ada@example.com")
    return exam, session, mc, essay, kprim


def count_answers(db, session_id):
    return db.scalar(select(func.count()).select_from(Answer).where(Answer.session_id == session_id))


def test_repeated_saves_keep_one_row(db, setup):
    exam, session, mc, *_ = setup
    answers.save_answer(db, session.id, mc.id, {"selected_option_id": "b"})
    answers.save_answer(db, session.id, mc.id, {"selected_option_id": "c"})
    last = answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})
    assert count_answers(db, session.id) == 1
    assert last.content == {"selected_option_id": "a"}
    assert answers.get_answer(db, session.id, mc.id).id == last.id


def test_upsert_keeps_awarded_points(db, setup):
    exam, session, _, essay, _ = setup
    first = answers.save_answer(db, session.id, essay.id, {"text": "draft"})
    answers.award_points(db, first.id, 4)
    second = answers.save_answer(db, session.id, essay.id, {"text": "final"})
    assert second.content == {"text": "final"}
    assert second.points_awarded == 4


def test_answer_must_match_question_type(db, setup):
    exam, session, mc, *_ = setup
    with pytest.raises(ValidationError):
        answers.save_answer(db, session.id, mc.id, {"text": "Paris"})


def test_question_must_belong_to_the_exam(db, setup, factory):
    exam, session, *_ = setup
    stray = factory.question()
    with pytest.raises(NotFound):
        answers.save_answer(db, session.id, stray.id, {"selected_option_id": "a"})


def test_submitted_session_rejects_answers(db, setup):
    exam, session, mc, *_ = setup
    sessions.submit(db, session.id)
    with pytest.raises(SessionSubmitted):
        answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})
    assert count_answers(db, session.id) == 0


def test_locked_session_still_saves(db, setup):
    exam, session, mc, *_ = setup
    session.is_locked = True
    db.commit()
    saved = answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})
    assert saved.content["selected_option_id"] == "a"


def test_closed_exam_rejects_answers(db, setup):
    exam, session, mc, *_ = setup
    composition.close(db, TEACHER, exam.id)
    with pytest.raises(ExamNotActive):
        answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})


@pytest.mark.parametrize("points", [-1, 11, 2.5, True])
def test_award_points_range(db, setup, points):
    exam, session, _, essay, _ = setup
    answer = answers.save_answer(db, session.id, essay.id, {"text": "words"})
    with pytest.raises(ValidationError):
        answers.award_points(db, answer.id, points)


def test_award_points_after_submit(db, setup):
    exam, session, _, essay, _ = setup
    answer = answers.save_answer(db, session.id, essay.id, {"text": "words"})
    sessions.submit(db, session.id)
    assert answers.award_points(db, answer.id, 10).points_awarded == 10


def test_grade_session_combines_auto_and_manual(db, setup):
    exam, session, mc, essay, kprim = setup
    answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})
    graded = answers.save_answer(db, session.id, essay.id, {"text": "an essay"})
    answers.save_answer(db, session.id, kprim.id, {"answers": [
        {"statement_id": "s1", "selected": True}, {"statement_id": "s2", "selected": False},
        {"statement_id": "s3", "selected": True}, {"statement_id": "s4", "selected": True},
    ]})
    result = results.grade_session(db, session.id)
    assert result.exam.max_points == 19
    assert result.exam.awarded_points == 2 + 4
    assert result.exam.pending_manual == 1

    answers.award_points(db, graded.id, 6)
    result = results.grade_session(db, session.id)
    assert result.exam.awarded_points == 12
    assert result.exam.pending_manual == 0


def test_teacher_override_replaces_auto_score(db, setup):
    exam, session, mc, *_ = setup
    answer = answers.save_answer(db, session.id, mc.id, {"selected_option_id": "b"})
    answers.award_points(db, answer.id, 1)
    by_question = {q.question_id: q for q in results.grade_session(db, session.id).exam.questions}
    assert by_question[mc.id].auto_points == 0
    assert by_question[mc.id].effective_points == 1


def test_exam_results_lists_every_session(db, setup):
    exam, session, mc, *_ = setup
    sessions.join(db, exam.id, "Bob", "bob@example.com")
    answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})
    rows = results.exam_results(db, TEACHER, exam.id)
    by_email = {r.session.student_email: r for r in rows}
    assert by_email["ada@example.com"].exam.awarded_points == 2
    assert by_email["bob@example.com"].exam.awarded_points == 0
    assert all(r.exam.max_points == 19 for r in rows)


@pytest.fixture
def sectioned(db, factory):
    mc = factory.question(QuestionType.MULTIPLE_CHOICE, points=2)
    cloze = factory.question(QuestionType.CLOZE, points=4)
    matching = factory.question(QuestionType.MATCHING, points=3)
    essay = factory.question(QuestionType.ESSAY, points=10)
    exam = factory.active_exam([], sections=[
        {"title": "Recall", "order_index": 0, "question_ids": [mc.id, cloze.id]},
        {"title": "Apply", "order_index": 1, "question_ids": [matching.id, essay.id]},
    ])
    session = sessions.join(db, exam.id, "Ada", "ada@example.com")
    return exam, session, mc, cloze, matching, essay


def right_ids_by_text(db, exam_id, question_id):
    view = composition.get_student_view(db, exam_id)
    shown = next(q for s in view["sections"] for q in s["questions"] if q["id"] == question_id)
    return {r["text"]: r["id"] for r in shown["content"]["right"]}


def test_section_totals_add_up_to_the_exam(db, sectioned):
    exam, session, mc, cloze, matching, essay = sectioned
    answers.save_answer(db, session.id, mc.id, {"selected_option_id": "a"})
    answers.save_answer(db, session.id, cloze.id, {"answers": [{"blank_id": "b1", "text": "berlin"}]})
    right = right_ids_by_text(db, exam.id, matching.id)
    answers.save_answer(db, session.id, matching.id, {"matches": [
        {"left_id": "p1", "right_id": right["Paris"]}, {"left_id": "p2", "right_id": right["Lima"]},
    ]})
    graded = answers.save_answer(db, session.id, essay.id, {"text": "an essay"})
    answers.award_points(db, graded.id, 7)

    result = results.grade_session(db, session.id)
    section_sum = sum(s.score.awarded_points for s in result.sections) + result.unsectioned.awarded_points
    assert section_sum == result.exam.awarded_points
    assert sum(s.score.max_points for s in result.sections) == result.exam.max_points == 19
    assert [s.score.awarded_points for s in result.sections] == [2 + 2, 1 + 7]


def test_matching_answers_use_the_shown_right_ids(db, sectioned):
    exam, session, _, _, matching, _ = sectioned
    with pytest.raises(ValidationError):
        answers.save_answer(db, session.id, matching.id, {"matches": [{"left_id": "p1", "right_id": "p1"}]})

    right = right_ids_by_text(db, exam.id, matching.id)
    answers.save_answer(db, session.id, matching.id, {"matches": [
        {"left_id": "p1", "right_id": right["Paris"]},
        {"left_id": "p2", "right_id": right["Madrid"]},
        {"left_id": "p3", "right_id": right["Lima"]},
    ]})
    by_question = {q.question_id: q for q in results.grade_session(db, session.id).exam.questions}
    assert by_question[matching.id].auto_points == 3
