import pytest

from conftest import OTHER_TEACHER, TEACHER
from examcore.core.errors import NotFound, ValidationError
from examcore.models.content import QuestionType
from examcore.services import composition, groups, questions, sharing


def test_share_needs_own_question_and_own_group(db, factory):
    q = factory.question()
    mine = factory.group()
    theirs = factory.group(owner_id=OTHER_TEACHER)
    with pytest.raises(NotFound):
        sharing.share_question(db, TEACHER, q.id, [theirs.id])
    with pytest.raises(NotFound):
        sharing.share_question(db, OTHER_TEACHER, q.id, [theirs.id])
    with pytest.raises(ValidationError):
        sharing.share_question(db, TEACHER, q.id, [])

    shares = sharing.share_question(db, TEACHER, q.id, [mine.id, mine.id])
    assert [(s.group_id, s.shared_by) for s in shares] == [(mine.id, TEACHER)]
    assert len(sharing.share_question(db, TEACHER, q.id, [mine.id])) == 1


def test_shared_questions_are_listed_once(db, factory):
    q = factory.question()
    first = factory.group(members=[OTHER_TEACHER], name="A")
    second = factory.group(members=[OTHER_TEACHER], name="B")
    sharing.share_question(db, TEACHER, q.id, [first.id, second.id])
    factory.question(QuestionType.ESSAY)

    assert [s.id for s in sharing.list_shared_questions(db, OTHER_TEACHER)] == [q.id]
    assert sharing.list_shared_questions(db, TEACHER) == []
    assert [s.id for s in sharing.list_group_questions(db, OTHER_TEACHER, first.id)] == [q.id]
    with pytest.raises(NotFound):
        sharing.list_group_questions(db, "outsider", first.id)


def test_access_follows_membership(db, factory):
    q = factory.shared_question()
    group_id = q.shares[0].group_id
    assert sharing.accessible_question_ids(db, OTHER_TEACHER, [q.id, "missing"]) == {q.id}
    groups.leave_group(db, OTHER_TEACHER, group_id)
    assert sharing.accessible_question_ids(db, OTHER_TEACHER, [q.id]) == set()
    with pytest.raises(NotFound):
        sharing.get_accessible_question(db, OTHER_TEACHER, q.id)


def test_unshare(db, factory):
    q = factory.shared_question()
    group_id = q.shares[0].group_id
    with pytest.raises(NotFound):
        sharing.unshare_question(db, OTHER_TEACHER, q.id, group_id)
    sharing.unshare_question(db, TEACHER, q.id, group_id)
    assert sharing.list_question_shares(db, TEACHER, q.id) == []
    with pytest.raises(NotFound):
        sharing.unshare_question(db, TEACHER, q.id, group_id)


def test_deleting_a_shared_question_drops_its_shares(db, factory):
    q = factory.shared_question()
    questions.delete_question(db, TEACHER, q.id)
    assert sharing.list_shared_questions(db, OTHER_TEACHER) == []


def test_exam_cannot_use_foreign_unshared_questions(db, factory):
    private = factory.question()
    exam = factory.exam(owner_id=OTHER_TEACHER)
    with pytest.raises(NotFound):
        composition.assign_questions(db, OTHER_TEACHER, exam.id, [private.id])
    with pytest.raises(NotFound):
        composition.save_composition(db, OTHER_TEACHER, exam.id, [
            {"title": "Only", "order_index": 0, "question_ids": [private.id]},
        ])
    assert composition.get_composition(db, exam.id).questions == []


def test_exam_can_use_shared_questions(db, factory):
    shared = factory.shared_question()
    own = factory.question(owner_id=OTHER_TEACHER)
    exam = factory.exam(owner_id=OTHER_TEACHER)
    comp = composition.save_composition(db, OTHER_TEACHER, exam.id, [
        {"title": "Mixed", "order_index": 0, "question_ids": [shared.id, own.id]},
    ])
    assert [cq.question.id for cq in comp.questions] == [shared.id, own.id]
