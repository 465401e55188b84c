from conftest import OTHER_TEACHER, auth_header, sample
from examcore.models.content import QuestionType


def create_question(client, headers, qtype, points=2):
    r = client.post("/v1/questions", headers=headers,
                    json={"type": qtype.value, "title": f"{qtype.value} q", "content": sample(qtype), "points": points})
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_login_issues_usable_token(client):
    r = client.post("/v1/auth/mock-login", json={"user_id": "tester", "roles": ["teacher"]})
    assert r.status_code == 200
    hdr = {"Authorization": f"Bearer {r.json()['access_token']}"}
    assert client.get("/v1/questions", headers=hdr).status_code == 200
    assert client.get("/v1/auth/me", headers=hdr).json() == {"sub": "tester", "roles": ["teacher"]}


def test_login_rejects_unknown_roles(client):
    r = client.post("/v1/auth/mock-login", json={"user_id": "tester", "roles": ["superuser"]})
    assert r.status_code == 422


def test_teacher_routes_need_a_teacher(client):
    assert client.get("/v1/questions").status_code in (401, 403)
    assert client.get("/v1/questions", headers={"Authorization": "Bearer junk"}).status_code == 401
    student = auth_header("s1", roles=("student",))
    assert client.get("/v1/exams", headers=student).status_code == 403


def test_errors_use_one_envelope(client, teacher_headers):
    r = client.get("/v1/exams/missing", headers=teacher_headers)
    assert r.status_code == 404
    assert r.json()["error"]["type"] == "not_found"

    r = client.post("/v1/questions", headers=teacher_headers,
                    json={"type": "kprim", "title": "K", "content": {"question": "?"}, "points": 1})
    assert r.status_code == 422
    assert r.json()["error"]["type"] == "validation_error"

    r = client.post("/v1/exams", headers=teacher_headers, json={"title": "No limit", "time_limit_minutes": 0})
    assert r.status_code == 422


def test_question_crud_and_copy(client, teacher_headers):
    q = create_question(client, teacher_headers, QuestionType.CLOZE)
    r = client.patch(f"/v1/questions/{q['id']}", headers=teacher_headers, json={"points": 5})
    assert r.json()["points"] == 5
    assert client.get("/v1/questions?type=cloze", headers=teacher_headers).json()[0]["id"] == q["id"]

    other = auth_header(OTHER_TEACHER)
    assert client.get(f"/v1/questions/{q['id']}", headers=other).status_code == 404
    assert client.post(f"/v1/questions/{q['id']}/copy", headers=other).status_code == 404

    assert client.delete(f"/v1/questions/{q['id']}", headers=teacher_headers).status_code == 204
    assert client.get(f"/v1/questions/{q['id']}", headers=teacher_headers).status_code == 404


def test_full_exam_flow(client, teacher_headers):
    mc = create_question(client, teacher_headers, QuestionType.MULTIPLE_CHOICE, points=2)
    essay = create_question(client, teacher_headers, QuestionType.ESSAY, points=8)
    exam = client.post("/v1/exams", headers=teacher_headers,
                       json={"title": "Final", "time_limit_minutes": 60, "lock_on_tab_leave": True}).json()

    r = client.put(f"/v1/exams/{exam['id']}/composition", headers=teacher_headers, json={"sections": [
        {"title": "Written", "order_index": 1, "question_ids": [essay["id"]]},
        {"title": "Quick", "order_index": 0, "question_ids": [mc["id"]]},
    ]})
    assert r.status_code == 200, r.text
    comp = r.json()
    assert [s["title"] for s in comp["sections"]] == ["Quick", "Written"]
    assert comp["total_points"] == 10

    assert client.get(f"/v1/take/{exam['id']}").status_code == 409
    assert client.post(f"/v1/exams/{exam['id']}/activate", headers=teacher_headers).status_code == 200
    assert client.put(f"/v1/exams/{exam['id']}/questions", headers=teacher_headers,
                      json={"question_ids": []}).status_code == 409

    view = client.get(f"/v1/take/{exam['id']}").json()
    assert "is_correct" not in view["sections"][0]["questions"][0]["content"]["options"][0]
    assert "rubric" not in view["sections"][1]["questions"][0]["content"]

    r = client.post(f"/v1/take/{exam['id']}/join", json={"name": "Ada", "email": "ada@example.com"})
    assert r.status_code == 200
    session_id = r.json()["id"]

    r = client.put(f"/v1/take/sessions/{session_id}/answers/{mc['id']}", json={"content": {"selected_option_id": "a"}})
    assert r.status_code == 200, r.text
    r = client.put(f"/v1/take/sessions/{session_id}/answers/{essay['id']}", json={"content": {"text": "My essay"}})
    essay_answer = r.json()

    r = client.post(f"/v1/take/sessions/{session_id}/tab-leave")
    assert r.json()["is_locked"] is True
    r = client.post(f"/v1/grading/sessions/{session_id}/unlock", headers=teacher_headers)
    assert r.json()["is_locked"] is False
    assert r.json()["tab_leave_count"] == 1

    state = client.get(f"/v1/take/sessions/{session_id}").json()
    assert len(state["answers"]) == 2
    assert 0 < state["remaining_seconds"] <= 3600

    assert client.post(f"/v1/take/sessions/{session_id}/submit").status_code == 200
    r = client.post(f"/v1/take/sessions/{session_id}/submit")
    assert r.status_code == 409
    assert r.json()["error"]["type"] == "already_submitted"
    r = client.put(f"/v1/take/sessions/{session_id}/answers/{mc['id']}", json={"content": {"selected_option_id": "b"}})
    assert r.status_code == 409

    grading = client.get(f"/v1/grading/sessions/{session_id}", headers=teacher_headers).json()
    assert grading["result"]["exam"]["awarded_points"] == 2
    assert grading["result"]["exam"]["pending_manual"] == 1

    r = client.put(f"/v1/grading/answers/{essay_answer['id']}/points", headers=teacher_headers, json={"points": 9})
    assert r.status_code == 422
    r = client.put(f"/v1/grading/answers/{essay_answer['id']}/points", headers=teacher_headers, json={"points": 7})
    assert r.json()["points_awarded"] == 7

    results = client.get(f"/v1/exams/{exam['id']}/results", headers=teacher_headers).json()
    assert results[0]["exam"]["awarded_points"] == 9
    assert [s["score"]["awarded_points"] for s in results[0]["sections"]] == [2, 7]

    sessions = client.get(f"/v1/exams/{exam['id']}/sessions", headers=teacher_headers).json()
    assert sessions[0]["student_email"] == "ada@example.com"

    assert client.get(f"/v1/grading/sessions/{session_id}", headers=auth_header(OTHER_TEACHER)).status_code == 404
    assert client.post(f"/v1/exams/{exam['id']}/close", headers=teacher_headers).json()["status"] == "closed"


def test_duplicate_and_delete_section(client, teacher_headers):
    q1 = create_question(client, teacher_headers, QuestionType.KPRIM)
    q2 = create_question(client, teacher_headers, QuestionType.MATCHING)
    exam = client.post("/v1/exams", headers=teacher_headers, json={"title": "Draft"}).json()
    comp = client.put(f"/v1/exams/{exam['id']}/composition", headers=teacher_headers, json={"sections": [
        {"title": "One", "order_index": 0, "question_ids": [q1["id"]]},
        {"title": "Two", "order_index": 1, "question_ids": [q2["id"]]},
    ]}).json()

    r = client.post(f"/v1/exams/{exam['id']}/duplicate", headers=teacher_headers)
    assert r.status_code == 201
    copy_id = r.json()["id"]
    assert len(client.get(f"/v1/exams/{copy_id}/composition", headers=teacher_headers).json()["sections"]) == 2

    r = client.delete(f"/v1/exams/{exam['id']}/sections/{comp['sections'][0]['id']}", headers=teacher_headers)
    assert [(s["title"], s["order_index"]) for s in r.json()["sections"]] == [("Two", 0)]

    assert client.delete(f"/v1/exams/{copy_id}", headers=teacher_headers).status_code == 204
    assert len(client.get("/v1/exams", headers=teacher_headers).json()) == 1


def test_subjects_tag_own_questions(client, teacher_headers):
    r = client.post("/v1/subjects", headers=teacher_headers, json={"name": "Geography"})
    assert r.status_code == 201
    subject = r.json()
    assert client.post("/v1/subjects", headers=teacher_headers, json={"name": "Geography"}).status_code == 409

    other = auth_header(OTHER_TEACHER)
    r = client.post("/v1/questions", headers=other, json={
        "type": "essay", "title": "Borrowed tag", "content": sample(QuestionType.ESSAY), "points": 1,
        "subject_id": subject["id"],
    })
    assert r.status_code == 404

    q = create_question(client, teacher_headers, QuestionType.ESSAY)
    r = client.patch(f"/v1/questions/{q['id']}", headers=teacher_headers, json={"subject_id": subject["id"]})
    assert r.json()["subject_id"] == subject["id"]
    r = client.patch(f"/v1/subjects/{subject['id']}", headers=teacher_headers, json={"name": "Geo"})
    assert r.json()["name"] == "Geo"
    assert client.delete(f"/v1/subjects/{subject['id']}", headers=teacher_headers).status_code == 204
    assert client.get(f"/v1/questions/{q['id']}", headers=teacher_headers).json()["subject_id"] is None
    assert client.get("/v1/subjects", headers=teacher_headers).json() == []


def test_group_sharing_flow(client, teacher_headers):
    other = auth_header(OTHER_TEACHER)
    q = create_question(client, teacher_headers, QuestionType.MATCHING)
    group = client.post("/v1/groups", headers=teacher_headers, json={"name": "Languages"}).json()
    assert group["my_role"] == "owner"
    assert client.get(f"/v1/groups/{group['id']}", headers=other).status_code == 404

    r = client.post(f"/v1/groups/{group['id']}/invitations", headers=teacher_headers,
                    json={"invited_teacher_id": OTHER_TEACHER})
    assert r.status_code == 201
    pending = client.get("/v1/invitations", headers=other).json()
    assert [i["group_id"] for i in pending] == [group["id"]]
    r = client.post(f"/v1/invitations/{pending[0]['id']}/accept", headers=other)
    assert r.json()["role"] == "member"
    assert client.post(f"/v1/groups/{group['id']}/invitations", headers=other,
                       json={"invited_teacher_id": "teacher-3"}).status_code == 403

    r = client.post(f"/v1/questions/{q['id']}/shares", headers=teacher_headers, json={"group_ids": [group["id"]]})
    assert [s["group_id"] for s in r.json()] == [group["id"]]
    assert [s["id"] for s in client.get("/v1/questions/shared", headers=other).json()] == [q["id"]]
    assert [s["id"] for s in client.get(f"/v1/groups/{group['id']}/questions", headers=other).json()] == [q["id"]]

    r = client.post(f"/v1/questions/{q['id']}/copy", headers=other)
    assert r.status_code == 201
    assert r.json()["owner_id"] == OTHER_TEACHER

    exam = client.post("/v1/exams", headers=other, json={"title": "Borrowed"}).json()
    r = client.put(f"/v1/exams/{exam['id']}/questions", headers=other, json={"question_ids": [q["id"]]})
    assert r.status_code == 200

    r = client.delete(f"/v1/questions/{q['id']}/shares/{group['id']}", headers=teacher_headers)
    assert r.status_code == 204
    assert client.post(f"/v1/questions/{q['id']}/copy", headers=other).status_code == 404
    assert client.post(f"/v1/groups/{group['id']}/leave", headers=other).status_code == 204
    assert client.get("/v1/groups", headers=other).json() == []
