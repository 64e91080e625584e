from app.qa.db import session_scope
from app.qa.models import User
from app.qa.modules.questions.models import STATUS_RESOLVED, Answer, Favorite, Question
from app.qa.modules.questions.service import create_answer, create_question


def _seed_question(app, users, author="u1", **overrides) -> int:
    payload = {"title": "Why is the sky blue?", "content": "Rayleigh **scattering**?", "tags": "physics"}
    payload.update(overrides)
    with session_scope(app) as s:
        return create_question(s, payload, s.get(User, users[author])).id


def _seed_answer(app, users, question_id, author="u2") -> int:
    with session_scope(app) as s:
        return create_answer(s, question_id, {"content": "Short wavelengths scatter more."}, s.get(User, users[author])).id


def test_ask_and_view(app, client, login, csrf):
    login("u1")
    r = client.post(
        "/questions/new",
        data={"title": "How do I pin a dependency?", "content": "Details", "tags": "packaging, pip"},
        headers=csrf,
        follow_redirects=False,
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        q = s.query(Question).one()
        qid = q.id
        assert q.slug == "how-do-i-pin-a-dependency"
    assert r.headers["Location"].endswith(f"/questions/{qid}")

    r = client.get(f"/questions/{qid}")
    assert r.status_code == 200
    assert b"How do I pin a dependency?" in r.data
    assert b"packaging" in r.data


def test_ask_validation_rerenders_form(app, client, login, csrf):
    login("u1")
    r = client.post("/questions/new", data={"title": "", "content": "", "tags": ""}, headers=csrf)
    assert r.status_code == 200
    assert b"Title is required." in r.data
    assert b"At least one tag is required." in r.data
    with session_scope(app) as s:
        assert s.query(Question).count() == 0


def test_view_renders_markdown_and_counts_views(app, client, users):
    qid = _seed_question(app, users)
    r = client.get(f"/questions/{qid}")
    assert r.status_code == 200
    assert b"<strong>scattering</strong>" in r.data
    client.get(f"/questions/{qid}")
    with session_scope(app) as s:
        assert s.get(Question, qid).view_count == 2


def test_unknown_question_is_404(client):
    assert client.get("/questions/999").status_code == 404


def test_draft_is_404_for_others(app, client, users, login):
    qid = _seed_question(app, users, status="Draft")
    assert client.get(f"/questions/{qid}").status_code == 404
    login("u2")
    assert client.get(f"/questions/{qid}").status_code == 404


def test_non_author_cannot_edit_or_delete(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    login("u2")
    assert client.get(f"/questions/{qid}/edit").status_code == 403
    r = client.post(
        f"/questions/{qid}/edit",
        data={"title": "Hijacked", "content": "x", "tags": "x"},
        headers=csrf,
    )
    assert r.status_code == 403
    assert client.post(f"/questions/{qid}/delete", headers=csrf).status_code == 403
    with session_scope(app) as s:
        assert s.get(Question, qid).title == "Why is the sky blue?"


def test_author_edit_and_delete(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    login("u1")
    r = client.post(
        f"/questions/{qid}/edit",
        data={"title": "Why is the sky blue at noon?", "content": "Edited", "tags": "physics, optics"},
        headers=csrf,
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        q = s.get(Question, qid)
        assert q.title == "Why is the sky blue at noon?"
        assert q.slug == "why-is-the-sky-blue"

    r = client.post(f"/questions/{qid}/delete", headers=csrf)
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Question, qid) is None


def test_answer_and_accept_flow(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    login("u2")
    r = client.post(f"/questions/{qid}/answer", data={"content": "Because of Rayleigh scattering."}, headers=csrf)
    assert r.status_code == 302
    with session_scope(app) as s:
        aid = s.query(Answer).one().id
        assert s.get(Question, qid).answer_count == 1

    # The answerer may not accept their own answer.
    assert client.post(f"/questions/answers/{aid}/correct", headers=csrf).status_code == 403

    client.get("/auth/logout")
    login("u1")
    r = client.post(f"/questions/answers/{aid}/correct", headers=csrf)
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Question, qid).status == STATUS_RESOLVED
        assert s.get(Answer, aid).adopted_at is not None

    r = client.get(f"/questions/{qid}")
    assert b"Accepted answer" in r.data


def test_empty_answer_rerenders_form(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    login("u2")
    r = client.post(f"/questions/{qid}/answer", data={"content": "  "}, headers=csrf)
    assert r.status_code == 200
    assert b"Content is required." in r.data


def test_answer_edit_is_author_only(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    aid = _seed_answer(app, users, qid, author="u2")
    login("u3")
    assert client.get(f"/questions/answers/{aid}/edit").status_code == 403
    assert client.post(f"/questions/answers/{aid}/delete", headers=csrf).status_code == 403


def test_favorite_toggle_json(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    login("u2")
    headers = {**csrf, "Accept": "application/json"}
    r = client.post(f"/questions/{qid}/favorite", headers=headers)
    assert r.status_code == 200
    assert r.json == {"ok": True, "favorited": True, "count": 1}
    r = client.post(f"/questions/{qid}/favorite", headers=headers)
    assert r.json == {"ok": True, "favorited": False, "count": 0}


def test_vote_json(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    aid = _seed_answer(app, users, qid)
    login("u3")

    r = client.post(f"/questions/{qid}/vote", json={"direction": "up"}, headers=csrf)
    assert r.json == {"ok": True, "changed": True, "count": 1}
    r = client.post(f"/questions/{qid}/vote", json={"direction": "up"}, headers=csrf)
    assert r.json == {"ok": True, "changed": False, "count": 1}
    r = client.post(f"/questions/{qid}/vote", json={"direction": "neutral"}, headers=csrf)
    assert r.json == {"ok": True, "changed": True, "count": 0}

    r = client.post(f"/questions/answers/{aid}/vote", headers={**csrf, "Accept": "application/json"})
    assert r.json == {"ok": True, "changed": True, "count": 1}

    r = client.post(f"/questions/{qid}/vote", json={"direction": "down"}, headers=csrf)
    assert r.status_code == 400
    assert r.json["ok"] is False


def test_vote_requires_login(app, client, users, csrf):
    qid = _seed_question(app, users)
    with client.session_transaction() as sess:
        sess["csrf_token"] = csrf["X-CSRF-Token"]
    r = client.post(f"/questions/{qid}/vote", headers=csrf, follow_redirects=False)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_index_filters_and_tag_page(app, client, users):
    _seed_question(app, users)
    _seed_question(app, users, author="u2", title="Best tea for mornings", tags="food")
    _seed_question(app, users, title="Secret draft", status="Draft")

    r = client.get("/questions/?order=new")
    assert b"Why is the sky blue?" in r.data
    assert b"Best tea for mornings" in r.data
    assert b"Secret draft" not in r.data

    r = client.get("/questions/?q=tea")
    assert b"Best tea for mornings" in r.data
    assert b"Why is the sky blue?" not in r.data

    r = client.get("/questions/tag/physics")
    assert r.status_code == 200
    assert b"Why is the sky blue?" in r.data
    assert b"Best tea for mornings" not in r.data


def test_oversized_question_id_is_404(client):
    assert client.get("/questions/99999999999999999999").status_code == 404


def test_draft_filter_lists_only_own_drafts(app, client, users, login):
    _seed_question(app, users, title="Secret draft", status="Draft")

    r = client.get("/questions/?status=Draft")
    assert r.status_code == 200
    assert b"Secret draft" not in r.data

    login("u2")
    assert b"Secret draft" not in client.get("/questions/?status=Draft").data

    client.get("/auth/logout")
    login("u1")
    assert b"Secret draft" in client.get("/questions/?status=Draft").data


def test_others_cannot_answer_vote_or_favorite_a_draft(app, client, users, login, csrf):
    qid = _seed_question(app, users, status="Draft")
    aid = _seed_answer(app, users, qid, author="u1")
    login("u2")
    headers = {**csrf, "Accept": "application/json"}

    assert client.get(f"/questions/{qid}/answer").status_code == 404
    r = client.post(f"/questions/{qid}/answer", data={"content": "Let me in."}, headers=csrf)
    assert r.status_code == 404
    assert client.post(f"/questions/{qid}/answer", data={"content": ""}, headers=csrf).status_code == 404
    assert client.post(f"/questions/{qid}/vote", headers=headers).status_code == 404
    assert client.post(f"/questions/answers/{aid}/vote", headers=headers).status_code == 404
    assert client.post(f"/questions/{qid}/favorite", headers=headers).status_code == 404

    with session_scope(app) as s:
        q = s.get(Question, qid)
        assert (q.answer_count, q.vote_count) == (1, 0)
        assert s.get(Answer, aid).supports == 0
        assert s.query(Favorite).count() == 0


def test_form_posts_redirect_back_to_question(app, client, users, login, csrf):
    qid = _seed_question(app, users)
    aid = _seed_answer(app, users, qid)
    login("u3")

    r = client.post(f"/questions/{qid}/favorite", data={"csrf_token": csrf["X-CSRF-Token"]})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/questions/{qid}")

    r = client.post(f"/questions/{qid}/vote", data={"csrf_token": csrf["X-CSRF-Token"]})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/questions/{qid}")

    r = client.post(f"/questions/answers/{aid}/vote", data={"csrf_token": csrf["X-CSRF-Token"]})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/questions/{qid}#answer-{aid}")

    r = client.post(
        f"/questions/{qid}/vote",
        data={"csrf_token": csrf["X-CSRF-Token"], "direction": "sideways"},
    )
    assert r.status_code == 302

    r = client.get(f"/questions/{qid}")
    assert b"Unfavorite" in r.data
    with session_scope(app) as s:
        assert s.get(Question, qid).vote_count == 1
        assert s.get(Answer, aid).supports == 1
        assert s.query(Favorite).count() == 1
