from types import SimpleNamespace

import pytest

from app.qa.errors import AuthorizationError
from app.qa.policy import ACTIONS, authorize, can


def _user(uid, active=True):
    return SimpleNamespace(id=uid, is_active=active)


AUTHOR = _user(1)
ANSWERER = _user(2)
STRANGER = _user(3)

QUESTION = SimpleNamespace(id=10, user_id=AUTHOR.id)
ANSWER = SimpleNamespace(id=20, user_id=ANSWERER.id, question=QUESTION)


@pytest.mark.parametrize(
    "user, action, entity, allowed",
    [
        (AUTHOR, "question.update", QUESTION, True),
        (AUTHOR, "question.delete", QUESTION, True),
        (ANSWERER, "question.update", QUESTION, False),
        (STRANGER, "question.delete", QUESTION, False),
        (ANSWERER, "answer.update", ANSWER, True),
        (ANSWERER, "answer.delete", ANSWER, True),
        (AUTHOR, "answer.update", ANSWER, False),
        (AUTHOR, "answer.accept", ANSWER, True),
        (ANSWERER, "answer.accept", ANSWER, False),
        (STRANGER, "answer.accept", ANSWER, False),
    ],
)
def test_can_matrix(user, action, entity, allowed):
    assert can(user, action, entity) is allowed


@pytest.mark.parametrize("action", sorted(ACTIONS))
def test_anonymous_and_inactive_users_can_do_nothing(action):
    entity = ANSWER if action.startswith("answer.") else QUESTION
    assert can(None, action, entity) is False
    assert can(_user(AUTHOR.id, active=False), action, entity) is False
    assert can(_user(ANSWERER.id, active=False), action, entity) is False


def test_unknown_action_is_an_error():
    with pytest.raises(ValueError):
        can(AUTHOR, "question.launch", QUESTION)


def test_authorize_raises_with_action():
    authorize(AUTHOR, "question.update", QUESTION)
    with pytest.raises(AuthorizationError) as exc:
        authorize(STRANGER, "question.update", QUESTION)
    assert exc.value.action == "question.update"
