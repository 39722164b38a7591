import pytest

from feedback_desk.core.access.principal import Principal
from feedback_desk.core.repos.feedback_repo_json import FeedbackRepoJSON
from feedback_desk.core.repos.users_repo_json import UsersRepoJSON


SUGGESTIONS_TEXT = (
    "1. Dear customer, thank you for taking the time to describe the delay you experienced with your order.\n"
    "2. Hey there! Thanks so much for letting us know, we are really sorry the delivery took this long.\n"
    "3. We have escalated your order to our logistics team and will share a tracking update within 24 hours.\n"
)


@pytest.fixture
def suggestions_text():
    return SUGGESTIONS_TEXT


@pytest.fixture
def feedback_repo(tmp_path):
    return FeedbackRepoJSON(tmp_path / "feedback.json")


@pytest.fixture
def users_repo(tmp_path):
    return UsersRepoJSON(tmp_path / "users.json")


@pytest.fixture
def alice():
    return Principal(id="u-alice", username="alice", role="user", email="alice@example.com")


@pytest.fixture
def bob():
    return Principal(id="u-bob", username="bob", role="user", email="bob@example.com")


@pytest.fixture
def admin():
    return Principal(id="u-admin", username="admin", role="admin", email="admin@example.com")


@pytest.fixture
def payload():
    def make(**overrides):
        data = {
            "customer_name": "Alice Doe",
            "customer_email": "Alice@Example.com",
            "subject": "Late delivery",
            "message": "My order arrived two weeks after the promised date.",
            "rating": 2,
            "category": "service",
        }
        data.update(overrides)
        return data

    return make
