from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from feedback_desk.core.db.engine import build_engine, init_schema
from feedback_desk.core.repos.feedback_repo_db import FeedbackRepoDB
from feedback_desk.core.repos.feedback_repo_json import FeedbackRepoJSON
from feedback_desk.core.repos.query import FeedbackQuery, SortSpec
from feedback_desk.core.repos.users_repo_db import UsersRepoDB
from feedback_desk.core.repos.users_repo_json import UsersRepoJSON
from feedback_desk.core.services.errors import Conflict


NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    engine = build_engine("sqlite://")
    init_schema(engine)
    session = Session(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(params=["json", "db"])
def store(request, tmp_path):
    if request.param == "json":
        return FeedbackRepoJSON(tmp_path / "feedback.json")
    return FeedbackRepoDB(request.getfixturevalue("db_session"))


@pytest.fixture(params=["json", "db"])
def users_store(request, tmp_path):
    if request.param == "json":
        return UsersRepoJSON(tmp_path / "users.json")
    return UsersRepoDB(request.getfixturevalue("db_session"))


def add(store, owner_id="u1", **fields):
    data = {
        "owner_id": owner_id,
        "customer_name": "Jane Roe",
        "customer_email": "jane@example.com",
        "subject": "Subject",
        "message": "Message body that is long enough.",
        "rating": 3,
        "category": "general",
        "status": "pending",
        "priority": "medium",
        "created_at": NOW,
    }
    data.update(fields)
    return store.create(data)


def test_create_and_get_round_trip(store):
    rec = add(store, ai_suggestions=[{"text": "Hello", "confidence": 0.9, "style": "formal", "generated_at": NOW}])

    fetched = store.get(rec["id"])

    assert fetched["owner_id"] == "u1"
    assert fetched["created_at"] == NOW
    assert fetched["ai_suggestions"][0]["generated_at"] == NOW
    assert store.get("missing") is None


def test_find_filters_and_counts(store):
    add(store, "u1", rating=5, category="product", subject="Love the new dashboard")
    add(store, "u1", rating=2, category="billing", subject="Double charged")
    add(store, "u2", rating=1, category="billing", subject="Refund please")

    items, total = store.find(FeedbackQuery(owner_id="u1", category="billing"))
    assert total == 1 and items[0]["subject"] == "Double charged"

    _, total = store.find(FeedbackQuery(min_rating=2))
    assert total == 2

    items, _ = store.find(FeedbackQuery(search="DASHBOARD"))
    assert [i["rating"] for i in items] == [5]


def test_search_treats_wildcards_literally(store):
    add(store, subject="100% broken")
    add(store, subject="Fine")

    _, total = store.find(FeedbackQuery(search="%"))

    assert total == 1


def test_find_sort_skip_limit_and_projection(store):
    for i in range(5):
        add(store, rating=i + 1, created_at=NOW + timedelta(minutes=i))

    items, total = store.find(
        FeedbackQuery(), sort=SortSpec(field="rating", descending=True), skip=1, limit=2, exclude=("ai_suggestions",)
    )

    assert total == 5
    assert [i["rating"] for i in items] == [4, 3]
    assert "ai_suggestions" not in items[0]


def test_date_range_and_attention_filters(store):
    add(store, rating=1, created_at=NOW - timedelta(days=2))
    add(store, rating=5, priority="urgent", created_at=NOW)
    add(store, rating=4, created_at=NOW)

    _, total = store.find(FeedbackQuery(created_from=NOW - timedelta(hours=1)))
    assert total == 2

    _, total = store.find(FeedbackQuery(created_to=NOW - timedelta(days=1)))
    assert total == 1

    items, _ = store.find(FeedbackQuery(needs_attention=True))
    assert sorted(i["rating"] for i in items) == [1, 5]


def test_missing_suggestions_filter(store):
    bare = add(store)
    enriched = add(store)
    store.update(enriched["id"], {"ai_suggestions": [{"text": "t", "confidence": 0.9, "style": "formal"}]})

    items, _ = store.find(FeedbackQuery(missing_suggestions=True))

    assert [i["id"] for i in items] == [bare["id"]]


def test_update_and_delete(store):
    rec = add(store)

    updated = store.update(rec["id"], {"status": "resolved", "resolved_at": NOW})

    assert updated["status"] == "resolved"
    assert updated["resolved_at"] == NOW
    assert updated["updated_at"] != rec["updated_at"]
    assert store.update("missing", {"status": "resolved"}) is None
    assert store.delete(rec["id"]) is True
    assert store.delete(rec["id"]) is False


def test_aggregate_groups(store):
    add(store, rating=5, status="pending", category="product")
    add(store, rating=3, status="pending", category="product")
    add(store, rating=1, status="resolved", category="billing", created_at=NOW - timedelta(days=1))

    by_status = {r["key"]: r for r in store.aggregate(FeedbackQuery(), "status")}
    assert by_status["pending"]["count"] == 2
    assert by_status["pending"]["avg_rating"] == 4.0

    (overall,) = store.aggregate(FeedbackQuery())
    assert overall["count"] == 3 and overall["avg_rating"] == 3.0

    by_day = {r["key"]: r["count"] for r in store.aggregate(FeedbackQuery(), "created_date")}
    assert by_day == {"2024-05-20": 2, "2024-05-19": 1}

    assert store.aggregate(FeedbackQuery(owner_id="nobody")) == []


def test_users_store_lookup_and_uniqueness(users_store):
    user = users_store.create(
        {"username": "Alice", "email": "alice@example.com", "name": "Alice", "password_hash": "x", "password_algo": "bcrypt"}
    )

    assert user["role"] == "user"
    assert user["is_active"] is True
    assert users_store.get_by_login("alice")["id"] == user["id"]
    assert users_store.get_by_login("ALICE@example.com")["id"] == user["id"]
    assert users_store.exists(username="someone", email="Alice@Example.com")
    with pytest.raises(Conflict):
        users_store.create({"username": "alice", "email": "other@example.com", "name": "Dup", "password_hash": "x"})


def test_users_store_update(users_store):
    user = users_store.create({"username": "bob", "email": "bob@example.com", "name": "Bob", "password_hash": "x"})

    updated = users_store.update(user["id"], {"is_active": False})

    assert updated["is_active"] is False
    assert users_store.update("missing", {"is_active": False}) is None
