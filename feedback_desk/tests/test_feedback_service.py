from datetime import datetime, timedelta, timezone

import pytest

from feedback_desk.core.access.principal import Principal
from feedback_desk.core.repos.query import FeedbackQuery
from feedback_desk.core.services.ai_service import AIService
from feedback_desk.core.services.errors import Forbidden, NotFound, Unauthenticated, UpstreamFailure, ValidationError
from feedback_desk.core.services.feedback_service import FeedbackService


class RecordingLLM:
    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            return ""
        return self.responses.pop(0)


class FailingLLM:
    def generate(self, _prompt: str) -> str:
        raise RuntimeError("backend down")


class RecordingQueue:
    def __init__(self, fail=False):
        self.fail = fail
        self.submitted = []

    def submit(self, feedback_id):
        if self.fail:
            raise RuntimeError("queue is not running")
        self.submitted.append(feedback_id)


@pytest.fixture
def service(feedback_repo):
    return FeedbackService(feedback_repo)


def seed(repo, owner_id, count=1, **fields):
    now = datetime.now(timezone.utc)
    ids = []
    for i in range(count):
        rec = repo.create(
            {
                "owner_id": owner_id,
                "customer_name": f"Customer {i}",
                "customer_email": f"c{i}@example.com",
                "subject": fields.get("subject", f"Subject {i}"),
                "message": fields.get("message", "A message that is long enough."),
                "rating": fields.get("rating", 4),
                "category": fields.get("category", "general"),
                "status": fields.get("status", "pending"),
                "priority": fields.get("priority", "medium"),
                "created_at": fields.get("created_at", now - timedelta(minutes=count - i)),
            }
        )
        ids.append(rec["id"])
    return ids


# ---------- list / ownership ----------
def test_list_only_returns_own_records_for_users(service, feedback_repo, alice, bob):
    seed(feedback_repo, alice.id, 3)
    seed(feedback_repo, bob.id, 2)
    seed(feedback_repo, None, 1)

    items, pagination = service.list_feedback(alice)

    assert len(items) == 3
    assert all(i["owner_id"] == alice.id for i in items)
    assert pagination["total_items"] == 3


def test_admin_lists_everything_including_unowned(service, feedback_repo, alice, bob, admin):
    seed(feedback_repo, alice.id, 3)
    seed(feedback_repo, bob.id, 2)
    seed(feedback_repo, None, 1)

    _, pagination = service.list_feedback(admin)

    assert pagination["total_items"] == 6


def test_list_items_exclude_suggestions(service, feedback_repo, alice):
    seed(feedback_repo, alice.id, 1)

    items, _ = service.list_feedback(alice)

    assert "ai_suggestions" not in items[0]


def test_pagination_second_page_of_twenty_five(service, feedback_repo, alice):
    seed(feedback_repo, alice.id, 25)

    items, pagination = service.list_feedback(alice, page=2, limit=10)

    assert len(items) == 10
    assert pagination == {
        "current_page": 2,
        "total_pages": 3,
        "total_items": 25,
        "items_per_page": 10,
        "has_next_page": True,
        "has_prev_page": True,
    }


def test_default_sort_is_newest_first(service, feedback_repo, alice):
    ids = seed(feedback_repo, alice.id, 3)

    items, _ = service.list_feedback(alice)

    assert [i["id"] for i in items] == list(reversed(ids))


def test_sort_by_rating_ascending_with_camel_case_alias(service, feedback_repo, alice):
    seed(feedback_repo, alice.id, 1, rating=5)
    seed(feedback_repo, alice.id, 1, rating=1)
    seed(feedback_repo, alice.id, 1, rating=3)

    items, _ = service.list_feedback(alice, sort="rating")
    assert [i["rating"] for i in items] == [1, 3, 5]

    items, _ = service.list_feedback(alice, sort="-createdAt")
    assert [i["rating"] for i in items] == [3, 1, 5]


@pytest.mark.parametrize("kwargs", [{"page": 0}, {"limit": 0}, {"limit": 101}, {"sort": "password_hash"}])
def test_invalid_list_parameters(service, alice, kwargs):
    with pytest.raises(ValidationError):
        service.list_feedback(alice, **kwargs)


def test_search_is_case_insensitive_substring(service, feedback_repo, alice):
    seed(feedback_repo, alice.id, 1, subject="Broken CHECKOUT button")
    seed(feedback_repo, alice.id, 1, subject="Great support")

    items, _ = service.list_feedback(alice, FeedbackQuery(search="checkout"))

    assert [i["subject"] for i in items] == ["Broken CHECKOUT button"]


def test_filters_cannot_widen_ownership_scope(service, feedback_repo, alice, bob):
    seed(feedback_repo, bob.id, 2)

    items, _ = service.list_feedback(alice, FeedbackQuery(owner_id=bob.id))

    assert items == []


def test_list_requires_principal(service):
    with pytest.raises(Unauthenticated):
        service.list_feedback(None)


# ---------- single record ----------
def test_get_other_users_record_is_forbidden(service, feedback_repo, alice, bob):
    (fb_id,) = seed(feedback_repo, bob.id)

    with pytest.raises(Forbidden):
        service.get_feedback(alice, fb_id)


def test_unowned_record_is_admin_only(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, None)

    with pytest.raises(Forbidden):
        service.get_feedback(alice, fb_id)
    assert service.get_feedback(admin, fb_id)["id"] == fb_id


def test_missing_record_is_not_found_for_everyone(service, alice, admin):
    for principal in (alice, admin):
        with pytest.raises(NotFound):
            service.get_feedback(principal, "does-not-exist")


@pytest.mark.parametrize("who", ["alice", "admin"])
def test_missing_record_is_not_found_on_update_and_delete(service, who, request):
    principal = request.getfixturevalue(who)

    with pytest.raises(NotFound):
        service.update_feedback(principal, "does-not-exist", {"rating": 3})
    with pytest.raises(NotFound):
        service.delete_feedback(principal, "does-not-exist")


def test_get_is_repeatable(service, feedback_repo, alice):
    (fb_id,) = seed(feedback_repo, alice.id)

    assert service.get_feedback(alice, fb_id) == service.get_feedback(alice, fb_id)


def test_hidden_forbidden_maps_to_not_found(feedback_repo, alice, bob):
    service = FeedbackService(feedback_repo, hide_forbidden=True)
    (fb_id,) = seed(feedback_repo, bob.id)

    with pytest.raises(NotFound):
        service.get_feedback(alice, fb_id)


# ---------- create ----------
def test_create_assigns_owner_and_defaults(service, alice, payload):
    record = service.create_feedback(alice, payload(owner_id="u-bob", status="resolved", category=""))

    assert record["owner_id"] == alice.id
    assert record["status"] == "pending"
    assert record["priority"] == "medium"
    assert record["category"] == "general"
    assert record["customer_email"] == "alice@example.com"
    assert record["ai_suggestions"] == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"message": "too short"},
        {"message": "x" * 1001},
        {"rating": 6},
        {"rating": 0},
        {"customer_email": "not-an-email"},
        {"category": "gossip"},
        {"subject": ""},
        {"customer_name": "n" * 101},
    ],
)
def test_create_rejects_invalid_fields(service, alice, payload, overrides):
    with pytest.raises(ValidationError) as excinfo:
        service.create_feedback(alice, payload(**overrides))
    assert excinfo.value.details


@pytest.mark.parametrize("rating", [1, 5])
def test_create_accepts_rating_bounds(service, alice, payload, rating):
    record = service.create_feedback(alice, payload(rating=rating))

    assert record["rating"] == rating


def test_create_enqueues_enrichment(feedback_repo, alice, payload):
    queue = RecordingQueue()
    service = FeedbackService(feedback_repo, enrichment=queue)

    record = service.create_feedback(alice, payload())

    assert queue.submitted == [record["id"]]


def test_enqueue_failure_does_not_fail_create(feedback_repo, alice, payload):
    service = FeedbackService(feedback_repo, enrichment=RecordingQueue(fail=True))

    record = service.create_feedback(alice, payload())

    assert feedback_repo.get(record["id"]) is not None


# ---------- update ----------
def test_user_cannot_change_admin_fields(service, feedback_repo, alice):
    (fb_id,) = seed(feedback_repo, alice.id)

    record = service.update_feedback(
        alice, fb_id, {"status": "resolved", "priority": "urgent", "admin_response": "x", "subject": "New subject"}
    )

    assert record["subject"] == "New subject"
    assert record["status"] == "pending"
    assert record["priority"] == "medium"
    assert record["admin_response"] is None


def test_admin_cannot_rewrite_customer_text(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id, subject="Original")

    record = service.update_feedback(admin, fb_id, {"subject": "Changed", "priority": "high"})

    assert record["subject"] == "Original"
    assert record["priority"] == "high"


def test_admin_response_forces_responded_and_stamps_time(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id)

    record = service.update_feedback(admin, fb_id, {"admin_response": "We are on it", "status": "pending"})

    assert record["status"] == "responded"
    assert record["responded_at"] is not None
    assert record["responded_at"] >= record["created_at"]


def test_resolving_stamps_resolved_at(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id)

    record = service.update_feedback(admin, fb_id, {"status": "resolved"})

    assert record["resolved_at"] is not None


def test_update_of_other_users_record_is_forbidden(service, feedback_repo, alice, bob):
    (fb_id,) = seed(feedback_repo, bob.id, subject="Bob's")

    with pytest.raises(Forbidden):
        service.update_feedback(alice, fb_id, {"subject": "Hijacked"})
    assert feedback_repo.get(fb_id)["subject"] == "Bob's"


def test_owner_and_admin_may_update_a_record(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id)

    assert service.update_feedback(alice, fb_id, {"rating": 1})["rating"] == 1
    assert service.update_feedback(admin, fb_id, {"priority": "urgent"})["priority"] == "urgent"


def test_update_validates_kept_fields(service, feedback_repo, alice):
    (fb_id,) = seed(feedback_repo, alice.id)

    with pytest.raises(ValidationError):
        service.update_feedback(alice, fb_id, {"rating": 9})


# ---------- delete ----------
def test_delete_own_record(service, feedback_repo, alice):
    (fb_id,) = seed(feedback_repo, alice.id)

    service.delete_feedback(alice, fb_id)

    assert feedback_repo.get(fb_id) is None


def test_delete_other_users_record_is_forbidden(service, feedback_repo, alice, bob):
    (fb_id,) = seed(feedback_repo, bob.id)

    with pytest.raises(Forbidden):
        service.delete_feedback(alice, fb_id)
    assert feedback_repo.get(fb_id) is not None


# ---------- stats ----------
def test_stats_are_scoped_to_owner(service, feedback_repo, alice, bob):
    seed(feedback_repo, alice.id, 2, rating=4, category="product")
    seed(feedback_repo, alice.id, 1, rating=1, category="billing", status="resolved")
    seed(feedback_repo, bob.id, 5, rating=5)

    stats = service.stats(alice)

    assert stats["overview"] == {
        "total_feedback": 3,
        "average_rating": 3.0,
        "total_pending": 2,
        "total_responded": 0,
        "total_resolved": 1,
    }
    assert [c["category"] for c in stats["category_breakdown"]] == ["product", "billing"]
    assert stats["rating_distribution"] == [{"rating": 1, "count": 1}, {"rating": 4, "count": 2}]


@pytest.mark.parametrize("who", ["alice", "admin"])
def test_stats_total_matches_list_total(service, feedback_repo, alice, bob, who, request):
    seed(feedback_repo, alice.id, 3)
    seed(feedback_repo, bob.id, 2)
    seed(feedback_repo, None, 1)
    principal = request.getfixturevalue(who)

    _, pagination = service.list_feedback(principal)

    assert service.stats(principal)["overview"]["total_feedback"] == pagination["total_items"]


def test_stats_on_empty_store(service, alice):
    stats = service.stats(alice)

    assert stats["overview"]["total_feedback"] == 0
    assert stats["overview"]["average_rating"] == 0


# ---------- admin operations ----------
def test_admin_operations_require_admin(service, feedback_repo, alice):
    (fb_id,) = seed(feedback_repo, alice.id)

    with pytest.raises(Forbidden):
        service.respond(alice, fb_id, "Thanks")
    with pytest.raises(Forbidden):
        service.set_status(alice, fb_id, "resolved")
    with pytest.raises(Forbidden):
        service.dashboard(alice)
    with pytest.raises(Unauthenticated):
        service.dashboard(None)


def test_respond_requires_text(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id)

    with pytest.raises(ValidationError):
        service.respond(admin, fb_id, "   ")


def test_respond_with_resolution(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id)

    record = service.respond(admin, fb_id, "Refund issued", status="resolved")

    assert record["admin_response"] == "Refund issued"
    assert record["status"] == "resolved"
    assert record["responded_at"] is not None
    assert record["resolved_at"] is not None


def test_set_status_and_priority_validate_enums(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id)

    with pytest.raises(ValidationError):
        service.set_status(admin, fb_id, "archived")
    with pytest.raises(ValidationError):
        service.set_priority(admin, fb_id, None)
    assert service.set_priority(admin, fb_id, "urgent")["priority"] == "urgent"


def test_reopening_resolved_record_is_allowed(service, feedback_repo, alice, admin):
    (fb_id,) = seed(feedback_repo, alice.id, status="resolved")

    assert service.set_status(admin, fb_id, "pending")["status"] == "pending"


def test_dashboard(service, feedback_repo, alice, admin):
    old = datetime.now(timezone.utc) - timedelta(days=3)
    seed(feedback_repo, alice.id, 1, rating=1, created_at=old)
    seed(feedback_repo, alice.id, 1, rating=5, priority="urgent")
    seed(feedback_repo, alice.id, 1, rating=4, status="resolved")

    data = service.dashboard(admin)

    assert data["stats"]["total"] == 3
    assert data["stats"]["pending"] == 2
    assert data["stats"]["high_priority"] == 1
    assert len(data["recent_feedback"]) == 2
    assert {i["rating"] for i in data["urgent_feedback"]} == {1, 5}
    assert sum(day["count"] for day in data["rating_trends"]) == 3
    general = data["category_stats"][0]
    assert general["category"] == "general" and general["pending"] == 2


def test_summary_report_rejects_inverted_range(service, admin):
    now = datetime.now(timezone.utc)

    with pytest.raises(ValidationError):
        service.summary_report(admin, now, now - timedelta(days=1))


def test_summary_report_uses_date_range(service, feedback_repo, alice, admin):
    now = datetime.now(timezone.utc)
    seed(feedback_repo, alice.id, 1, created_at=now - timedelta(days=40))
    seed(feedback_repo, alice.id, 2)

    report = service.summary_report(admin, now - timedelta(days=7), now)

    assert report["overview"]["total_feedback"] == 2
    assert report["date_range"]["start_date"] == now - timedelta(days=7)


# ---------- AI ----------
def test_regenerate_suggestions_replaces_list(feedback_repo, alice, admin, suggestions_text):
    ai = AIService(RecordingLLM([suggestions_text]))
    service = FeedbackService(feedback_repo, ai)
    (fb_id,) = seed(feedback_repo, alice.id)

    suggestions = service.regenerate_suggestions(admin, fb_id)

    assert [s["style"] for s in suggestions] == ["formal", "friendly", "solution-focused"]
    assert all(s["generated_at"] for s in suggestions)
    assert len(feedback_repo.get(fb_id)["ai_suggestions"]) == 3


def test_regenerate_suggestions_is_admin_only(feedback_repo, alice):
    service = FeedbackService(feedback_repo, AIService(RecordingLLM([])))
    (fb_id,) = seed(feedback_repo, alice.id)

    with pytest.raises(Forbidden):
        service.regenerate_suggestions(alice, fb_id)


def test_regenerate_surfaces_ai_failure(feedback_repo, alice, admin):
    service = FeedbackService(feedback_repo, AIService(FailingLLM()))
    (fb_id,) = seed(feedback_repo, alice.id)

    with pytest.raises(UpstreamFailure):
        service.regenerate_suggestions(admin, fb_id)


def test_sentiment_falls_back_when_ai_fails(feedback_repo, alice):
    service = FeedbackService(feedback_repo, AIService(FailingLLM()))
    (fb_id,) = seed(feedback_repo, alice.id)

    result = service.analyze_sentiment(alice, fb_id)

    assert result["analysis"]["sentiment"] == "neutral"
    assert result["analysis"]["fallback"] is True


def test_sentiment_respects_ownership(feedback_repo, alice, bob):
    service = FeedbackService(feedback_repo, AIService(FailingLLM()))
    (fb_id,) = seed(feedback_repo, bob.id)

    with pytest.raises(Forbidden):
        service.analyze_sentiment(alice, fb_id)


def test_refresh_skips_deleted_record(feedback_repo):
    llm = RecordingLLM([])
    service = FeedbackService(feedback_repo, AIService(llm))

    assert service.refresh_suggestions("gone") is False
    assert llm.prompts == []


def test_refresh_stores_suggestions(feedback_repo, alice, suggestions_text):
    service = FeedbackService(feedback_repo, AIService(RecordingLLM([suggestions_text])))
    (fb_id,) = seed(feedback_repo, alice.id)

    assert service.refresh_suggestions(fb_id) is True
    assert len(feedback_repo.get(fb_id)["ai_suggestions"]) == 3


def test_backfill_queues_records_without_suggestions(feedback_repo, alice):
    queue = RecordingQueue()
    service = FeedbackService(feedback_repo, enrichment=queue)
    old = datetime.now(timezone.utc) - timedelta(hours=1)
    (stale,) = seed(feedback_repo, alice.id, created_at=old)
    (done,) = seed(feedback_repo, alice.id, created_at=old)
    feedback_repo.update(done, {"ai_suggestions": [{"text": "t", "confidence": 0.9, "style": "formal"}]})
    seed(feedback_repo, alice.id)  # too recent

    assert service.backfill_suggestions(older_than=timedelta(minutes=10)) == 1
    assert queue.submitted == [stale]


def test_principal_from_record_defaults_role():
    principal = Principal.from_record({"id": 7, "username": "x"})

    assert principal.id == "7"
    assert principal.role == "user"
