import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import RequestContext
from core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationIssue
from core.models import Relationship
from core.services import activities as activity_service
from core.services import relationships as relationship_service


def _create(relationship_id: int, actor_id: int, **kwargs) -> dict:
    return activity_service.create_activity(
        relationship_id,
        title=kwargs.pop("title", "Movie night"),
        type=kwargs.pop("type", "date"),
        context=RequestContext.for_user(actor_id),
        **kwargs,
    )["activity"]


def _stats(relationship_id: int, actor_id: int) -> dict:
    return relationship_service.get_relationship(
        relationship_id, context=RequestContext.for_user(actor_id)
    )["relationship"]["stats"]


def test_trust_change_is_clamped_to_floor(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    db_session.query(Relationship).filter(Relationship.id == relationship_id).update({Relationship.trust_level: 5})
    db_session.commit()

    activity = _create(relationship_id, alice_id, type="conflict", trust_change=-20)
    assert activity["impact"]["trust_change"] == -10

    stats = _stats(relationship_id, alice_id)
    assert stats["trust_level"] == 0
    assert stats["total_activities"] == 1
    assert stats["last_interaction"] is not None


def test_trust_change_is_clamped_to_ceiling(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    db_session.query(Relationship).filter(Relationship.id == relationship_id).update({Relationship.trust_level: 97})
    db_session.commit()

    _create(relationship_id, bob_id, trust_change=8)
    assert _stats(relationship_id, bob_id)["trust_level"] == 100


def test_defaults_and_participants(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    activity = _create(relationship_id, alice_id)
    assert activity["category"] == "shared_activities"
    assert activity["mood"] == "neutral"
    assert activity["participants"] == [{"user": alice_id, "role": "participant"}]


def test_delete_decrements_total_floored_at_zero(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    activity = _create(relationship_id, alice_id)

    db_session.query(Relationship).filter(Relationship.id == relationship_id).update(
        {Relationship.total_activities: 0}
    )
    db_session.commit()

    with pytest.raises(ForbiddenError):
        activity_service.delete_activity(activity["id"], context=RequestContext.for_user(bob_id))
    activity_service.delete_activity(activity["id"], context=RequestContext.for_user(alice_id))
    assert _stats(relationship_id, alice_id)["total_activities"] == 0


def test_update_does_not_touch_impact(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    activity = _create(relationship_id, alice_id, trust_change=3)
    updated = activity_service.update_activity(
        activity["id"],
        {"title": "Movie marathon", "trust_change": 10},
        context=RequestContext.for_user(alice_id),
    )["activity"]
    assert updated["title"] == "Movie marathon"
    assert updated["impact"]["trust_change"] == 3
    assert _stats(relationship_id, alice_id)["trust_level"] == 53


def test_reaction_latest_wins(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    activity = _create(relationship_id, alice_id)

    activity_service.add_reaction(activity["id"], type="like", context=RequestContext.for_user(bob_id))
    result = activity_service.add_reaction(activity["id"], type="love", context=RequestContext.for_user(bob_id))
    assert result["replaced"] is True
    assert [(item["user_id"], item["type"]) for item in result["activity"]["reactions"]] == [(bob_id, "love")]


def test_comments_append_and_validate(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    activity = _create(relationship_id, alice_id)

    activity_service.add_comment(activity["id"], "That was fun", context=RequestContext.for_user(bob_id))
    result = activity_service.add_comment(activity["id"], "Again soon", context=RequestContext.for_user(alice_id))
    assert [item["text"] for item in result["activity"]["comments"]] == ["That was fun", "Again soon"]

    with pytest.raises(ValidationIssue):
        activity_service.add_comment(activity["id"], "   ", context=RequestContext.for_user(bob_id))
    with pytest.raises(ValidationIssue):
        activity_service.add_comment(activity["id"], "x" * 501, context=RequestContext.for_user(bob_id))


def test_related_milestone_must_share_relationship(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    with pytest.raises(NotFoundError):
        _create(relationship_id, alice_id, related_milestone_id=999)


def test_create_requires_active_relationship(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(alice_id))
    with pytest.raises(InvalidStateError):
        _create(relationship_id, bob_id)


def test_list_filters_and_feed(active_pair, make_user):
    alice_id, bob_id, relationship_id = active_pair
    _create(relationship_id, alice_id, title="Chat", type="conversation", mood="positive")
    _create(relationship_id, bob_id, title="Gift", type="gift", category="gifts")
    _create(relationship_id, bob_id, title="Call", type="conversation", category="communication")

    conversations = activity_service.list_activities(
        relationship_id, type="conversation", context=RequestContext.for_user(alice_id)
    )
    assert conversations["count"] == 2
    assert conversations["activities"][0]["title"] == "Call"

    positive = activity_service.list_activities(
        relationship_id, mood="positive", context=RequestContext.for_user(bob_id)
    )
    assert [item["title"] for item in positive["activities"]] == ["Chat"]

    paged = activity_service.list_activities(relationship_id, limit=2, context=RequestContext.for_user(bob_id))
    assert paged["pagination"]["total_pages"] == 2

    outsider = make_user()
    feed = activity_service.list_my_activities(context=RequestContext.for_user(outsider["id"]))
    assert feed["count"] == 0
    feed = activity_service.list_my_activities(context=RequestContext.for_user(alice_id))
    assert feed["pagination"]["total_items"] == 3


@pytest.mark.parametrize(
    "fields, field",
    [
        ({"duration": None}, "duration"),
        ({"is_recurring": None}, "is_recurring"),
        ({"is_recurring": "often"}, "is_recurring"),
    ],
)
def test_update_rejects_null_or_mistyped_required_columns(active_pair, fields, field):
    alice_id, _, relationship_id = active_pair
    activity = _create(relationship_id, alice_id)
    with pytest.raises(ValidationIssue) as excinfo:
        activity_service.update_activity(activity["id"], fields, context=RequestContext.for_user(alice_id))
    assert excinfo.value.field == field

    unchanged = activity_service.get_activity(activity["id"], context=RequestContext.for_user(alice_id))["activity"]
    assert unchanged["duration"] == 0
    assert unchanged["is_recurring"] is False
