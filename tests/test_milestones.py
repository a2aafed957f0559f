import os
from datetime import timedelta

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import RequestContext
from core.errors import (
    AlreadyCompletedError,
    AlreadyDoneError,
    ForbiddenError,
    InvalidStateError,
    ValidationIssue,
)
from core.models import Certificate, utcnow
from core.services import activities as activity_service
from core.services import milestones as milestone_service
from core.services import relationships as relationship_service


def _create(relationship_id: int, actor_id: int, **kwargs) -> dict:
    return milestone_service.create_milestone(
        relationship_id,
        title=kwargs.pop("title", "First trip together"),
        category=kwargs.pop("category", "celebration"),
        context=RequestContext.for_user(actor_id),
        **kwargs,
    )["milestone"]


def test_complete_with_certificate_reward(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(
        relationship_id,
        alice_id,
        difficulty="hard",
        rewards={"points": 100, "certificate": True},
    )

    completed = milestone_service.complete_milestone(milestone["id"], context=RequestContext.for_user(bob_id))
    assert completed["milestone"]["status"] == "completed"
    assert completed["milestone"]["completed_by"] == bob_id
    assert completed["milestone"]["progress_percentage"] == 100
    assert any(item["user"] == bob_id for item in completed["milestone"]["participants"])

    certificate = db_session.get(Certificate, completed["certificate_id"])
    assert certificate.level == "gold"
    assert certificate.related_to == "milestone"
    assert sorted(certificate.recipient_ids) == sorted([alice_id, bob_id])

    relationship = relationship_service.get_relationship(
        relationship_id, context=RequestContext.for_user(alice_id)
    )["relationship"]
    assert relationship["stats"]["milestones_achieved"] == 1
    assert relationship["latest_certificate_id"] == certificate.id

    with pytest.raises(AlreadyCompletedError):
        milestone_service.complete_milestone(milestone["id"], context=RequestContext.for_user(alice_id))


def test_complete_without_reward_issues_nothing(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(relationship_id, alice_id)
    completed = milestone_service.complete_milestone(milestone["id"], context=RequestContext.for_user(alice_id))
    assert completed["certificate_id"] is None
    assert db_session.query(Certificate).count() == 0


def test_certificate_failure_aborts_completion(active_pair, monkeypatch):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(relationship_id, alice_id, rewards={"certificate": True})

    def _boom(*args, **kwargs):
        raise RuntimeError("certificate store unavailable")

    monkeypatch.setattr(milestone_service, "create_certificate", _boom)
    with pytest.raises(RuntimeError):
        milestone_service.complete_milestone(milestone["id"], context=RequestContext.for_user(alice_id))

    fetched = milestone_service.get_milestone(milestone["id"], context=RequestContext.for_user(alice_id))
    assert fetched["milestone"]["status"] == "pending"
    relationship = relationship_service.get_relationship(
        relationship_id, context=RequestContext.for_user(alice_id)
    )["relationship"]
    assert relationship["stats"]["milestones_achieved"] == 0


def test_criteria_progress(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(
        relationship_id,
        alice_id,
        criteria={
            "custom_criteria": [
                {"name": "Book flights"},
                {"name": "Book hotel", "description": "Somewhere near the beach"},
            ]
        },
    )
    assert milestone["progress_percentage"] == 0

    step = milestone_service.complete_criterion(milestone["id"], 0, context=RequestContext.for_user(bob_id))
    assert step["milestone"]["status"] == "in_progress"
    assert step["milestone"]["progress_percentage"] == 50

    with pytest.raises(AlreadyDoneError):
        milestone_service.complete_criterion(milestone["id"], 0, context=RequestContext.for_user(alice_id))
    with pytest.raises(ValidationIssue):
        milestone_service.complete_criterion(milestone["id"], 5, context=RequestContext.for_user(alice_id))

    milestone_service.complete_milestone(milestone["id"], context=RequestContext.for_user(alice_id))
    with pytest.raises(InvalidStateError):
        milestone_service.complete_criterion(milestone["id"], 1, context=RequestContext.for_user(alice_id))


def test_update_and_delete_rules(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(relationship_id, alice_id)

    with pytest.raises(ForbiddenError):
        milestone_service.update_milestone(milestone["id"], {"title": "Trip"}, context=RequestContext.for_user(bob_id))
    with pytest.raises(ValidationIssue):
        milestone_service.update_milestone(
            milestone["id"], {"status": "completed"}, context=RequestContext.for_user(alice_id)
        )

    updated = milestone_service.update_milestone(
        milestone["id"], {"title": "Weekend trip"}, context=RequestContext.for_user(alice_id)
    )
    assert updated["milestone"]["title"] == "Weekend trip"

    milestone_service.complete_milestone(milestone["id"], context=RequestContext.for_user(bob_id))
    with pytest.raises(InvalidStateError):
        milestone_service.update_milestone(
            milestone["id"], {"title": "Too late"}, context=RequestContext.for_user(alice_id)
        )
    with pytest.raises(InvalidStateError):
        milestone_service.delete_milestone(milestone["id"], context=RequestContext.for_user(alice_id))


def test_delete_detaches_related_activities(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(relationship_id, alice_id)
    activity = activity_service.create_activity(
        relationship_id,
        title="Planning session",
        type="goal",
        related_milestone_id=milestone["id"],
        context=RequestContext.for_user(bob_id),
    )["activity"]

    milestone_service.delete_milestone(milestone["id"], context=RequestContext.for_user(alice_id))
    fetched = activity_service.get_activity(activity["id"], context=RequestContext.for_user(bob_id))
    assert fetched["activity"]["related_milestone_id"] is None


def test_evidence_from_either_party(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(relationship_id, alice_id)
    milestone_service.add_evidence(
        milestone["id"], type="photo", url="https://example.com/a.jpg", context=RequestContext.for_user(alice_id)
    )
    result = milestone_service.add_evidence(
        milestone["id"], type="note", description="We made it", context=RequestContext.for_user(bob_id)
    )
    assert [item["uploaded_by"] for item in result["milestone"]["evidence"]] == [alice_id, bob_id]

    with pytest.raises(ValidationIssue):
        milestone_service.add_evidence(milestone["id"], type="note", context=RequestContext.for_user(bob_id))


def test_overdue_listing(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    _create(relationship_id, alice_id, title="Late", target_date=utcnow() - timedelta(days=3))
    _create(relationship_id, alice_id, title="Future", target_date=utcnow() + timedelta(days=3))

    overdue = milestone_service.list_milestones(
        relationship_id, overdue_only=True, context=RequestContext.for_user(bob_id)
    )
    assert [item["title"] for item in overdue["milestones"]] == ["Late"]


def test_list_filters_by_difficulty_and_orders_by_target_date(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    _create(relationship_id, alice_id, title="Someday", difficulty="hard")
    _create(relationship_id, alice_id, title="Next month", difficulty="hard", target_date=utcnow() + timedelta(days=30))
    _create(relationship_id, alice_id, title="Next week", difficulty="hard", target_date=utcnow() + timedelta(days=7))
    _create(relationship_id, alice_id, title="Easy win", difficulty="easy", target_date=utcnow() + timedelta(days=1))

    hard = milestone_service.list_milestones(
        relationship_id, difficulty="hard", context=RequestContext.for_user(bob_id)
    )
    assert [item["title"] for item in hard["milestones"]] == ["Someday", "Next week", "Next month"]

    with pytest.raises(ValidationIssue):
        milestone_service.list_milestones(
            relationship_id, difficulty="impossible", context=RequestContext.for_user(bob_id)
        )


def test_editing_criteria_keeps_progress_on_surviving_items(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    milestone = _create(
        relationship_id,
        alice_id,
        criteria={"custom_criteria": [{"name": "Book flights"}, {"name": "Book hotel"}]},
    )
    milestone_service.complete_criterion(milestone["id"], 0, context=RequestContext.for_user(bob_id))

    updated = milestone_service.update_milestone(
        milestone["id"],
        {"criteria": {"custom_criteria": [{"name": "Book flights"}, {"name": "Pack bags"}]}},
        context=RequestContext.for_user(alice_id),
    )["milestone"]
    flights, bags = updated["criteria"]["custom_criteria"]
    assert flights["completed"] is True
    assert flights["completed_by"] == bob_id
    assert flights["completed_at"] is not None
    assert bags["completed"] is False
    assert updated["progress_percentage"] == 50
