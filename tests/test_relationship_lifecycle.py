import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import (
    RequestContext,
    reset_current_request_context,
    set_current_request_context,
)
from core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    SelfReferenceError,
    ValidationIssue,
)
from core.models import Relationship
from core.services import activities as activity_service
from core.services import certificates as certificate_service
from core.services import relationships as relationship_service
from core.services import terms as term_service


def _propose(actor_id: int, partner_email: str, **kwargs) -> dict:
    return relationship_service.propose_relationship(
        partner_email=partner_email,
        title=kwargs.pop("title", "Friends"),
        context=RequestContext.for_user(actor_id),
        **kwargs,
    )


def test_propose_and_accept(make_user):
    alice = make_user("Alice")
    bob = make_user("Bob")

    proposed = _propose(alice["id"], bob["email"], type="friend")
    assert proposed["status"] == "created"
    relationship = proposed["relationship"]
    assert relationship["status"] == "pending"
    assert relationship["initiator_id"] == alice["id"]
    assert relationship["partner_id"] == bob["id"]
    assert relationship["stats"]["trust_level"] == 50

    accepted = relationship_service.accept_relationship(
        relationship["id"], context=RequestContext.for_user(bob["id"])
    )
    assert accepted["relationship"]["status"] == "active"
    assert accepted["relationship"]["accepted_date"] is not None


def test_partner_lookup_is_case_insensitive(make_user):
    alice = make_user()
    bob = make_user()
    proposed = _propose(alice["id"], bob["email"].upper())
    assert proposed["relationship"]["partner_id"] == bob["id"]


def test_unknown_partner_and_self_reference(make_user):
    alice = make_user()
    with pytest.raises(NotFoundError):
        _propose(alice["id"], "nobody@example.com")
    with pytest.raises(SelfReferenceError):
        _propose(alice["id"], alice["email"])


def test_pair_is_unique_regardless_of_direction(make_user, db_session):
    alice = make_user()
    bob = make_user()
    _propose(alice["id"], bob["email"])

    with pytest.raises(ConflictError):
        _propose(alice["id"], bob["email"])
    with pytest.raises(ConflictError):
        _propose(bob["id"], alice["email"])

    assert db_session.query(Relationship).count() == 1


def test_only_partner_can_accept_or_decline(make_user):
    alice = make_user()
    bob = make_user()
    carol = make_user()
    relationship_id = _propose(alice["id"], bob["email"])["relationship"]["id"]

    with pytest.raises(ForbiddenError):
        relationship_service.accept_relationship(relationship_id, context=RequestContext.for_user(alice["id"]))
    with pytest.raises(ForbiddenError):
        relationship_service.decline_relationship(relationship_id, context=RequestContext.for_user(carol["id"]))

    declined = relationship_service.decline_relationship(
        relationship_id, context=RequestContext.for_user(bob["id"])
    )
    assert declined["status"] == "deleted"
    with pytest.raises(NotFoundError):
        relationship_service.get_relationship(relationship_id, context=RequestContext.for_user(alice["id"]))

    # Declining frees the pair for a new proposal
    again = _propose(bob["id"], alice["email"])
    assert again["status"] == "created"


def test_accept_twice_is_invalid_state(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    with pytest.raises(InvalidStateError):
        relationship_service.accept_relationship(relationship_id, context=RequestContext.for_user(bob_id))


def test_requester_cannot_confirm_own_breakup(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    requested = relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(alice_id))
    assert requested["relationship"]["status"] == "requested_breakup"
    assert requested["relationship"]["breakup_requested_by"] == alice_id

    with pytest.raises(ForbiddenError):
        relationship_service.confirm_breakup(relationship_id, context=RequestContext.for_user(alice_id))

    confirmed = relationship_service.confirm_breakup(relationship_id, context=RequestContext.for_user(bob_id))
    assert confirmed["relationship"]["status"] == "ended"
    assert confirmed["relationship"]["end_date"] is not None
    assert confirmed["relationship"]["breakup_requested_by"] is None


def test_only_requester_may_cancel(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(bob_id))

    with pytest.raises(ForbiddenError):
        relationship_service.cancel_breakup_request(relationship_id, context=RequestContext.for_user(alice_id))

    canceled = relationship_service.cancel_breakup_request(relationship_id, context=RequestContext.for_user(bob_id))
    assert canceled["relationship"]["status"] == "active"
    assert canceled["relationship"]["breakup_requested_by"] is None


def test_breakup_requires_active(make_user):
    alice = make_user()
    bob = make_user()
    relationship_id = _propose(alice["id"], bob["email"])["relationship"]["id"]
    with pytest.raises(InvalidStateError):
        relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(alice["id"]))


def test_archive_then_delete_keeps_certificates(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    term_service.propose_term(
        relationship_id,
        title="Weekly call",
        description="Call every Sunday",
        category="communication",
        context=RequestContext.for_user(alice_id),
    )
    activity_service.create_activity(
        relationship_id,
        title="Dinner",
        type="date",
        context=RequestContext.for_user(bob_id),
    )
    certificate = certificate_service.generate_relationship_certificate(
        relationship_id, context=RequestContext.for_user(alice_id)
    )["certificate"]

    archived = relationship_service.archive_or_delete_relationship(
        relationship_id, context=RequestContext.for_user(alice_id)
    )
    assert archived["status"] == "archived"
    assert archived["relationship"]["custom_fields"]["archived_date"]

    deleted = relationship_service.archive_or_delete_relationship(
        relationship_id, context=RequestContext.for_user(bob_id)
    )
    assert deleted["status"] == "deleted"
    assert deleted["removed"]["terms"] == 1
    assert deleted["removed"]["activities"] == 1

    still_there = certificate_service.get_certificate(certificate["id"], context=RequestContext.for_user(alice_id))
    assert still_there["certificate"]["related_id"] == relationship_id


def test_delete_blocked_during_breakup_request(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(alice_id))
    with pytest.raises(InvalidStateError):
        relationship_service.archive_or_delete_relationship(relationship_id, context=RequestContext.for_user(bob_id))


def test_update_relationship_whitelist(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    updated = relationship_service.update_relationship(
        relationship_id,
        {"title": "Closest Friends", "trust_level": 100},
        context=RequestContext.for_user(bob_id),
    )
    assert updated["relationship"]["title"] == "Closest Friends"
    assert updated["relationship"]["stats"]["trust_level"] == 50

    with pytest.raises(ValidationIssue):
        relationship_service.update_relationship(
            relationship_id,
            {"status": "ended"},
            context=RequestContext.for_user(bob_id),
        )


def test_outsider_cannot_read(active_pair, make_user):
    _, _, relationship_id = active_pair
    outsider = make_user()
    with pytest.raises(ForbiddenError):
        relationship_service.get_relationship(relationship_id, context=RequestContext.for_user(outsider["id"]))


def test_list_relationships_filters(active_pair, make_user):
    alice_id, bob_id, _ = active_pair
    carol = make_user()
    _propose(carol["id"], make_user()["email"])
    _propose(alice_id, carol["email"])

    active = relationship_service.list_relationships(status="active", context=RequestContext.for_user(alice_id))
    assert active["count"] == 1
    everything = relationship_service.list_relationships(context=RequestContext.for_user(alice_id))
    assert everything["pagination"]["total_items"] == 2


def test_missing_actor_is_forbidden(active_pair):
    _, _, relationship_id = active_pair
    with pytest.raises(ForbiddenError):
        relationship_service.get_relationship(relationship_id)


def test_ambient_request_context_supplies_actor(active_pair):
    alice_id, _, relationship_id = active_pair
    token = set_current_request_context(RequestContext.for_user(alice_id, source="script"))
    try:
        result = relationship_service.get_relationship(relationship_id)
    finally:
        reset_current_request_context(token)
    assert result["relationship"]["id"] == relationship_id
