import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import RequestContext
from core.errors import AlreadyAgreedError, ForbiddenError, InvalidStateError
from core.services import relationships as relationship_service
from core.services import terms as term_service


def _propose_term(relationship_id: int, actor_id: int, **kwargs) -> dict:
    return term_service.propose_term(
        relationship_id,
        title=kwargs.pop("title", "No phones at dinner"),
        description=kwargs.pop("description", "Phones stay in the other room during dinner"),
        category=kwargs.pop("category", "boundaries"),
        context=RequestContext.for_user(actor_id),
        **kwargs,
    )["term"]


def test_term_agreed_only_after_both_parties(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = _propose_term(relationship_id, alice_id)
    assert term["status"] == "proposed"

    first = term_service.agree_term(term["id"], signature="A.A.", context=RequestContext.for_user(alice_id))
    assert first["term"]["status"] == "proposed"
    assert first["term"]["is_fully_agreed"] is False

    with pytest.raises(AlreadyAgreedError):
        term_service.agree_term(term["id"], context=RequestContext.for_user(alice_id))

    second = term_service.agree_term(term["id"], context=RequestContext.for_user(bob_id))
    assert second["term"]["status"] == "agreed"
    assert second["term"]["is_fully_agreed"] is True
    assert {item["user_id"] for item in second["term"]["agreed_by"]} == {alice_id, bob_id}


def test_agreeing_an_agreed_term_is_already_agreed(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = _propose_term(relationship_id, bob_id)
    term_service.agree_term(term["id"], context=RequestContext.for_user(alice_id))
    term_service.agree_term(term["id"], context=RequestContext.for_user(bob_id))

    with pytest.raises(AlreadyAgreedError):
        term_service.agree_term(term["id"], context=RequestContext.for_user(bob_id))


def test_update_resets_agreements(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = _propose_term(relationship_id, alice_id)
    term_service.agree_term(term["id"], context=RequestContext.for_user(bob_id))

    with pytest.raises(ForbiddenError):
        term_service.update_term(term["id"], {"title": "Changed"}, context=RequestContext.for_user(bob_id))

    updated = term_service.update_term(
        term["id"],
        {"description": "Phones on silent during dinner"},
        context=RequestContext.for_user(alice_id),
    )["term"]
    assert updated["status"] == "modified"
    assert updated["agreed_by"] == []


def test_agreed_term_cannot_be_updated_or_deleted(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = _propose_term(relationship_id, alice_id)
    term_service.agree_term(term["id"], context=RequestContext.for_user(alice_id))
    term_service.agree_term(term["id"], context=RequestContext.for_user(bob_id))

    with pytest.raises(InvalidStateError):
        term_service.update_term(term["id"], {"title": "Changed"}, context=RequestContext.for_user(alice_id))
    with pytest.raises(InvalidStateError):
        term_service.delete_term(term["id"], context=RequestContext.for_user(alice_id))


def test_violation_allowed_in_any_status(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = _propose_term(relationship_id, alice_id)
    term_service.agree_term(term["id"], context=RequestContext.for_user(alice_id))
    term_service.agree_term(term["id"], context=RequestContext.for_user(bob_id))

    reported = term_service.report_violation(
        term["id"],
        description="Phone came out during dessert",
        severity="minor",
        context=RequestContext.for_user(bob_id),
    )["term"]
    assert len(reported["violations"]) == 1
    assert reported["violations"][0]["reported_by"] == bob_id
    assert reported["status"] == "agreed"


def test_delete_by_creator_only(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = _propose_term(relationship_id, alice_id)
    with pytest.raises(ForbiddenError):
        term_service.delete_term(term["id"], context=RequestContext.for_user(bob_id))
    deleted = term_service.delete_term(term["id"], context=RequestContext.for_user(alice_id))
    assert deleted["status"] == "deleted"


def test_propose_requires_active_relationship(make_user):
    alice = make_user()
    bob = make_user()
    relationship_id = relationship_service.propose_relationship(
        partner_email=bob["email"],
        title="Pending",
        context=RequestContext.for_user(alice["id"]),
    )["relationship"]["id"]
    with pytest.raises(InvalidStateError):
        _propose_term(relationship_id, alice["id"])


def test_list_terms_filters(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    _propose_term(relationship_id, alice_id, category="communication")
    _propose_term(relationship_id, bob_id, category="goals")

    listed = term_service.list_terms(relationship_id, category="goals", context=RequestContext.for_user(alice_id))
    assert listed["count"] == 1
    assert listed["terms"][0]["category"] == "goals"
