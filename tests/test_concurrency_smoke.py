import os
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import RequestContext
from core.errors import AlreadyAgreedError, AlreadyCompletedError, InvalidStateError
from core.models import Certificate, TermAgreement
from core.services import milestones as milestone_service
from core.services import relationships as relationship_service
from core.services import terms as term_service


def _outcome(fn, *args, **kwargs) -> str:
    try:
        fn(*args, **kwargs)
        return "ok"
    except (AlreadyAgreedError, AlreadyCompletedError, InvalidStateError) as exc:
        return exc.error_code


def test_double_agree_records_one_agreement(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    term = term_service.propose_term(
        relationship_id,
        title="Date night",
        description="Every Friday",
        category="activities",
        context=RequestContext.for_user(alice_id),
    )["term"]

    ctx = RequestContext.for_user(bob_id)
    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = list(
            executor.map(lambda _: _outcome(term_service.agree_term, term["id"], context=ctx), range(2))
        )

    assert sorted(outcomes) == ["already_agreed", "ok"]
    assert db_session.query(TermAgreement).filter(TermAgreement.term_id == term["id"]).count() == 1


def test_both_parties_agree_concurrently(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term = term_service.propose_term(
        relationship_id,
        title="Budget",
        description="Split costs evenly",
        category="commitment",
        context=RequestContext.for_user(bob_id),
    )["term"]

    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = list(
            executor.map(
                lambda user_id: _outcome(term_service.agree_term, term["id"], context=RequestContext.for_user(user_id)),
                [alice_id, bob_id],
            )
        )

    assert outcomes == ["ok", "ok"]
    fetched = term_service.get_term(term["id"], context=RequestContext.for_user(alice_id))["term"]
    assert fetched["status"] == "agreed"


def test_double_complete_counts_once(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    milestone = milestone_service.create_milestone(
        relationship_id,
        title="Moved in together",
        category="commitment",
        difficulty="expert",
        rewards={"certificate": True},
        context=RequestContext.for_user(alice_id),
    )["milestone"]

    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = list(
            executor.map(
                lambda user_id: _outcome(
                    milestone_service.complete_milestone,
                    milestone["id"],
                    context=RequestContext.for_user(user_id),
                ),
                [alice_id, bob_id],
            )
        )

    assert sorted(outcomes) == ["already_completed", "ok"]
    relationship = relationship_service.get_relationship(
        relationship_id, context=RequestContext.for_user(alice_id)
    )["relationship"]
    assert relationship["stats"]["milestones_achieved"] == 1
    certificates = (
        db_session.query(Certificate)
        .filter(Certificate.related_to == "milestone")
        .filter(Certificate.related_id == milestone["id"])
        .all()
    )
    assert len(certificates) == 1
    assert certificates[0].level == "platinum"


def test_double_confirm_breakup_ends_once(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(alice_id))

    ctx = RequestContext.for_user(bob_id)
    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = list(
            executor.map(
                lambda _: _outcome(relationship_service.confirm_breakup, relationship_id, context=ctx),
                range(2),
            )
        )

    assert sorted(outcomes) == ["invalid_state", "ok"]
    relationship = relationship_service.get_relationship(relationship_id, context=ctx)["relationship"]
    assert relationship["status"] == "ended"
    assert relationship["end_date"] is not None


def test_both_parties_request_breakup_concurrently(active_pair):
    alice_id, bob_id, relationship_id = active_pair

    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = list(
            executor.map(
                lambda user_id: _outcome(
                    relationship_service.request_breakup,
                    relationship_id,
                    context=RequestContext.for_user(user_id),
                ),
                [alice_id, bob_id],
            )
        )

    assert sorted(outcomes) == ["invalid_state", "ok"]
    relationship = relationship_service.get_relationship(
        relationship_id, context=RequestContext.for_user(alice_id)
    )["relationship"]
    assert relationship["status"] == "requested_breakup"
    requester = [alice_id, bob_id][outcomes.index("ok")]
    assert relationship["breakup_requested_by"] == requester
