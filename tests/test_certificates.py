import os
import re
from datetime import timedelta

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import RequestContext
from core.errors import AlreadyDoneError, ConflictError, ForbiddenError, InvalidStateError, ValidationIssue
from core.models import Certificate, utcnow
from core.services import certificates as certificate_service
from core.services import relationships as relationship_service


def test_certificate_number_format():
    number = certificate_service.generate_certificate_number()
    assert re.fullmatch(r"CERT-[0-9A-Z]+-[0-9A-Z]{5}", number)


def test_level_for_difficulty():
    assert certificate_service.level_for_difficulty("easy") == "bronze"
    assert certificate_service.level_for_difficulty("medium") == "silver"
    assert certificate_service.level_for_difficulty("hard") == "gold"
    assert certificate_service.level_for_difficulty("expert") == "platinum"


def test_relationship_snapshot(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    certificate = certificate_service.generate_relationship_certificate(
        relationship_id, context=RequestContext.for_user(bob_id)
    )["certificate"]
    assert certificate["level"] == "gold"
    assert certificate["design"]["template"] == "romantic"
    assert certificate["metadata"]["custom_data"]["relationship_status"] == "active"
    assert {item["user_id"] for item in certificate["recipients"]} == {alice_id, bob_id}

    relationship = relationship_service.get_relationship(
        relationship_id, context=RequestContext.for_user(alice_id)
    )["relationship"]
    assert relationship["latest_certificate_id"] == certificate["id"]


def test_issue_requires_party(active_pair, make_user):
    alice_id, bob_id, relationship_id = active_pair
    outsider = make_user()
    with pytest.raises(ForbiddenError):
        certificate_service.issue_certificate(
            "relationship",
            relationship_id,
            title="Not yours",
            context=RequestContext.for_user(outsider["id"]),
        )


def test_counters_and_sharing(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    certificate = certificate_service.issue_certificate(
        "relationship",
        relationship_id,
        title="One Year",
        type="anniversary",
        context=RequestContext.for_user(alice_id),
    )["certificate"]

    viewed = certificate_service.get_certificate(certificate["id"], context=RequestContext.for_user(bob_id))
    assert viewed["certificate"]["stats"]["view_count"] == 1

    downloaded = certificate_service.download_certificate(certificate["id"], context=RequestContext.for_user(bob_id))
    assert downloaded["certificate"]["stats"]["download_count"] == 1
    assert downloaded["filename"].startswith("certificate-CERT-")

    certificate_service.share_certificate(certificate["id"], platform="Twitter", context=RequestContext.for_user(alice_id))
    shared = certificate_service.share_certificate(
        certificate["id"], platform="twitter", context=RequestContext.for_user(alice_id)
    )
    assert shared["certificate"]["stats"]["share_count"] == 2
    assert shared["certificate"]["sharing"]["shared_on"] == ["twitter"]


def test_revoke_once(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    certificate = certificate_service.issue_certificate(
        "relationship", relationship_id, title="Trust", type="trust", context=RequestContext.for_user(alice_id)
    )["certificate"]

    revoked = certificate_service.revoke_certificate(
        certificate["id"], "Issued by mistake", context=RequestContext.for_user(bob_id)
    )
    assert revoked["certificate"]["is_valid"] is False
    assert revoked["certificate"]["metadata"]["revoked_reason"] == "Issued by mistake"

    with pytest.raises(AlreadyDoneError):
        certificate_service.revoke_certificate(certificate["id"], "Again", context=RequestContext.for_user(alice_id))
    with pytest.raises(InvalidStateError):
        certificate_service.download_certificate(certificate["id"], context=RequestContext.for_user(alice_id))


def test_expired_certificate_is_invalid(active_pair, db_session):
    alice_id, bob_id, relationship_id = active_pair
    certificate = certificate_service.issue_certificate(
        "relationship",
        relationship_id,
        title="Short lived",
        valid_until=utcnow() + timedelta(days=1),
        context=RequestContext.for_user(alice_id),
    )["certificate"]
    row = db_session.get(Certificate, certificate["id"])
    assert certificate_service.is_valid(row)
    assert not certificate_service.is_valid(row, now=utcnow() + timedelta(days=2))


def test_number_collision_is_bounded(active_pair, monkeypatch):
    alice_id, bob_id, relationship_id = active_pair
    monkeypatch.setattr(certificate_service, "generate_certificate_number", lambda: "CERT-FIXED-00000")
    certificate_service.issue_certificate(
        "relationship", relationship_id, title="First", context=RequestContext.for_user(alice_id)
    )
    with pytest.raises(ConflictError):
        certificate_service.issue_certificate(
            "relationship", relationship_id, title="Second", context=RequestContext.for_user(alice_id)
        )


def test_list_certificates_by_relationship(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    certificate_service.generate_relationship_certificate(relationship_id, context=RequestContext.for_user(alice_id))
    certificate_service.issue_certificate(
        "user", alice_id, title="Personal best", context=RequestContext.for_user(alice_id)
    )

    scoped = certificate_service.list_certificates(
        relationship_id=relationship_id, context=RequestContext.for_user(bob_id)
    )
    assert scoped["count"] == 1
    mine = certificate_service.list_certificates(context=RequestContext.for_user(alice_id))
    assert mine["count"] == 2


def test_issue_to_a_single_party(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    certificate = certificate_service.issue_certificate(
        "relationship",
        relationship_id,
        title="Best listener",
        recipients=[bob_id, bob_id],
        context=RequestContext.for_user(alice_id),
    )["certificate"]
    assert [item["user_id"] for item in certificate["recipients"]] == [bob_id]

    with pytest.raises(ForbiddenError):
        certificate_service.get_certificate(certificate["id"], context=RequestContext.for_user(alice_id))
    fetched = certificate_service.get_certificate(certificate["id"], context=RequestContext.for_user(bob_id))
    assert fetched["certificate"]["title"] == "Best listener"


@pytest.mark.parametrize("recipients", [[], "bob", [0]])
def test_issue_rejects_malformed_recipients(active_pair, recipients):
    alice_id, _, relationship_id = active_pair
    with pytest.raises(ValidationIssue) as excinfo:
        certificate_service.issue_certificate(
            "relationship",
            relationship_id,
            title="Malformed",
            recipients=recipients,
            context=RequestContext.for_user(alice_id),
        )
    assert excinfo.value.field == "recipients"


def test_issue_rejects_recipients_outside_the_subject(active_pair, make_user, db_session):
    alice_id, _, relationship_id = active_pair
    outsider = make_user()
    with pytest.raises(ValidationIssue):
        certificate_service.issue_certificate(
            "relationship",
            relationship_id,
            title="Misdirected",
            recipients=[alice_id, outsider["id"]],
            context=RequestContext.for_user(alice_id),
        )
    assert db_session.query(Certificate).count() == 0
