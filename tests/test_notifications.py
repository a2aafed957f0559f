import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.context import RequestContext
from core.errors import NotFoundError
from core.models import Notification
from core.services import notifications as notification_service
from core.services import relationships as relationship_service
from core.services import terms as term_service


def test_proposal_notifies_partner_with_actions(make_user):
    alice = make_user("Alice", "Archer")
    bob = make_user("Bob", "Baker")
    relationship_service.propose_relationship(
        partner_email=bob["email"],
        title="Friends",
        context=RequestContext.for_user(alice["id"]),
    )

    inbox = notification_service.list_notifications(context=RequestContext.for_user(bob["id"]))
    assert inbox["unread_count"] == 1
    notification = inbox["notifications"][0]
    assert notification["type"] == "relationship_invite"
    assert notification["sender_id"] == alice["id"]
    assert notification["action_required"] is True
    assert {item["type"] for item in notification["actions"]} == {"accept", "decline"}


def test_breakup_request_offers_confirm_and_cancel(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    relationship_service.request_breakup(relationship_id, context=RequestContext.for_user(alice_id))

    inbox = notification_service.list_notifications(
        category="relationship", context=RequestContext.for_user(bob_id)
    )
    breakup = next(item for item in inbox["notifications"] if item["type"] == "breakup_request")
    actions = {item["type"]: item for item in breakup["actions"]}
    assert actions["confirm"]["label"] == "Confirm Breakup"
    assert actions["confirm"]["url"].endswith(f"/relationships/{relationship_id}/confirm-breakup")
    assert actions["cancel"]["label"] == "Cancel Request"
    assert actions["cancel"]["url"].endswith(f"/relationships/{relationship_id}/cancel-breakup-request")


def test_delivery_failure_does_not_undo_transition(make_user, monkeypatch, db_session):
    alice = make_user()
    bob = make_user()

    def _fail(item):
        raise RuntimeError("mailbox offline")

    monkeypatch.setattr(notification_service, "deliver_notification", _fail)
    proposed = relationship_service.propose_relationship(
        partner_email=bob["email"],
        title="Friends",
        context=RequestContext.for_user(alice["id"]),
    )
    accepted = relationship_service.accept_relationship(
        proposed["relationship"]["id"], context=RequestContext.for_user(bob["id"])
    )
    assert accepted["relationship"]["status"] == "active"
    assert db_session.query(Notification).count() == 0


def test_disabled_notifications_are_dropped(make_user, monkeypatch, db_session):
    alice = make_user()
    bob = make_user()
    monkeypatch.setattr(notification_service.config, "NOTIFICATIONS_ENABLED", False)
    relationship_service.propose_relationship(
        partner_email=bob["email"],
        title="Friends",
        context=RequestContext.for_user(alice["id"]),
    )
    assert db_session.query(Notification).count() == 0


def test_outbox_flush_counts_deliveries(server_db, make_user):
    user = make_user()
    outbox = notification_service.NotificationOutbox()
    outbox.add(recipient_id=user["id"], type="system", title="Hello", message="Welcome", category="system")
    outbox.add(recipient_id=user["id"], type="system", title="Again", message="Still here", category="system")
    assert len(outbox) == 2
    assert outbox.flush() == 2
    assert len(outbox) == 0


def test_mailbox_operations(active_pair):
    alice_id, bob_id, relationship_id = active_pair
    term_service.propose_term(
        relationship_id,
        title="Honesty",
        description="Always tell the truth",
        category="expectations",
        context=RequestContext.for_user(alice_id),
    )

    bob_ctx = RequestContext.for_user(bob_id)
    inbox = notification_service.list_notifications(status="unread", context=bob_ctx)
    term_notice = next(item for item in inbox["notifications"] if item["type"] == "term_proposed")

    read = notification_service.mark_notification_read(term_notice["id"], context=bob_ctx)
    assert read["notification"]["status"] == "read"
    assert read["notification"]["read_at"] is not None

    with pytest.raises(NotFoundError):
        notification_service.get_notification(term_notice["id"], context=RequestContext.for_user(alice_id))

    notification_service.mark_all_notifications_read(context=bob_ctx)
    assert notification_service.unread_count(context=bob_ctx)["unread_count"] == 0

    deleted = notification_service.delete_notification(term_notice["id"], context=bob_ctx)
    assert deleted["status"] == "deleted"
    with pytest.raises(NotFoundError):
        notification_service.get_notification(term_notice["id"], context=bob_ctx)
