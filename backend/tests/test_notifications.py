from tradeflow import models
from tradeflow.models import NotificationType
from tradeflow.services import notifications


def test_fan_out_reaches_both_companies_and_broker(db_session, make_deal, parties):
    deal = make_deal()

    sent = notifications.fan_out(
        db_session, deal.id, NotificationType.ACTION_REQUIRED, "Sign NCNDA", "Please sign."
    )

    recipients = {n.user_id for n in db_session.query(models.Notification).all()}
    assert sent == 3
    assert recipients == {parties.buyer.id, parties.seller.id, parties.broker.id}
    assert parties.outsider.id not in recipients


def test_fan_out_failure_is_swallowed(db_session, make_deal, monkeypatch):
    deal = make_deal()

    def _boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(db_session, "commit", _boom)

    sent = notifications.fan_out(
        db_session, deal.id, NotificationType.STEP_COMPLETED, "Step done", "Done."
    )
    assert sent == 0

    monkeypatch.undo()
    assert db_session.query(models.Notification).count() == 0


def test_fan_out_for_unknown_deal_is_noop(db_session):
    assert notifications.fan_out(db_session, 999, NotificationType.DEAL_CREATED, "t", "m") == 0


def test_list_and_mark_read(client, act_as, parties, make_deal, db_session):
    deal = make_deal()
    notifications.fan_out(db_session, deal.id, NotificationType.ACTION_REQUIRED, "One", "1")
    notifications.fan_out(db_session, deal.id, NotificationType.ACTION_REQUIRED, "Two", "2")

    act_as(parties.buyer)
    listed = client.get("/api/notifications").json()
    assert [n["title"] for n in listed] == ["Two", "One"]
    assert listed[0]["action_url"] == f"/deals/{deal.id}"

    resp = client.post(f"/api/notifications/{listed[0]['id']}/read")
    assert resp.status_code == 200
    assert resp.json()["read"] is True
    assert resp.json()["read_at"] is not None

    unread = client.get("/api/notifications", params={"unread": "true"}).json()
    assert [n["title"] for n in unread] == ["One"]


def test_cannot_mark_someone_elses_notification(client, act_as, parties, make_deal, db_session):
    deal = make_deal()
    notifications.fan_out(
        db_session,
        deal.id,
        NotificationType.ACTION_REQUIRED,
        "Broker only",
        "m",
        recipient_ids=[parties.broker.id],
    )
    note = db_session.query(models.Notification).one()

    act_as(parties.buyer)
    assert client.post(f"/api/notifications/{note.id}/read").status_code == 404
