from datetime import timedelta

from tradeflow import models
from tradeflow.core.security import create_access_token
from tradeflow.models import NotificationType


def test_step_detail_reports_approvals_and_permissions(client, act_as, parties, make_deal):
    deal = make_deal()
    act_as(parties.buyer)

    resp = client.get(f"/api/deals/{deal.id}/steps/1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["step"]["step_name"] == "NCNDA / IMFPA"
    assert body["phase"] == "PRE-TRADE"
    assert body["required_parties"] == ["BUYER", "SELLER", "BROKER"]
    assert body["required_documents"] == ["NCNDA", "IMFPA"]
    assert body["is_current"] is True
    assert body["approvals"]["missing"] == ["BUYER", "SELLER", "BROKER"]
    assert body["can_act"] is True
    assert body["can_mark_complete"] is False

    assert client.get(f"/api/deals/{deal.id}/steps/13").status_code == 404


def test_broker_completes_step_over_http(client, act_as, parties, make_deal, db_session):
    deal = make_deal()
    act_as(parties.broker)

    resp = client.post(f"/api/deals/{deal.id}/steps/1/complete")
    assert resp.status_code == 200, resp.text
    assert resp.json() == {
        "success": True,
        "step_number": 1,
        "current_step": 2,
        "advanced": True,
        "deal_completed": False,
        "deal_status": "IN_PROGRESS",
    }

    again = client.post(f"/api/deals/{deal.id}/steps/1/complete")
    assert again.status_code == 400
    assert again.json()["code"] == "step_already_completed"

    step_notes = [
        n
        for n in db_session.query(models.Notification)
        .filter(models.Notification.user_id == parties.seller.id)
        .all()
        if n.type == NotificationType.STEP_COMPLETED
    ]
    assert len(step_notes) == 1
    assert step_notes[0].message.startswith("NCNDA / IMFPA has been completed")


def test_sole_party_may_complete_its_step(client, act_as, parties, make_deal):
    deal = make_deal()
    act_as(parties.broker)
    client.post(f"/api/deals/{deal.id}/steps/1/complete")

    act_as(parties.seller)
    denied = client.post(f"/api/deals/{deal.id}/steps/2/complete")
    assert denied.status_code == 403
    assert denied.json()["required_parties"] == ["BUYER"]

    act_as(parties.buyer)
    assert client.post(f"/api/deals/{deal.id}/steps/2/complete").json()["current_step"] == 3


def test_shared_step_cannot_be_completed_by_one_party(client, act_as, parties, make_deal):
    deal = make_deal()
    act_as(parties.buyer)

    resp = client.post(f"/api/deals/{deal.id}/steps/1/complete")
    assert resp.status_code == 403
    assert resp.json()["required_parties"] == ["BUYER", "SELLER", "BROKER"]


def test_completing_on_locked_deal_is_409(client, act_as, parties, make_deal):
    deal = make_deal(buyer_type="new")
    act_as(parties.broker)

    resp = client.post(f"/api/deals/{deal.id}/steps/1/complete")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Workflow locked"


def test_broker_cancels_deal(client, act_as, parties, make_deal):
    deal = make_deal()

    act_as(parties.buyer)
    assert client.post(f"/api/deals/{deal.id}/cancel", json={}).status_code == 403

    act_as(parties.broker)
    resp = client.post(f"/api/deals/{deal.id}/cancel", json={"reason": "price moved"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"

    resp = client.post(f"/api/deals/{deal.id}/steps/1/complete")
    assert resp.status_code == 409
    assert resp.json()["code"] == "deal_cancelled"


def test_requests_without_token_are_rejected(client, make_deal):
    deal = make_deal()

    resp = client.get(f"/api/deals/{deal.id}")
    assert resp.status_code == 401


def test_bearer_token_resolves_user(client, parties, make_deal):
    deal = make_deal()
    token = create_access_token({"sub": str(parties.seller.id)}, timedelta(minutes=5))

    resp = client.get(
        f"/api/deals/{deal.id}", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 200
    assert resp.json()["my_role"] == "SELLER"

    bad = client.get(f"/api/deals/{deal.id}", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
