from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import ORGANIZER
from outing_service.main import app, get_services


@pytest.fixture
def client(services):
  app.dependency_overrides[get_services] = lambda: services
  yield TestClient(app)
  app.dependency_overrides.clear()


def as_user(user_id: str) -> dict:
  return {"X-User-Id": user_id}


def create_payload(**overrides) -> dict:
  data = {
    "title": "Team dinner",
    "local_start": (datetime.now().replace(microsecond=0) + timedelta(days=10)).isoformat(),
    "timezone": "UTC+07:00",
    "expected_attendees": 2,
    "estimated_duration_minutes": 90,
  }
  data.update(overrides)
  return data


def test_health(client):
  resp = client.get("/health")
  assert resp.status_code == 200
  assert resp.json()["ok"] is True


def test_create_event_requires_user_header(client):
  resp = client.post("/events", json=create_payload())
  assert resp.status_code == 401


def test_create_and_fetch_event(client):
  resp = client.post("/events", json=create_payload(), headers=as_user(ORGANIZER))
  assert resp.status_code == 201
  event = resp.json()
  assert event["status"] == "draft"
  assert event["organizer_id"] == ORGANIZER

  details = client.get(f"/events/{event['id']}").json()
  assert details["event"]["id"] == event["id"]
  assert [p["user_id"] for p in details["participants"]] == [ORGANIZER]


def test_rule_violations_carry_their_code(client):
  too_soon = (datetime.now() + timedelta(days=1)).isoformat()
  resp = client.post("/events", json=create_payload(local_start=too_soon), headers=as_user(ORGANIZER))
  assert resp.status_code == 422
  assert resp.json()["code"] == "BR_EVENT_01"


def test_unknown_event_is_404(client):
  resp = client.get("/events/missing")
  assert resp.status_code == 404
  assert resp.json()["code"] == "NOT_FOUND"


def test_invite_accept_and_recommend(client):
  event = client.post("/events", json=create_payload(), headers=as_user(ORGANIZER)).json()

  invited = client.post(f"/events/{event['id']}/invitations", json={"user_ids": ["u1"]}, headers=as_user(ORGANIZER))
  assert invited.status_code == 200
  assert invited.json()["invited"] == ["u1"]

  forbidden = client.post(f"/events/{event['id']}/invitations", json={"user_ids": ["u2"]}, headers=as_user("u1"))
  assert forbidden.status_code == 403

  accepted = client.post(f"/events/{event['id']}/invitations/accept", headers=as_user("u1"))
  assert accepted.status_code == 200
  assert accepted.json()["invitation_status"] == "accepted"
  assert client.get(f"/events/{event['id']}").json()["event"]["status"] == "gathering_preferences"

  run = client.post(f"/events/{event['id']}/recommendations", headers=as_user(ORGANIZER))
  assert run.status_code == 200
  body = run.json()
  assert body["status"] == "voting"
  assert body["report"]["options"]

  progress = client.get(f"/events/{event['id']}/progress").json()
  assert progress["percentage"] == 100

  option_id = body["report"]["options"][0]["id"]
  vote = client.post(f"/events/{event['id']}/votes", json={"option_id": option_id}, headers=as_user("u1"))
  assert vote.status_code == 200
  stats = client.get(f"/events/{event['id']}/votes").json()
  assert stats["totals"][option_id] == 1
  assert stats["winning_option_id"] == option_id

  final = client.post(f"/events/{event['id']}/finalize", json={}, headers=as_user(ORGANIZER))
  assert final.status_code == 200
  assert final.json()["status"] == "confirmed"


def test_cancel_validates_reason(client):
  event = client.post("/events", json=create_payload(), headers=as_user(ORGANIZER)).json()

  short = client.post(f"/events/{event['id']}/cancel", json={"reason": "nope"}, headers=as_user(ORGANIZER))
  assert short.status_code == 422
  assert short.json()["code"] == "BR_CANCEL_REASON"

  ok = client.post(
    f"/events/{event['id']}/cancel",
    json={"reason": "Venue closed for renovation"},
    headers=as_user(ORGANIZER),
  )
  assert ok.status_code == 200
  assert ok.json()["status"] == "cancelled"

  again = client.post(f"/events/{event['id']}/complete", headers=as_user(ORGANIZER))
  assert again.status_code == 409
