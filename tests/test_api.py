"""HTTP surface tests: status codes and error payloads."""

from conftest import OUTSIDE_WARD, T0, WARD_CENTER, offset_north

from app.models.issue import IssueCategory, IssueState
from app.services.sla import utcnow


def _create(client, **kw):
    body = {"category": "pothole", "description": "Pothole near bus stop", "lat": WARD_CENTER[0], "lon": WARD_CENTER[1]}
    body.update(kw)
    return client.post("/issues", json=body)


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}


class TestCreate:
    def test_new_root(self, client, ward):
        r = _create(client)
        assert r.status_code == 201
        body = r.json()
        assert body["merged"] is False
        assert body["issue"]["state"] == "SUBMITTED"
        assert body["issue"]["ward_name"] == ward.name
        assert body["issue"]["sla_label"] == "ON_TRACK"

    def test_duplicate_merges(self, client, ward):
        first = _create(client).json()["issue"]["id"]
        lat, lon = offset_north(*WARD_CENTER, 10)
        body = _create(client, lat=lat, lon=lon).json()
        assert body["merged"] is True
        assert body["parent_id"] == first
        assert body["supporter_count"] == 2
        assert body["issue"]["state"] == "MERGED"

    def test_validation_error_payload(self, client):
        r = _create(client, category="volcano")
        assert r.status_code == 400
        assert r.json()["error"] == "IssueValidationError"
        assert r.json()["field"] == "category"

    def test_unrouted(self, client, ward):
        body = _create(client, lat=OUTSIDE_WARD[0], lon=OUTSIDE_WARD[1]).json()
        assert body["issue"]["ward_id"] is None


class TestListAndGet:
    def test_children_are_not_listed(self, client, ward):
        _create(client)
        _create(client)
        data = client.get("/issues").json()
        assert data["total"] == 1
        assert data["items"][0]["supporter_count"] == 2

    def test_emergency_first(self, client, make_issue):
        calm = make_issue()
        urgent = make_issue(category=IssueCategory.garbage, is_emergency=True)
        ids = [i["id"] for i in client.get("/issues").json()["items"]]
        assert ids == [urgent.id, calm.id]

    def test_filter_by_state(self, client, make_issue):
        make_issue()
        make_issue(state=IssueState.VERIFIED, verified_at=T0)
        data = client.get("/issues", params={"state": "VERIFIED"}).json()
        assert data["total"] == 1

    def test_get_missing(self, client, db):
        assert client.get("/issues/999").status_code == 404


class TestTransitions:
    def test_invalid_transition_payload(self, client, make_issue):
        issue = make_issue()
        r = client.patch(f"/issues/{issue.id}/transition", json={"to_state": "ASSIGNED"})
        assert r.status_code == 409
        body = r.json()
        assert body["error"] == "InvalidTransition"
        assert body["current_state"] == "SUBMITTED"
        assert body["allowed_states"] == ["VERIFIED"]

    def test_geofence_violation_payload(self, client, make_issue):
        issue = make_issue(state=IssueState.ASSIGNED, assigned_at=T0)
        lat, lon = offset_north(*WARD_CENTER, 250)
        r = client.patch(
            f"/issues/{issue.id}/transition",
            json={"to_state": "IN_PROGRESS", "officer_lat": lat, "officer_lon": lon},
        )
        assert r.status_code == 403
        assert r.json()["error"] == "GeofenceViolation"
        assert 249 < r.json()["distance_m"] < 251

    def test_missing_officer_location(self, client, make_issue):
        issue = make_issue(state=IssueState.ASSIGNED, assigned_at=T0)
        r = client.patch(f"/issues/{issue.id}/transition", json={"to_state": "IN_PROGRESS"})
        assert r.status_code == 400
        assert r.json()["missing"] == "officer"

    def test_resolved_needs_proof_endpoint(self, client, make_issue):
        issue = make_issue(state=IssueState.IN_PROGRESS, assigned_at=T0)
        r = client.patch(f"/issues/{issue.id}/transition", json={"to_state": "RESOLVED"})
        assert r.status_code == 400

    def test_unknown_issue(self, client, db):
        r = client.patch("/issues/404/transition", json={"to_state": "VERIFIED"})
        assert r.status_code == 404
        assert r.json()["error"] == "IssueNotFound"


class TestVerifyAndResolve:
    def test_verify_then_repeat(self, client, make_issue):
        issue = make_issue()
        r = client.post(f"/issues/{issue.id}/verify", json={"voter_token": "tok-12345678"})
        assert r.status_code == 200
        assert r.json()["state"] == "VERIFIED"
        again = client.post(f"/issues/{issue.id}/verify", json={"voter_token": "tok-12345678"})
        assert again.status_code == 409
        check = client.get(f"/issues/{issue.id}/verify/check", params={"voter_token": "tok-12345678"})
        assert check.json() == {"verified": True}

    def test_resolution_and_timeline(self, client, make_issue):
        issue = make_issue(state=IssueState.IN_PROGRESS, assigned_at=T0, in_progress_at=T0)
        r = client.post(
            f"/issues/{issue.id}/resolution",
            json={"officer_lat": WARD_CENTER[0], "officer_lon": WARD_CENTER[1], "after_photo_ref": "after.jpg"},
        )
        assert r.status_code == 201
        timeline = client.get(f"/issues/{issue.id}/timeline").json()
        assert timeline["state"] == "RESOLVED"
        assert [e["event"] for e in timeline["events"]] == ["submitted", "assigned", "in_progress", "resolved"]
        assert timeline["proof"]["after_photo_ref"] == "after.jpg"

    def test_severity(self, client, make_issue):
        issue = make_issue()
        r = client.patch(f"/issues/{issue.id}/severity", json={"severity": "critical"})
        assert r.json()["is_emergency"] is True


class TestWardsAndStats:
    def test_feature_collection(self, client, ward):
        data = client.get("/wards").json()
        assert data["type"] == "FeatureCollection"
        assert data["features"][0]["properties"]["name"] == ward.name
        assert data["features"][0]["geometry"]["type"] == "Polygon"

    def test_resolve_coordinate(self, client, ward):
        inside = client.get("/wards/resolve", params={"lat": WARD_CENTER[0], "lon": WARD_CENTER[1]}).json()
        outside = client.get("/wards/resolve", params={"lat": OUTSIDE_WARD[0], "lon": OUTSIDE_WARD[1]}).json()
        assert inside["ward"]["id"] == ward.id
        assert outside == {"lat": OUTSIDE_WARD[0], "lon": OUTSIDE_WARD[1], "routed": False, "ward": None}

    def test_stats_routes_are_not_issue_ids(self, client, ward):
        assert client.get("/issues/stats/summary").status_code == 200
        assert client.get("/issues/stats/by-ward").json()[0]["ward_id"] == ward.id
        assert client.get("/issues/stats/critical-backlog").json() == {"count": 0, "items": []}


class TestAcceptanceVote:
    def test_vote_on_resolved_issue(self, client, make_issue):
        issue = make_issue(state=IssueState.RESOLVED, assigned_at=T0, resolved_at=T0)
        for n in range(3):
            r = client.post(f"/issues/{issue.id}/vote", json={"vote": "accept", "voter_token": f"browser-{n:04d}"})
        assert r.status_code == 200
        assert r.json()["resolution_accepted"] is True
        assert client.get(f"/issues/{issue.id}").json()["accept_count"] == 3

    def test_vote_on_open_issue(self, client, make_issue):
        issue = make_issue()
        r = client.post(f"/issues/{issue.id}/vote", json={"vote": "accept", "voter_token": "browser-0001"})
        assert r.status_code == 409
        assert r.json()["error"] == "VotingClosed"

    def test_bad_vote_value(self, client, make_issue):
        issue = make_issue(state=IssueState.RESOLVED, assigned_at=T0, resolved_at=T0)
        r = client.post(f"/issues/{issue.id}/vote", json={"vote": "meh", "voter_token": "browser-0001"})
        assert r.status_code == 400
        assert r.json()["field"] == "vote"


class TestChat:
    def test_post_and_read(self, client, make_issue):
        issue = make_issue()
        r = client.post(f"/issues/{issue.id}/chat", json={"message": "Any update?"})
        assert r.status_code == 201
        assert r.json()["sender_role"] == "citizen"
        thread = client.get(f"/issues/{issue.id}/chat").json()
        assert thread["count"] == 1
        assert thread["messages"][0]["message"] == "Any update?"

    def test_unknown_issue(self, client, db):
        assert client.get("/issues/404/chat").status_code == 404
        assert client.post("/issues/404/chat", json={"message": "hi"}).status_code == 404


class TestAnalytics:
    def test_rankings_heatmap_hotspots_feed(self, client, ward, make_issue):
        make_issue(ward_id=ward.id, created_at=utcnow())
        rankings = client.get("/analytics/ward-rankings").json()
        assert rankings["rankings"][0]["ward_id"] == ward.id
        assert client.get("/analytics/heatmap").json()["count"] == 1
        assert client.get("/analytics/heatmap", params={"category": "garbage"}).json()["count"] == 0
        assert client.get("/analytics/repeat-offenders").json() == {"hotspots": [], "count": 0, "days": 90}
        assert client.get("/analytics/feed").json() == {"items": [], "count": 0}


class TestPushSubscriptions:
    KEYS = {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM", "auth": "tBHItJI5svbpez7KI4CCXg"}

    def test_merged_issue_follows_root(self, client, make_issue):
        root = make_issue()
        child = make_issue(state=IssueState.MERGED, parent_id=root.id)
        body = {"issue_id": child.id, "endpoint": "https://push.example/abc", "keys": self.KEYS}
        r = client.post("/push/subscribe", json=body)
        assert r.json() == {"ok": True, "issue_id": root.id}

    def test_non_integer_issue_id_is_rejected(self, client, db):
        body = {"issue_id": "seven", "endpoint": "https://push.example/abc", "keys": self.KEYS}
        assert client.post("/push/subscribe", json=body).status_code == 422

    def test_missing_keys_are_rejected(self, client, make_issue):
        issue = make_issue()
        body = {"issue_id": issue.id, "endpoint": "https://push.example/abc", "keys": {"auth": "x"}}
        assert client.post("/push/subscribe", json=body).status_code == 422
