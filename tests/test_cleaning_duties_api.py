"""Cleaning-duty arrangement API tests."""

from __future__ import annotations

from datetime import datetime, timezone


def _sync_roster(client, headers, users=None) -> list[dict]:
    payload = {
        "users": users
        or [
            {"external_id": "u1", "display_name": "Alex"},
            {"external_id": "u2", "display_name": "Sam"},
            {"external_id": "u3", "display_name": "Pat"},
        ]
    }
    response = client.put("/v1/roster/sync", headers=headers, json=payload)
    assert response.status_code == 200
    return response.json()["users"]


def _by_duty(payload: dict) -> dict[str, int]:
    return {row["duty_key"]: row["user_id"] for row in payload["assignments"]}


def test_default_catalog_is_seeded(client, auth_headers) -> None:
    response = client.get("/v1/duties", headers=auth_headers)
    assert response.status_code == 200
    assert [row["key"] for row in response.json()] == ["kitchen", "bathroom"]


def test_arrange_is_idempotent_and_rotates(client, auth_headers) -> None:
    users = _sync_roster(client, auth_headers)
    alex, sam, pat = (user["id"] for user in users)

    first = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 1})
    assert first.status_code == 200
    first_payload = first.json()
    assert first_payload["computed"] is True
    assert first_payload["state"] == "committed"
    assert first_payload["generation"] == 1
    assert _by_duty(first_payload) == {"kitchen": alex, "bathroom": sam}
    assert first_payload["assignments"][0]["user_display_name"] == "Alex"

    again = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": "2024", "month": "01"})
    assert again.status_code == 200
    assert again.json()["computed"] is False
    assert again.json()["assignments"] == first_payload["assignments"]

    fetched = client.get("/v1/cleaning-duties/2024/01", headers=auth_headers)
    assert fetched.status_code == 200
    assert fetched.json()["state"] == "committed"
    assert fetched.json()["assignments"] == first_payload["assignments"]

    february = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 2})
    assert february.status_code == 200
    assert _by_duty(february.json()) == {"kitchen": pat, "bathroom": alex}


def test_arrange_without_body_uses_current_period(client, auth_headers) -> None:
    _sync_roster(client, auth_headers)
    now = datetime.now(timezone.utc)

    response = client.post("/v1/cleaning-duties/arrange", headers=auth_headers)
    assert response.status_code == 200
    payload = response.json()
    assert (payload["year"], payload["month"]) == (now.year, now.month)
    assert len(payload["assignments"]) == 2


def test_unarranged_period_returns_empty_list(client, auth_headers) -> None:
    response = client.get("/v1/cleaning-duties/2030/7", headers=auth_headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["assignments"] == []
    assert payload["state"] == "unarranged"
    assert payload["generation"] is None


def test_invalid_periods_are_rejected(client, auth_headers) -> None:
    for path in ("/v1/cleaning-duties/24/1", "/v1/cleaning-duties/2024/13", "/v1/cleaning-duties/abcd/1"):
        response = client.get(path, headers=auth_headers)
        assert response.status_code == 400, path
        assert response.json()["detail"]["error"] == "invalid_period"

    bad_month = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 0})
    assert bad_month.status_code == 400

    year_only = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024})
    assert year_only.status_code == 400

    for body in ({"year": 2024.5, "month": 1}, {"year": 2024, "month": 1.5}):
        fractional = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json=body)
        assert fractional.status_code == 400, body
        assert fractional.json()["detail"]["error"] == "invalid_period"


def test_insufficient_roster_is_a_conflict(client, auth_headers) -> None:
    _sync_roster(client, auth_headers, users=[{"external_id": "u1", "display_name": "Alex"}])

    response = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 1})
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "insufficient_roster"
    assert detail["period"] == "2024-01"

    fetched = client.get("/v1/cleaning-duties/2024/1", headers=auth_headers)
    assert fetched.json()["assignments"] == []


def test_unsatisfiable_exclusions_are_a_conflict(client, auth_headers) -> None:
    users = _sync_roster(client, auth_headers)
    all_ids = [user["id"] for user in users]

    synced = client.put(
        "/v1/duties/sync",
        headers=auth_headers,
        json={"duties": [{"key": "garden", "label": "Garden", "excluded_user_ids": all_ids}]},
    )
    assert synced.status_code == 200

    response = client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 1})
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "unsatisfiable"
    assert response.json()["detail"]["duty"] == "garden"


def test_duty_sync_replaces_catalog(client, auth_headers) -> None:
    response = client.put(
        "/v1/duties/sync",
        headers=auth_headers,
        json={
            "duties": [
                {"key": "Common Area", "label": "Common area", "weight": 2.0},
                {"key": "kitchen", "label": "Kitchen"},
            ]
        },
    )
    assert response.status_code == 200
    rows = {row["key"]: row for row in response.json()}
    assert rows["common_area"]["weight"] == 2.0
    assert rows["common_area"]["sort_order"] == 0
    assert rows["kitchen"]["sort_order"] == 1
    assert rows["bathroom"]["active"] is False

    duplicate = client.put(
        "/v1/duties/sync",
        headers=auth_headers,
        json={"duties": [{"key": "kitchen", "label": "A"}, {"key": "Kitchen", "label": "B"}]},
    )
    assert duplicate.status_code == 400


def test_rearrange_supersedes_and_keeps_history(client, auth_headers) -> None:
    users = _sync_roster(client, auth_headers)
    _alex, sam, pat = (user["id"] for user in users)
    client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 1})

    response = client.post(
        "/v1/cleaning-duties/2024/1/rearrange",
        headers=auth_headers,
        json={"reason": "Alex is away", "actor_user_id": "u2"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["generation"] == 2
    assert payload["computed"] is True
    assert _by_duty(payload) == {"kitchen": sam, "bathroom": pat}

    history = client.get("/v1/cleaning-duties/2024/1/history", headers=auth_headers)
    assert history.status_code == 200
    history_payload = history.json()
    assert [row["generation"] for row in history_payload["generations"]] == [1, 2]
    assert history_payload["overrides"][0]["reason"] == "Alex is away"
    assert history_payload["overrides"][0]["actor_user_id_raw"] == "u2"

    fetched = client.get("/v1/cleaning-duties/2024/1", headers=auth_headers)
    assert fetched.json()["generation"] == 2


def test_rearrange_errors(client, auth_headers) -> None:
    _sync_roster(client, auth_headers)

    missing = client.post(
        "/v1/cleaning-duties/2024/5/rearrange",
        headers=auth_headers,
        json={"reason": "redo"},
    )
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "period_not_arranged"

    client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 5})
    blank = client.post(
        "/v1/cleaning-duties/2024/5/rearrange",
        headers=auth_headers,
        json={"reason": "   "},
    )
    assert blank.status_code == 400

    bad_period = client.post(
        "/v1/cleaning-duties/2024/15/rearrange",
        headers=auth_headers,
        json={"reason": "redo"},
    )
    assert bad_period.status_code == 400


def test_rotation_state_and_activity_are_exposed(client, auth_headers) -> None:
    users = _sync_roster(client, auth_headers)
    client.post(
        "/v1/cleaning-duties/arrange",
        headers=auth_headers,
        json={"year": 2024, "month": 1, "actor_user_id": "u1"},
    )

    rotation = client.get("/v1/cleaning-duties/rotation", headers=auth_headers)
    assert rotation.status_code == 200
    payload = rotation.json()
    cursors = {row["duty_key"]: row for row in payload["cursors"]}
    assert cursors["kitchen"]["cursor_user_id"] == users[1]["id"]
    assert cursors["kitchen"]["last_period"] == "2024-01"
    assert {row["user_id"]: row["assignment_count"] for row in payload["loads"]} == {
        users[0]["id"]: 1,
        users[1]["id"]: 1,
    }

    activity = client.get("/v1/activity", headers=auth_headers)
    assert activity.status_code == 200
    arranged = [row for row in activity.json() if row["action"] == "duties_arranged"]
    assert arranged[0]["actor_user_id"] == users[0]["id"]


def test_activity_can_be_filtered_by_domain(client, auth_headers) -> None:
    _sync_roster(client, auth_headers)
    client.put(
        "/v1/duties/sync",
        headers=auth_headers,
        json={"duties": [{"key": "kitchen", "label": "Kitchen"}, {"key": "bathroom", "label": "Bathroom"}]},
    )
    client.post("/v1/cleaning-duties/arrange", headers=auth_headers, json={"year": 2024, "month": 1})

    everything = client.get("/v1/activity", headers=auth_headers)
    assert {row["domain"] for row in everything.json()} == {"duties", "cleaning_duty"}

    cleaning = client.get("/v1/activity", headers=auth_headers, params={"domain": "cleaning_duty"})
    assert cleaning.status_code == 200
    assert [row["action"] for row in cleaning.json()] == ["duties_arranged"]

    catalog = client.get("/v1/activity", headers=auth_headers, params={"domain": "duties"})
    assert [row["action"] for row in catalog.json()] == ["duty_catalog_synced"]

    unknown = client.get("/v1/activity", headers=auth_headers, params={"domain": "shopping"})
    assert unknown.json() == []
