import pytest

from classquest.users.models.users import UserRole

pytestmark = pytest.mark.anyio

API = "/api/v1"


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_missing_token_uses_error_envelope(client, users):
    response = await client.get(f"{API}/sessions/")

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "AUTHENTICATION_ERROR"
    assert body["path"] == f"{API}/sessions/"
    assert set(body) == {"error", "message", "details", "path"}


async def test_invalid_token_is_rejected(client, users):
    response = await client.get(
        f"{API}/sessions/", headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == 401


async def test_tutor_creates_session_with_qr_code(client, users, auth_headers):
    response = await client.post(
        f"{API}/sessions/",
        json={"title": "Week 7", "session_date": "2026-10-14T18:00:00+03:00"},
        headers=auth_headers(users.tutor, UserRole.TUTOR),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["title"] == "Week 7"
    assert len(body["qr_code_token"]) == 64
    assert body["qr_payload"].endswith(f"?token={body['qr_code_token']}")
    assert body["attendance_count"] == 0
    assert body["attendances"] == []


async def test_student_cannot_create_session(client, users, auth_headers):
    response = await client.post(
        f"{API}/sessions/",
        json={"title": "Week 7", "session_date": "2026-10-14T18:00:00Z"},
        headers=auth_headers(users.alice, UserRole.STUDENT),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "AUTHORIZATION_ERROR"


async def test_malformed_body_is_422(client, users, auth_headers):
    response = await client.post(
        f"{API}/sessions/",
        json={"title": "", "session_date": "not a date"},
        headers=auth_headers(users.tutor, UserRole.TUTOR),
    )

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_student_qr_check_in_and_duplicate(client, users, open_session, auth_headers):
    headers = auth_headers(users.alice, UserRole.STUDENT)
    payload = {"method": "QR", "token": open_session.token}

    first = await client.post(f"{API}/sessions/{open_session.id}/checkins", json=payload, headers=headers)
    second = await client.post(f"{API}/sessions/{open_session.id}/checkins", json=payload, headers=headers)

    assert first.status_code == 201
    assert first.json()["points_awarded"] == 30
    assert first.json()["balance"] == 30
    assert first.json()["record"]["student"]["username"] == "alice"
    assert second.status_code == 409
    assert second.json()["error"] == "ALREADY_CHECKED_IN"

    balance = await client.get(f"{API}/points/balance/{users.alice}", headers=headers)
    assert balance.json() == {"student_id": users.alice, "balance": 30, "experience": 30}


async def test_student_cannot_check_in_someone_else(client, users, open_session, auth_headers):
    response = await client.post(
        f"{API}/sessions/{open_session.id}/checkins",
        json={"student_id": users.bob, "method": "QR", "token": open_session.token},
        headers=auth_headers(users.alice, UserRole.STUDENT),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "PERMISSION_DENIED"


async def test_student_cannot_check_in_manually(client, users, expired_session, auth_headers):
    response = await client.post(
        f"{API}/sessions/{expired_session.id}/checkins",
        json={"method": "MANUAL"},
        headers=auth_headers(users.alice, UserRole.STUDENT),
    )

    assert response.status_code == 403


async def test_expired_session_qr_is_gone_but_manual_works(client, users, expired_session, auth_headers):
    qr = await client.post(
        f"{API}/sessions/{expired_session.id}/checkins",
        json={"method": "QR", "token": expired_session.token},
        headers=auth_headers(users.alice, UserRole.STUDENT),
    )
    manual = await client.post(
        f"{API}/sessions/{expired_session.id}/checkins",
        json={"student_id": users.alice, "method": "MANUAL"},
        headers=auth_headers(users.tutor, UserRole.TUTOR),
    )

    assert qr.status_code == 410
    assert qr.json()["error"] == "SESSION_EXPIRED"
    assert manual.status_code == 201


async def test_tutor_scope_for_manual_check_in(client, users, open_session, auth_headers):
    response = await client.post(
        f"{API}/sessions/{open_session.id}/checkins",
        json={"student_id": users.carol, "method": "MANUAL"},
        headers=auth_headers(users.tutor, UserRole.TUTOR),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "PERMISSION_DENIED"


async def test_bulk_check_in_endpoint(client, users, open_session, auth_headers):
    headers = auth_headers(users.assistant, UserRole.ASISTAN)

    response = await client.post(
        f"{API}/sessions/{open_session.id}/checkins/bulk",
        json={"student_ids": [users.alice, users.bob, users.carol]},
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded"] == [users.alice, users.bob]
    assert [failure["student_id"] for failure in body["failed"]] == [users.carol]
    assert body["points_awarded"] == 60

    attendees = await client.get(f"{API}/sessions/{open_session.id}/attendees", headers=headers)
    assert attendees.json()["checked_in_count"] == 2
    assert attendees.json()["total"] == 2


async def test_undo_endpoint(client, users, open_session, auth_headers):
    headers = auth_headers(users.tutor, UserRole.TUTOR)
    await client.post(
        f"{API}/sessions/{open_session.id}/checkins",
        json={"student_id": users.bob, "method": "MANUAL"},
        headers=headers,
    )

    first = await client.delete(f"{API}/sessions/{open_session.id}/checkins/{users.bob}", headers=headers)
    second = await client.delete(f"{API}/sessions/{open_session.id}/checkins/{users.bob}", headers=headers)

    assert first.status_code == 204
    assert second.status_code == 409
    assert second.json()["error"] == "NOT_CHECKED_IN"

    balance = await client.get(f"{API}/points/balance/{users.bob}", headers=headers)
    assert balance.json()["balance"] == 0


async def test_session_detail_hides_token_from_students(client, users, open_session, auth_headers):
    as_student = await client.get(
        f"{API}/sessions/{open_session.id}", headers=auth_headers(users.alice, UserRole.STUDENT)
    )
    as_tutor = await client.get(
        f"{API}/sessions/{open_session.id}", headers=auth_headers(users.tutor, UserRole.TUTOR)
    )

    assert as_student.json()["qr_code_token"] is None
    assert as_tutor.json()["qr_code_token"] == open_session.token


async def test_verify_token(client, users, open_session, auth_headers):
    headers = auth_headers(users.alice, UserRole.STUDENT)

    found = await client.get(f"{API}/sessions/verify", params={"token": open_session.token}, headers=headers)
    missing = await client.get(f"{API}/sessions/verify", params={"token": "f" * 64}, headers=headers)

    assert found.status_code == 200
    assert found.json()["session_id"] == open_session.id
    assert found.json()["is_expired"] is False
    assert missing.status_code == 404


async def test_delete_session_endpoint(client, users, open_session, auth_headers):
    headers = auth_headers(users.tutor, UserRole.TUTOR)
    await client.post(
        f"{API}/sessions/{open_session.id}/checkins",
        json={"student_id": users.alice, "method": "MANUAL"},
        headers=headers,
    )

    deleted = await client.delete(f"{API}/sessions/{open_session.id}", headers=headers)
    fetched = await client.get(f"{API}/sessions/{open_session.id}", headers=headers)
    balance = await client.get(f"{API}/points/balance/{users.alice}", headers=headers)

    assert deleted.status_code == 204
    assert fetched.status_code == 404
    assert fetched.json()["error"] == "NOT_FOUND"
    assert balance.json()["balance"] == 30


async def test_sessions_list_scoped_to_tutor(client, users, open_session, auth_headers):
    own = await client.get(f"{API}/sessions/", headers=auth_headers(users.tutor, UserRole.TUTOR))
    assistant = await client.get(f"{API}/sessions/", headers=auth_headers(users.assistant, UserRole.ASISTAN))
    other = await client.get(f"{API}/sessions/", headers=auth_headers(users.other_tutor, UserRole.TUTOR))

    assert own.json()["total"] == 1
    assert assistant.json()["total"] == 1
    assert other.json()["total"] == 0


async def test_students_roster_is_scoped(client, users, auth_headers):
    tutor = await client.get(f"{API}/students/", headers=auth_headers(users.tutor, UserRole.TUTOR))
    admin = await client.get(
        f"{API}/students/",
        params={"tutor_id": users.other_tutor},
        headers=auth_headers(users.admin, UserRole.ADMIN),
    )
    tutors = await client.get(
        f"{API}/students/", params={"role": "TUTOR"}, headers=auth_headers(users.tutor, UserRole.TUTOR)
    )

    assert [user["username"] for user in tutor.json()["users"]] == ["alice", "bob"]
    assert [user["username"] for user in admin.json()["users"]] == ["carol"]
    assert tutors.json()["total"] == 2


async def test_manual_points_award_and_penalty(client, users, auth_headers):
    headers = auth_headers(users.tutor, UserRole.TUTOR)

    award = await client.post(
        f"{API}/points/", json={"student_id": users.bob, "amount": 20, "reason": "Helped a friend"}, headers=headers
    )
    penalty = await client.post(f"{API}/points/", json={"student_id": users.bob, "amount": -50}, headers=headers)
    zero = await client.post(f"{API}/points/", json={"student_id": users.bob, "amount": 0}, headers=headers)
    foreign = await client.post(f"{API}/points/", json={"student_id": users.carol, "amount": 5}, headers=headers)

    assert award.status_code == 201
    assert award.json()["source"] == "ADMIN_AWARD"
    assert penalty.json()["source"] == "PENALTY"
    assert zero.status_code == 400
    assert foreign.status_code == 403

    balance = await client.get(f"{API}/points/balance/{users.bob}", headers=headers)
    assert balance.json() == {"student_id": users.bob, "balance": -30, "experience": 20}

    history = await client.get(
        f"{API}/points/transactions", headers=auth_headers(users.bob, UserRole.STUDENT)
    )
    assert history.json()["total"] == 2


async def test_student_cannot_read_other_balance(client, users, auth_headers):
    response = await client.get(
        f"{API}/points/balance/{users.bob}", headers=auth_headers(users.alice, UserRole.STUDENT)
    )

    assert response.status_code == 403


async def test_leaderboard(client, users, open_session, auth_headers):
    tutor_headers = auth_headers(users.tutor, UserRole.TUTOR)
    await client.post(
        f"{API}/sessions/{open_session.id}/checkins/bulk",
        json={"student_ids": [users.alice, users.bob]},
        headers=tutor_headers,
    )
    await client.post(f"{API}/points/", json={"student_id": users.alice, "amount": 25}, headers=tutor_headers)

    response = await client.get(f"{API}/leaderboard/", headers=auth_headers(users.carol, UserRole.STUDENT))

    assert response.status_code == 200
    body = response.json()
    assert [(e["username"], e["experience"], e["rank"]) for e in body["entries"]] == [
        ("alice", 55, 1),
        ("bob", 30, 2),
        ("carol", 0, 3),
    ]
    assert body["stats"] == {"average": 28, "median": 30, "min": 0, "max": 55}
    assert [bucket["range"] for bucket in body["distribution"]] == ["50-99", "0-49"]
    assert body["tutors"][0] == {
        "tutor_id": users.tutor,
        "count": 2,
        "total_experience": 85,
        "average_experience": 43,
    }

    filtered = await client.get(
        f"{API}/leaderboard/", params={"search": "bo"}, headers=tutor_headers
    )
    assert [e["username"] for e in filtered.json()["entries"]] == ["bob"]


async def test_tutor_cannot_undo_another_tutors_student(client, users, open_session, auth_headers):
    admin_headers = auth_headers(users.admin, UserRole.ADMIN)
    tutor_headers = auth_headers(users.tutor, UserRole.TUTOR)
    checked_in = await client.post(
        f"{API}/sessions/{open_session.id}/checkins",
        json={"student_id": users.carol, "method": "MANUAL"},
        headers=admin_headers,
    )

    undo = await client.delete(
        f"{API}/sessions/{open_session.id}/checkins/{users.carol}", headers=tutor_headers
    )

    assert checked_in.status_code == 201
    assert undo.status_code == 403
    assert undo.json()["error"] == "PERMISSION_DENIED"
    balance = await client.get(f"{API}/points/balance/{users.carol}", headers=admin_headers)
    assert balance.json()["balance"] == 30


async def test_assistant_cannot_manage_sessions(client, users, open_session, auth_headers):
    headers = auth_headers(users.assistant, UserRole.ASISTAN)

    created = await client.post(
        f"{API}/sessions/",
        json={"title": "Week 8", "session_date": "2026-10-21T18:00:00Z"},
        headers=headers,
    )
    updated = await client.patch(
        f"{API}/sessions/{open_session.id}", json={"title": "Renamed"}, headers=headers
    )
    regenerated = await client.post(f"{API}/sessions/{open_session.id}/qr", headers=headers)
    deleted = await client.delete(f"{API}/sessions/{open_session.id}", headers=headers)

    assert [r.status_code for r in (created, updated, regenerated, deleted)] == [403] * 4
    assert deleted.json()["error"] == "AUTHORIZATION_ERROR"


async def test_tutor_cannot_modify_another_tutors_session(client, users, open_session, auth_headers):
    headers = auth_headers(users.other_tutor, UserRole.TUTOR)

    updated = await client.patch(
        f"{API}/sessions/{open_session.id}", json={"title": "Mine now"}, headers=headers
    )
    regenerated = await client.post(f"{API}/sessions/{open_session.id}/qr", headers=headers)
    deleted = await client.delete(f"{API}/sessions/{open_session.id}", headers=headers)

    assert [r.status_code for r in (updated, regenerated, deleted)] == [403] * 3
    assert deleted.json()["error"] == "PERMISSION_DENIED"

    still_there = await client.get(
        f"{API}/sessions/{open_session.id}", headers=auth_headers(users.tutor, UserRole.TUTOR)
    )
    assert still_there.status_code == 200
    assert still_there.json()["qr_code_token"] == open_session.token
