from datetime import datetime, timedelta, timezone

import pytest

from classquest.core.exceptions import NotFoundError
from classquest.core.timeutils import as_utc, end_of_week, utcnow
from classquest.attendance.crud.checkins import check_in
from classquest.attendance.crud.reporting import attendance_count
from classquest.attendance.crud.sessions import (
    build_qr_payload,
    create_session,
    delete_session,
    get_session_by_id,
    get_session_by_token,
    is_expired,
    list_sessions,
    regenerate_qr_code,
    update_session,
)
from classquest.attendance.models.records import CheckInMethod
from classquest.attendance.schemas.sessions import (
    AttendanceSessionCreate,
    AttendanceSessionUpdate,
)
from classquest.points.crud.ledger import get_balance, list_transactions
from classquest.users.crud.users import get_user_by_id


def test_end_of_week_mid_week():
    wednesday = datetime(2026, 10, 14, 9, 30, tzinfo=timezone.utc)

    assert end_of_week(wednesday) == datetime(
        2026, 10, 18, 23, 59, 59, 999000, tzinfo=timezone.utc
    )


def test_end_of_week_on_sunday_is_same_day():
    sunday = datetime(2026, 10, 18, 23, 0, tzinfo=timezone.utc)

    assert end_of_week(sunday).date() == sunday.date()


def test_end_of_week_keeps_timezone():
    istanbul = timezone(timedelta(hours=3))
    monday = datetime(2026, 10, 12, 1, 0, tzinfo=istanbul)

    result = end_of_week(monday)
    assert result.tzinfo == istanbul
    assert as_utc(result) == datetime(2026, 10, 18, 20, 59, 59, 999000, tzinfo=timezone.utc)


def test_as_utc_treats_naive_values_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)

    assert as_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(None) is None


@pytest.mark.anyio
async def test_create_session_issues_token_until_end_of_week(db, users):
    session_date = datetime(2026, 10, 14, 18, 0, tzinfo=timezone.utc)

    created = await create_session(
        db,
        AttendanceSessionCreate(title="  Week 42 ", session_date=session_date),
        users.tutor,
    )

    assert created.title == "Week 42"
    assert len(created.qr_code_token) == 64
    assert set(created.qr_code_token) <= set("0123456789abcdef")
    assert as_utc(created.qr_code_expires_at) == datetime(
        2026, 10, 18, 23, 59, 59, 999000, tzinfo=timezone.utc
    )
    assert created.created_by_id == users.tutor
    assert build_qr_payload(created).endswith(
        f"/attendance/{created.id}/check-in?token={created.qr_code_token}"
    )


@pytest.mark.anyio
async def test_is_expired(db, users):
    created = await create_session(
        db, AttendanceSessionCreate(title="Week", session_date=utcnow()), users.tutor
    )
    expires_at = as_utc(created.qr_code_expires_at)

    assert not is_expired(created, expires_at)
    assert is_expired(created, expires_at + timedelta(milliseconds=1))

    created.qr_code_expires_at = None
    assert not is_expired(created, expires_at + timedelta(days=365))


@pytest.mark.anyio
async def test_get_missing_session_fails(db, users):
    with pytest.raises(NotFoundError):
        await get_session_by_id(db, 12345)


@pytest.mark.anyio
async def test_update_keeps_token(db, users, open_session):
    updated = await update_session(
        db,
        open_session.id,
        AttendanceSessionUpdate(title="Renamed", description="Moved to room 4"),
    )

    assert updated.title == "Renamed"
    assert updated.description == "Moved to room 4"
    assert updated.qr_code_token == open_session.token


@pytest.mark.anyio
async def test_regenerate_qr_code_replaces_token(db, users, open_session):
    regenerated = await regenerate_qr_code(db, open_session.id)

    assert regenerated.qr_code_token != open_session.token
    with pytest.raises(NotFoundError):
        await get_session_by_token(db, open_session.token)
    assert (await get_session_by_token(db, regenerated.qr_code_token)).id == open_session.id


@pytest.mark.anyio
async def test_list_sessions_scoped_by_creator(db, users, open_session):
    await create_session(
        db, AttendanceSessionCreate(title="Other", session_date=utcnow()), users.other_tutor
    )

    own, own_total = await list_sessions(db, created_by_id=users.tutor)
    everything, total = await list_sessions(db)

    assert [row.id for row in own] == [open_session.id]
    assert own_total == 1
    assert total == 2
    assert len(everything) == 2


@pytest.mark.anyio
async def test_delete_session_removes_records_but_keeps_points(db, users, open_session):
    tutor = await get_user_by_id(db, users.tutor)
    admin = await get_user_by_id(db, users.admin)
    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL, checked_in_by=tutor)
    await check_in(db, open_session.id, users.bob, CheckInMethod.MANUAL, checked_in_by=tutor)
    await check_in(db, open_session.id, users.carol, CheckInMethod.MANUAL, checked_in_by=admin)
    assert await attendance_count(db, open_session.id) == 3

    removed = await delete_session(db, open_session.id)

    assert removed == 3
    assert await attendance_count(db, open_session.id) == 0
    with pytest.raises(NotFoundError):
        await get_session_by_id(db, open_session.id)

    _, remaining = await list_transactions(db)
    assert remaining == 3
    for student_id in (users.alice, users.bob, users.carol):
        assert await get_balance(db, student_id) == 30


@pytest.mark.anyio
async def test_deleted_session_id_is_not_reused(db, users):
    first = await create_session(
        db, AttendanceSessionCreate(title="First", session_date=utcnow()), users.tutor
    )
    second = await create_session(
        db, AttendanceSessionCreate(title="Second", session_date=utcnow()), users.tutor
    )
    deleted_id = second.id

    await delete_session(db, deleted_id)
    third = await create_session(
        db, AttendanceSessionCreate(title="Third", session_date=utcnow()), users.tutor
    )

    assert first.id < deleted_id < third.id
