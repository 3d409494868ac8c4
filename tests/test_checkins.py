import asyncio

import pytest
from sqlalchemy import func, select

from classquest.core.exceptions import (
    AlreadyCheckedInError,
    NotCheckedInError,
    NotFoundError,
    PermissionDeniedError,
    SessionExpiredError,
    ValidationError,
)
from classquest.attendance.crud.checkins import (
    bulk_check_in,
    check_in,
    get_record,
    undo_check_in,
)
from classquest.attendance.crud.reporting import attendance_count, list_attendees_with_status
from classquest.attendance.models.records import AttendanceRecord, CheckInMethod
from classquest.points.crud.ledger import get_balance
from classquest.points.models.transactions import PointsTransaction, TransactionSource
from classquest.users.crud.users import get_user_by_id

pytestmark = pytest.mark.anyio


async def _count(db, model, **filters):
    query = select(func.count()).select_from(model)
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    return (await db.execute(query)).scalar()


async def _attendance_awards(db, student_id, session_id):
    return await _count(
        db,
        PointsTransaction,
        student_id=student_id,
        related_session_id=session_id,
        source=TransactionSource.ATTENDANCE,
    )


async def test_check_in_creates_record_and_award(db, users, open_session):
    record = await check_in(db, open_session.id, users.alice, CheckInMethod.QR, token=open_session.token)

    assert record.session_id == open_session.id
    assert record.check_in_method == CheckInMethod.QR
    assert record.student.username == "alice"
    assert await _attendance_awards(db, users.alice, open_session.id) == 1
    assert await get_balance(db, users.alice) == 30


async def test_second_check_in_is_rejected_without_second_award(db, users, open_session):
    await check_in(db, open_session.id, users.alice, CheckInMethod.QR)

    with pytest.raises(AlreadyCheckedInError):
        await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)

    assert await _count(db, AttendanceRecord, session_id=open_session.id, student_id=users.alice) == 1
    assert await _attendance_awards(db, users.alice, open_session.id) == 1
    assert await get_balance(db, users.alice) == 30


async def test_failed_check_in_leaves_nothing_behind(db, users, open_session):
    with pytest.raises(NotFoundError):
        await check_in(db, open_session.id, 9999, CheckInMethod.MANUAL)

    with pytest.raises(NotFoundError):
        await check_in(db, 9999, users.alice, CheckInMethod.MANUAL)

    assert await attendance_count(db, open_session.id) == 0
    assert await _count(db, PointsTransaction) == 0


async def test_undo_restores_previous_state(db, users, open_session):
    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)
    assert await get_balance(db, users.alice) == 30

    await undo_check_in(db, open_session.id, users.alice)

    assert await get_record(db, open_session.id, users.alice) is None
    assert await _attendance_awards(db, users.alice, open_session.id) == 0
    assert await get_balance(db, users.alice) == 0


async def test_undo_without_check_in_fails(db, users, open_session):
    with pytest.raises(NotCheckedInError):
        await undo_check_in(db, open_session.id, users.alice)


async def test_undo_keeps_record_when_award_is_missing(db, users, open_session):
    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)
    await db.execute(
        PointsTransaction.__table__.delete().where(
            PointsTransaction.student_id == users.alice
        )
    )
    await db.commit()

    with pytest.raises(NotFoundError):
        await undo_check_in(db, open_session.id, users.alice)

    assert await get_record(db, open_session.id, users.alice) is not None


async def test_check_in_again_after_undo(db, users, open_session):
    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)
    await undo_check_in(db, open_session.id, users.alice)
    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)

    assert await _attendance_awards(db, users.alice, open_session.id) == 1
    assert await get_balance(db, users.alice) == 30


async def test_expired_session_refuses_qr_but_accepts_manual(db, users, expired_session):
    with pytest.raises(SessionExpiredError):
        await check_in(db, expired_session.id, users.alice, CheckInMethod.QR)

    record = await check_in(db, expired_session.id, users.alice, CheckInMethod.MANUAL)

    assert record.check_in_method == CheckInMethod.MANUAL
    assert await get_balance(db, users.alice) == 30


async def test_qr_token_must_match(db, users, open_session):
    with pytest.raises(ValidationError):
        await check_in(db, open_session.id, users.alice, CheckInMethod.QR, token="0" * 64)

    assert await attendance_count(db, open_session.id) == 0


async def test_tutor_cannot_check_in_another_tutors_student(db, users, open_session):
    tutor = await get_user_by_id(db, users.tutor)
    assistant = await get_user_by_id(db, users.assistant)
    admin = await get_user_by_id(db, users.admin)

    with pytest.raises(PermissionDeniedError):
        await check_in(db, open_session.id, users.carol, CheckInMethod.MANUAL, checked_in_by=tutor)

    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL, checked_in_by=assistant)
    await check_in(db, open_session.id, users.carol, CheckInMethod.MANUAL, checked_in_by=admin)

    assert await attendance_count(db, open_session.id) == 2


async def test_concurrent_check_ins_have_one_winner(session_factory, users, open_session):
    async def attempt():
        async with session_factory() as session:
            try:
                await check_in(session, open_session.id, users.alice, CheckInMethod.MANUAL)
            except AlreadyCheckedInError:
                return "already_checked_in"
            return "checked_in"

    results = await asyncio.gather(attempt(), attempt())

    assert sorted(results) == ["already_checked_in", "checked_in"]
    async with session_factory() as db:
        assert await _count(db, AttendanceRecord, student_id=users.alice) == 1
        assert await _attendance_awards(db, users.alice, open_session.id) == 1
        assert await get_balance(db, users.alice) == 30


async def test_bulk_check_in_reports_partial_failure(db, users, open_session):
    await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)

    result = await bulk_check_in(db, open_session.id, [users.alice, users.bob, users.bob])

    assert result.succeeded == [users.bob]
    assert [failure.student_id for failure in result.failed] == [users.alice]
    assert result.failed[0].error == "ALREADY_CHECKED_IN"
    assert result.points_awarded == 30
    assert await _attendance_awards(db, users.alice, open_session.id) == 1
    assert await _attendance_awards(db, users.bob, open_session.id) == 1


async def test_bulk_check_in_respects_roster(db, users, open_session):
    tutor = await get_user_by_id(db, users.tutor)

    result = await bulk_check_in(
        db, open_session.id, [users.alice, users.carol, 9999], checked_in_by=tutor
    )

    assert result.succeeded == [users.alice]
    assert {failure.student_id: failure.error for failure in result.failed} == {
        users.carol: "PERMISSION_DENIED",
        9999: "NOT_FOUND",
    }


async def test_bulk_check_in_on_missing_session_fails(db, users):
    with pytest.raises(NotFoundError):
        await bulk_check_in(db, 9999, [users.alice])


async def test_attendees_with_status_follow_roster_order(db, users, open_session):
    await check_in(db, open_session.id, users.bob, CheckInMethod.MANUAL)

    statuses = await list_attendees_with_status(
        db, open_session.id, [users.carol, users.bob, users.alice, users.bob]
    )

    assert [status.student_id for status in statuses] == [users.carol, users.bob, users.alice]
    assert [status.checked_in for status in statuses] == [False, True, False]
    assert statuses[1].method == CheckInMethod.MANUAL
    assert statuses[1].check_in_time is not None
    assert statuses[0].check_in_time is None


async def test_failed_award_rolls_back_the_record(db, users, open_session, monkeypatch):
    async def failing_append(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(
        "classquest.attendance.crud.checkins.append_transaction", failing_append
    )

    with pytest.raises(RuntimeError):
        await check_in(db, open_session.id, users.alice, CheckInMethod.MANUAL)

    assert await _count(db, AttendanceRecord, session_id=open_session.id) == 0
    assert await _count(db, PointsTransaction) == 0


async def test_tutor_cannot_undo_another_tutors_student(db, users, open_session):
    tutor = await get_user_by_id(db, users.tutor)
    admin = await get_user_by_id(db, users.admin)
    await check_in(db, open_session.id, users.carol, CheckInMethod.MANUAL, checked_in_by=admin)

    with pytest.raises(PermissionDeniedError):
        await undo_check_in(db, open_session.id, users.carol, undone_by=tutor)

    assert await get_record(db, open_session.id, users.carol) is not None
    assert await get_balance(db, users.carol) == 30

    await undo_check_in(db, open_session.id, users.carol, undone_by=admin)
    assert await get_balance(db, users.carol) == 0
