import os
import sqlite3
import sys
from datetime import datetime, time, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import select

from common.auth import ALGORITHM, SECRET_KEY
from reservations_service import models
from reservations_service.database import Base, SessionLocal, engine
from reservations_service.main import app
from reservations_service.rooms_client import rooms_circuit_breaker
from scheduling.clock import civil_datetime, civil_today
from scheduling.models import ReservationStatus

client = TestClient(app)

# Two days ahead keeps every slot in the future and inside the booking window.
DAY = civil_today() + timedelta(days=2)

ROOM_CONTEXT = {"room_id": 1, "name": "과학실", "is_available": True, "restrictions": []}


class FakeResponse:
    def __init__(self, status_code, json_body):
        self.status_code = status_code
        self._json = json_body

    def json(self):
        return self._json


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    rooms_circuit_breaker.reset()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def rooms_service(monkeypatch):
    """Stand-in for the Rooms service booking-context endpoint."""
    contexts = {1: dict(ROOM_CONTEXT), 2: dict(ROOM_CONTEXT, room_id=2, name="음악실")}

    def fake_httpx_get(url, params=None, headers=None, timeout=None):
        assert "/booking-context" in url
        assert headers["Authorization"].startswith("Bearer ")
        room_id = int(url.rstrip("/").split("/")[-2])
        if room_id not in contexts:
            return FakeResponse(404, {"detail": "Room not found"})
        return FakeResponse(200, contexts[room_id])

    monkeypatch.setattr(httpx, "get", fake_httpx_get)
    return contexts


def make_token(user_id: int, username: str, role: str) -> str:
    payload = {
        "sub": username,
        "role": role,
        "user_id": user_id,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def auth(user_id: int, role: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, f'{role}{user_id}', role)}"}


STUDENT = auth(1, "student")
OTHER_STUDENT = auth(2, "student")
TEACHER = auth(20, "teacher")
ADMIN = auth(30, "admin")


def at(hour, minute=0, day=DAY):
    return civil_datetime(day, time(hour, minute)).isoformat()


def booking(start, end, room_id=1, **extra):
    body = {
        "room_id": room_id,
        "start_time": start,
        "end_time": end,
        "purpose": "과학 동아리 실험",
        "attendees": "김철수, 이영희",
    }
    body.update(extra)
    return body


def test_booking_requires_auth():
    res = client.post("/api/v1/reservations", json=booking(at(9), at(10)))
    assert res.status_code in (401, 403)


def test_student_booking_is_pending_and_teacher_booking_is_confirmed():
    res_student = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT)
    assert res_student.status_code == 201
    created = res_student.json()
    assert len(created) == 1
    assert created[0]["status"] == "pending"
    assert created[0]["approved_by"] is None
    assert created[0]["attendees"] == ["김철수", "이영희"]

    res_teacher = client.post("/api/v1/reservations", json=booking(at(13), at(14)), headers=TEACHER)
    assert res_teacher.status_code == 201
    assert res_teacher.json()[0]["status"] == "confirmed"
    assert res_teacher.json()[0]["approved_by"] == 20


def test_overlapping_booking_gets_409_with_conflict_status():
    assert client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=TEACHER).status_code == 201

    res = client.post("/api/v1/reservations", json=booking(at(10, 30), at(11, 30)), headers=STUDENT)
    assert res.status_code == 409
    body = res.json()
    assert body["service"] == "reservations"
    assert body["conflict_status"] == "confirmed"
    assert "already taken" in body["detail"]


def test_pending_conflict_message_and_touching_slots():
    assert client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=STUDENT).status_code == 201

    res = client.post("/api/v1/reservations", json=booking(at(10), at(10, 30)), headers=OTHER_STUDENT)
    assert res.status_code == 409
    assert res.json()["conflict_status"] == "pending"

    res_touch = client.post("/api/v1/reservations", json=booking(at(11), at(12)), headers=OTHER_STUDENT)
    assert res_touch.status_code == 201


def test_other_rooms_do_not_conflict():
    assert client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=STUDENT).status_code == 201
    res = client.post("/api/v1/reservations", json=booking(at(10), at(11), room_id=2), headers=OTHER_STUDENT)
    assert res.status_code == 201


def test_recurring_booking_creates_weekly_series():
    res = client.post(
        "/api/v1/reservations",
        json=booking(at(14), at(15), recurring=True, repeat_weeks=4),
        headers=TEACHER,
    )
    assert res.status_code == 201
    starts = [datetime.fromisoformat(r["start_time"]) for r in res.json()]
    assert len(starts) == 4
    assert all(later - earlier == timedelta(days=7) for earlier, later in zip(starts, starts[1:]))


def test_recurring_series_is_rejected_as_a_whole():
    third_week = DAY + timedelta(days=14)
    res_block = client.post(
        "/api/v1/reservations",
        json=booking(at(14, day=third_week), at(15, day=third_week)),
        headers=TEACHER,
    )
    assert res_block.status_code == 201

    res = client.post(
        "/api/v1/reservations",
        json=booking(at(14), at(15), recurring=True, repeat_weeks=4),
        headers=STUDENT,
    )
    assert res.status_code == 409

    mine = client.get("/api/v1/reservations/me", headers=STUDENT)
    assert mine.status_code == 200
    assert mine.json() == []


@pytest.mark.parametrize(
    "start,end",
    [
        (at(10, 15), at(11)),
        (at(7, 30), at(9)),
        (at(21, 30), at(22, 30)),
        (at(11), at(10)),
    ],
)
def test_invalid_intervals_get_400(start, end):
    res = client.post("/api/v1/reservations", json=booking(start, end), headers=STUDENT)
    assert res.status_code == 400
    assert res.json()["status_code"] == 400


def test_unsupported_repeat_count_gets_400():
    res = client.post(
        "/api/v1/reservations",
        json=booking(at(9), at(10), recurring=True, repeat_weeks=3),
        headers=STUDENT,
    )
    assert res.status_code == 400


def test_booking_too_far_ahead_gets_400():
    far = civil_today() + timedelta(days=45)
    res = client.post("/api/v1/reservations", json=booking(at(9, day=far), at(10, day=far)), headers=STUDENT)
    assert res.status_code == 400


def test_restricted_slot_gets_400(rooms_service):
    rooms_service[1]["restrictions"] = [
        {"kind": "all", "start_date": None, "end_date": None, "start_time": "18:00", "end_time": "20:00"}
    ]
    res = client.post("/api/v1/reservations", json=booking(at(18, 30), at(19)), headers=TEACHER)
    assert res.status_code == 400
    assert "restriction" in res.json()["detail"]


def test_unknown_room_gets_404():
    res = client.post("/api/v1/reservations", json=booking(at(9), at(10), room_id=99), headers=STUDENT)
    assert res.status_code == 404


def test_rooms_service_down_gets_502(monkeypatch):
    def broken_get(url, params=None, headers=None, timeout=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx, "get", broken_get)
    res = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT)
    assert res.status_code == 502


def test_short_purpose_is_refused():
    res = client.post("/api/v1/reservations", json=booking(at(9), at(10), purpose="abc"), headers=STUDENT)
    assert res.status_code == 422


def test_service_account_cannot_book():
    service = auth(0, "service_account")
    res = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=service)
    assert res.status_code == 400

    check = client.post("/api/v1/reservations/check", json=booking(at(9), at(10)), headers=service)
    assert check.status_code == 400
    assert check.json()["detail"] == res.json()["detail"]


def test_advisory_check_endpoint():
    assert client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=STUDENT).status_code == 201

    free = client.post("/api/v1/reservations/check", json=booking(at(11), at(12)), headers=OTHER_STUDENT)
    assert free.status_code == 200
    assert free.json()["available"] is True

    busy = client.post("/api/v1/reservations/check", json=booking(at(10), at(12)), headers=OTHER_STUDENT)
    assert busy.status_code == 409
    assert busy.json()["stage"] == "advisory"


def test_availability_reports_booked_and_restricted(rooms_service):
    rooms_service[1]["restrictions"] = [
        {"kind": "all", "start_date": None, "end_date": None, "start_time": "18:00", "end_time": "20:00"}
    ]
    assert client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=STUDENT).status_code == 201

    res = client.get(
        "/api/v1/reservations/availability",
        params={"room_id": 1, "date": DAY.isoformat(), "start": "09:00"},
        headers=OTHER_STUDENT,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["booked"] == ["10:00", "10:30"]
    assert body["restricted"] == ["18:00", "18:30", "19:00", "19:30"]
    assert body["past"] == []
    assert "10:00" not in body["available_starts"]
    assert "09:00" in body["available_starts"]
    assert body["available_ends"] == ["09:30", "10:00"]


def test_times_without_offset_are_school_times():
    start = f"{DAY.isoformat()}T10:00:00"
    end = f"{DAY.isoformat()}T11:00:00"
    res = client.post("/api/v1/reservations", json=booking(start, end), headers=STUDENT)
    assert res.status_code == 201

    body = client.get(
        "/api/v1/reservations/availability",
        params={"room_id": 1, "date": DAY.isoformat()},
        headers=STUDENT,
    ).json()
    assert body["booked"] == ["10:00", "10:30"]

    # The same slot written with its offset collides with it.
    clash = client.post("/api/v1/reservations", json=booking(at(10, 30), at(11, 30)), headers=OTHER_STUDENT)
    assert clash.status_code == 409


def test_closed_room_takes_no_bookings(rooms_service):
    rooms_service[1]["is_available"] = False

    res = client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=TEACHER)
    assert res.status_code == 400
    check = client.post("/api/v1/reservations/check", json=booking(at(10), at(11)), headers=STUDENT)
    assert check.status_code == 400
    assert client.get("/api/v1/reservations/count", params={"room_id": 1}, headers=TEACHER).json()["count"] == 0

    # A restriction also flags the room; its free slots stay bookable.
    rooms_service[1]["restrictions"] = [
        {"kind": "all", "start_date": None, "end_date": None, "start_time": "18:00", "end_time": "20:00"}
    ]
    assert client.post("/api/v1/reservations", json=booking(at(10), at(11)), headers=TEACHER).status_code == 201


@pytest.mark.skipif(engine.dialect.name != "sqlite", reason="SQLite locking only")
def test_sqlite_transaction_holds_write_lock_before_first_read():
    with engine.connect() as conn:
        conn.execute(select(models.Reservation.id)).all()

        other = sqlite3.connect(engine.url.database, timeout=0)
        try:
            with pytest.raises(sqlite3.OperationalError):
                other.execute("BEGIN IMMEDIATE")
        finally:
            other.close()


def test_teacher_approves_pending_reservation():
    created = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT).json()[0]

    res = client.post(f"/api/v1/reservations/{created['id']}/approve", headers=TEACHER)
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "confirmed"
    assert body["approved_by"] == 20
    assert body["rejection_reason"] is None

    again = client.post(f"/api/v1/reservations/{created['id']}/approve", headers=ADMIN)
    assert again.status_code == 400


def test_student_cannot_approve():
    created = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT).json()[0]
    res = client.post(f"/api/v1/reservations/{created['id']}/approve", headers=OTHER_STUDENT)
    assert res.status_code == 403


def test_reject_needs_reason_and_leaves_record_unchanged():
    created = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT).json()[0]

    res_blank = client.post(f"/api/v1/reservations/{created['id']}/reject", json={"reason": "   "}, headers=ADMIN)
    assert res_blank.status_code == 400

    unchanged = client.get(f"/api/v1/reservations/{created['id']}", headers=STUDENT).json()
    assert unchanged["status"] == "pending"
    assert unchanged["rejected_by"] is None

    res = client.post(f"/api/v1/reservations/{created['id']}/reject", json={"reason": "시험 기간"}, headers=ADMIN)
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "rejected"
    assert body["rejected_by"] == 30
    assert body["rejection_reason"] == "시험 기간"
    assert body["approved_by"] is None


def test_rejected_reservation_frees_the_slot_and_shows_reason():
    created = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT).json()[0]
    client.post(f"/api/v1/reservations/{created['id']}/reject", json={"reason": "중복 신청"}, headers=TEACHER)

    res = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=OTHER_STUDENT)
    assert res.status_code == 201

    mine = client.get("/api/v1/reservations/me", headers=STUDENT).json()
    assert [(r["status"], r["rejection_reason"]) for r in mine] == [("rejected", "중복 신청")]


def test_staff_listing_filters_by_status():
    client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT)
    client.post("/api/v1/reservations", json=booking(at(11), at(12)), headers=TEACHER)

    res = client.get("/api/v1/reservations", params={"status": "pending"}, headers=TEACHER)
    assert res.status_code == 200
    assert [r["user_id"] for r in res.json()] == [1]

    assert client.get("/api/v1/reservations", headers=STUDENT).status_code == 403


def test_calendar_lists_confirmed_only():
    client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT)
    client.post("/api/v1/reservations", json=booking(at(11), at(12)), headers=TEACHER)

    res = client.get(
        "/api/v1/reservations/calendar",
        params={"start_date": DAY.isoformat(), "end_date": DAY.isoformat()},
        headers=ADMIN,
    )
    assert res.status_code == 200
    assert [r["status"] for r in res.json()] == ["confirmed"]


def test_owner_or_staff_can_delete():
    first = client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT).json()[0]
    second = client.post("/api/v1/reservations", json=booking(at(11), at(12)), headers=STUDENT).json()[0]

    assert client.delete(f"/api/v1/reservations/{first['id']}", headers=OTHER_STUDENT).status_code == 403
    assert client.delete(f"/api/v1/reservations/{first['id']}", headers=STUDENT).status_code == 204
    assert client.delete(f"/api/v1/reservations/{second['id']}", headers=TEACHER).status_code == 204
    assert client.get(f"/api/v1/reservations/{first['id']}", headers=STUDENT).status_code == 404


def test_account_deletion_removes_all_reservations():
    client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT)
    client.post("/api/v1/reservations", json=booking(at(11), at(12)), headers=STUDENT)
    client.post("/api/v1/reservations", json=booking(at(13), at(14)), headers=OTHER_STUDENT)

    assert client.delete("/api/v1/users/1/reservations", headers=OTHER_STUDENT).status_code == 403

    res = client.delete("/api/v1/users/1/reservations", headers=STUDENT)
    assert res.status_code == 200
    assert res.json()["deleted"] == 2
    assert client.get("/api/v1/reservations/me", headers=STUDENT).json() == []
    assert len(client.get("/api/v1/reservations/me", headers=OTHER_STUDENT).json()) == 1


def test_count_for_room_is_available_to_service_accounts():
    client.post("/api/v1/reservations", json=booking(at(9), at(10)), headers=STUDENT)

    res = client.get("/api/v1/reservations/count", params={"room_id": 1}, headers=auth(0, "service_account"))
    assert res.status_code == 200
    assert res.json() == {"room_id": 1, "count": 1}

    assert client.get("/api/v1/reservations/count", params={"room_id": 1}, headers=STUDENT).status_code == 403


def insert_confirmed(updated_days_ago: int, room_id: int = 1) -> int:
    now = datetime.now(timezone.utc)
    start = now - timedelta(days=updated_days_ago + 1)
    db = SessionLocal()
    try:
        row = models.Reservation(
            user_id=1,
            room_id=room_id,
            start_time=start,
            end_time=start + timedelta(hours=1),
            purpose="지난 수업 실습",
            attendees=[],
            status=ReservationStatus.CONFIRMED,
            approved_by=20,
            created_at=now - timedelta(days=updated_days_ago + 2),
            updated_at=now - timedelta(days=updated_days_ago),
        )
        db.add(row)
        db.commit()
        return row.id
    finally:
        db.close()


def test_archive_sweep_moves_old_confirmed_reservations_once():
    old_id = insert_confirmed(updated_days_ago=20)
    recent_id = insert_confirmed(updated_days_ago=10)

    res = client.post("/api/v1/archive/sweep", headers=ADMIN)
    assert res.status_code == 200
    body = res.json()
    assert body["archived_count"] == 1
    assert body["deleted_count"] == 1
    assert body["archived_ids"] == [old_id]
    assert body["warning"] is None

    again = client.post("/api/v1/archive/sweep", headers=TEACHER).json()
    assert again["archived_count"] == 0
    assert again["deleted_count"] == 0

    archive = client.get("/api/v1/archive", headers=TEACHER).json()
    assert [a["original_id"] for a in archive] == [old_id]

    remaining = client.get("/api/v1/reservations", headers=TEACHER).json()
    assert [r["id"] for r in remaining] == [recent_id]


def test_students_cannot_run_the_sweep():
    assert client.post("/api/v1/archive/sweep", headers=STUDENT).status_code == 403
