"""Tests for registration transitions, sync backoff and the tournament window (no database)."""
from datetime import datetime, timedelta

import pytest

from affiliation.errors import InvalidOperation, InvalidState, RegistrationClosed, RegistrationNotOpenYet
from affiliation.models import Registration, RegistrationStatus, RegistrationSync, SyncStatus, Tournament
from affiliation.models.registration_sync import backoff_delay
from affiliation.models.tournament import validate_details, validate_schedule

T0 = datetime(2025, 3, 1, 12, 0, 0)


def _tournament(opens=T0, closes=T0 + timedelta(days=2)):
    return Tournament(
        id=1,
        name="Spring Open",
        description="Club tournament for all ages",
        type="INDIVIDUAL",
        registration_start_date=opens,
        registration_end_date=closes,
        start_date=closes + timedelta(days=1),
        version=1,
    )


def test_individual_is_confirmed_with_pending_tracker():
    reg = Registration.individual(1, 10, T0)
    assert reg.status == RegistrationStatus.CONFIRMED
    assert reg.partner_id is None
    assert reg.version == 1
    assert reg.sync.status == SyncStatus.PENDING
    assert reg.sync.attempts == 0
    assert reg.sync.next_attempt_at is None


def test_duo_accept_confirms_and_bumps_version():
    reg = Registration.duo(1, 10, 20, T0)
    assert reg.status == RegistrationStatus.PENDING_APPROVAL
    reg.accept(T0 + timedelta(minutes=1))
    assert reg.status == RegistrationStatus.CONFIRMED
    assert reg.version == 2
    assert reg.updated_at == T0 + timedelta(minutes=1)


def test_duo_reject_bumps_version():
    reg = Registration.duo(1, 10, 20, T0)
    reg.reject(T0)
    assert reg.status == RegistrationStatus.REJECTED
    assert reg.version == 2
    assert not reg.is_active


def test_reject_confirmed_raises_and_leaves_registration_unchanged():
    reg = Registration.individual(1, 10, T0)
    with pytest.raises(InvalidState):
        reg.reject(T0 + timedelta(hours=1))
    assert reg.status == RegistrationStatus.CONFIRMED
    assert reg.version == 1
    assert reg.updated_at == T0


@pytest.mark.parametrize("status", [RegistrationStatus.REJECTED, RegistrationStatus.CANCELLED])
def test_terminal_states_allow_nothing(status):
    reg = Registration.duo(1, 10, 20, T0)
    reg.status = status.value
    for action in ("accept", "reject", "cancel"):
        assert not reg.can(action)


def test_cancel_keeps_version_and_stores_reason():
    reg = Registration.individual(1, 10, T0)
    reg.cancel(T0, "injury")
    assert reg.status == RegistrationStatus.CANCELLED
    assert reg.version == 1
    assert reg.cancellation_reason == "injury"


def test_double_cancel_raises():
    reg = Registration.duo(1, 10, 20, T0)
    reg.cancel(T0)
    with pytest.raises(InvalidState):
        reg.cancel(T0)


def test_backoff_doubles_from_ten_minutes():
    assert backoff_delay(1) == timedelta(minutes=10)
    assert backoff_delay(2) == timedelta(minutes=20)
    assert backoff_delay(3) == timedelta(minutes=40)


def test_third_failed_attempt_ends_failed():
    sync = RegistrationSync.pending(T0)
    now = T0
    for expected_delay in (10, 20, 40):
        sync.record_failed_attempt(now)
        assert sync.last_attempt_at == now
        assert sync.next_attempt_at == now + timedelta(minutes=expected_delay)
        now = sync.next_attempt_at
    assert sync.attempts == 3
    assert sync.status == SyncStatus.FAILED
    assert not sync.is_due(now + timedelta(days=1))


def test_failure_after_cap_only_marks_failed():
    sync = RegistrationSync.pending(T0)
    sync.attempts = 3
    sync.record_failed_attempt(T0)
    assert sync.attempts == 3
    assert sync.status == SyncStatus.FAILED
    assert sync.last_attempt_at is None


def test_mark_synced_clears_schedule():
    sync = RegistrationSync.pending(T0)
    sync.record_failed_attempt(T0)
    sync.mark_synced(T0 + timedelta(minutes=10))
    assert sync.status == SyncStatus.SYNCED
    assert sync.next_attempt_at is None
    assert not sync.is_due(T0 + timedelta(days=1))


def test_window_is_half_open():
    t = _tournament()
    t.check_window_open(T0)
    assert t.is_window_open(T0)
    with pytest.raises(RegistrationNotOpenYet):
        t.check_window_open(T0 - timedelta(seconds=1))
    with pytest.raises(RegistrationClosed):
        t.check_window_open(T0 + timedelta(days=2))
    assert not t.is_window_open(T0 + timedelta(days=2))


def test_schedule_validation():
    validate_schedule(T0, T0 + timedelta(days=1), T0 + timedelta(days=1))
    with pytest.raises(InvalidOperation):
        validate_schedule(T0, T0, T0 + timedelta(days=1))
    with pytest.raises(InvalidOperation):
        validate_schedule(T0, T0 + timedelta(days=2), T0 + timedelta(days=1))


def test_details_validation():
    validate_details("Cup", "0123456789")
    validate_details(None, None)
    with pytest.raises(InvalidOperation):
        validate_details("ab", None)
    with pytest.raises(InvalidOperation):
        validate_details(None, "too short")
