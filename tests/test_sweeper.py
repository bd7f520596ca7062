"""Unit tests for auth/sweeper.py -- ExpirySweeper.

Covers:
- exactly the unverified, old, code-holding accounts are deleted
- reissuing a code does not extend an account's life
- a verification that commits before the sweep protects the account
- failures are absorbed and recorded on last_failure
- start() sweeps immediately and schedules ticks; stop() cancels them
"""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from auth.errors import SweepTickFailure
from auth.models import Purpose, VerificationRecord
from auth.sweeper import ExpirySweeper
from conftest import T0, make_account, run


def _pending(now=T0, minutes=3) -> VerificationRecord:
    return VerificationRecord(code="123456", expires_at=now + timedelta(minutes=minutes))


def _sweeper(store, clock, **kwargs) -> ExpirySweeper:
    kwargs.setdefault("threshold_minutes", 10)
    return ExpirySweeper(store, clock=clock, **kwargs)


def test_deletes_only_eligible_accounts(store, clock):
    store.create_account(make_account("old@example.com", created_at=T0, email_verification=_pending()))
    store.create_account(make_account("verified@example.com", created_at=T0, is_verified=True))
    store.create_account(
        make_account("young@example.com", created_at=T0 + timedelta(minutes=5), email_verification=_pending())
    )
    clock.advance(minutes=11)

    assert _sweeper(store, clock).sweep() == 1

    assert store.get_by_email("old@example.com") is None
    assert store.get_by_email("verified@example.com") is not None
    assert store.get_by_email("young@example.com") is not None


def test_account_exactly_at_threshold_is_deleted(store, clock):
    store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(seconds=600)

    assert _sweeper(store, clock).sweep() == 1
    assert store.get_by_email("ada@example.com") is None


def test_account_just_under_threshold_survives(store, clock):
    store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(seconds=599)

    assert _sweeper(store, clock).sweep() == 0
    assert store.get_by_email("ada@example.com") is not None


def test_reissued_code_does_not_extend_life(store, clock):
    account_id = store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(minutes=9)
    store.put_record(account_id, Purpose.EMAIL_VERIFY, _pending(now=clock()))
    clock.advance(minutes=1)

    assert _sweeper(store, clock).sweep() == 1


def test_verification_before_sweep_protects_account(store, clock):
    account_id = store.create_account(make_account(created_at=T0, email_verification=_pending(minutes=15)))
    clock.advance(minutes=10)

    assert store.consume_record(account_id, Purpose.EMAIL_VERIFY, "123456", clock(), is_verified=True)
    assert _sweeper(store, clock).sweep() == 0
    assert store.get_by_id(account_id).is_verified is True


def test_sweep_is_idempotent(store, clock):
    store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(minutes=30)
    sweeper = _sweeper(store, clock)

    assert sweeper.sweep() == 1
    assert sweeper.sweep() == 0


def test_threshold_override(store, clock):
    store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(minutes=2)
    sweeper = _sweeper(store, clock)

    assert sweeper.sweep() == 0
    assert sweeper.sweep(threshold_minutes=1) == 1


def test_failure_is_absorbed_and_cleared(clock):
    broken = MagicMock()
    broken.delete_unverified_before.side_effect = OperationalError("DELETE", {}, Exception("disk I/O error"))
    sweeper = _sweeper(broken, clock)

    assert sweeper.sweep() == 0
    assert isinstance(sweeper.last_failure, SweepTickFailure)
    assert isinstance(sweeper.last_failure.__cause__, OperationalError)

    broken.delete_unverified_before.side_effect = None
    broken.delete_unverified_before.return_value = 2
    broken.count_pending_unverified.return_value = 0

    assert sweeper.sweep() == 2
    assert sweeper.last_failure is None


def test_count_failure_keeps_committed_delete(store, clock, monkeypatch):
    store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(minutes=10)

    def broken_count():
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "count_pending_unverified", broken_count)
    sweeper = _sweeper(store, clock)

    assert sweeper.sweep() == 1
    assert sweeper.last_failure is None
    assert store.get_by_email("ada@example.com") is None


def test_start_sweeps_immediately_then_stop(store, clock):
    store.create_account(make_account(created_at=T0, email_verification=_pending()))
    clock.advance(minutes=10)
    sweeper = _sweeper(store, clock)

    async def scenario():
        sweeper.start()
        assert sweeper.running
        assert store.get_by_email("ada@example.com") is None
        sweeper.start()  # second call is a no-op
        sweeper.stop()
        await asyncio.sleep(0)
        assert not sweeper.running

    run(scenario())


def test_periodic_ticks_keep_running_after_failure(clock):
    store = MagicMock()
    store.delete_unverified_before.side_effect = [
        0,
        OperationalError("DELETE", {}, Exception("locked")),
        1,
        0,
        0,
        0,
    ]
    store.count_pending_unverified.return_value = 0
    sweeper = _sweeper(store, clock, interval_minutes=0.0005)

    async def scenario():
        sweeper.start()
        while store.delete_unverified_before.call_count < 3:
            await asyncio.sleep(0.01)
        sweeper.stop()

    run(scenario())

    assert store.delete_unverified_before.call_count >= 3
    assert sweeper.last_failure is None
