"""Unit tests for auth/store.py -- AccountStore persistence and guarded updates.

Covers:
- create / get round-trip including embedded code slots
- put_record overwrites, clear_record empties both columns
- replace_stale_record refuses live codes and verified accounts
- consume_record accepts exactly once and only strictly before expiry
- delete_unverified_before applies all three sweep conditions in one statement
- duplicate email raises IntegrityError
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Purpose, VerificationRecord
from conftest import T0, make_account


def _record(code: str = "123456", minutes: int = 3, now=T0) -> VerificationRecord:
    return VerificationRecord(code=code, expires_at=now + timedelta(minutes=minutes))


class TestAccounts:
    def test_round_trip(self, store):
        account = make_account(
            phone_country_code="+44",
            phone_number="7700900123",
            created_at=T0,
            email_verification=_record(),
        )
        account_id = store.create_account(account)

        loaded = store.get_by_email("ada@example.com")
        assert loaded.id == account_id
        assert loaded.name == "Ada"
        assert loaded.phone_country_code == "+44"
        assert loaded.is_verified is False
        assert loaded.created_at == T0
        assert loaded.email_verification == _record()
        assert loaded.password_reset is None
        assert store.get_by_id(account_id).email == "ada@example.com"

    def test_missing_account(self, store):
        assert store.get_by_email("nobody@example.com") is None
        assert store.get_by_id(999) is None
        assert store.get_record("nobody@example.com", Purpose.EMAIL_VERIFY) is None

    def test_duplicate_email_rejected(self, store):
        store.create_account(make_account())
        with pytest.raises(IntegrityError):
            store.create_account(make_account())


class TestRecords:
    def test_put_overwrites_and_clear_empties(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("111111")))

        assert store.put_record(account_id, Purpose.EMAIL_VERIFY, _record("222222", minutes=5))
        assert store.get_record("ada@example.com", Purpose.EMAIL_VERIFY) == _record("222222", minutes=5)

        assert store.clear_record(account_id, Purpose.EMAIL_VERIFY)
        assert store.get_record("ada@example.com", Purpose.EMAIL_VERIFY) is None

    def test_purposes_are_independent(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("111111")))
        store.put_record(account_id, Purpose.PASSWORD_RESET, _record("999999", minutes=10))
        store.clear_record(account_id, Purpose.PASSWORD_RESET)

        assert store.get_record("ada@example.com", Purpose.EMAIL_VERIFY) == _record("111111")

    def test_replace_stale_refuses_live_code(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("111111")))

        written = store.replace_stale_record(account_id, Purpose.EMAIL_VERIFY, _record("222222"), T0)

        assert written is False
        assert store.get_record("ada@example.com", Purpose.EMAIL_VERIFY).code == "111111"

    def test_replace_stale_overwrites_expired_code(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("111111")))
        later = T0 + timedelta(minutes=3)

        written = store.replace_stale_record(account_id, Purpose.EMAIL_VERIFY, _record("222222", now=later), later)

        assert written is True
        assert store.get_record("ada@example.com", Purpose.EMAIL_VERIFY).code == "222222"

    def test_replace_stale_refuses_verified_account(self, store):
        account_id = store.create_account(make_account(created_at=T0, is_verified=True))

        assert store.replace_stale_record(account_id, Purpose.EMAIL_VERIFY, _record(), T0) is False


class TestConsume:
    def test_correct_code_consumed_once(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("123456")))
        now = T0 + timedelta(seconds=10)

        first = store.consume_record(account_id, Purpose.EMAIL_VERIFY, "123456", now, is_verified=True)
        second = store.consume_record(account_id, Purpose.EMAIL_VERIFY, "123456", now, is_verified=True)

        assert (first, second) == (True, False)
        loaded = store.get_by_id(account_id)
        assert loaded.is_verified is True
        assert loaded.email_verification is None

    def test_wrong_code_leaves_row_untouched(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("123456")))

        assert store.consume_record(account_id, Purpose.EMAIL_VERIFY, "654321", T0, is_verified=True) is False

        loaded = store.get_by_id(account_id)
        assert loaded.is_verified is False
        assert loaded.email_verification == _record("123456")

    def test_code_rejected_at_expiry_instant(self, store):
        account_id = store.create_account(make_account(created_at=T0, email_verification=_record("123456")))
        at_expiry = T0 + timedelta(minutes=3)

        assert store.consume_record(account_id, Purpose.EMAIL_VERIFY, "123456", at_expiry, is_verified=True) is False
        assert store.get_record("ada@example.com", Purpose.EMAIL_VERIFY) == _record("123456")

    def test_reset_replaces_password_hash(self, store):
        account_id = store.create_account(make_account(created_at=T0))
        store.put_record(account_id, Purpose.PASSWORD_RESET, _record("777777", minutes=10))

        assert store.consume_record(account_id, Purpose.PASSWORD_RESET, "777777", T0, hashed_password="new-hash")

        loaded = store.get_by_id(account_id)
        assert loaded.hashed_password == "new-hash"
        assert loaded.password_reset is None
        assert loaded.is_verified is False


class TestDeleteUnverified:
    def test_applies_every_condition(self, store):
        old = T0
        young = T0 + timedelta(minutes=9)
        cutoff = T0 + timedelta(minutes=1)

        store.create_account(make_account("stale@example.com", created_at=old, email_verification=_record()))
        store.create_account(make_account("verified@example.com", created_at=old, is_verified=True))
        store.create_account(make_account("young@example.com", created_at=young, email_verification=_record()))
        store.create_account(make_account("nocode@example.com", created_at=old))

        assert store.delete_unverified_before(cutoff) == 1
        assert store.get_by_email("stale@example.com") is None
        for email in ("verified@example.com", "young@example.com", "nocode@example.com"):
            assert store.get_by_email(email) is not None

    def test_count_pending_unverified(self, store):
        store.create_account(make_account("a@example.com", created_at=T0, email_verification=_record()))
        store.create_account(make_account("b@example.com", created_at=T0, is_verified=True))
        store.create_account(make_account("c@example.com", created_at=T0))

        assert store.count_pending_unverified() == 1
