"""Tests for the account note."""

import pytest

from zkpool.core.account import Account
from zkpool.utils.hash import FIELD_SIZE
from zkpool.exceptions import NegativeBalanceError, RangeError, ValidationError


@pytest.fixture
def account(hasher):
    return Account(amount=100, debt=40, secret=11, nullifier=22, hasher=hasher)


class TestAccountDerivedValues:
    """Tests for commitment and nullifier hash."""

    def test_fresh_account_is_zero(self, hasher):
        account = Account.fresh(hasher)
        assert account.amount == 0
        assert account.debt == 0
        assert account.is_zero

    def test_fresh_accounts_have_distinct_secrets(self, hasher):
        a, b = Account.fresh(hasher), Account.fresh(hasher)
        assert a.secret != b.secret
        assert a.nullifier != b.nullifier
        assert a.commitment != b.commitment

    def test_commitment_matches_hash_of_fields(self, account, hasher):
        assert account.commitment == hasher.hash(100, 40, 11, 22)

    def test_nullifier_hash_matches_hash_of_nullifier(self, account, hasher):
        assert account.nullifier_hash == hasher.hash(22)

    def test_commitment_is_deterministic(self, hasher):
        a = Account(amount=5, debt=1, secret=3, nullifier=4, hasher=hasher)
        b = Account(amount=5, debt=1, secret=3, nullifier=4, hasher=hasher)
        assert a.commitment == b.commitment
        assert a == b

    def test_commitment_binds_every_field(self, account, hasher):
        base = account.commitment
        assert Account(101, 40, 11, 22, hasher).commitment != base
        assert Account(100, 41, 11, 22, hasher).commitment != base
        assert Account(100, 40, 12, 22, hasher).commitment != base
        assert Account(100, 40, 11, 23, hasher).commitment != base

    def test_account_is_immutable(self, account):
        with pytest.raises(AttributeError):
            account.amount = 5


class TestAccountValidation:
    """Tests for range checks."""

    def test_negative_amount_rejected(self, hasher):
        with pytest.raises(RangeError) as exc_info:
            Account(amount=-1, hasher=hasher).validate()
        assert exc_info.value.field == "amount"
        assert exc_info.value.bound == 0

    def test_debt_at_field_size_rejected(self, hasher):
        with pytest.raises(RangeError) as exc_info:
            Account(debt=FIELD_SIZE, hasher=hasher).validate()
        assert exc_info.value.field == "debt"
        assert exc_info.value.bound == FIELD_SIZE

    def test_range_error_is_validation_error(self, hasher):
        with pytest.raises(ValidationError):
            Account(amount=FIELD_SIZE + 5, hasher=hasher).commitment

    def test_bad_secret_rejected(self, hasher):
        with pytest.raises(RangeError) as exc_info:
            Account(secret=-3, hasher=hasher).validate()
        assert exc_info.value.field == "secret"

    def test_max_field_values_accepted(self, hasher):
        Account(amount=FIELD_SIZE - 1, debt=FIELD_SIZE - 1, hasher=hasher).validate()


class TestDeriveNext:
    """Tests for producing the next note."""

    def test_applies_deltas_with_fresh_secrets(self, account):
        nxt = account.derive_next(delta_amount=-30, delta_debt=10)
        assert nxt.amount == 70
        assert nxt.debt == 50
        assert nxt.secret != account.secret
        assert nxt.nullifier != account.nullifier

    def test_keeps_hasher(self, account):
        assert account.derive_next(1, 0).hasher is account.hasher

    def test_input_unchanged(self, account):
        account.derive_next(delta_amount=-100)
        assert account.amount == 100
        assert account.debt == 40

    def test_negative_amount(self, account):
        with pytest.raises(NegativeBalanceError) as exc_info:
            account.derive_next(delta_amount=-101)
        assert exc_info.value.field == "amount"
        assert "negative amount" in str(exc_info.value)

    def test_negative_debt(self, account):
        with pytest.raises(NegativeBalanceError) as exc_info:
            account.derive_next(delta_debt=-41)
        assert exc_info.value.field == "debt"
        assert "Cannot create an account with negative debt" in str(exc_info.value)

    def test_overflow_past_field(self, hasher):
        account = Account(amount=FIELD_SIZE - 1, hasher=hasher)
        with pytest.raises(RangeError):
            account.derive_next(delta_amount=1)

    def test_to_dict_hides_secrets(self, account):
        summary = account.to_dict()
        assert "secret" not in summary
        assert "nullifier" not in summary
        assert summary["commitment"] == account.commitment
