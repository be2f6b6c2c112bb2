"""Private account note: amount, debt and the secrets that bind them."""

from dataclasses import dataclass, field
from functools import cached_property
from typing import Optional

from zkpool.utils.hash import (
    FIELD_SIZE,
    FieldHasher,
    default_hasher,
    is_field_element,
    random_field_element,
)
from zkpool.exceptions import NegativeBalanceError, RangeError


@dataclass(frozen=True)
class Account:
    """
    Shielded account note.

    The chain only ever sees ``commitment`` (a leaf of the account tree) and,
    when the note is spent, ``nullifier_hash``. Both are derived with the
    account's hasher:

        commitment     = H(amount, debt, secret, nullifier)
        nullifier_hash = H(nullifier)

    Instances are immutable; every operation produces a new Account with
    fresh secret and nullifier via :meth:`derive_next`.
    """

    amount: int = 0
    debt: int = 0
    secret: int = field(default_factory=random_field_element, repr=False)
    nullifier: int = field(default_factory=random_field_element, repr=False)
    hasher: FieldHasher = field(default_factory=default_hasher, compare=False, repr=False)

    @classmethod
    def fresh(cls, hasher: Optional[FieldHasher] = None) -> "Account":
        """Zero-value account with newly sampled secret and nullifier."""
        return cls(hasher=hasher or default_hasher())

    @cached_property
    def commitment(self) -> int:
        """H(amount, debt, secret, nullifier)."""
        self.validate()
        return self.hasher.hash(self.amount, self.debt, self.secret, self.nullifier)

    @cached_property
    def nullifier_hash(self) -> int:
        """H(nullifier)."""
        self.validate()
        return self.hasher.hash(self.nullifier)

    @property
    def is_zero(self) -> bool:
        """True for an empty note (nothing to prove membership of)."""
        return self.amount == 0 and self.debt == 0

    def validate(self) -> None:
        """
        Check that every field is a valid field element.

        Raises:
            RangeError: naming the offending field and the violated bound
        """
        for name in ("amount", "debt"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise RangeError(f"{name} must be an integer", field=name)
            if value < 0:
                raise RangeError(f"{name} must be non-negative, got {value}", field=name, bound=0)
            if value >= FIELD_SIZE:
                raise RangeError(
                    f"{name} must be below the field modulus", field=name, bound=FIELD_SIZE
                )
        for name in ("secret", "nullifier"):
            if not is_field_element(getattr(self, name)):
                raise RangeError(f"{name} is not a field element", field=name, bound=FIELD_SIZE)

    def derive_next(self, delta_amount: int = 0, delta_debt: int = 0) -> "Account":
        """
        Produce the output note of an operation consuming this one.

        Args:
            delta_amount: Signed change to amount
            delta_debt: Signed change to debt

        Returns:
            Account: new note with fresh secret and nullifier

        Raises:
            NegativeBalanceError: If either resulting field would be negative
            RangeError: If either resulting field exceeds the field modulus
        """
        new_amount = self.amount + delta_amount
        new_debt = self.debt + delta_debt

        if new_amount < 0:
            raise NegativeBalanceError(
                f"Cannot create an account with negative amount "
                f"({self.amount} + {delta_amount})",
                field="amount",
                current=self.amount,
                delta=delta_amount,
            )
        if new_debt < 0:
            raise NegativeBalanceError(
                f"Cannot create an account with negative debt "
                f"({self.debt} + {delta_debt})",
                field="debt",
                current=self.debt,
                delta=delta_debt,
            )

        account = Account(amount=new_amount, debt=new_debt, hasher=self.hasher)
        account.validate()
        return account

    def encrypt(self, public_key: bytes):
        """Encrypt this note for the holder of public_key."""
        from zkpool.crypto.encryption import encrypt

        return encrypt(self, public_key)

    @classmethod
    def decrypt(cls, private_key: bytes, message, hasher: Optional[FieldHasher] = None) -> "Account":
        """Recover a note from an EncryptedMessage or its packed form."""
        from zkpool.crypto.encryption import decrypt

        return decrypt(private_key, message, hasher=hasher)

    def to_dict(self) -> dict:
        """Public summary of the note; secrets are never included."""
        return {
            "amount": self.amount,
            "debt": self.debt,
            "commitment": self.commitment,
            "nullifier_hash": self.nullifier_hash,
        }
