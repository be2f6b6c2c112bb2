"""The four pool operations and the checks that keep their signs straight.

Only two operation circuits exist. The Deposit family adds ``amount`` and
subtracts ``debt``; the Withdraw family subtracts ``amount`` and adds
``debt``. Public signals always carry non-negative magnitudes and the
operation tag, so each variant below pins exactly one nonzero delta:

    =========  ===========  ==========  ===========
    variant    amount'      debt'       family
    =========  ===========  ==========  ===========
    Deposit    amount + a   debt        DEPOSIT
    Withdraw   amount - a   debt        WITHDRAW
    Mint       amount       debt + d    WITHDRAW
    Burn       amount       debt - d    DEPOSIT
    =========  ===========  ==========  ===========
"""

import re
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar, Optional, Union

from zkpool.core.account import Account
from zkpool.utils.hash import FIELD_SIZE
from zkpool.exceptions import (
    FeeExceedsDeltaError,
    RateOverstatedError,
    UndercollateralizedError,
    ValidationError,
)

ZERO_ADDRESS = "0x" + "00" * 20
BPS_DENOMINATOR = 10_000

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class OperationTag(IntEnum):
    """Operation tag carried as a public signal."""
    DEPOSIT = 0
    WITHDRAW = 1
    MINT = 2
    BURN = 3


class CircuitFamily(Enum):
    """Proof circuits the backend holds keys for."""
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    TREE_UPDATE = "TreeUpdate"


def normalize_address(value: Optional[str], name: str, required: bool = False) -> str:
    """
    Validate a 20-byte hex address and return it lowercased.

    Raises:
        ValidationError: If the address is malformed, or missing when required
    """
    if value is None or value == ZERO_ADDRESS:
        if required:
            raise ValidationError(f"{name} address is required", field=name)
        return ZERO_ADDRESS
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise ValidationError(f"{name} is not a 20-byte hex address: {value!r}", field=name)
    return value.lower()


def _check_delta(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", field=name)
    if value < 0:
        raise ValidationError(f"{name} must be non-negative, got {value}", field=name, bound=0)
    if value >= FIELD_SIZE:
        raise ValidationError(f"{name} exceeds the field modulus", field=name, bound=FIELD_SIZE)


def _check_fee(fee: int, delta: int, delta_name: str) -> None:
    _check_delta("fee", fee)
    if fee > delta:
        raise FeeExceedsDeltaError(f"Fee {fee} exceeds {delta_name} delta {delta}")


def _check_rate_value(value: Optional[int]) -> None:
    if value is not None:
        _check_delta("unit_per_underlying", value)


class Operation:
    """Common surface of the operation variants."""

    tag: ClassVar[OperationTag]
    family: ClassVar[CircuitFamily]

    recipient: str = ZERO_ADDRESS
    relayer: str = ZERO_ADDRESS
    fee: int = 0
    unit_per_underlying: Optional[int] = None

    @property
    def delta_amount(self) -> int:
        """Signed change applied to the account amount."""
        return 0

    @property
    def delta_debt(self) -> int:
        """Signed change applied to the account debt."""
        return 0

    @property
    def public_amount(self) -> int:
        return abs(self.delta_amount)

    @property
    def public_debt(self) -> int:
        return abs(self.delta_debt)


@dataclass(frozen=True)
class Deposit(Operation):
    """Add ``amount`` underlying to the note."""

    amount: int

    tag: ClassVar[OperationTag] = OperationTag.DEPOSIT
    family: ClassVar[CircuitFamily] = CircuitFamily.DEPOSIT

    def __post_init__(self):
        _check_delta("amount", self.amount)

    @property
    def delta_amount(self) -> int:
        return self.amount


@dataclass(frozen=True)
class Withdraw(Operation):
    """Remove ``amount`` underlying from the note, paid to ``recipient`` minus ``fee``."""

    amount: int
    recipient: str
    relayer: str = ZERO_ADDRESS
    fee: int = 0

    tag: ClassVar[OperationTag] = OperationTag.WITHDRAW
    family: ClassVar[CircuitFamily] = CircuitFamily.WITHDRAW

    def __post_init__(self):
        _check_delta("amount", self.amount)
        object.__setattr__(self, "recipient", normalize_address(self.recipient, "recipient", True))
        object.__setattr__(self, "relayer", normalize_address(self.relayer, "relayer"))
        _check_fee(self.fee, self.amount, "amount")

    @property
    def delta_amount(self) -> int:
        return -self.amount


@dataclass(frozen=True)
class Mint(Operation):
    """Take on ``debt``; ``debt - fee`` is minted to ``recipient`` and ``fee`` to ``relayer``."""

    debt: int
    recipient: str
    relayer: str = ZERO_ADDRESS
    fee: int = 0
    unit_per_underlying: Optional[int] = None

    tag: ClassVar[OperationTag] = OperationTag.MINT
    family: ClassVar[CircuitFamily] = CircuitFamily.WITHDRAW

    def __post_init__(self):
        _check_delta("debt", self.debt)
        object.__setattr__(self, "recipient", normalize_address(self.recipient, "recipient", True))
        object.__setattr__(self, "relayer", normalize_address(self.relayer, "relayer"))
        _check_fee(self.fee, self.debt, "debt")
        _check_rate_value(self.unit_per_underlying)

    @property
    def delta_debt(self) -> int:
        return self.debt


@dataclass(frozen=True)
class Burn(Operation):
    """Repay ``debt`` from the caller's token balance."""

    debt: int
    unit_per_underlying: Optional[int] = None

    tag: ClassVar[OperationTag] = OperationTag.BURN
    family: ClassVar[CircuitFamily] = CircuitFamily.DEPOSIT

    def __post_init__(self):
        _check_delta("debt", self.debt)
        _check_rate_value(self.unit_per_underlying)

    @property
    def delta_debt(self) -> int:
        return -self.debt


AnyOperation = Union[Deposit, Withdraw, Mint, Burn]


def check_rate(supplied: int, oracle: int, tolerance_bps: int = 0) -> None:
    """
    Reject a conversion rate that would overstate underlying per unit.

    A lower ``unit_per_underlying`` makes each debt unit look cheaper in
    underlying terms, so the supplied rate may exceed the oracle rate but
    may not fall below it by more than ``tolerance_bps``.

    Raises:
        RateOverstatedError: If the supplied rate is non-positive or too low
        ValidationError: If the oracle rate or tolerance is unusable
    """
    if oracle <= 0:
        raise ValidationError("Oracle rate must be positive", field="unit_per_underlying")
    if tolerance_bps < 0 or tolerance_bps >= BPS_DENOMINATOR:
        raise ValidationError("Rate tolerance out of range", field="rate_tolerance_bps")
    if supplied <= 0:
        raise RateOverstatedError(
            "Underlying per unit is overstated (rate must be positive)",
            supplied=supplied,
            expected=oracle,
        )

    # ceil(oracle * (1 - tolerance)) so rounding never loosens the bound
    numerator = oracle * (BPS_DENOMINATOR - tolerance_bps)
    minimum = -(-numerator // BPS_DENOMINATOR)
    if supplied < minimum:
        raise RateOverstatedError(
            f"Underlying per unit is overstated: rate {supplied} < minimum {minimum}",
            supplied=supplied,
            expected=minimum,
        )


def check_collateral(account: Account, unit_per_underlying: int, rate_scale: int) -> None:
    """
    Require ``debt * unit_per_underlying <= amount * rate_scale``.

    Raises:
        UndercollateralizedError: If the account's debt exceeds its amount
    """
    if account.debt * unit_per_underlying > account.amount * rate_scale:
        raise UndercollateralizedError(
            f"Debt {account.debt} is not covered by amount {account.amount} "
            f"at rate {unit_per_underlying}/{rate_scale}"
        )
