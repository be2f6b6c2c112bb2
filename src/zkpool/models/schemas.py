"""Pydantic data models for the pool client."""

from pydantic import BaseModel, Field, InstanceOf
from typing import Optional

from zkpool.core.account import Account
from zkpool.core.operations import Burn, Deposit, Mint, OperationTag, Withdraw, AnyOperation
from zkpool.exceptions import ValidationError


class OperationRequest(BaseModel):
    """Caller-facing request for one pool operation."""

    input_account: InstanceOf[Account] = Field(..., description="Account being spent")
    recipient_public_key: bytes = Field(..., description="Encryption key of the output owner")
    operation_tag: OperationTag = Field(..., description="Which operation to perform")
    amount: Optional[int] = Field(None, ge=0, description="Underlying delta (deposit/withdraw)")
    debt: Optional[int] = Field(None, ge=0, description="Debt delta (mint/burn)")
    recipient: Optional[str] = Field(None, description="Payout address (withdraw/mint)")
    relayer: Optional[str] = Field(None, description="Relayer address")
    fee: int = Field(0, ge=0, description="Relayer fee")
    conversion_rate: Optional[int] = Field(None, description="Supplied unit_per_underlying")

    def to_operation(self) -> AnyOperation:
        """
        Map the request onto its operation variant.

        Raises:
            ValidationError: If fields do not fit the tag, including a request
                that sets both amount and debt
        """
        if self.amount is not None and self.debt is not None:
            raise ValidationError("A request may change amount or debt, not both", field="debt")

        tag = self.operation_tag
        if tag in (OperationTag.DEPOSIT, OperationTag.WITHDRAW):
            if self.amount is None or self.debt is not None:
                raise ValidationError(f"{tag.name} takes an amount and no debt", field="amount")
            if self.conversion_rate is not None:
                raise ValidationError(
                    f"{tag.name} does not take a conversion rate", field="conversion_rate"
                )
        else:
            if self.debt is None or self.amount is not None:
                raise ValidationError(f"{tag.name} takes a debt and no amount", field="debt")

        if tag is OperationTag.DEPOSIT or tag is OperationTag.BURN:
            if self.recipient is not None or self.relayer is not None or self.fee:
                raise ValidationError(
                    f"{tag.name} does not pay out; recipient, relayer and fee must be unset",
                    field="recipient",
                )

        if tag is OperationTag.DEPOSIT:
            return Deposit(amount=self.amount)
        if tag is OperationTag.WITHDRAW:
            return Withdraw(
                amount=self.amount, recipient=self.recipient, relayer=self.relayer, fee=self.fee
            )
        if tag is OperationTag.MINT:
            return Mint(
                debt=self.debt,
                recipient=self.recipient,
                relayer=self.relayer,
                fee=self.fee,
                unit_per_underlying=self.conversion_rate,
            )
        return Burn(debt=self.debt, unit_per_underlying=self.conversion_rate)


class AccountSummary(BaseModel):
    """Logging-safe view of an account: no secret or nullifier."""

    commitment: str = Field(..., description="Commitment (hex)")
    nullifier_hash: str = Field(..., description="Nullifier hash (hex)")
    amount: int = Field(..., ge=0)
    debt: int = Field(..., ge=0)
    leaf_index: Optional[int] = Field(None, description="Index in the account tree")

    @classmethod
    def from_account(cls, account: Account, leaf_index: Optional[int] = None) -> "AccountSummary":
        return cls(
            commitment=hex(account.commitment),
            nullifier_hash=hex(account.nullifier_hash),
            amount=account.amount,
            debt=account.debt,
            leaf_index=leaf_index,
        )


class TreeState(BaseModel):
    """Snapshot of the mirrored account tree."""
    tree_height: int = Field(..., description="Merkle tree height")
    account_count: int = Field(..., description="Number of leaves")
    local_root: str = Field(..., description="Root over every synced leaf (hex)")
    committed_root: Optional[str] = Field(None, description="Root the chain accepts (hex)")
    spent_nullifiers: int = Field(..., description="Nullifier hashes seen in events")
