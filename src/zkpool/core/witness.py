"""Typed circuit witnesses and the public arguments the contract checks."""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from zkpool.core.account import Account
from zkpool.core.merkle_tree import MerklePath
from zkpool.core.operations import CircuitFamily, OperationTag, ZERO_ADDRESS
from zkpool.utils.encoding import bytes_to_hex, hex_to_bytes, int_to_bytes, to_fixed_hex
from zkpool.utils.hash import FIELD_SIZE, sha256


@dataclass(frozen=True)
class ExtData:
    """Operation data the circuit binds only through its hash."""

    recipient: str = ZERO_ADDRESS
    relayer: str = ZERO_ADDRESS
    fee: int = 0
    encrypted_account: bytes = b""

    def hash(self) -> int:
        """SHA-256 over recipient || relayer || fee || encrypted_account, reduced to the field."""
        data = (
            hex_to_bytes(self.recipient)
            + hex_to_bytes(self.relayer)
            + int_to_bytes(self.fee, 32)
            + self.encrypted_account
        )
        return int.from_bytes(sha256(data), 'big') % FIELD_SIZE

    def to_dict(self) -> dict:
        return {
            "recipient": self.recipient,
            "relayer": self.relayer,
            "fee": to_fixed_hex(self.fee),
            "encryptedAccount": bytes_to_hex(self.encrypted_account),
        }


@dataclass(frozen=True)
class AccountArgs:
    """Root transition and nullifier/commitment pair of one operation."""

    input_root: int
    input_nullifier_hash: int
    output_root: int
    output_path_index: int
    output_commitment: int

    def to_dict(self) -> dict:
        return {
            "inputRoot": to_fixed_hex(self.input_root),
            "inputNullifierHash": to_fixed_hex(self.input_nullifier_hash),
            "outputRoot": to_fixed_hex(self.output_root),
            "outputPathIndices": to_fixed_hex(self.output_path_index),
            "outputCommitment": to_fixed_hex(self.output_commitment),
        }


@dataclass(frozen=True)
class PublicArgs:
    """Everything submitted on-chain alongside the proof."""

    operation: OperationTag
    amount: int
    debt: int
    unit_per_underlying: int
    ext_data_hash: int
    ext_data: ExtData
    account: AccountArgs

    def public_inputs(self) -> Dict[str, int]:
        """Public signals as the verifier sees them."""
        return {
            "amount": self.amount,
            "debt": self.debt,
            "unitPerUnderlying": self.unit_per_underlying,
            "extDataHash": self.ext_data_hash,
            "operation": int(self.operation),
            "inputRoot": self.account.input_root,
            "inputNullifierHash": self.account.input_nullifier_hash,
            "outputRoot": self.account.output_root,
            "outputPathIndices": self.account.output_path_index,
            "outputCommitment": self.account.output_commitment,
        }

    def to_dict(self) -> dict:
        return {
            "operation": int(self.operation),
            "amount": to_fixed_hex(self.amount),
            "debt": to_fixed_hex(self.debt),
            "unitPerUnderlying": to_fixed_hex(self.unit_per_underlying),
            "extDataHash": to_fixed_hex(self.ext_data_hash),
            "extData": self.ext_data.to_dict(),
            "account": self.account.to_dict(),
        }


@dataclass(frozen=True)
class OperationWitness:
    """Full input of a Deposit- or Withdraw-family proof."""

    family: CircuitFamily
    args: PublicArgs
    input_account: Account
    output_account: Account
    input_path: MerklePath
    output_path: MerklePath

    def to_circuit_inputs(self) -> Dict[str, object]:
        """Flat signal map handed to the proving backend."""
        inputs: Dict[str, object] = dict(self.args.public_inputs())
        inputs.update({
            "inputAmount": self.input_account.amount,
            "inputDebt": self.input_account.debt,
            "inputSecret": self.input_account.secret,
            "inputNullifier": self.input_account.nullifier,
            "inputPathElements": list(self.input_path.path_elements),
            "inputPathIndices": self.input_path.path_indices,
            "outputAmount": self.output_account.amount,
            "outputDebt": self.output_account.debt,
            "outputSecret": self.output_account.secret,
            "outputNullifier": self.output_account.nullifier,
            "outputPathElements": list(self.output_path.path_elements),
        })
        return inputs


@dataclass(frozen=True)
class TreeUpdateArgs:
    """Public side of a tree-update proof: old root to new root over pending leaves."""

    old_root: int
    new_root: int
    start_index: int
    leaves: Tuple[int, ...]

    def public_inputs(self) -> Dict[str, object]:
        return {
            "oldRoot": self.old_root,
            "newRoot": self.new_root,
            "startIndex": self.start_index,
            "leaves": list(self.leaves),
        }

    def to_dict(self) -> dict:
        return {
            "oldRoot": to_fixed_hex(self.old_root),
            "newRoot": to_fixed_hex(self.new_root),
            "startIndex": to_fixed_hex(self.start_index),
            "leaves": [to_fixed_hex(leaf) for leaf in self.leaves],
        }


@dataclass(frozen=True)
class TreeUpdateWitness:
    """Tree-update proof input: the insertion path of every pending leaf, in order."""

    args: TreeUpdateArgs
    path_elements: Tuple[Tuple[int, ...], ...]

    @property
    def old_root(self) -> int:
        return self.args.old_root

    @property
    def new_root(self) -> int:
        return self.args.new_root

    def to_circuit_inputs(self) -> Dict[str, object]:
        inputs: Dict[str, object] = dict(self.args.public_inputs())
        inputs["pathElements"] = [list(path) for path in self.path_elements]
        return inputs


@dataclass(frozen=True)
class TreeUpdateResult:
    proof: bytes
    args: TreeUpdateArgs


@dataclass(frozen=True)
class OperationResult:
    """Proof, public arguments and the new note of one operation."""

    proof: bytes
    args: PublicArgs
    account: Account
    tree_update: Optional[TreeUpdateResult] = None

    def to_dict(self) -> dict:
        return {
            "proof": bytes_to_hex(self.proof),
            "args": self.args.to_dict(),
            "treeUpdate": (
                {
                    "proof": bytes_to_hex(self.tree_update.proof),
                    "args": self.tree_update.args.to_dict(),
                }
                if self.tree_update
                else None
            ),
        }
