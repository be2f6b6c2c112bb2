"""Operation controller: turns a private account plus an operation into proofs.

Every operation consumes one account note and produces the next one. The
controller validates the request, brings the tree mirror up to date, builds
the witness for the right circuit family and runs the prover off-thread.
Nothing is mutated on failure: the tree only changes through chain sync and
the caller's account is immutable.
"""

import logging
import threading
from typing import List, Optional, Set

from zkpool.chain.interface import ChainInterface, scan_accounts
from zkpool.config import PoolSettings
from zkpool.core.account import Account
from zkpool.core.merkle_tree import MerklePath
from zkpool.core.operations import (
    AnyOperation,
    Burn,
    CircuitFamily,
    Deposit,
    Mint,
    Operation,
    Withdraw,
    check_collateral,
    check_rate,
)
from zkpool.core.tree_mirror import TreeMirror
from zkpool.core.witness import (
    AccountArgs,
    ExtData,
    OperationResult,
    OperationWitness,
    PublicArgs,
    TreeUpdateResult,
    TreeUpdateWitness,
)
from zkpool.crypto.encryption import KEY_SIZE, pack
from zkpool.models.schemas import OperationRequest, TreeState
from zkpool.prover.backend import ProverPool, ProvingBackend, ProvingKeys
from zkpool.storage.database import DatabaseManager
from zkpool.utils.hash import FieldHasher, default_hasher
from zkpool.exceptions import (
    AccountInFlightError,
    NullifierReuseError,
    TreeSyncError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class Controller:
    """
    Builds proofs for deposit, withdraw, mint and burn.

    One instance per pool. All configuration is passed in; two controllers
    in the same process never share state.
    """

    def __init__(
        self,
        chain: ChainInterface,
        backend: ProvingBackend,
        proving_keys: Optional[ProvingKeys] = None,
        settings: Optional[PoolSettings] = None,
        hasher: Optional[FieldHasher] = None,
        tree: Optional[TreeMirror] = None,
        store=None,
    ):
        """
        Args:
            chain: Contract boundary
            backend: External Groth16 prover
            proving_keys: Circuit artifacts; loaded from
                ``settings.proving_keys_dir`` when omitted and configured
            settings: Per-instance configuration
            hasher: Field hasher matching the circuits
            tree: Pre-built mirror (shares its hasher)
            store: Optional DatabaseManager for the leaf cache and owned notes;
                opened from ``settings.database_url`` when omitted and configured
        """
        self.chain = chain
        self.settings = settings or PoolSettings()
        self._owns_store = store is None and self.settings.database_url is not None
        if self._owns_store:
            store = DatabaseManager(self.settings.database_url)
            store.create_tables()
            logger.info("Opened leaf cache at %s", store.engine.url)
        self.store = store

        if tree is not None:
            self.tree = tree
            self.hasher = hasher or tree.hasher
        else:
            self.hasher = hasher or default_hasher()
            self.tree = TreeMirror(self.settings.merkle_tree_height, hasher=self.hasher, store=store)

        if proving_keys is None and self.settings.proving_keys_dir is not None:
            proving_keys = ProvingKeys.load(
                self.settings.proving_keys_dir, self.settings.circuit_suffix
            )
        self.prover = ProverPool(backend, proving_keys, max_workers=self.settings.prover_workers)

        self._in_flight: Set[int] = set()
        self._in_flight_lock = threading.Lock()

    def new_account(self) -> Account:
        """Zero account to start from (its first operation needs no membership proof)."""
        return Account.fresh(self.hasher)

    # Operations
    def deposit(self, account: Account, public_key: bytes, amount: int, **kwargs) -> OperationResult:
        return self.execute(Deposit(amount=amount), account, public_key, **kwargs)

    def withdraw(
        self,
        account: Account,
        public_key: bytes,
        amount: int,
        recipient: str,
        relayer: Optional[str] = None,
        fee: int = 0,
        **kwargs,
    ) -> OperationResult:
        operation = Withdraw(amount=amount, recipient=recipient, relayer=relayer, fee=fee)
        return self.execute(operation, account, public_key, **kwargs)

    def mint(
        self,
        account: Account,
        public_key: bytes,
        debt: int,
        recipient: str,
        relayer: Optional[str] = None,
        fee: int = 0,
        unit_per_underlying: Optional[int] = None,
        **kwargs,
    ) -> OperationResult:
        operation = Mint(
            debt=debt,
            recipient=recipient,
            relayer=relayer,
            fee=fee,
            unit_per_underlying=unit_per_underlying,
        )
        return self.execute(operation, account, public_key, **kwargs)

    def burn(
        self,
        account: Account,
        public_key: bytes,
        debt: int,
        unit_per_underlying: Optional[int] = None,
        **kwargs,
    ) -> OperationResult:
        operation = Burn(debt=debt, unit_per_underlying=unit_per_underlying)
        return self.execute(operation, account, public_key, **kwargs)

    @staticmethod
    def from_request(request: OperationRequest) -> AnyOperation:
        """Map a request onto its operation variant (ValidationError on mismatch)."""
        return request.to_operation()

    def execute_request(self, request: OperationRequest, **kwargs) -> OperationResult:
        return self.execute(
            self.from_request(request),
            request.input_account,
            request.recipient_public_key,
            **kwargs,
        )

    def execute(
        self,
        operation: AnyOperation,
        account: Account,
        public_key: bytes,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        """
        Run one operation end to end.

        Args:
            operation: Deposit, Withdraw, Mint or Burn
            account: Input note being spent
            public_key: Encryption key for the output note
            timeout: Per-proof timeout (default: settings.proving_timeout)
            cancel_event: Set to abandon a running proof

        Returns:
            OperationResult: proof, public args, output note and, when the
            chain's root lags, the tree-update proof to submit first

        Raises:
            ValidationError: Malformed request or key
            AccountInFlightError: Another operation is spending this account
            NullifierReuseError: The account was already spent
            OperationRejectedError: Negative balance, overstated rate,
                undercollateralized output or fee above delta
            TreeSyncError: Local tree cannot be reconciled with the chain
            ProverError: Proof generation failed, timed out or was cancelled
        """
        if not isinstance(operation, Operation):
            raise ValidationError(f"Unknown operation {operation!r}", field="operation")
        if not isinstance(account, Account):
            raise ValidationError("account must be an Account", field="account")
        account.validate()
        public_key = self._check_public_key(public_key)

        nullifier_hash = account.nullifier_hash
        self._reserve(nullifier_hash)
        try:
            return self._execute(operation, account, public_key, timeout, cancel_event)
        finally:
            self._release(nullifier_hash)

    def _check_public_key(self, public_key: bytes) -> bytes:
        if not isinstance(public_key, (bytes, bytearray)) or len(public_key) != KEY_SIZE:
            raise ValidationError(
                f"Encryption public key must be {KEY_SIZE} bytes", field="public_key"
            )
        return bytes(public_key)

    def _reserve(self, nullifier_hash: int) -> None:
        with self._in_flight_lock:
            if nullifier_hash in self._in_flight:
                raise AccountInFlightError(
                    f"Account {hex(nullifier_hash)[:18]}... already has an operation in flight"
                )
            self._in_flight.add(nullifier_hash)

    def _release(self, nullifier_hash: int) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(nullifier_hash)

    def _execute(
        self,
        operation: AnyOperation,
        account: Account,
        public_key: bytes,
        timeout: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> OperationResult:
        logger.info(
            "Starting %s for nullifier hash %s",
            operation.tag.name,
            hex(account.nullifier_hash)[:18],
        )

        update = self.tree.reconcile(self.chain)

        nullifier_hash = account.nullifier_hash
        if self.tree.is_spent(nullifier_hash) or self.chain.is_spent(nullifier_hash):
            raise NullifierReuseError(
                "Input account has already been spent", nullifier_hash=nullifier_hash
            )

        unit_per_underlying = self._resolve_rate(operation)

        output = account.derive_next(operation.delta_amount, operation.delta_debt)
        if operation.family is CircuitFamily.WITHDRAW:
            check_collateral(output, unit_per_underlying, self.settings.rate_scale)

        blob = pack(output.encrypt(public_key))
        ext_data = ExtData(
            recipient=operation.recipient,
            relayer=operation.relayer,
            fee=operation.fee,
            encrypted_account=blob,
        )

        update, input_path, output_path = self._paths(update, account, output)

        args = PublicArgs(
            operation=operation.tag,
            amount=operation.public_amount,
            debt=operation.public_debt,
            unit_per_underlying=unit_per_underlying,
            ext_data_hash=ext_data.hash(),
            ext_data=ext_data,
            account=AccountArgs(
                input_root=input_path.root,
                input_nullifier_hash=nullifier_hash,
                output_root=output_path.root,
                output_path_index=output_path.index,
                output_commitment=output.commitment,
            ),
        )
        witness = OperationWitness(
            family=operation.family,
            args=args,
            input_account=account,
            output_account=output,
            input_path=input_path,
            output_path=output_path,
        )

        if timeout is None:
            timeout = self.settings.proving_timeout

        tree_update = None
        if update is not None:
            update_proof = self.prover.prove(
                CircuitFamily.TREE_UPDATE, update.to_circuit_inputs(), timeout, cancel_event
            )
            tree_update = TreeUpdateResult(proof=update_proof, args=update.args)

        proof = self.prover.prove(operation.family, witness.to_circuit_inputs(), timeout, cancel_event)

        logger.info(
            "%s proof ready: output leaf %d, commitment %s",
            operation.tag.name,
            output_path.index,
            hex(output.commitment)[:18],
        )
        return OperationResult(proof=proof, args=args, account=output, tree_update=tree_update)

    def _resolve_rate(self, operation: AnyOperation) -> int:
        oracle = self.chain.unit_per_underlying()
        supplied = operation.unit_per_underlying
        if supplied is None:
            return oracle
        check_rate(supplied, oracle, self.settings.rate_tolerance_bps)
        return supplied

    def _paths(self, update: Optional[TreeUpdateWitness], account: Account, output: Account):
        """
        Input and output paths against the root the chain will accept once
        ``update`` (if any) lands. A concurrent sync may move the local root in
        between; reconcile once more in that case.
        """
        input_commitment = None if account.is_zero else account.commitment
        for _ in range(2):
            expected_root = update.new_root if update else self.chain.last_account_root()
            input_path, output_path = self.tree.operation_paths(input_commitment, output.commitment)
            if input_path.root == expected_root:
                return update, input_path, output_path
            logger.warning("Local tree advanced while building paths; reconciling again")
            update = self.tree.reconcile(self.chain)
        raise TreeSyncError("Local tree kept advancing while building the operation")

    # Chain helpers
    def submit(self, result: OperationResult):
        """Forward a result to the chain and mark its input spent in the store."""
        tree_update = None
        if result.tree_update is not None:
            tree_update = {
                "proof": result.tree_update.proof,
                "args": result.tree_update.args.to_dict(),
            }
        receipt = self.chain.submit(result.proof, result.args.to_dict(), tree_update)
        if self.store is not None:
            self.store.mark_spent(result.args.account.input_nullifier_hash)
        return receipt

    def recover_accounts(self, private_key: bytes) -> List[Account]:
        """
        Every unspent note ``private_key`` can decrypt, oldest first.

        Owned notes are recorded in the store (if any), spent ones included.
        """
        self.tree.sync(self.chain)
        unspent = []
        for event, account in scan_accounts(self.tree.events(), private_key, self.hasher):
            spent = self.tree.is_spent(account.nullifier_hash) or self.chain.is_spent(
                account.nullifier_hash
            )
            if self.store is not None:
                self.store.save_account(
                    account.commitment,
                    account.nullifier_hash,
                    event.encrypted_account,
                    leaf_index=event.index,
                )
                if spent:
                    self.store.mark_spent(account.nullifier_hash)
            if not spent:
                unspent.append(account)
        logger.info("Recovered %d unspent accounts", len(unspent))
        return unspent

    def proof_for(self, account: Account) -> MerklePath:
        """Membership path of an account's commitment in the synced tree."""
        index = self.tree.find_leaf(account.commitment)
        if index is None:
            raise ValidationError("Account commitment is not in the synced tree", field="account")
        return self.tree.proof_for(index)

    def state(self) -> TreeState:
        return self.tree.state(self.chain.last_account_root())

    def close(self) -> None:
        self.prover.shutdown()
        if self._owns_store:
            self.store.engine.dispose()

    def __enter__(self) -> "Controller":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
