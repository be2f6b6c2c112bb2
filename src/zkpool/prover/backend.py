"""Proving backend boundary and the worker pool that runs it.

Groth16 proving is CPU-heavy and can take seconds to minutes, so it never runs
on the caller's thread. The backend itself (snarkjs, rapidsnark, arkworks
bindings, ...) is supplied by the integrator; this module only loads its
artifacts, schedules calls and turns failures into ``ProverError``.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from zkpool.core.operations import CircuitFamily
from zkpool.exceptions import ProofCancelledError, ProverError, ProverTimeoutError

logger = logging.getLogger(__name__)

# How often a waiting caller checks its cancel event
POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class CircuitArtifacts:
    """Compiled circuit and proving key of one circuit family."""

    wasm: Path
    zkey: Path

    def exists(self) -> bool:
        return self.wasm.is_file() and self.zkey.is_file()


class ProvingBackend(Protocol):
    """External Groth16 prover."""

    def prove(
        self, family: CircuitFamily, artifacts: Optional[CircuitArtifacts], inputs: Dict[str, Any]
    ) -> bytes:
        """Return a serialized proof, or raise on an unsatisfiable witness."""
        ...


@dataclass(frozen=True)
class ProvingKeys:
    """Artifacts for the three circuits, loaded once at construction."""

    deposit: CircuitArtifacts
    withdraw: CircuitArtifacts
    tree_update: CircuitArtifacts

    def for_family(self, family: CircuitFamily) -> CircuitArtifacts:
        if family is CircuitFamily.DEPOSIT:
            return self.deposit
        if family is CircuitFamily.WITHDRAW:
            return self.withdraw
        return self.tree_update

    @classmethod
    def load(cls, directory: Union[str, Path], suffix: str = "") -> "ProvingKeys":
        """
        Locate ``<Family><suffix>.wasm`` and ``<Family><suffix>_circuit_final.zkey``.

        ``suffix`` selects a circuit size variant (e.g. ``"Mini"`` for the
        small test circuits).

        Raises:
            ProverError: If any artifact file is missing
        """
        directory = Path(directory)
        found = {}
        for family in CircuitFamily:
            name = f"{family.value}{suffix}"
            artifacts = CircuitArtifacts(
                wasm=directory / f"{name}.wasm",
                zkey=directory / f"{name}_circuit_final.zkey",
            )
            if not artifacts.exists():
                raise ProverError(f"Missing proving artifacts for {name} in {directory}")
            found[family] = artifacts

        logger.info("Loaded proving keys from %s", directory)
        return cls(
            deposit=found[CircuitFamily.DEPOSIT],
            withdraw=found[CircuitFamily.WITHDRAW],
            tree_update=found[CircuitFamily.TREE_UPDATE],
        )


class ProverPool:
    """
    Runs backend proofs on dedicated worker threads.

    A timed-out or cancelled proof is abandoned: its result is discarded when
    it eventually finishes and nothing is cached. If it was already running,
    its executor is retired and later proofs go to a fresh one, so a hung
    backend call never holds up the next operation.
    """

    def __init__(
        self,
        backend: ProvingBackend,
        keys: Optional[ProvingKeys] = None,
        max_workers: int = 1,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.backend = backend
        self.keys = keys
        self.max_workers = max_workers
        self._executor_lock = threading.Lock()
        self._executor = self._new_executor()
        self._retired: List[ThreadPoolExecutor] = []

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="zkpool-prover")

    def _run(self, family: CircuitFamily, inputs: Dict[str, Any]) -> bytes:
        artifacts = self.keys.for_family(family) if self.keys else None
        return self.backend.prove(family, artifacts, inputs)

    def prove(
        self,
        family: CircuitFamily,
        inputs: Dict[str, Any],
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Generate a proof on a worker and wait for it.

        Args:
            family: Circuit to prove
            inputs: Flat signal map from the witness
            timeout: Seconds to wait (None waits forever)
            cancel_event: Set by the caller to abandon the proof

        Raises:
            ProverTimeoutError: If the proof did not finish in time
            ProofCancelledError: If cancel_event was set first
            ProverError: If the backend failed or returned no proof
        """
        started = time.monotonic()
        with self._executor_lock:
            executor = self._executor
            future: Future = executor.submit(self._run, family, inputs)

        deadline = None if timeout is None else started + timeout
        while True:
            if cancel_event is not None and cancel_event.is_set():
                self._abandon(future, executor)
                raise ProofCancelledError(f"{family.value} proof cancelled")

            wait_for = POLL_INTERVAL if cancel_event is not None else None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abandon(future, executor)
                    raise ProverTimeoutError(
                        f"{family.value} proof exceeded timeout of {timeout} seconds"
                    )
                wait_for = remaining if wait_for is None else min(wait_for, remaining)

            done, _ = wait([future], timeout=wait_for, return_when=FIRST_COMPLETED)
            if done:
                break

        try:
            proof = future.result()
        except Exception as e:
            raise ProverError(str(e)) from e

        if not isinstance(proof, (bytes, bytearray)) or not proof:
            raise ProverError(f"{family.value} backend returned an empty proof")

        logger.debug("%s proof generated in %.3fs", family.value, time.monotonic() - started)
        return bytes(proof)

    def _abandon(self, future: Future, executor: ThreadPoolExecutor) -> None:
        """Drop a proof; retire its executor if the proof is still occupying a worker."""
        if future.cancel():
            return
        with self._executor_lock:
            if self._executor is not executor:
                return
            logger.warning("Abandoned proof still running; replacing prover workers")
            self._retired.append(executor)
            self._executor = self._new_executor()
        executor.shutdown(wait=False)

    def shutdown(self, wait_for_workers: bool = True) -> None:
        """Stop the pool. Workers stuck on abandoned proofs are never waited for."""
        with self._executor_lock:
            executor = self._executor
            retired, self._retired = self._retired, []
        for stale in retired:
            stale.shutdown(wait=False, cancel_futures=True)
        executor.shutdown(wait=wait_for_workers, cancel_futures=True)

    def __enter__(self) -> "ProverPool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
