"""
Mutation Guard.

Serialises mutating vault operations and gives each one transaction-like
semantics over the injected VaultState:
- Begin: snapshot the state before the first change
- Checkpoint: move the rollback point past an external effect that happened
- Commit: check invariants, keep the changes
- Rollback: restore the last rollback point on any failure
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Callable, Optional, Tuple

from yield_vault.core import (
    InvariantViolationError,
    ReentrantCallError,
    get_logger,
)

from ..models.state import VaultState

logger = get_logger(__name__)

# Guards held by the current task, by id; inherited by tasks spawned inside
_held_guards: ContextVar[Tuple[int, ...]] = ContextVar("vault_held_guards", default=())


class Transaction:
    """
    Rollback bookkeeping for one mutating operation.

    Example:
        >>> async with guard.transaction("deposit") as tx:
        ...     state.idle_assets += amount
        ...     tx.checkpoint()
    """

    def __init__(self, state: VaultState, operation: str):
        self._state = state
        self.operation = operation
        self._snapshot = state.snapshot()
        self.checkpoints = 0

    def checkpoint(self) -> None:
        """
        Make the current state the rollback point.

        Called right after an adapter returned funds: those funds exist in
        the vault now, so a later failure must not erase their accounting.
        """
        problems = self._state.invariant_violations()
        if problems:
            raise InvariantViolationError(
                f"{self.operation}: inconsistent state at checkpoint",
                details={"violations": problems},
            )
        self._snapshot = self._state.snapshot()
        self.checkpoints += 1

    def rollback(self) -> None:
        self._state.restore(self._snapshot)

    def verify(self) -> None:
        problems = self._state.invariant_violations()
        if problems:
            raise InvariantViolationError(
                f"{self.operation} left the vault inconsistent",
                details={"violations": problems},
            )


class MutationGuard:
    """
    Single-writer lock with reentrancy detection.

    ``asyncio.Lock`` orders concurrent tasks. A call that re-enters a mutating
    operation from inside another (for example an adapter calling back into
    the vault during ``pull``) would wait on the lock forever, so it is
    detected through a context variable and rejected with ReentrantCall.
    """

    def __init__(self, state: VaultState):
        self._state = state
        self._lock = asyncio.Lock()
        self._current: Optional[str] = None

    @property
    def current_operation(self) -> Optional[str]:
        """Name of the mutating operation in progress, if any."""
        return self._current

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, operation: str) -> AsyncIterator[None]:
        """Hold the guard for the duration of ``operation``."""
        held = _held_guards.get()
        if id(self) in held:
            raise ReentrantCallError(
                f"{operation} entered while {self._current} is in progress",
                details={"operation": operation, "in_progress": self._current},
            )

        async with self._lock:
            token = _held_guards.set(held + (id(self),))
            self._current = operation
            try:
                yield
            finally:
                self._current = None
                _held_guards.reset(token)

    @asynccontextmanager
    async def transaction(
        self,
        operation: str,
        on_commit: Optional[Callable[[], None]] = None,
    ) -> AsyncIterator[Transaction]:
        """
        Hold the guard and run ``operation`` all-or-nothing.

        Any exception restores the last rollback point and propagates.
        A clean exit that breaks an invariant is rolled back and raised as
        InvariantViolation. ``on_commit`` runs while the guard is still held,
        after a clean exit and after a rollback to a checkpoint; an error it
        raises on a clean exit rolls the operation back.
        """
        async with self.hold(operation):
            tx = Transaction(self._state, operation)
            try:
                yield tx
                tx.verify()
                if on_commit is not None:
                    on_commit()
            except BaseException:
                tx.rollback()
                if tx.checkpoints:
                    logger.warning(
                        f"{operation} failed after {tx.checkpoints} checkpoint(s); "
                        f"returned funds kept in idle balance"
                    )
                    if on_commit is not None:
                        on_commit()
                raise
