"""
Strategy Registry.

Tracks the known adapters, which one is active and each adapter's cached
health and reported value. Records live on VaultState; adapter instances
live here.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from yield_vault.core import (
    AdapterAlreadyRegisteredError,
    AdapterNotDrainedError,
    AdapterNotFoundError,
    AdapterNotHealthyError,
    EventType,
    VaultAuditLogger,
    get_audit_logger,
    get_logger,
)

from ..adapters.base import StrategyAdapter
from ..models.state import AdapterRecord, VaultState
from .access import AccessController, Permission

logger = get_logger(__name__)


class StrategyRegistry:
    """
    Registry of strategy adapters.

    At most one adapter is active at a time; none active means new capital
    stays idle in the vault.

    Example:
        >>> registry = StrategyRegistry(state, access)
        >>> registry.register("owner", AaveAdapter())
        'aave-v3'
        >>> await registry.set_active("agent", "aave-v3")
    """

    def __init__(
        self,
        state: VaultState,
        access: AccessController,
        audit_logger: Optional[VaultAuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._state = state
        self._access = access
        self._audit = audit_logger or get_audit_logger()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._adapters: Dict[str, StrategyAdapter] = {}

    @property
    def active_adapter_id(self) -> Optional[str]:
        return self._state.active_adapter_id

    def __contains__(self, adapter_id: str) -> bool:
        return adapter_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, caller: str, adapter: StrategyAdapter) -> str:
        """
        Register an adapter under its ``adapter_id``. Owner only.

        A record restored from storage is re-attached to its adapter instance
        instead of being recreated.

        Raises:
            UnauthorizedError: Caller is not the owner
            AdapterAlreadyRegisteredError: Same identity already registered
        """
        self._access.require(Permission.ADAPTER_REGISTER, caller)

        adapter_id = adapter.adapter_id
        if not adapter_id:
            raise ValueError(f"{adapter!r} has no adapter_id")
        if adapter_id in self._adapters or any(a is adapter for a in self._adapters.values()):
            raise AdapterAlreadyRegisteredError(
                f"Adapter {adapter_id} is already registered",
                adapter_id=adapter_id,
            )

        self._adapters[adapter_id] = adapter
        if adapter_id not in self._state.adapters:
            self._state.adapters[adapter_id] = AdapterRecord(
                adapter_id=adapter_id,
                label=adapter.label or adapter_id,
                registered_at=self._clock(),
            )

        self._audit.control_change(
            EventType.ADAPTER_REGISTERED, actor=caller, target=adapter_id, adapter_id=adapter_id
        )
        logger.info(f"Registered adapter {adapter_id} ({adapter.label})")
        return adapter_id

    def unregister(self, caller: str, adapter_id: str) -> None:
        """
        Remove an adapter that is inactive and holds no book value. Owner only.

        Raises:
            AdapterNotFoundError: Unknown adapter
            AdapterNotDrainedError: Adapter is active or still holds value
        """
        self._access.require(Permission.ADAPTER_REGISTER, caller)
        record = self.get_record(adapter_id)

        if record.is_active:
            raise AdapterNotDrainedError(
                f"Adapter {adapter_id} is active; deactivate it first",
                adapter_id=adapter_id,
            )
        if record.allocated > 0:
            raise AdapterNotDrainedError(
                f"Adapter {adapter_id} still holds {record.allocated}",
                adapter_id=adapter_id,
                details={"allocated": record.allocated},
            )

        self._adapters.pop(adapter_id, None)
        del self._state.adapters[adapter_id]
        self._audit.control_change(
            EventType.ADAPTER_REMOVED, actor=caller, target=adapter_id, adapter_id=adapter_id
        )
        logger.info(f"Unregistered adapter {adapter_id}")

    # =========================================================================
    # Activation
    # =========================================================================

    async def set_active(self, caller: str, adapter_id: str) -> None:
        """
        Make ``adapter_id`` the active adapter. Operator role.

        Raises:
            UnauthorizedError: Caller lacks the operator role
            AdapterNotFoundError: Unknown adapter
            AdapterNotHealthyError: Adapter reports unhealthy now
            AdapterNotDrainedError: Current active adapter still holds value
        """
        self._access.require(Permission.ADAPTER_ACTIVATE, caller)
        adapter = self.get(adapter_id)
        record = self._state.adapters[adapter_id]

        healthy = await adapter.check_health()
        record.is_healthy = healthy
        record.last_checked = self._clock()
        if not healthy:
            raise AdapterNotHealthyError(
                f"Adapter {adapter_id} is not healthy",
                adapter_id=adapter_id,
            )

        current = self._state.active_adapter_id
        if current == adapter_id:
            return
        if current is not None and self._state.adapters[current].allocated > 0:
            raise AdapterNotDrainedError(
                f"Active adapter {current} still holds "
                f"{self._state.adapters[current].allocated}; reallocate first",
                adapter_id=current,
            )

        self.activate(adapter_id)
        self._audit.control_change(
            EventType.ADAPTER_ACTIVATED, actor=caller, target=adapter_id, adapter_id=adapter_id
        )

    async def deactivate(self, caller: str) -> Optional[str]:
        """
        Deactivate the active adapter without a replacement. Operator role.

        Returns:
            The adapter id that was active, or None

        Raises:
            AdapterNotDrainedError: Active adapter still holds value
        """
        self._access.require(Permission.ADAPTER_ACTIVATE, caller)
        current = self._state.active_adapter_id
        if current is None:
            return None

        record = self._state.adapters[current]
        if record.allocated > 0:
            raise AdapterNotDrainedError(
                f"Adapter {current} still holds {record.allocated}; drain it first",
                adapter_id=current,
                details={"allocated": record.allocated},
            )

        self.deactivate_active()
        self._audit.control_change(
            EventType.ADAPTER_DEACTIVATED, actor=caller, target=current, adapter_id=current
        )
        return current

    def activate(self, adapter_id: str) -> None:
        """Flip the active flag; checks are the caller's responsibility."""
        current = self._state.active_adapter_id
        if current == adapter_id:
            return
        if current is not None:
            self._state.adapters[current].is_active = False
        self._state.adapters[adapter_id].is_active = True
        self._state.active_adapter_id = adapter_id
        logger.info(f"Active adapter: {current or 'none'} -> {adapter_id}")

    def deactivate_active(self) -> Optional[str]:
        current = self._state.active_adapter_id
        if current is None:
            return None
        self._state.adapters[current].is_active = False
        self._state.active_adapter_id = None
        logger.info(f"Adapter {current} deactivated; new capital stays idle")
        return current

    # =========================================================================
    # Lookup and refresh
    # =========================================================================

    def get(self, adapter_id: str) -> StrategyAdapter:
        """
        Raises:
            AdapterNotFoundError: Unknown adapter
        """
        adapter = self._adapters.get(adapter_id)
        if adapter is None:
            raise AdapterNotFoundError(
                f"Adapter {adapter_id} is not registered",
                adapter_id=adapter_id,
            )
        return adapter

    def get_record(self, adapter_id: str) -> AdapterRecord:
        self.get(adapter_id)
        return self._state.adapters[adapter_id]

    def get_active(self) -> Optional[StrategyAdapter]:
        active = self._state.active_adapter_id
        return self._adapters.get(active) if active is not None else None

    def list_adapters(self) -> List[AdapterRecord]:
        return [self._state.adapters[a] for a in self._adapters if a in self._state.adapters]

    def unattached_records(self) -> List[str]:
        """Restored records with no adapter instance registered yet."""
        return [a for a in self._state.adapters if a not in self._adapters]

    async def check_health(self, adapter_id: str) -> bool:
        """Probe health and cache the result; never raises for adapter errors."""
        adapter = self.get(adapter_id)
        healthy = await adapter.check_health()
        record = self._state.adapters[adapter_id]
        record.is_healthy = healthy
        record.last_checked = self._clock()
        return healthy

    async def update_cache(self, adapter_id: str) -> None:
        """
        Re-read health and reported value for one adapter.

        A failing ``reported_assets`` keeps the previous cached value and
        marks the adapter unhealthy.
        """
        adapter = self._adapters.get(adapter_id)
        record = self._state.adapters.get(adapter_id)
        if adapter is None or record is None:
            return

        record.is_healthy = await adapter.check_health()
        try:
            record.reported_assets = int(await adapter.reported_assets())
        except Exception as e:
            logger.warning(f"reported_assets failed for {adapter_id}: {e}")
            record.is_healthy = False
        record.last_checked = self._clock()

    async def refresh(self) -> List[AdapterRecord]:
        """Refresh every adapter's cached health and value."""
        for adapter_id in list(self._adapters):
            await self.update_cache(adapter_id)
        return self.list_adapters()
