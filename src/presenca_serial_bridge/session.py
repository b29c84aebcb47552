"""In-process bridge state: the bound device identity and bus status.

Both values are owned by a single :class:`BridgeState` instance that the
driver passes to the decode path and the delivery path.  All mutations
happen on the driver's event loop, so no locking is needed.  The state is
**not** persisted: on restart the identity is unset until the reader
announces itself again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from presenca_serial_bridge.models import ConnectionStatus

logger = logging.getLogger(__name__)


class SessionState:
    """The currently bound device identity (last announcement wins)."""

    def __init__(self) -> None:
        self._identity: Optional[str] = None

    def bind(self, identity: str) -> None:
        """Replace the bound identity unconditionally."""
        previous = self._identity
        self._identity = identity
        if previous is not None and previous != identity:
            logger.info("Device identity changed: %s → %s", previous, identity)

    def current(self) -> Optional[str]:
        """Return the bound identity, or ``None`` before the first :meth:`bind`."""
        return self._identity

    @property
    def is_bound(self) -> bool:
        return self._identity is not None


@dataclass
class BridgeState:
    """Mutable state shared by the decode and delivery paths."""

    session: SessionState = field(default_factory=SessionState)
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED

    def set_status(self, status: ConnectionStatus) -> bool:
        """Record a bus status change.  Returns True when the status changed."""
        if status is self.status:
            return False
        old = self.status
        self.status = status
        logger.info("Bus status: %s → %s", old.value, status.value)
        return True
