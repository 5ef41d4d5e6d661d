"""
Capability Allow-List

Declares which host operations an agent-authenticated caller may invoke.

The allow-list is process-wide configuration: the host populates it at
start-up (llama_bot_allow("pages", "update", "show")) and freezes it once
the application is serving. Request handling only ever reads it.
"""

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)


class CapabilityAllowList:
    """
    Per-endpoint-group mapping of operation name -> agent may invoke.

    Operation names are normalised to strings so callers can pass
    enum members or other str-like values.
    """

    def __init__(self):
        self._permitted: dict[str, set[str]] = {}
        self._frozen = False

    def allow(self, endpoint_group: str, *operations: str) -> None:
        """
        Allow agents to invoke operations of an endpoint group.

        Repeated calls accumulate; duplicates are ignored.

        Raises:
            RuntimeError: If the allow-list has been frozen
        """
        if self._frozen:
            raise RuntimeError(
                "Capability allow-list is frozen; call llama_bot_allow() during start-up"
            )
        group = str(endpoint_group)
        ops = self._permitted.setdefault(group, set())
        for operation in operations:
            ops.add(str(operation))
        logger.debug(f"Allow-listed for agents: {group} -> {sorted(ops)}")

    def is_allowed(self, endpoint_group: str, operation: str) -> bool:
        """Check whether an agent may invoke an operation."""
        return str(operation) in self._permitted.get(str(endpoint_group), ())

    def permitted(self, endpoint_group: str) -> list[str]:
        """Allow-listed operations of a group, sorted."""
        return sorted(self._permitted.get(str(endpoint_group), ()))

    @property
    def allowed_routes(self) -> set[str]:
        """Every allow-listed entry as a "group#operation" string."""
        return {
            f"{group}#{operation}"
            for group, operations in self._permitted.items()
            for operation in operations
        }

    def freeze(self) -> None:
        """Make the allow-list read-only."""
        if not self._frozen:
            self._frozen = True
            logger.info(f"Capability allow-list frozen ({len(self.allowed_routes)} entries)")

    @property
    def frozen(self) -> bool:
        return self._frozen

    def clear(self) -> None:
        """Drop every entry and unfreeze (tests and re-initialisation only)."""
        self._permitted.clear()
        self._frozen = False


# Process-wide allow-list consulted by the default authenticator
default_allow_list = CapabilityAllowList()


def llama_bot_allow(endpoint_group: str, *operations: str | Iterable[str]) -> None:
    """
    Allow-list operations on the process-wide allow-list.

    Usage:
        llama_bot_allow("pages", "update", "preview")
    """
    flat: list[str] = []
    for operation in operations:
        if isinstance(operation, str):
            flat.append(operation)
        else:
            flat.extend(str(op) for op in operation)
    default_allow_list.allow(endpoint_group, *flat)
