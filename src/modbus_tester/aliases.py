"""AliasStore: human labels keyed by (register type, address), independent of the connection."""

import logging
import threading
from typing import Any, Mapping

from .errors import ValidationError
from .types import MAX_ADDRESS, RegisterType, check_int

logger = logging.getLogger(__name__)


class AliasStore:
    """
    Per-register-type label map. A label set for coil 5 never shows up for
    holding register 5. Addresses are not checked against the polled window.
    """

    def __init__(self, entries: Mapping[RegisterType, Mapping[int, str]] | None = None) -> None:
        self._lock = threading.Lock()
        self._by_type: dict[RegisterType, dict[int, str]] = {rt: {} for rt in RegisterType}
        for register_type, labels in (entries or {}).items():
            for address, label in labels.items():
                self.set_alias(register_type, address, label)

    def set_alias(self, register_type: RegisterType | str, address: int, label: str | None) -> str | None:
        """Store the trimmed label; an empty or whitespace label removes the entry. Returns the stored label."""
        register_type = RegisterType.parse(register_type)
        address = check_int("alias address", address, 0, MAX_ADDRESS)
        cleaned = (label or "").strip()
        if not cleaned:
            self.remove_alias(register_type, address)
            return None
        with self._lock:
            self._by_type[register_type][address] = cleaned
        logger.debug("Alias %s[%d] = %r", register_type.value, address, cleaned)
        return cleaned

    def remove_alias(self, register_type: RegisterType | str, address: int) -> None:
        register_type = RegisterType.parse(register_type)
        with self._lock:
            removed = self._by_type[register_type].pop(address, None)
        if removed is not None:
            logger.debug("Alias %s[%d] removed", register_type.value, address)

    def get(self, register_type: RegisterType, address: int) -> str | None:
        with self._lock:
            return self._by_type[register_type].get(address)

    def aliases_for(self, register_type: RegisterType) -> dict[int, str]:
        with self._lock:
            return dict(self._by_type[register_type])

    def to_dict(self) -> dict[str, dict[str, str]]:
        """JSON-friendly form: {register_type: {"address": label}}; empty types omitted."""
        with self._lock:
            return {
                rt.value: {str(addr): label for addr, label in sorted(labels.items())}
                for rt, labels in self._by_type.items()
                if labels
            }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AliasStore":
        store = cls()
        for type_name, labels in data.items():
            register_type = RegisterType.parse(type_name)
            if not isinstance(labels, Mapping):
                raise ValidationError(f"Aliases for {type_name!r} must be a mapping")
            for address, label in labels.items():
                store.set_alias(register_type, _parse_address(address), label)
        return store

    def __len__(self) -> int:
        with self._lock:
            return sum(len(labels) for labels in self._by_type.values())


def _parse_address(raw: Any) -> int:
    # JSON object keys are always strings
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Alias address must be an integer, got {raw!r}") from None
