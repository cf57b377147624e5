"""SessionConfig: the persisted snapshot of link settings, query window, interval and aliases."""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from .aliases import AliasStore
from .errors import ValidationError
from .scheduler import DEFAULT_INTERVAL
from .types import ConnectionType, EthernetConfig, QueryConfig, RegisterType, SerialConfig

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    """
    Everything needed to rebuild a session: both link settings, the query
    window, poll interval (seconds), last connection type and per-type aliases.

    to_dict()/from_dict() use the JSON layout the save/load layer stores
    (camelCase keys, interval in milliseconds).
    """

    serial: SerialConfig = field(default_factory=SerialConfig)
    ethernet: EthernetConfig = field(default_factory=EthernetConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    interval: float = DEFAULT_INTERVAL
    connection_type: ConnectionType | None = None
    aliases: dict[RegisterType, dict[int, str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial": {
                "port": self.serial.port,
                "baudRate": self.serial.baud_rate,
                "dataBits": self.serial.data_bits,
                "stopBits": self.serial.stop_bits,
                "parity": self.serial.parity,
            },
            "ethernet": {"ip": self.ethernet.host, "port": self.ethernet.port},
            "modbus": {
                "slaveId": self.query.slave_id,
                "startAddress": self.query.start_address,
                "quantity": self.query.quantity,
                "registerType": self.query.register_type.value,
            },
            "interval": int(round(self.interval * 1000)),
            "connectionType": self.connection_type.value if self.connection_type else None,
            "aliases": AliasStore(self.aliases).to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionConfig":
        """
        Build from a stored snapshot. Missing sections fall back to defaults.
        A flat alias map ({"5": "Pump"}) from older snapshots is attached to the
        snapshot's register type.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Configuration snapshot must be a mapping")
        try:
            serial = _section(data, "serial")
            ethernet = _section(data, "ethernet")
            modbus = _section(data, "modbus")
            defaults_serial = SerialConfig()
            defaults_eth = EthernetConfig()
            defaults_query = QueryConfig()

            query = QueryConfig(
                slave_id=modbus.get("slaveId", defaults_query.slave_id),
                start_address=modbus.get("startAddress", defaults_query.start_address),
                quantity=modbus.get("quantity", defaults_query.quantity),
                register_type=RegisterType.parse(modbus.get("registerType", defaults_query.register_type)),
            )
            config = cls(
                serial=SerialConfig(
                    port=serial.get("port", defaults_serial.port),
                    baud_rate=serial.get("baudRate", defaults_serial.baud_rate),
                    data_bits=serial.get("dataBits", defaults_serial.data_bits),
                    stop_bits=serial.get("stopBits", defaults_serial.stop_bits),
                    parity=serial.get("parity", defaults_serial.parity),
                ),
                ethernet=EthernetConfig(
                    host=ethernet.get("ip", ethernet.get("host", defaults_eth.host)),
                    port=ethernet.get("port", defaults_eth.port),
                ),
                query=query,
                interval=_interval_seconds(data.get("interval")),
                connection_type=(
                    ConnectionType.parse(data["connectionType"]) if data.get("connectionType") else None
                ),
                aliases=_parse_aliases(data.get("aliases") or {}, query.register_type),
            )
        except (TypeError, AttributeError) as e:
            raise ValidationError(f"Malformed configuration snapshot: {e}") from e
        logger.debug("Loaded configuration snapshot (%s)", config.connection_type or "no connection type")
        return config


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"Section {key!r} must be a mapping")
    return value


def _interval_seconds(raw: Any) -> float:
    if raw is None:
        return DEFAULT_INTERVAL
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
        raise ValidationError(f"interval must be a positive number of milliseconds, got {raw!r}")
    return raw / 1000.0


def _parse_aliases(raw: Mapping[str, Any], current: RegisterType) -> dict[RegisterType, dict[int, str]]:
    if not isinstance(raw, Mapping):
        raise ValidationError("aliases must be a mapping")
    if raw and all(isinstance(v, str) for v in raw.values()):
        raw = {current.value: raw}
    store = AliasStore.from_dict(raw)
    return {rt: store.aliases_for(rt) for rt in RegisterType if store.aliases_for(rt)}
