"""ModbusSession: connection state machine, polling and ad-hoc requests for one device link."""

import functools
import logging
import threading
from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from .aliases import AliasStore
from .codec import capability, coerce_write_value, encode_string
from .config import SessionConfig
from .errors import (
    ConnectionLost,
    ModbusTesterError,
    NoPriorConnection,
    NotConnected,
    TransportOpenFailure,
    UnsupportedOperation,
    ValidationError,
)
from .events import AliasUpdated, ConnectionStatus, DataSample, EventBus, Subscriber, WriteResult
from .scheduler import PollingScheduler
from .serializer import RequestSerializer
from .timers import ThreadTimer, Timer
from .transport import DEFAULT_RETRIES, DEFAULT_TIMEOUT, Transport, TransportFactory, create_transport
from .types import (
    MAX_ADDRESS,
    MAX_WRITE_REGISTERS,
    ConnectionConfig,
    ConnectionState,
    ConnectionType,
    EthernetConfig,
    PollState,
    QueryConfig,
    RegisterType,
    Sample,
    SerialConfig,
    check_int,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModbusSession:
    """
    Owns the single Modbus link and everything that depends on it.

    State-changing commands (connect, disconnect, reconnect, set_query_config,
    set_interval, start/stop polling) are serialized by one re-entrant lock.
    Device transactions, whether scheduled polls or ad-hoc reads and writes,
    go through a RequestSerializer and run one at a time in submission order.
    Device operations return a Future and also publish an event to subscribers.

    Do not block on a returned Future from inside a subscriber: subscribers for
    transaction outcomes run on the serializer's worker thread.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        timer: Timer | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
    ) -> None:
        config = config if config is not None else SessionConfig()
        self._lock = threading.RLock()
        # Held for the duration of each exchange and while swapping/closing the transport
        self._io_lock = threading.Lock()
        self._transport_factory = transport_factory or functools.partial(
            create_transport, timeout=timeout, retries=retries
        )
        self._serial = config.serial
        self._ethernet = config.ethernet
        self._query = config.query
        self._aliases = AliasStore(config.aliases)
        self._last_connection_type = config.connection_type
        self._connection_type: ConnectionType | None = None
        self._state = ConnectionState.DISCONNECTED
        self._fault: str | None = None
        self._transport: Transport | None = None
        self._sample: Sample | None = None
        self._events = EventBus()
        self._serializer = RequestSerializer(self._is_connected)
        self._scheduler = PollingScheduler(self._poll_tick, timer or ThreadTimer(), config.interval)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def fault(self) -> str | None:
        """Reason for the last failed connect or lost connection; cleared on a successful connect."""
        return self._fault

    @property
    def is_connected(self) -> bool:
        return self._is_connected()

    @property
    def connection_type(self) -> ConnectionType | None:
        return self._connection_type

    @property
    def query(self) -> QueryConfig:
        return self._query

    @property
    def poll_state(self) -> PollState:
        return PollState(active=self._scheduler.active, interval=self._scheduler.interval)

    @property
    def sample(self) -> Sample | None:
        """Last successful read, or None after a connect or a window change."""
        return self._sample

    @property
    def aliases(self) -> AliasStore:
        return self._aliases

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self._events.subscribe(callback)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no transaction is queued or running."""
        return self._serializer.join(timeout)

    def _is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, connection_type: ConnectionType | str, config: ConnectionConfig | None = None) -> None:
        """
        Open a fresh transport for connection_type.

        Without config the stored settings for that type are used; a given
        config replaces them and becomes the reconnect target. An existing
        connection is fully torn down first. Raises TransportOpenFailure.
        """
        connection_type = ConnectionType.parse(connection_type)
        with self._lock:
            if config is None:
                config = self._serial if connection_type == ConnectionType.SERIAL else self._ethernet
            expected = SerialConfig if connection_type == ConnectionType.SERIAL else EthernetConfig
            if not isinstance(config, expected):
                raise ValidationError(
                    f"{connection_type.value} connection needs {expected.__name__}, got {type(config).__name__}"
                )
            if self._state is ConnectionState.CONNECTED:
                self._disconnect_locked()
            else:
                self._discard_transport()

            if isinstance(config, SerialConfig):
                self._serial = config
            else:
                self._ethernet = config
            self._last_connection_type = connection_type
            self._open_locked(connection_type, config)

    def _open_locked(self, connection_type: ConnectionType, config: ConnectionConfig) -> None:
        self._state = ConnectionState.CONNECTING
        logger.info("Attempting to connect via %s...", connection_type.value)
        try:
            transport = self._transport_factory(connection_type, config)
            transport.open()
        except Exception as e:
            if isinstance(e, TransportOpenFailure):
                failure = e
            else:
                failure = TransportOpenFailure(f"Failed to connect via {connection_type.value}: {e}", cause=e)
            self._state = ConnectionState.DISCONNECTED
            self._connection_type = None
            self._fault = str(failure)
            logger.warning("Connect via %s failed: %s", connection_type.value, failure)
            self._events.emit(ConnectionStatus(connected=False, error=str(failure)))
            if failure is e:
                raise
            raise failure from e

        with self._io_lock:
            self._transport = transport
        self._state = ConnectionState.CONNECTED
        self._connection_type = connection_type
        self._fault = None
        self._sample = None
        logger.info("Connected via %s", connection_type.value)
        self._events.emit(ConnectionStatus(connected=True, connection_type=connection_type))

    def disconnect(self) -> None:
        """Stop polling and close the transport. Safe to call when already disconnected."""
        with self._lock:
            self._disconnect_locked()

    def _disconnect_locked(self) -> None:
        was_connected = self._state is ConnectionState.CONNECTED
        # Polling must be inactive before the state leaves CONNECTED
        self._scheduler.stop()
        self._state = ConnectionState.DISCONNECTED
        self._connection_type = None
        self._discard_transport()
        if was_connected:
            logger.info("Disconnected")
            self._events.emit(ConnectionStatus(connected=False))

    def _discard_transport(self) -> None:
        # Waits for an in-flight exchange to finish before closing
        with self._io_lock:
            transport, self._transport = self._transport, None
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.warning("Error closing transport: %s", e)

    def reconnect(self) -> None:
        """Connect again with the last connection type and its stored settings."""
        with self._lock:
            if self._last_connection_type is None:
                raise NoPriorConnection()
            logger.info("Attempting to reconnect via %s...", self._last_connection_type.value)
            self.connect(self._last_connection_type)

    def close(self) -> None:
        """Orderly shutdown: disconnect, then stop the request worker."""
        self.disconnect()
        self._serializer.shutdown()

    def __enter__(self) -> "ModbusSession":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _on_connection_lost(self, transport: Transport, error: ConnectionLost) -> None:
        with self._lock:
            if self._transport is not transport:
                # Already disconnected or replaced by a newer connection
                return
            logger.warning("Connection lost: %s", error)
            self._scheduler.stop()
            self._state = ConnectionState.DISCONNECTED
            self._connection_type = None
            self._fault = str(error)
            self._discard_transport()
            self._events.emit(ConnectionStatus(connected=False, error=f"Connection lost: {error}"))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_query_config(
        self,
        *,
        slave_id: int | None = None,
        start_address: int | None = None,
        quantity: int | None = None,
        register_type: RegisterType | str | None = None,
    ) -> QueryConfig:
        """Apply a partial update to the polled window. Moving or resizing the window drops the last sample."""
        changes: dict[str, Any] = {
            key: value
            for key, value in (
                ("slave_id", slave_id),
                ("start_address", start_address),
                ("quantity", quantity),
                ("register_type", register_type),
            )
            if value is not None
        }
        if "register_type" in changes:
            changes["register_type"] = RegisterType.parse(changes["register_type"])
        with self._lock:
            old = self._query
            new = replace(old, **changes)
            if (new.start_address, new.quantity, new.register_type) != (
                old.start_address,
                old.quantity,
                old.register_type,
            ):
                self._sample = None
            self._query = new
        logger.info(
            "Query: slave %d, %s %d+%d",
            new.slave_id,
            new.register_type.value,
            new.start_address,
            new.quantity,
        )
        return new

    def set_interval(self, seconds: float) -> None:
        """Change the poll interval; an active poll restarts on the new interval."""
        with self._lock:
            self._scheduler.set_interval(seconds)
        logger.info("Poll interval set to %.3fs", seconds)

    def start_polling(self) -> None:
        with self._lock:
            if not self._is_connected():
                raise NotConnected()
            self._scheduler.start()

    def stop_polling(self) -> None:
        with self._lock:
            self._scheduler.stop()

    def snapshot(self) -> SessionConfig:
        with self._lock:
            aliases: dict[RegisterType, dict[int, str]] = {}
            for register_type in RegisterType:
                labels = self._aliases.aliases_for(register_type)
                if labels:
                    aliases[register_type] = labels
            return SessionConfig(
                serial=self._serial,
                ethernet=self._ethernet,
                query=self._query,
                interval=self._scheduler.interval,
                connection_type=self._last_connection_type,
                aliases=aliases,
            )

    def get_config(self) -> dict[str, Any]:
        """Snapshot plus live status: connected, current connectionType and whether polling is running."""
        with self._lock:
            out = self.snapshot().to_dict()
            out["connected"] = self._is_connected()
            out["connectionType"] = self._connection_type.value if self._connection_type else None
            out["reading"] = self._scheduler.active
        return out

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    def _alias_type(self, register_type: RegisterType | str | None) -> RegisterType:
        if register_type is not None:
            return RegisterType.parse(register_type)
        with self._lock:
            return self._query.register_type

    def set_alias(
        self, address: int, label: str | None, register_type: RegisterType | str | None = None
    ) -> str | None:
        """Label address under register_type (default: the current query's type). Empty label removes."""
        register_type = self._alias_type(register_type)
        stored = self._aliases.set_alias(register_type, address, label)
        self._events.emit(AliasUpdated(register_type=register_type, address=address, label=stored))
        return stored

    def remove_alias(self, address: int, register_type: RegisterType | str | None = None) -> None:
        register_type = self._alias_type(register_type)
        self._aliases.remove_alias(register_type, address)
        self._events.emit(AliasUpdated(register_type=register_type, address=address, label=None))

    def aliases_for(self, register_type: RegisterType | str | None = None) -> dict[int, str]:
        return self._aliases.aliases_for(self._alias_type(register_type))

    # ------------------------------------------------------------------
    # Device transactions
    # ------------------------------------------------------------------

    def _transact(self, link: Transport | None, action: Callable[[Transport], T]) -> T:
        with self._io_lock:
            transport = self._transport
            # Work queued for a connection that has since been replaced never runs
            if transport is None or transport is not link:
                raise NotConnected()
            try:
                return action(transport)
            except ConnectionLost as e:
                lost = e
            except MemoryError as e:
                lost = ConnectionLost(f"Resource exhaustion: {e}", cause=e)
        # Outside the io lock: the state change closes the transport
        self._on_connection_lost(transport, lost)
        raise lost

    def _submit(self, link: Transport | None, label: str, action: Callable[[Transport], T]) -> "Future[T]":
        return self._serializer.submit(functools.partial(self._transact, link, action), label)

    def _poll_tick(self) -> None:
        with self._lock:
            link, query = self._transport, self._query
        self._submit_read(query, "poll", link)

    def read_once(self) -> "Future[Sample]":
        """One read of the current window, outside the scheduler. Raises NotConnected."""
        with self._lock:
            if not self._is_connected():
                raise NotConnected()
            query, link = self._query, self._transport
        return self._submit_read(query, "read", link)

    def _submit_read(self, query: QueryConfig, label: str, link: Transport | None) -> "Future[Sample]":
        def action(transport: Transport) -> Sample:
            values = transport.read(query.register_type, query.start_address, query.quantity, query.slave_id)
            return Sample(
                timestamp=datetime.now(timezone.utc),
                register_type=query.register_type,
                start_address=query.start_address,
                values=tuple(values),
            )

        label = f"{label} {query.register_type.value}[{query.start_address}+{query.quantity}]"
        future = self._submit(link, label, action)
        future.add_done_callback(functools.partial(self._publish_sample, query))
        return future

    def _publish_sample(self, query: QueryConfig, future: "Future[Sample]") -> None:
        try:
            sample = future.result()
        except Exception as e:
            if isinstance(e, ModbusTesterError):
                logger.warning("Read error: %s", e)
            else:
                logger.exception("Unexpected read failure")
            self._events.emit(
                DataSample(
                    success=False,
                    timestamp=datetime.now(timezone.utc),
                    register_type=query.register_type,
                    start_address=query.start_address,
                    error=str(e),
                )
            )
            return
        with self._lock:
            # A result for a window that has since changed is not kept
            if self._query == query:
                self._sample = sample
        self._events.emit(
            DataSample(
                success=True,
                timestamp=sample.timestamp,
                register_type=sample.register_type,
                start_address=sample.start_address,
                values=sample.values,
            )
        )

    def write(self, address: int, value: Any) -> "Future[bool | int]":
        """
        Write one coil or holding register of the current register type.

        Type legality and value range are checked before anything is queued
        (UnsupportedOperation, OutOfRange, ValidationError); NotConnected if
        there is no link. The Future resolves to the value written.
        """
        with self._lock:
            query = self._query
        register_type = query.register_type
        coerced = coerce_write_value(register_type, value)
        address = check_int("address", address, 0, MAX_ADDRESS)
        with self._lock:
            if not self._is_connected():
                raise NotConnected()
            link = self._transport

        def action(transport: Transport) -> bool | int:
            if register_type == RegisterType.COIL:
                transport.write_coil(address, bool(coerced), query.slave_id)
            else:
                transport.write_register(address, int(coerced), query.slave_id)
            return coerced

        future = self._submit(link, f"write {register_type.value}[{address}]", action)
        future.add_done_callback(functools.partial(self._publish_write, address, coerced, None))
        return future

    def write_string(self, start_address: int, text: str | None, max_length: int) -> "Future[list[int]]":
        """
        Pack text (plus null terminator) into holding registers from start_address.

        One register goes out as a single-register write, more as one
        multi-register write. The Future resolves to the registers written.
        """
        with self._lock:
            query = self._query
        if not capability(query.register_type).supports_strings:
            raise UnsupportedOperation(
                query.register_type.value,
                "String write operations are only supported for holding registers",
            )
        registers = encode_string(text, max_length)
        start_address = check_int("start address", start_address, 0, MAX_ADDRESS)
        if len(registers) > MAX_WRITE_REGISTERS:
            raise ValidationError(f"String needs {len(registers)} registers, at most {MAX_WRITE_REGISTERS} per write")
        if start_address + len(registers) > MAX_ADDRESS + 1:
            raise ValidationError(f"String block at {start_address} runs past address {MAX_ADDRESS}")
        with self._lock:
            if not self._is_connected():
                raise NotConnected()
            link = self._transport

        def action(transport: Transport) -> list[int]:
            if len(registers) == 1:
                transport.write_register(start_address, registers[0], query.slave_id)
            else:
                transport.write_registers(start_address, registers, query.slave_id)
            return registers

        future = self._submit(link, f"write string [{start_address}+{len(registers)}]", action)
        future.add_done_callback(functools.partial(self._publish_write, start_address, None, text))
        return future

    def _publish_write(
        self,
        address: int,
        value: bool | int | None,
        text: str | None,
        future: "Future[Any]",
    ) -> None:
        try:
            result = future.result()
        except Exception as e:
            if isinstance(e, ModbusTesterError):
                logger.warning("Write error at %d: %s", address, e)
            else:
                logger.exception("Unexpected write failure at %d", address)
            self._events.emit(WriteResult(success=False, address=address, value=value, text=text, error=str(e)))
            return
        registers_written = len(result) if text is not None else 0
        logger.info("Wrote %s at %d", text if text is not None else value, address)
        self._events.emit(
            WriteResult(
                success=True,
                address=address,
                value=value,
                text=text,
                registers_written=registers_written,
            )
        )
