"""
MQTT broker connection manager.

Owns the single broker connection of the bridge. paho-mqtt runs its network
loop in its own thread; every callback is translated into a ``TransportEvent``
and handed to the asyncio loop, where one event task drives the connection
state machine and passes messages on to the registered handler.

Transport-level reconnects use paho's fixed reconnect delay. They are
independent of the delivery retries done by the RetryEngine.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from iot_bridge.core.exceptions import ConfigurationError, ProtocolError
from iot_bridge.core.patterns.state_machine import ConnectionState, ConnectionStateMachine
from iot_bridge.models.messages import InboundMessage
from iot_bridge.protocols.topic_router import LIVENESS_TOPICS, SUBSCRIPTION_TOPIC

_PLAIN_SCHEMES = {"mqtt": 1883, "tcp": 1883}
_TLS_SCHEMES = {"mqtts": 8883, "ssl": 8883}


@dataclass
class BrokerConfig:
    """Connection parameters for the broker link."""
    url: str = "mqtt://localhost:1883"
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = field(default_factory=lambda: f"iot-bridge-{int(time.time() * 1000)}")
    keepalive: int = 60
    connect_timeout: float = 30.0
    reconnect_period: int = 5
    topic: str = SUBSCRIPTION_TOPIC
    qos: int = 1
    extra_topics: Tuple[str, ...] = ()          # subscribed once the data topic is granted

    @classmethod
    def from_settings(cls, settings) -> "BrokerConfig":
        return cls(
            url              = settings.MQTT_BROKER_URL,
            username         = settings.MQTT_USERNAME,
            password         = settings.MQTT_PASSWORD,
            keepalive        = settings.MQTT_KEEPALIVE,
            connect_timeout  = settings.MQTT_CONNECT_TIMEOUT,
            reconnect_period = settings.MQTT_RECONNECT_PERIOD,
            extra_topics     = LIVENESS_TOPICS if settings.MQTT_TRACK_HEARTBEATS else (),
        )

    def endpoint(self) -> Tuple[str, int, bool]:
        """Return (host, port, use_tls) parsed from the broker URL."""
        parsed = urlparse(self.url)
        scheme = parsed.scheme.lower()
        if scheme in _PLAIN_SCHEMES:
            default_port, use_tls = _PLAIN_SCHEMES[scheme], False
        elif scheme in _TLS_SCHEMES:
            default_port, use_tls = _TLS_SCHEMES[scheme], True
        else:
            raise ConfigurationError(f"Unsupported broker URL scheme: {self.url!r}")
        if not parsed.hostname:
            raise ConfigurationError(f"Broker URL has no host: {self.url!r}")
        return parsed.hostname, parsed.port or default_port, use_tls


class EventKind(Enum):
    CONNECTED = auto()
    CONNECT_FAILED = auto()
    DISCONNECTED = auto()
    SUBSCRIBED = auto()
    MESSAGE = auto()


@dataclass
class TransportEvent:
    kind: EventKind
    reason: str = ""
    refused: bool = False              # CONNACK came back with a failure code
    failed: bool = False               # SUBACK carried a failure code
    mid: Optional[int] = None
    message: Optional[InboundMessage] = None


class BrokerConnectionManager:
    """
    Long-lived MQTT connection with publish/subscribe primitives.

    Features:
    - Wildcard data subscription (``iot/+/data`` at QoS 1) plus optional liveness
      topics, all re-issued on reconnect
    - Fixed-interval transport reconnect handled by paho
    - Explicit state machine fed by a queue of transport events
    - Structured logging of every lifecycle change
    """

    def __init__(self, config: BrokerConfig,
                 on_message: Optional[Callable[[InboundMessage], None]] = None,
                 client_factory: Optional[Callable[[], Any]] = None):
        self.config = config
        self.log = logging.getLogger(self.__class__.__name__)
        self.state = ConnectionStateMachine(ConnectionState.DISCONNECTED)
        self.reconnect_attempts = 0
        self.on_message = on_message
        self.client: Optional[mqtt.Client] = None

        self._client_factory = client_factory or self._create_paho_client
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue] = None
        self._event_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._pending_subscribe: Optional[int] = None
        self._extra_subscribes: Dict[int, str] = {}
        self._closing = False

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #
    async def connect(self) -> None:
        """Connect, subscribe and return once the broker acknowledged the subscription."""
        if self.state.state != ConnectionState.DISCONNECTED:
            raise ProtocolError(f"connect() called while {self.state.state.name}")

        host, port, use_tls = self.config.endpoint()
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._ready = self._loop.create_future()
        self._closing = False
        self.reconnect_attempts = 0

        self._initialize_client(use_tls)
        self.state.transition(ConnectionState.CONNECTING)
        self.log.info("connecting to broker %s:%d client_id=%s tls=%s",
                      host, port, self.config.client_id, use_tls)

        self._event_task = asyncio.create_task(self._process_events())
        try:
            self.client.connect_async(host, port, keepalive=self.config.keepalive)
            self.client.loop_start()
            await asyncio.wait_for(self._ready, timeout=self.config.connect_timeout)
        except asyncio.TimeoutError:
            await self._teardown()
            raise ProtocolError(
                f"no broker acknowledgement within {self.config.connect_timeout}s"
            ) from None
        except ProtocolError:
            await self._teardown()
            raise
        except Exception as e:
            await self._teardown()
            raise ProtocolError(f"MQTT connection failed: {e}") from e

    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False):
        """Fire-and-forget publish; nothing beyond the QoS level is tracked."""
        if self.client is None:
            raise ProtocolError("MQTT client is not initialised")

        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload)
        elif not isinstance(payload, (str, bytes, bytearray)):
            payload = str(payload)

        info = self.client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc == mqtt.MQTT_ERR_NO_CONN and qos > 0:
            self.log.warning("broker offline, publish to '%s' queued until reconnect", topic)
        elif info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ProtocolError(f"Failed to publish message to topic '{topic}': {info.rc}")
        else:
            self.log.debug("published to '%s' qos=%d retain=%s", topic, qos, retain)
        return info

    async def disconnect(self) -> None:
        """Explicit shutdown: no reconnect follows."""
        if self.client is None:
            return
        self.log.info("disconnecting from broker")
        await self._teardown()
        self.log.info("disconnected from broker")

    def is_connected(self) -> bool:
        return self.state.state == ConnectionState.CONNECTED

    def get_stats(self) -> Dict[str, Any]:
        host, port, _ = self.config.endpoint()
        return {
            "broker": f"{host}:{port}",
            "client_id": self.config.client_id,
            "state": self.state.state.name,
            "reconnect_attempts": self.reconnect_attempts,
            "topic": self.config.topic,
            "extra_topics": list(self.config.extra_topics),
        }

    # ------------------------------------------------------------------ #
    #  Client setup / teardown
    # ------------------------------------------------------------------ #
    def _create_paho_client(self) -> mqtt.Client:
        return mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )

    def _initialize_client(self, use_tls: bool) -> None:
        client = self._client_factory()

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if use_tls:
            client.tls_set()
        client.reconnect_delay_set(min_delay=self.config.reconnect_period,
                                   max_delay=self.config.reconnect_period)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        client.on_log = self._on_log
        self.client = client

    async def _teardown(self) -> None:
        self._closing = True
        client = self.client
        if client is not None:
            try:
                client.disconnect()
            except Exception as e:
                self.log.warning("error sending DISCONNECT: %s", e)
            await asyncio.to_thread(client.loop_stop)

        if self._event_task is not None:
            self._event_task.cancel()
            try:
                await self._event_task
            except asyncio.CancelledError:
                pass
            self._event_task = None

        self.state.transition(ConnectionState.DISCONNECTED)

    # ------------------------------------------------------------------ #
    #  paho callbacks (network thread) -> transport events
    # ------------------------------------------------------------------ #
    def _post(self, event: TransportEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self.log.debug("event loop gone, dropping %s", event.kind.name)
            return
        try:
            loop.call_soon_threadsafe(self._events.put_nowait, event)
        except RuntimeError:
            self.log.debug("event loop closed, dropping %s", event.kind.name)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self._post(TransportEvent(EventKind.CONNECT_FAILED, reason=str(reason_code), refused=True))
        else:
            self._post(TransportEvent(EventKind.CONNECTED))

    def _on_connect_fail(self, client, userdata):
        self._post(TransportEvent(EventKind.CONNECT_FAILED, reason="broker unreachable"))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._post(TransportEvent(EventKind.DISCONNECTED, reason=str(reason_code)))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        failed = any(rc.is_failure for rc in reason_code_list)
        reason = ", ".join(str(rc) for rc in reason_code_list)
        self._post(TransportEvent(EventKind.SUBSCRIBED, mid=mid, failed=failed, reason=reason))

    def _on_message(self, client, userdata, msg):
        self._post(TransportEvent(EventKind.MESSAGE, message=InboundMessage(
            topic=msg.topic,
            payload=bytes(msg.payload),
            qos=msg.qos,
            retain=bool(msg.retain),
        )))

    def _on_log(self, client, userdata, level, buf):
        """Mirror paho's own log lines into ours."""
        level_map = {
            mqtt.MQTT_LOG_DEBUG: logging.DEBUG,
            mqtt.MQTT_LOG_INFO: logging.DEBUG,
            mqtt.MQTT_LOG_NOTICE: logging.INFO,
            mqtt.MQTT_LOG_WARNING: logging.WARNING,
            mqtt.MQTT_LOG_ERR: logging.ERROR,
        }
        self.log.log(level_map.get(level, logging.DEBUG), "paho: %s", buf)

    # ------------------------------------------------------------------ #
    #  Event loop side
    # ------------------------------------------------------------------ #
    async def _process_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self._handle_event(event)
            except Exception:
                self.log.exception("error handling transport event %s", event.kind.name)

    def _handle_event(self, event: TransportEvent) -> None:
        if event.kind is EventKind.MESSAGE:
            if self.on_message is not None:
                self.on_message(event.message)
        elif event.kind is EventKind.CONNECTED:
            self._handle_connected()
        elif event.kind is EventKind.CONNECT_FAILED:
            self._handle_connect_failed(event)
        elif event.kind is EventKind.DISCONNECTED:
            self._handle_disconnected(event)
        elif event.kind is EventKind.SUBSCRIBED:
            self._handle_subscribed(event)

    def _handle_connected(self) -> None:
        if self.state.state == ConnectionState.RECONNECTING:
            self.log.info("reconnected to broker after %d attempt(s)", self.reconnect_attempts)
        else:
            self.log.info("connected to broker")
        self.state.transition(ConnectionState.CONNECTED)
        self.reconnect_attempts = 0
        self._subscribe()

    def _handle_connect_failed(self, event: TransportEvent) -> None:
        if self.state.state == ConnectionState.CONNECTING:
            if event.refused:
                self.log.error("broker refused connection: %s", event.reason)
                self._fail_ready(ProtocolError(f"broker refused connection: {event.reason}"))
            else:
                self.log.warning("broker unreachable, retrying in %ds", self.config.reconnect_period)
            return

        self.reconnect_attempts += 1
        self.log.warning("reconnect attempt %d failed: %s (next in %ds)",
                         self.reconnect_attempts, event.reason, self.config.reconnect_period)

    def _handle_disconnected(self, event: TransportEvent) -> None:
        if self._closing:
            self.state.transition(ConnectionState.DISCONNECTED)
            return
        if self.state.state == ConnectionState.CONNECTING:
            self.log.warning("connection dropped during handshake: %s", event.reason)
            return
        if self.state.state == ConnectionState.RECONNECTING:
            return

        self.log.warning("unexpected disconnect from broker: %s", event.reason)
        self.state.transition(ConnectionState.DISCONNECTED)
        self.state.transition(ConnectionState.RECONNECTING)
        self.reconnect_attempts += 1
        self.log.info("reconnect attempt %d in %ds", self.reconnect_attempts, self.config.reconnect_period)

    def _subscribe(self) -> None:
        result, mid = self.client.subscribe(self.config.topic, qos=self.config.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self.log.error("failed to subscribe to %s: rc=%s", self.config.topic, result)
            self._fail_ready(ProtocolError(f"Failed to subscribe to '{self.config.topic}': {result}"))
            return
        self._pending_subscribe = mid

    def _subscribe_extras(self) -> None:
        self._extra_subscribes.clear()
        for topic in self.config.extra_topics:
            result, mid = self.client.subscribe(topic, qos=self.config.qos)
            if result != mqtt.MQTT_ERR_SUCCESS:
                self.log.warning("failed to subscribe to %s: rc=%s", topic, result)
                continue
            self._extra_subscribes[mid] = topic

    def _handle_subscribed(self, event: TransportEvent) -> None:
        extra = self._extra_subscribes.pop(event.mid, None)
        if extra is not None:
            if event.failed:
                self.log.warning("subscription to %s rejected: %s", extra, event.reason)
            else:
                self.log.info("subscribed to %s qos=%d", extra, self.config.qos)
            return
        if event.mid != self._pending_subscribe:
            self.log.debug("ignoring SUBACK for mid=%s", event.mid)
            return
        self._pending_subscribe = None
        if event.failed:
            self.log.error("subscription to %s rejected: %s", self.config.topic, event.reason)
            self._fail_ready(ProtocolError(f"subscription to '{self.config.topic}' rejected: {event.reason}"))
            return
        self.log.info("subscribed to %s qos=%d", self.config.topic, self.config.qos)
        self._subscribe_extras()
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)

    def _fail_ready(self, error: Exception) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)
