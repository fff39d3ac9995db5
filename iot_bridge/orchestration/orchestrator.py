from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import logging

import httpx

from iot_bridge.models.messages import InboundMessage, RetryPolicy
from iot_bridge.protocols.mqtt_client import BrokerConfig, BrokerConnectionManager
from iot_bridge.protocols.topic_router import DashboardTopic, TopicRouter, parse_dashboard_topic
from iot_bridge.services.dead_letter import DeadLetterBuffer
from iot_bridge.services.delivery_pipeline import DeliveryPipeline
from iot_bridge.services.device_publisher import DevicePublisher
from iot_bridge.services.device_registry import DeviceRegistry, InMemoryDeviceRegistry
from iot_bridge.services.ingestion_client import IngestionClient, mask_secret
from iot_bridge.services.retry_engine import RetryEngine
from .commands import ConnectBrokerCommand, LoadDeviceRegistryCommand, StartupCommand
from .state_machine import BridgeState, BridgeStateMachine


class BridgeOrchestrator:
    """Composition root: wires broker link, router, delivery pipeline and publisher"""

    def __init__(self, settings, *,
                 registry: Optional[DeviceRegistry] = None,
                 client_factory: Optional[Callable[[], Any]] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 sleep: Callable = asyncio.sleep):
        self.settings = settings
        self.registry = registry
        self.state_machine = BridgeStateMachine()
        self.logger = logging.getLogger(self.__class__.__name__)

        self._client_factory = client_factory
        self._http_client = http_client
        self._sleep = sleep
        self.executed_commands: List[StartupCommand] = []

        self.connection: Optional[BrokerConnectionManager] = None
        self.router: Optional[TopicRouter] = None
        self.ingestion: Optional[IngestionClient] = None
        self.pipeline: Optional[DeliveryPipeline] = None
        self.dead_letters: Optional[DeadLetterBuffer] = None
        self.publisher: Optional[DevicePublisher] = None
        self.heartbeats = 0
        self._liveness_tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> BridgeState:
        return self.state_machine.current_state

    async def startup(self) -> bool:
        """Wire every component, then connect; False (state ERROR) when the broker link fails"""
        try:
            self._build()
        except Exception as e:
            self.logger.error(f"Bridge configuration invalid: {e}")
            self.state_machine.transition_to(BridgeState.ERROR)
            return False

        self.state_machine.transition_to(BridgeState.CONNECTING)
        context: Dict[str, Any] = {"registry": self.registry, "connection": self.connection}

        try:
            for command_class in (LoadDeviceRegistryCommand, ConnectBrokerCommand):
                command = command_class(context)
                result = await command.execute()
                if not result.get("success", False):
                    await self._rollback_commands()
                    self.state_machine.transition_to(BridgeState.ERROR)
                    return False
                context.update(result)
                self.executed_commands.append(command)
        except Exception as e:
            self.logger.error(f"Bridge startup failed: {e}")
            await self._rollback_commands()
            self.state_machine.transition_to(BridgeState.ERROR)
            return False

        self.state_machine.transition_to(BridgeState.OPERATIONAL)
        self.logger.info("Bridge operational, forwarding %s to %s",
                         self.connection.config.topic, self.ingestion.url)
        return True

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop receiving first, then drain deliveries, then release the HTTP client"""
        if self.state == BridgeState.SHUTDOWN:
            return
        timeout = self.settings.SHUTDOWN_TIMEOUT if timeout is None else timeout
        self.state_machine.transition_to(BridgeState.SHUTDOWN)

        if self.connection is not None:
            await self.connection.disconnect()
        if self._liveness_tasks:
            await asyncio.gather(*self._liveness_tasks, return_exceptions=True)
        if self.pipeline is not None:
            await self.pipeline.shutdown(timeout)
        if self.ingestion is not None:
            await self.ingestion.aclose()
        self.executed_commands.clear()

        if self.dead_letters is not None and len(self.dead_letters):
            self.logger.warning(f"{len(self.dead_letters)} failed deliveries left in the dead-letter buffer")
        self.logger.info("Bridge shutdown completed")

    def handle_message(self, message: InboundMessage) -> None:
        """Receive path: decode and hand off; never waits on delivery"""
        dashboard = parse_dashboard_topic(message.topic)
        if dashboard is not None:
            self._handle_liveness(dashboard)
            return
        reading = self.router.decode(message)
        if reading is None:
            self.pipeline.report_discard(message, reason="undecodable message")
            return
        self.pipeline.deliver(reading)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.name,
            "heartbeats": self.heartbeats,
            "broker": self.connection.get_stats() if self.connection else None,
            "router": self.router.stats() if self.router else None,
            "pipeline": self.pipeline.stats() if self.pipeline else None,
            "dead_letters": len(self.dead_letters) if self.dead_letters is not None else 0,
        }

    def _handle_liveness(self, topic: DashboardTopic) -> None:
        """Heartbeats refresh last_seen; status messages are accepted and ignored"""
        if topic.kind != "heartbeat":
            self.logger.debug("ignoring %s message from %s", topic.kind, topic.device_topic)
            return
        self.heartbeats += 1
        task = asyncio.create_task(self._record_heartbeat(topic))
        self._liveness_tasks.add(task)
        task.add_done_callback(self._liveness_tasks.discard)

    async def _record_heartbeat(self, topic: DashboardTopic) -> None:
        try:
            updated = await self.registry.touch_by_topic(topic.user_id, topic.device_topic,
                                                         datetime.now(timezone.utc))
        except Exception as e:
            self.logger.error(f"Error recording heartbeat for {topic.device_topic}: {e}")
            return
        if not updated:
            self.logger.debug("heartbeat from unregistered topic %s", topic.device_topic)

    def _build(self) -> None:
        s = self.settings
        if self.registry is None:
            self.registry = (InMemoryDeviceRegistry.from_json_file(s.DEVICE_REGISTRY_FILE)
                             if s.DEVICE_REGISTRY_FILE else InMemoryDeviceRegistry())

        policy = RetryPolicy.from_settings(s)
        self.ingestion = IngestionClient(s.API_BASE_URL, s.INTERNAL_API_KEY,
                                         timeout=s.HTTP_TIMEOUT, http_client=self._http_client)
        engine = RetryEngine(self.ingestion, policy, sleep=self._sleep)

        self.dead_letters = DeadLetterBuffer(capacity=s.DEAD_LETTER_CAPACITY)
        self.pipeline = DeliveryPipeline(engine)
        self.pipeline.events.subscribe(self.dead_letters)

        self.router = TopicRouter()
        self.connection = BrokerConnectionManager(BrokerConfig.from_settings(s),
                                                  on_message=self.handle_message,
                                                  client_factory=self._client_factory)
        self.publisher = DevicePublisher(self.connection, self.registry)

        self.logger.info("Bridge configured: broker=%s api=%s key=%s retries=%d",
                         s.MQTT_BROKER_URL, self.ingestion.url,
                         mask_secret(s.INTERNAL_API_KEY), policy.max_retries)

    async def _rollback_commands(self):
        """Rollback executed commands in reverse order"""
        for command in reversed(self.executed_commands):
            try:
                await command.rollback()
            except Exception as e:
                self.logger.error(f"Error during rollback: {e}")
        self.executed_commands.clear()
        if self.ingestion is not None:
            await self.ingestion.aclose()
