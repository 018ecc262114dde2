"""Agent orchestrator - builds clients, compiles schedules, runs the trigger loop."""
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from psnl_agent import __version__
from psnl_agent.action import RateAction
from psnl_agent.client import ProxmoxClient
from psnl_agent.compiler import compile_schedules, rates_in_effect
from psnl_agent.config import AppConfig, ServerConfig
from psnl_agent.scheduler import Clock, Trigger, TriggerRegistry

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ServerConfig, float], ProxmoxClient]


def _default_client_factory(server: ServerConfig, timeout: float) -> ProxmoxClient:
    return ProxmoxClient.from_config(server, timeout=timeout)


class Orchestrator:
    def __init__(
        self,
        config: AppConfig,
        clock: Optional[Clock] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.config = config
        self.registry = TriggerRegistry(clock=clock)
        self._client_factory = client_factory or _default_client_factory
        self.clients: Dict[str, ProxmoxClient] = {}
        self.triggers: List[Trigger] = []

    def setup(self) -> List[Trigger]:
        """Create one client per server and register all triggers. Idempotent."""
        if self.triggers:
            return self.triggers
        for server in self.config.servers:
            self.clients[server.url] = self._client_factory(server, self.config.request_timeout)
        self.triggers = compile_schedules(self.config, self.clients, self.registry)
        logger.info("All schedules have been set up successfully (%d trigger(s))", len(self.triggers))
        return self.triggers

    async def apply_current(self) -> List[bool]:
        """Push the rates that should be in effect right now to every guest."""
        now_local = self.registry.now().astimezone(self.config.zone)

        actions = []
        for server in self.config.servers:
            client = self.clients[server.url]
            for node in server.nodes:
                for guest in node.guests:
                    for iface, rate in rates_in_effect(guest, now_local).items():
                        actions.append(RateAction(client, guest.node, guest.type, guest.id, iface, rate))

        logger.info("Applying %d rate(s) currently in effect", len(actions))
        return list(await asyncio.gather(*(action() for action in actions)))

    async def start(self) -> None:
        """Set up and run until cancelled, then release all clients."""
        logger.info(f"Starting PSNL (Proxmox Scheduler Network Limiter) v{__version__}")
        logger.info(f"Timezone: {self.config.timezone}")
        self.setup()

        try:
            if self.config.apply_on_start:
                await self.apply_current()
            loop_task = self.registry.start()
            logger.info("Agent running. Press Ctrl+C to stop.")
            await loop_task
        except asyncio.CancelledError:
            logger.info("Shutting down")
        finally:
            await self.close()

    async def close(self) -> None:
        await self.registry.stop()
        for client in self.clients.values():
            await client.aclose()
