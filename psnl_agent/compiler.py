"""
Schedule compiler.

Walks servers -> nodes -> guests -> schedule times -> interfaces and registers
one trigger per (guest, time, interface). Traversal order is fixed (config
order, times ascending) so registration logs are reproducible.
"""
import logging
from datetime import datetime
from typing import Dict, List, Mapping

from psnl_agent.action import RateAction
from psnl_agent.config import AppConfig, GuestConfig
from psnl_agent.interface import Rate
from psnl_agent.scheduler import TimeOfDay, Trigger, TriggerRegistry

logger = logging.getLogger(__name__)


def compile_schedules(config: AppConfig, clients: Mapping[str, object], registry: TriggerRegistry) -> List[Trigger]:
    """Register every scheduled rate change.

    Args:
        config: Loaded configuration.
        clients: One API client per server URL.
        registry: Registry that receives the triggers.

    Returns:
        The registered triggers, in traversal order.
    """
    zone = config.zone
    seen = set()
    triggers: List[Trigger] = []

    for server in config.servers:
        client = clients[server.url]
        logger.info(f"Setting up schedules for server: {server.url}")
        for node in server.nodes:
            for guest in node.guests:
                for entry in guest.schedule:
                    for iface, rate in entry.rates.items():
                        key = (server.url, guest.node, guest.type, guest.id, entry.time, iface)
                        if key in seen:
                            logger.warning("Duplicate schedule %s %s %s ignored", entry.time, guest.path, iface)
                            continue
                        seen.add(key)

                        action = RateAction(client, guest.node, guest.type, guest.id, iface, rate)
                        trigger = registry.register_action(entry.time, zone, action, label=action.target)
                        triggers.append(trigger)
                        logger.info(f"Scheduled {entry.time}: {action.target}")

    return triggers


def rates_in_effect(guest: GuestConfig, now_local: datetime) -> Dict[str, Rate]:
    """Rate each interface should have right now according to the schedule.

    For each interface the latest entry at or before the current time of day
    wins. If no entry is earlier today, the last entry of the day is still in
    effect from yesterday.
    """
    now_tod = TimeOfDay(now_local.hour, now_local.minute)
    rates: Dict[str, Rate] = {}
    carried: Dict[str, Rate] = {}

    # schedule is sorted by time
    for entry in guest.schedule:
        for iface, rate in entry.rates.items():
            carried[iface] = rate
            if entry.time <= now_tod:
                rates[iface] = rate

    for iface, rate in carried.items():
        rates.setdefault(iface, rate)
    return rates
