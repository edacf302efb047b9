"""
Staleness Monitor

Watches signals that nobody has accepted and escalates them on a
per-level schedule. Escalation only raises the signal's escalation level
and notifies subscribers; the signal stays pending.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from rescuelink.models.sos import EmergencyLevel, Signal, utc_now
from .coordination_service import CoordinationService
from .signal_lifecycle import MAX_ESCALATION_LEVEL


@dataclass
class EscalationRule:
    """Defines escalation timing for one SOS level"""
    level: EmergencyLevel
    initial_timeout_minutes: int
    escalation_timeout_minutes: int
    max_escalations: int

    def next_escalation_time(self, signal: Signal) -> Optional[datetime]:
        """When the signal is next due for escalation, or None if exhausted"""
        if signal.escalation_level >= min(self.max_escalations, MAX_ESCALATION_LEVEL):
            return None
        return signal.created_at + timedelta(
            minutes=self.initial_timeout_minutes
            + signal.escalation_level * self.escalation_timeout_minutes
        )


DEFAULT_RULES = {
    EmergencyLevel.LIFE_THREATENING: EscalationRule(EmergencyLevel.LIFE_THREATENING, 2, 5, 2),
    EmergencyLevel.MEDICAL: EscalationRule(EmergencyLevel.MEDICAL, 3, 8, 2),
    EmergencyLevel.FOOD_WATER: EscalationRule(EmergencyLevel.FOOD_WATER, 5, 10, 2),
}


class StalenessMonitor:
    """Escalates pending signals that have waited too long"""

    def __init__(self, coordinator: CoordinationService, check_interval_seconds: float = 30,
                 rules: Optional[Dict[EmergencyLevel, EscalationRule]] = None):
        self.logger = logging.getLogger(__name__)
        self.coordinator = coordinator
        self.check_interval_seconds = check_interval_seconds
        self.rules = dict(rules or DEFAULT_RULES)

        # Background task control
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the escalation background task"""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._escalation_loop())
        self.logger.info(f"Staleness monitor started (every {self.check_interval_seconds}s)")

    async def stop(self):
        """Stop the background task"""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.logger.info("Staleness monitor stopped")

    def check_pending_signals(self, now: Optional[datetime] = None) -> List[str]:
        """
        Escalate every pending signal that is due

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            Ids of the signals that were escalated
        """
        now = now or utc_now()
        escalated = []

        for signal in self.coordinator.get_pending_signals():
            rule = self.rules.get(signal.level)
            if rule is None:
                continue

            due = rule.next_escalation_time(signal)
            if due is None or now < due:
                continue

            result = self.coordinator.escalate_signal(signal.id)
            if result.success and result.value:
                escalated.append(signal.id)
            elif not result.success:
                self.logger.debug(f"Escalation of {signal.id} skipped: {result.message}")

        return escalated

    async def _escalation_loop(self):
        """Background loop for signal escalation"""
        while self._running:
            try:
                escalated = await asyncio.to_thread(self.check_pending_signals)
                if escalated:
                    self.logger.info(f"Escalated {len(escalated)} unanswered signals")
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in escalation loop: {e}")
                await asyncio.sleep(self.check_interval_seconds * 2)  # Back off on error
