"""
Assignment Ledger

Arbitrates concurrent accept attempts so a signal never has more than one
active response. Each signal gets its own lock for the duration of an
operation; the storage transaction takes the write lock up front and a
partial unique index rejects a second active response even across
processes.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Tuple

from rescuelink.core.database import DatabaseManager, IntegrityViolation
from rescuelink.models.sos import Response, Signal, SignalState
from .eligibility import EligibilityEvaluator
from .errors import AlreadyAssigned, NotEligible, NotFound, SignalAlreadyClosed
from .responder_registry import ResponderRegistry
from .response_lifecycle import ResponseLifecycle
from .signal_lifecycle import SignalLifecycle


@dataclass
class _LockEntry:
    lock: threading.RLock
    holders: int = 0


class AssignmentLedger:
    """Single active assignment per signal"""

    def __init__(self, db: DatabaseManager, signals: SignalLifecycle,
                 responses: ResponseLifecycle, responders: ResponderRegistry,
                 evaluator: EligibilityEvaluator):
        self.logger = logging.getLogger(__name__)
        self.db = db
        self.signals = signals
        self.responses = responses
        self.responders = responders
        self.evaluator = evaluator

        self._locks: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def signal_scope(self, signal_id: str):
        """
        Serialize all mutations of one signal

        The lock is re-entrant so event listeners running inside the scope
        can call back into the service for the same signal.
        """
        with self._registry_lock:
            entry = self._locks.get(signal_id)
            if entry is None:
                entry = self._locks[signal_id] = _LockEntry(threading.RLock())
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._registry_lock:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[signal_id]

    def lock_count(self) -> int:
        """Number of signals that currently have a lock entry"""
        with self._registry_lock:
            return len(self._locks)

    def try_accept(self, signal_id: str, responder_id: str) -> Tuple[Response, Signal]:
        """
        Atomically assign a responder to a signal

        Args:
            signal_id: Signal being accepted
            responder_id: Responder trying to take it

        Returns:
            Tuple of (new response, updated signal)

        Raises:
            NotFound: unknown signal or responder
            SignalAlreadyClosed: signal is resolved or a false alarm
            NotEligible: responder fails eligibility or is busy elsewhere
            AlreadyAssigned: another responder won the signal
        """
        with self.signal_scope(signal_id):
            try:
                with self.db.transaction(immediate=True) as conn:
                    signal = self.signals.get(signal_id, conn)
                    if signal is None:
                        raise NotFound(f"Signal {signal_id} not found")
                    if signal.is_terminal():
                        raise SignalAlreadyClosed(f"Signal {signal_id} is already {signal.status.value}")

                    responder = self.responders.require(responder_id, conn)

                    eligibility = self.evaluator.evaluate(responder, signal)
                    if not eligibility:
                        raise NotEligible(
                            self.evaluator.describe(eligibility.reason),
                            reason=eligibility.reason
                        )

                    if (signal.status == SignalState.RESPONDING
                            or self.responses.get_active_for_signal(signal_id, conn) is not None):
                        raise AlreadyAssigned(f"Signal {signal_id} already has a responder")

                    busy = self.responses.get_active_for_responder(responder_id, conn)
                    if busy:
                        raise NotEligible(
                            f"Responder {responder_id} is already handling signal {busy[0].signal_id}",
                            reason="active_assignment"
                        )

                    response = self.responses.open(
                        signal_id, responder_id, signal.location, responder.location, conn
                    )
                    self.signals.acknowledge(signal, responder_id, response.id, responder.full_name, conn)
            except IntegrityViolation as e:
                self.logger.warning(f"Storage rejected second assignment for signal {signal_id}: {e}")
                raise AlreadyAssigned(f"Signal {signal_id} already has a responder")

        self.logger.info(f"Responder {responder_id} accepted signal {signal_id} (response {response.id})")
        return response, signal
