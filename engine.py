"""Message-driven front end for the simulation modules.

Commands and replies are plain dicts so a host can pass them across any
transport.  :class:`EngineWorker` runs commands on a background thread.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from core import DEFAULT_TABLES, ConfigurationError, SimulationCancelled, SimulationParams, TaxTables
from guardrails import REFERENCE_REDUCTION, estimate_guardrails_impact
from legacy import LegacyParams, simulate_dynasty
from optimizer import DEFAULT_SETTINGS, OptimizerSettings, optimize
from roth_optimizer import RothOptimizerParams, optimize_roth_conversions
from simulation import RunSummary, run_batch


logger = logging.getLogger(__name__)

DEFAULT_SEED = 12345
DEFAULT_PATHS = 2000

Post = Callable[[dict], None]


class SimulationEngine:
    """Dispatch command messages to handlers and post replies."""

    def __init__(
        self,
        tables: TaxTables = DEFAULT_TABLES,
        optimizer_settings: OptimizerSettings = DEFAULT_SETTINGS,
    ) -> None:
        self.tables = tables
        self.optimizer_settings = optimizer_settings
        self._handlers = {
            "run": self._run,
            "legacy": self._legacy,
            "guardrails": self._guardrails,
            "roth-optimizer": self._roth_optimizer,
            "optimize": self._optimize,
        }

    def handle(self, message: dict, post: Post, cancel_event: Optional[threading.Event] = None) -> None:
        """Process one command; every reply carries the command's ``requestId``."""

        request_id = message.get("requestId")

        def reply(data: dict) -> None:
            if request_id is not None:
                data["requestId"] = request_id
            post(data)

        kind = message.get("type")
        handler = self._handlers.get(kind)
        if handler is None:
            reply({"type": "error", "message": f"Unknown message type: {kind}"})
            return
        try:
            handler(message, reply, cancel_event)
        except SimulationCancelled:
            logger.info("Request %s (%s) cancelled", request_id, kind)
            reply({"type": "cancelled"})
        except Exception as exc:
            logger.exception("Request %s (%s) failed", request_id, kind)
            reply({"type": "error", "message": str(exc)})

    @staticmethod
    def _params(message: dict) -> dict:
        params = message.get("params")
        if not isinstance(params, dict):
            raise ConfigurationError("Message is missing params")
        return params

    def _run(self, message: dict, reply: Post, cancel_event) -> None:
        params = SimulationParams.from_dict(self._params(message))

        def progress(completed: int, total: int) -> None:
            reply({"type": "progress", "completed": completed, "total": total})

        result = run_batch(
            params,
            base_seed=message.get("baseSeed", DEFAULT_SEED),
            n_paths=message.get("N", DEFAULT_PATHS),
            progress=progress,
            cancel_event=cancel_event,
            tables=self.tables,
        )
        reply({"type": "complete", "result": result.to_dict()})

    def _legacy(self, message: dict, reply: Post, cancel_event) -> None:
        result = simulate_dynasty(LegacyParams.from_dict(self._params(message)), self.tables)
        reply({"type": "legacy-complete", "result": result.to_dict()})

    def _guardrails(self, message: dict, reply: Post, cancel_event) -> None:
        params = self._params(message)
        runs = [RunSummary.from_dict(r) for r in params.get("allRuns", [])]
        result = estimate_guardrails_impact(
            runs, params.get("spendingReduction", REFERENCE_REDUCTION)
        )
        reply({"type": "guardrails-complete", "result": result.to_dict()})

    def _roth_optimizer(self, message: dict, reply: Post, cancel_event) -> None:
        params = RothOptimizerParams.from_dict(self._params(message))
        result = optimize_roth_conversions(params, self.tables)
        reply({"type": "roth-optimizer-complete", "result": result.to_dict()})

    def _optimize(self, message: dict, reply: Post, cancel_event) -> None:
        params = SimulationParams.from_dict(self._params(message))
        result = optimize(
            params,
            message.get("baseSeed", DEFAULT_SEED),
            self.optimizer_settings,
            cancel_event,
            self.tables,
        )
        reply({"type": "optimize-complete", **result.to_dict()})


class EngineWorker(threading.Thread):
    """Background thread serving commands from ``inbox`` into ``outbox``.

    Requests run one at a time.  :meth:`cancel` stops the request in flight;
    the flag is cleared before the next request starts.
    """

    def __init__(self, engine: Optional[SimulationEngine] = None) -> None:
        super().__init__(name="simulation-engine", daemon=True)
        self.engine = engine or SimulationEngine()
        self.inbox: "queue.Queue[Optional[dict]]" = queue.Queue()
        self.outbox: "queue.Queue[dict]" = queue.Queue()
        self.cancel_event = threading.Event()

    def submit(self, message: dict) -> None:
        self.inbox.put(message)

    def cancel(self) -> None:
        self.cancel_event.set()

    def stop(self) -> None:
        self.inbox.put(None)

    def run(self) -> None:
        while True:
            message = self.inbox.get()
            if message is None:
                break
            self.cancel_event.clear()
            self.engine.handle(message, self.outbox.put, self.cancel_event)
