"""Execution controller: owns one live QueryModel and decides when to run it."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from graphdash.config import settings
from graphdash.querybuilder.codec import decode, encode
from graphdash.querybuilder.compiler import compile_query
from graphdash.querybuilder.decompiler import decompile
from graphdash.querybuilder.models import ModelValidationError, QueryModel

log = logging.getLogger("graphdash.controller")

Executor = Callable[[str], Awaitable[Any]]
Listener = Callable[[str, QueryModel], None]


class ControllerMode(str, Enum):
    IDLE = "idle"
    RESTORING = "restoring"     # model just replaced wholesale
    SETTLING = "settling"       # toggle-driven execution pending


class ExecutionController:
    """Single-session state machine around a QueryModel.

    Every mutation recompiles synchronously. Enabled-flag toggles outside the
    restoring phase schedule one coalesced execution after `settle_delay`; an
    execution starts a `cooldown` during which toggles do not schedule again.
    Replacing the model (token or Cypher) enters RESTORING, which suppresses
    token persistence and auto-execution until `restore_delay` has passed.
    """

    def __init__(
        self,
        execute: Optional[Executor] = None,
        *,
        settle_delay: Optional[float] = None,
        cooldown: Optional[float] = None,
        restore_delay: Optional[float] = None,
        on_persist: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self.model = QueryModel()
        self.mode = ControllerMode.IDLE
        self.token: Optional[str] = None
        self.last_result: Any = None
        self.execution_count = 0

        self.settle_delay = settings.settle_delay if settle_delay is None else settle_delay
        self.cooldown = settings.settle_cooldown if cooldown is None else cooldown
        self.restore_delay = settings.restore_delay if restore_delay is None else restore_delay

        self._execute = execute
        self._on_persist = on_persist
        self._listeners: List[Listener] = []
        self._query = ""
        self._lock = asyncio.Lock()
        self._cooldown_until = 0.0
        self._settle_task: Optional[asyncio.Task] = None
        self._restore_task: Optional[asyncio.Task] = None

    # ── Observation ─────────────────────────────────────────────

    def current_query_text(self) -> str:
        return self._query

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with (query_text, model) after every change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._query, self.model)

    @property
    def settle_pending(self) -> bool:
        return self._settle_task is not None and not self._settle_task.done()

    # ── Mutation ────────────────────────────────────────────────

    def mutate(self, op) -> str:
        """Apply one operation atomically and return the recompiled text.

        Raises ModelValidationError (model unchanged) if the operation is invalid.
        """
        before = self.model.enabled_state()
        snapshot = self.model.model_copy(deep=True)
        try:
            op.apply(self.model)
            text = compile_query(self.model)
        except ModelValidationError:
            self.model = snapshot
            raise

        self._query = text
        self._notify()
        if self.mode == ControllerMode.RESTORING:
            return text

        self._persist()
        after = self.model.enabled_state()
        if any(before[key] != after[key] for key in before.keys() & after.keys()):
            self._schedule_settle()
        return text

    def _persist(self) -> None:
        self.token = encode(self.model) if not self.model.is_empty else None
        if self._on_persist is not None:
            self._on_persist(self.token)

    # ── Settling ────────────────────────────────────────────────

    def _in_cooldown(self) -> bool:
        return time.monotonic() < self._cooldown_until

    def _schedule_settle(self) -> None:
        if self._in_cooldown():
            log.debug("Toggle ignored during post-execution cool-down")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop, toggle execution not scheduled")
            return
        if self.settle_pending:
            self._settle_task.cancel()
        self.mode = ControllerMode.SETTLING
        self._settle_task = loop.create_task(self._settle())

    async def _settle(self) -> None:
        await asyncio.sleep(self.settle_delay)
        self._settle_task = None
        try:
            await self.execute()
        except Exception:
            log.exception("Settled execution failed")
        finally:
            if self.mode == ControllerMode.SETTLING and not self.settle_pending:
                self.mode = ControllerMode.IDLE

    # ── Execution ───────────────────────────────────────────────

    async def execute(self) -> Any:
        """Run the current text through the executor, one execution at a time."""
        async with self._lock:
            text = self._query
            if not text.strip() or self._execute is None:
                return None
            log.info("Executing builder query (%d chars)", len(text))
            result = await self._execute(text)
            self.last_result = result
            self.execution_count += 1
            self._cooldown_until = time.monotonic() + self.cooldown
            return result

    # ── Restoration ─────────────────────────────────────────────

    def restore_from_token(self, token: str, *, from_link: bool = True) -> QueryModel:
        """Replace the model from a token; InvalidToken leaves it untouched."""
        model = decode(token)
        self._replace(model, auto_execute=from_link)
        return self.model

    def load_cypher(self, text: str, *, from_link: bool = False) -> QueryModel:
        """Replace the model from Cypher; NotRepresentable leaves it untouched."""
        model = decompile(text)
        self._replace(model, auto_execute=from_link)
        return self.model

    def replace_model(self, model: QueryModel) -> QueryModel:
        model.check_integrity()
        self._replace(model, auto_execute=False)
        return self.model

    def _replace(self, model: QueryModel, *, auto_execute: bool) -> None:
        self._cancel_pending()
        self.model = model
        self.mode = ControllerMode.RESTORING
        self._query = compile_query(model)
        self._notify()
        log.info("Builder model replaced (%d nodes), restoring", len(model.nodes))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.mode = ControllerMode.IDLE
            self._persist()
            return
        self._restore_task = loop.create_task(self._finish_restore(auto_execute))

    async def _finish_restore(self, auto_execute: bool) -> None:
        await asyncio.sleep(self.restore_delay)
        self._restore_task = None
        self.mode = ControllerMode.IDLE
        self._persist()
        if auto_execute:
            try:
                await self.execute()
            except Exception:
                log.exception("Auto-execution after restore failed")

    # ── Lifecycle ───────────────────────────────────────────────

    def _cancel_pending(self) -> None:
        for task in (self._settle_task, self._restore_task):
            if task is not None and not task.done():
                task.cancel()
        self._settle_task = None
        self._restore_task = None

    async def drain(self) -> None:
        """Wait until no settle or restore work is pending."""
        while True:
            tasks = [t for t in (self._settle_task, self._restore_task) if t and not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        self._cancel_pending()
        self._listeners.clear()
