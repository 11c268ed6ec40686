"""Initiating-device side of the QR handshake.

One ``QRHandshake`` drives a single session at a time: a 1 Hz countdown and a
slower poll run as two asyncio tasks that are always started and torn down
together. Every (re)start bumps a generation counter, and any poll response
belonging to an older generation is dropped, so a late network reply can
never mutate state after refresh, expiry or stop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import Any, Callable

from authbridge.employees.models import EmployeeSnapshot
from authbridge.qr.models import QRStatus, QRTicket
from authbridge.qr.service import QRSessionGateway
from authbridge.qr.store import QRStoreUnavailable
from authbridge.session.storage import SessionStorage, persist_session
from authbridge.session.unifier import AuthSession, build_auth_session

LOGGER = logging.getLogger(__name__)


class HandshakeState(StrEnum):
    IDLE = "idle"
    GENERATING = "generating"
    WAITING = "waiting"
    SUCCESS = "success"
    EXPIRED = "expired"
    ERROR = "error"
    STOPPED = "stopped"


class QRHandshake:
    """State machine for showing a QR code and waiting for another device."""

    def __init__(
        self,
        gateway: QRSessionGateway,
        *,
        fallback_gateway: Callable[[], QRSessionGateway] | None = None,
        storage: SessionStorage | None = None,
        tick_seconds: float = 1.0,
        poll_interval_seconds: float = 2.0,
        on_success: Callable[[AuthSession], None] | None = None,
        on_expired: Callable[[], None] | None = None,
        reload: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._primary = gateway
        self._gateway = gateway
        self._fallback_gateway = fallback_gateway
        self._storage = storage
        self._tick_seconds = tick_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._on_success = on_success
        self._on_expired = on_expired
        self._reload = reload
        self._clock = clock

        self._state = HandshakeState.IDLE
        self._generation = 0
        self._time_left = 0
        self._deadline = 0.0
        self._ticket: QRTicket | None = None
        self._session: AuthSession | None = None
        self._error = ""
        self._tasks: list[asyncio.Task[Any]] = []
        self._done = asyncio.Event()

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def time_left(self) -> int:
        return self._time_left

    @property
    def ticket(self) -> QRTicket | None:
        return self._ticket

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def error(self) -> str:
        return self._error

    @property
    def degraded(self) -> bool:
        """True when running against the client-local store; other devices cannot scan."""
        return bool(getattr(self._gateway, "degraded", False))

    @property
    def polling(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state is HandshakeState.WAITING

    def _cancel_tasks(self, keep: asyncio.Task[Any] | None = None) -> None:
        for task in self._tasks:
            if task is not keep and not task.done():
                task.cancel()

    async def _teardown(self) -> None:
        self._generation += 1
        current = asyncio.current_task()
        self._cancel_tasks(keep=current)
        pending = [task for task in self._tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

    async def start(self) -> QRTicket:
        """Allocate a session and start both timers at full duration."""
        await self._teardown()
        generation = self._generation
        self._state = HandshakeState.GENERATING
        self._session = None
        self._error = ""
        self._done = asyncio.Event()
        self._gateway = self._primary

        try:
            ticket = await self._run(self._gateway.create)
        except QRStoreUnavailable as exc:
            if self._fallback_gateway is None:
                self._fail(str(exc))
                raise
            LOGGER.warning("qr_store_degraded: %s", exc)
            self._gateway = self._fallback_gateway()
            try:
                ticket = await self._run(self._gateway.create)
            except QRStoreUnavailable as local_exc:
                self._fail(str(local_exc))
                raise

        if generation != self._generation:
            # stop() or a newer start() won while the session was being created.
            await self._discard(self._gateway, ticket.session_id)
            return ticket

        self._ticket = ticket
        self._time_left = max(0, int(ticket.expires_in))
        # Local deadline; the server clock behind expires_at may be skewed.
        self._deadline = self._clock() + self._time_left
        self._state = HandshakeState.WAITING
        self._tasks = [
            asyncio.create_task(self._countdown(generation)),
            asyncio.create_task(self._poll(generation, ticket)),
        ]
        LOGGER.info(
            "qr_handshake_waiting",
            extra={"session_id": ticket.session_id},
        )
        return ticket

    async def refresh(self) -> QRTicket:
        """Discard the current attempt and restart with a new session id."""
        previous = self._ticket
        gateway = self._gateway
        ticket = await self.start()
        if previous is not None and previous.session_id != ticket.session_id:
            await self._discard(gateway, previous.session_id)
        return ticket

    async def stop(self) -> None:
        """Stop timers and discard the session, e.g. on navigation away."""
        was_waiting = self._state in (HandshakeState.WAITING, HandshakeState.GENERATING)
        await self._teardown()
        if was_waiting:
            self._state = HandshakeState.STOPPED
            self._done.set()
            if self._ticket is not None:
                await self._discard(self._gateway, self._ticket.session_id)

    async def wait(self, timeout: float | None = None) -> AuthSession | None:
        """Wait for a terminal state; returns the session on success."""
        await asyncio.wait_for(self._done.wait(), timeout)
        return self._session

    async def _discard(self, gateway: QRSessionGateway, session_id: str) -> None:
        try:
            await self._run(gateway.delete, session_id)
        except QRStoreUnavailable as exc:
            LOGGER.warning("qr_discard_failed: %s", exc, extra={"session_id": session_id})

    def _fail(self, message: str) -> None:
        self._state = HandshakeState.ERROR
        self._error = message
        self._done.set()

    async def _expire(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        self._state = HandshakeState.EXPIRED
        self._time_left = 0
        self._cancel_tasks(keep=asyncio.current_task())
        self._done.set()
        ticket = self._ticket
        LOGGER.info(
            "qr_handshake_expired",
            extra={"session_id": ticket.session_id if ticket else ""},
        )
        if self._on_expired is not None:
            self._on_expired()
        if ticket is not None:
            await self._discard(self._gateway, ticket.session_id)

    def _succeed(self, generation: int, employee: EmployeeSnapshot) -> None:
        if not self._is_current(generation):
            return
        session = build_auth_session(employee, "qr_code")
        self._session = session
        self._state = HandshakeState.SUCCESS
        self._cancel_tasks(keep=asyncio.current_task())
        if self._storage is not None:
            persist_session(self._storage, session)
        self._done.set()
        LOGGER.info(
            "qr_handshake_succeeded",
            extra={
                "session_id": self._ticket.session_id if self._ticket else "",
                "employee_id": employee.id,
            },
        )
        if self._on_success is not None:
            self._on_success(session)
        if self._reload is not None:
            self._reload()

    async def _countdown(self, generation: int) -> None:
        while self._time_left > 0:
            await asyncio.sleep(self._tick_seconds)
            if not self._is_current(generation):
                return
            self._time_left -= 1
        await self._expire(generation)

    def _check(
        self, gateway: QRSessionGateway, session_id: str
    ) -> tuple[QRStatus | None, EmployeeSnapshot | None]:
        """Blocking read of the session; claims it once it is authenticated."""
        current = gateway.get(session_id)
        if current is None:
            return None, None
        if current.status != QRStatus.AUTHENTICATED:
            return current.status, None
        claimed = gateway.claim(session_id)
        if claimed is None or claimed.employee_data is None:
            return QRStatus.CONSUMED, None
        return QRStatus.AUTHENTICATED, claimed.employee_data

    async def _poll(self, generation: int, ticket: QRTicket) -> None:
        gateway = self._gateway
        while True:
            await asyncio.sleep(self._poll_interval_seconds)
            if not self._is_current(generation):
                return
            if self._clock() >= self._deadline:
                await self._expire(generation)
                return
            try:
                status, employee = await self._run(self._check, gateway, ticket.session_id)
            except QRStoreUnavailable as exc:
                LOGGER.warning("qr_poll_failed: %s", exc, extra={"session_id": ticket.session_id})
                continue
            except Exception:
                # A bad reply must not end polling while the countdown runs on.
                LOGGER.exception("qr_poll_error", extra={"session_id": ticket.session_id})
                continue
            if not self._is_current(generation):
                return
            if status == QRStatus.EXPIRED:
                await self._expire(generation)
                return
            if employee is not None:
                self._succeed(generation, employee)
                return
