"""Live event streams for individual sessions.

Each subscribed session id gets one watch task that follows its transcript
file. Newly appended lines are parsed and fanned out to every subscriber of
that session as ``message`` events; ``status`` events are sent whenever the
derived status changes. When the last subscriber of a session closes, its
watch task stops.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

import watchfiles

from .config import ConfigSnapshot
from .derive import determine_session_status
from .sessions import SessionAggregator, SessionLocation, SessionNotFoundError
from .tailer import SessionTailer
from .transcript import Message

logger = logging.getLogger(__name__)

EVENT_MESSAGE = "message"
EVENT_STATUS = "status"
STATUS_ENDED = "ended"

# Per-subscriber backlog before the subscriber is dropped
QUEUE_SIZE = 1000
# Re-check interval so idle transitions are noticed without file changes
WATCH_TICK_MS = 1000


class Subscription:
    """A cancellable feed of events for one session.

    Iterate with ``async for event in subscription``; each event is a dict
    with ``event`` and ``data`` keys. Call ``close()`` when done.
    """

    def __init__(self, broadcaster: LiveStreamBroadcaster, session_id: str):
        self.session_id = session_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self.closed = False
        self._broadcaster = broadcaster

    def _deliver(self, event: dict) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def _finish(self) -> None:
        """Mark the feed as finished; pending events can still be read."""
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def get(self) -> dict | None:
        """Wait for the next event. Returns None once the feed has ended."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def close(self) -> None:
        await self._broadcaster.unsubscribe(self)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class _SessionWatch:
    """Shared observation of one transcript file."""

    def __init__(self, session_id: str, location: SessionLocation):
        self.session_id = session_id
        self.path = location.path.resolve()
        self.tailer = SessionTailer(self.path, location.kind)
        self.messages: list[Message] = []
        self.status: str | None = None
        self.subscribers: list[Subscription] = []
        self.stop_event = asyncio.Event()
        self.task: asyncio.Task | None = None
        self.ended = False

    def prime(self) -> None:
        """Read the existing transcript so only new lines are streamed.

        Raises:
            OSError: If the file cannot be read.
        """
        self.messages = self.tailer.read_new_lines()
        self.status = self._compute_status()

    def _compute_status(self) -> str:
        mtime = self.path.stat().st_mtime
        return determine_session_status(
            self.messages, last_activity=datetime.fromtimestamp(mtime, tz=timezone.utc)
        )

    def publish(self, event_type: str, data: dict) -> None:
        event = {"event": event_type, "data": data}
        for subscription in list(self.subscribers):
            if not subscription._deliver(event):
                logger.warning(f"Dropping slow subscriber for session {self.session_id}")
                self.subscribers.remove(subscription)
                subscription._finish()
                if not self.subscribers:
                    self.stop_event.set()

    def process(self) -> None:
        """Emit events for lines appended since the last read."""
        if self.ended:
            return
        try:
            new_messages = self.tailer.read_new_lines()
        except OSError as e:
            logger.info(f"Session file for {self.session_id} is no longer readable: {e}")
            self.end()
            return

        for message in new_messages:
            self.messages.append(message)
            self.publish(EVENT_MESSAGE, message.to_dict())

        # Status covers the messages just read
        try:
            status = self._compute_status()
        except OSError as e:
            logger.info(f"Session file for {self.session_id} is no longer readable: {e}")
            self.end()
            return

        if status != self.status:
            self.status = status
            self.publish(EVENT_STATUS, {"status": status})

    def end(self) -> None:
        """Send the terminal status and finish every subscriber's feed."""
        if self.ended:
            return
        self.ended = True
        self.publish(EVENT_STATUS, {"status": STATUS_ENDED})
        for subscription in self.subscribers:
            subscription._finish()
        self.subscribers.clear()
        self.stop_event.set()

    def _is_own_file(self, change: watchfiles.Change, changed_path: str) -> bool:
        return Path(changed_path).resolve() == self.path

    async def run(self) -> None:
        """Follow the file until stopped or until the file goes away."""
        logger.info(f"Starting file watch on {self.path}")
        try:
            async for _changes in watchfiles.awatch(
                self.path.parent,
                watch_filter=self._is_own_file,
                stop_event=self.stop_event,
                rust_timeout=WATCH_TICK_MS,
                yield_on_timeout=True,
                recursive=False,
            ):
                self.process()
                if self.ended:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error watching {self.path}: {e}")
            self.end()
        finally:
            logger.info(f"Stopped file watch on {self.path}")


class LiveStreamBroadcaster:
    """Fans out appended transcript lines to per-session subscribers."""

    def __init__(self, config: ConfigSnapshot):
        self.config = config
        self._watches: dict[str, _SessionWatch] = {}

    def update_config(self, config: ConfigSnapshot) -> None:
        """Use a new configuration snapshot for future subscriptions."""
        self.config = config

    def watched_session_ids(self) -> list[str]:
        return list(self._watches)

    def subscriber_count(self, session_id: str) -> int:
        watch = self._watches.get(session_id)
        return len(watch.subscribers) if watch else 0

    async def subscribe(self, session_id: str) -> Subscription:
        """Start receiving events for a session.

        The first event is the session's current status.

        Raises:
            SessionNotFoundError: If no readable transcript has this id.
        """
        watch = self._watches.get(session_id)
        if watch is None:
            aggregator = SessionAggregator(self.config)
            location = await asyncio.to_thread(aggregator.locate, session_id)
            if location is None:
                raise SessionNotFoundError(session_id)
            # Another subscriber may have started the watch while we looked
            watch = self._watches.get(session_id)
            if watch is None:
                watch = _SessionWatch(session_id, location)
                try:
                    await asyncio.to_thread(watch.prime)
                except OSError as e:
                    raise SessionNotFoundError(session_id) from e
                # Priming yields to the loop, so check the registry once more
                existing = self._watches.get(session_id)
                if existing is not None:
                    watch = existing
                else:
                    self._watches[session_id] = watch
                    watch.task = asyncio.create_task(self._run_watch(watch))

        subscription = Subscription(self, session_id)
        watch.subscribers.append(subscription)
        subscription._deliver({"event": EVENT_STATUS, "data": {"status": watch.status}})
        logger.debug(f"Subscribed to {session_id} ({len(watch.subscribers)} subscribers)")
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription._finish()
        watch = self._watches.get(subscription.session_id)
        if watch is None or subscription not in watch.subscribers:
            return
        watch.subscribers.remove(subscription)
        if not watch.subscribers:
            await self._stop_watch(watch)

    def poll(self, session_id: str) -> None:
        """Process pending appended lines for a watched session right away."""
        watch = self._watches.get(session_id)
        if watch is not None:
            watch.process()
            if watch.ended or not watch.subscribers:
                self._forget(watch)

    async def close(self) -> None:
        """Stop every watch and end all feeds."""
        for watch in list(self._watches.values()):
            for subscription in watch.subscribers:
                subscription._finish()
            watch.subscribers.clear()
            await self._stop_watch(watch)

    def _forget(self, watch: _SessionWatch) -> None:
        if self._watches.get(watch.session_id) is watch:
            del self._watches[watch.session_id]

    async def _run_watch(self, watch: _SessionWatch) -> None:
        try:
            await watch.run()
        finally:
            if watch.ended or not watch.subscribers:
                self._forget(watch)

    async def _stop_watch(self, watch: _SessionWatch) -> None:
        self._forget(watch)
        watch.stop_event.set()
        task = watch.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
