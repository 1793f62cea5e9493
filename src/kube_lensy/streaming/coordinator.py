"""Live log tails: a pushed follow stream reconciled by a periodic pull poll."""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections import OrderedDict, deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from kube_lensy.config import Settings
from kube_lensy.errors import CLIError, CLIExitError
from kube_lensy.observation.adapter import kill_process
from kube_lensy.observation.collector import SnapshotCollector
from kube_lensy.observation.fallback import container_not_running
from kube_lensy.streaming.models import LogBatch, LogLine, StreamEnd, StreamState
from kube_lensy.streaming.parsing import parse_line

logger = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024
_STDERR_TAIL = 16 * 1024
_REAP_TIMEOUT = 2.0


@dataclass(frozen=True)
class SubscriptionKey:
    cluster: str
    namespace: str
    pod: str
    container: str | None = None

    def __str__(self) -> str:
        target = f"{self.pod}/{self.container}" if self.container else self.pod
        return f"{self.cluster}:{self.namespace}/{target}"


class LogSubscription:
    """One subscriber's live tail of one container.

    STARTING spawns ``kubectl logs -f``; STREAMING pushes its lines through a
    short coalescing window while a poll task fetches a recent tail every
    ``poll_interval`` and forwards only lines not yet delivered. When the
    follow process reports the container terminated, RECONNECTING makes one
    fetch of the previous container's logs and the stream ends gracefully.
    Nothing reconnects automatically.

    Undelivered lines are capped at ``max_retained_lines``; a subscriber that
    falls behind loses the oldest of them, counted in ``dropped``.
    """

    def __init__(
        self,
        collector: SnapshotCollector,
        settings: Settings,
        key: SubscriptionKey,
        on_close: Callable[[LogSubscription], None] | None = None,
    ) -> None:
        self.collector = collector
        self.settings = settings
        self.key = key
        self.state = StreamState.STARTING
        self._on_close = on_close
        self._ready = asyncio.Event()
        self._pending: deque[LogLine] = deque(maxlen=settings.max_retained_lines)
        self._retained: deque[LogLine] = deque(maxlen=settings.max_retained_lines)
        self._seen: OrderedDict[tuple[Any, ...], None] = OrderedDict()
        self._seen_limit = 4 * max(settings.max_retained_lines, settings.poll_tail_lines)
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._poller: asyncio.Task[None] | None = None
        self._stderr_reader: asyncio.Task[bytes] | None = None
        self._flush_handle: asyncio.TimerHandle | None = None
        self._argv: list[str] = []
        self._end: StreamEnd | None = None
        self._closed = False
        self._ended = False
        self._end_delivered = False
        self.dropped = 0

    @property
    def retained(self) -> list[LogLine]:
        """Most recent accepted lines, oldest first."""
        return list(self._retained)

    @property
    def closed(self) -> bool:
        return self.state is StreamState.CLOSED

    def follow_args(self) -> list[str]:
        args = [
            "logs",
            self.key.pod,
            "-n",
            self.key.namespace,
            "-f",
            "--timestamps",
            f"--tail={self.settings.initial_tail_lines}",
        ]
        if self.key.container:
            args.extend(["-c", self.key.container])
        return self.collector.cli.kubectl_args(*args)

    async def start(self) -> None:
        self._argv = self.follow_args()
        try:
            self._process = await self.collector.cli.spawn(self._argv)
        except CLIError as e:
            logger.warning("log follow for %s could not start: %s", self.key, e)
            self._finish(StreamEnd(graceful=False, reason=str(e)))
            return
        if self._closed:
            kill_process(self._process)
            return
        self.state = StreamState.STREAMING
        if self._process.stderr is not None:
            self._stderr_reader = asyncio.create_task(
                self._drain_stderr(self._process.stderr), name=f"tail-stderr:{self.key}"
            )
        self._reader = asyncio.create_task(self._read(), name=f"tail-read:{self.key}")
        self._poller = asyncio.create_task(self._poll(), name=f"tail-poll:{self.key}")

    # Ingestion

    def _ingest(self, raw_lines: list[str]) -> int:
        arrival = datetime.now(timezone.utc)
        accepted = 0
        for raw in raw_lines:
            if not raw.strip():
                continue
            line = parse_line(
                raw,
                namespace=self.key.namespace,
                pod=self.key.pod,
                container=self.key.container,
                cluster=self.key.cluster,
                arrival=arrival,
            )
            if self._accept(line):
                accepted += 1
        return accepted

    def _accept(self, line: LogLine) -> bool:
        key = line.dedup_key
        if key in self._seen:
            return False
        self._seen[key] = None
        while len(self._seen) > self._seen_limit:
            self._seen.popitem(last=False)
        self._retained.append(line)
        if len(self._pending) == self._pending.maxlen:
            self.dropped += 1
        self._pending.append(line)
        self._schedule_flush()
        return True

    def _schedule_flush(self) -> None:
        if self._flush_handle is None and not self._closed:
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_later(self.settings.flush_window, self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        if self._closed or not self._pending:
            return
        self._ready.set()

    # Tasks

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> bytes:
        """Read stderr as it arrives, keeping only the last ``_STDERR_TAIL`` bytes."""
        tail = bytearray()
        while True:
            chunk = await stream.read(_READ_SIZE)
            if not chunk:
                return bytes(tail)
            tail += chunk
            del tail[:-_STDERR_TAIL]

    async def _read(self) -> None:
        process = self._process
        assert process is not None and process.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        partial = ""
        while True:
            chunk = await process.stdout.read(_READ_SIZE)
            if not chunk:
                break
            partial += decoder.decode(chunk)
            *complete, partial = partial.split("\n")
            self._ingest(complete)
        partial += decoder.decode(b"", final=True)
        if partial.strip():
            self._ingest([partial])
        stderr = b""
        if self._stderr_reader is not None:
            stderr = await self._stderr_reader
        returncode = await process.wait()
        await self._on_exit(returncode, stderr.decode("utf-8", errors="replace"))

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.settings.poll_interval)
            try:
                text = await self.collector.fetch_logs(
                    self.key.pod,
                    self.key.namespace,
                    self.key.container,
                    tail=self.settings.poll_tail_lines,
                )
            except CLIError as e:
                logger.warning("log poll for %s failed: %s", self.key, e)
                continue
            added = self._ingest(text.splitlines())
            if added:
                logger.debug("log poll for %s recovered %d lines", self.key, added)

    async def _on_exit(self, returncode: int, stderr: str) -> None:
        if self._closed:
            return
        if returncode == 0:
            self._finish(StreamEnd(graceful=True))
            return
        error = CLIExitError(returncode, stderr, self._argv)
        if not container_not_running(error):
            self._finish(StreamEnd(graceful=False, reason=error.text))
            return

        self.state = StreamState.RECONNECTING
        if self._poller is not None:
            self._poller.cancel()
        policy = self.collector.logs_policy(
            self.key.pod, self.key.namespace, self.key.container, self.settings.poll_tail_lines
        )
        try:
            text = await policy.run()
        except CLIError as e:
            logger.warning("previous logs for %s unavailable: %s", self.key, e)
            self._finish(StreamEnd(graceful=False, reason=str(e)))
            return
        self._ingest(text.splitlines())
        self._finish(StreamEnd(graceful=True, reason="container terminated"))

    def _finish(self, end: StreamEnd) -> None:
        """Deliver pending lines, then the terminal event, exactly once."""
        if self._ended or self._closed:
            return
        self._ended = True
        if self._poller is not None and self._poller is not asyncio.current_task():
            self._poller.cancel()
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self.state = StreamState.CLOSED
        self._end = end
        self._ready.set()
        if self._on_close is not None:
            self._on_close(self)

    async def close(self) -> None:
        """Cancel the subscription: kill the follow process, stop polling, deliver nothing more."""
        if self._closed:
            return
        self._closed = True
        self.state = StreamState.CLOSED
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._pending.clear()
        self._ready.set()
        if self._process is not None:
            kill_process(self._process)
        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._reader, self._poller, self._stderr_reader)
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._process is not None and self._process.returncode is None:
            try:
                await asyncio.wait_for(self._reap(self._process), _REAP_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("log follow for %s did not exit after kill", self.key)
        if not self._ended and self._on_close is not None:
            self._on_close(self)
        self._ended = True
        logger.debug("log subscription %s closed", self.key)

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        """Discard what the killed process left in its pipes; ``wait`` needs them closed."""

        async def discard(stream: asyncio.StreamReader | None) -> None:
            if stream is not None:
                while await stream.read(_READ_SIZE):
                    pass

        await asyncio.gather(discard(process.stdout), discard(process.stderr))
        await process.wait()

    async def events(self) -> AsyncIterator[LogBatch | StreamEnd]:
        """Yield batches until a StreamEnd (inclusive) or until closed."""
        while not self._closed and not self._end_delivered:
            if self._pending:
                batch = LogBatch(lines=list(self._pending))
                self._pending.clear()
                yield batch
                continue
            if self._end is not None:
                self._end_delivered = True
                yield self._end
                return
            self._ready.clear()
            await self._ready.wait()

    def __aiter__(self) -> AsyncIterator[LogBatch | StreamEnd]:
        return self.events()

    async def __aenter__(self) -> LogSubscription:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


class TailStreamCoordinator:
    """Registry of live log subscriptions, one per subscriber."""

    def __init__(self, collector: SnapshotCollector, settings: Settings) -> None:
        self.collector = collector
        self.settings = settings
        self._live: set[LogSubscription] = set()

    @property
    def live(self) -> list[LogSubscription]:
        return list(self._live)

    async def subscribe(
        self,
        namespace: str,
        pod: str,
        container: str | None = None,
        cluster: str = "local",
    ) -> LogSubscription:
        key = SubscriptionKey(cluster=cluster, namespace=namespace, pod=pod, container=container)
        subscription = LogSubscription(self.collector, self.settings, key, on_close=self._live.discard)
        self._live.add(subscription)
        await subscription.start()
        return subscription

    async def close_all(self) -> None:
        subscriptions = list(self._live)
        await asyncio.gather(*(s.close() for s in subscriptions))
        self._live.clear()
