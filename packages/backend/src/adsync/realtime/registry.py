"""Connection registry — who should receive a relayed event.

Learn: Every live WebSocket owns a bounded asyncio.Queue. The registry maps
connection ids to those queues and keeps two secondary indexes:

    user index:  user_id → [connection_id, ...]   (tabs/devices of one account)
    job index:   job_id  → [connection_id, ...]   (clients watching one request)

Relays ask the registry to deliver; the registry only enqueues. Writing to the
socket is the connection's own job, so a slow client never holds up anyone
else.

Concurrency: all methods are plain (non-async) and run on the event loop
without awaiting, so each one is atomic with respect to every other task.
Readers never wait on each other and a writer never waits behind readers.
Enqueueing uses put_nowait — a full queue drops the message for that one
connection instead of blocking.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class Connection:
    """One live client connection as seen by the registry.

    The WebSocket handler that created it owns it; the registry only holds
    the queue handle for delivery. user_id and job_ids mirror the index
    entries that point back at this connection.
    """
    connection_id: str
    user_id: str
    queue: asyncio.Queue
    job_ids: list[str] = field(default_factory=list)


@dataclass
class RegistryStats:
    """Delivery counters for monitoring."""
    delivered: int = 0
    dropped: int = 0


class ConnectionRegistry:
    """In-memory directory of live connections with user and job indexes."""

    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._by_user: dict[str, list[str]] = {}
        self._by_job: dict[str, list[str]] = {}
        self.stats = RegistryStats()

    # ─── Registration ─────────────────────────────────────

    def register(self, connection_id: str, user_id: str, queue: asyncio.Queue) -> None:
        """Add a connection and index it under its user.

        Registering the same id again replaces the queue. The id is never
        indexed twice, so a repeated register cannot cause double delivery.
        """
        existing = self._connections.get(connection_id)
        if existing is not None:
            existing.queue = queue
            if existing.user_id != user_id:
                _strip(self._by_user, existing.user_id, connection_id)
                existing.user_id = user_id
            logger.warning(
                "adsync.registry.reregistered",
                connection_id=connection_id,
                user_id=user_id,
            )
        else:
            self._connections[connection_id] = Connection(
                connection_id=connection_id,
                user_id=user_id,
                queue=queue,
            )

        ids = self._by_user.setdefault(user_id, [])
        if connection_id not in ids:
            ids.append(connection_id)

        logger.debug(
            "adsync.registry.registered",
            connection_id=connection_id,
            user_id=user_id,
            connections=len(self._connections),
        )

    def register_for_job(self, connection_id: str, job_id: str) -> None:
        """Index an already-registered connection under a job/request id."""
        conn = self._connections.get(connection_id)
        if conn is None:
            # Connection went away before it could be indexed
            logger.debug(
                "adsync.registry.job_for_unknown_connection",
                connection_id=connection_id,
                job_id=job_id,
            )
            return

        ids = self._by_job.setdefault(job_id, [])
        if connection_id not in ids:
            ids.append(connection_id)
        if job_id not in conn.job_ids:
            conn.job_ids.append(job_id)

    def deregister(self, connection_id: str) -> None:
        """Remove a connection and every index entry pointing at it.

        Unknown ids are a no-op. The connection's own user_id and job_ids say
        which index entries hold it, so only those are touched.
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return

        _strip(self._by_user, conn.user_id, connection_id)
        for job_id in conn.job_ids:
            _strip(self._by_job, job_id, connection_id)

        logger.debug(
            "adsync.registry.deregistered",
            connection_id=connection_id,
            user_id=conn.user_id,
            connections=len(self._connections),
        )

    # ─── Delivery ─────────────────────────────────────────

    def send_to_all(self, message: str) -> int:
        """Enqueue on every registered connection. Returns the number enqueued."""
        return self._enqueue(list(self._connections), message)

    def send_to_user(self, user_id: str, message: str) -> int:
        """Enqueue on every connection of one user. No-op for unknown users."""
        return self._enqueue(self._by_user.get(user_id, ()), message)

    def send_to_job(self, job_id: str, message: str) -> int:
        """Enqueue on every connection watching one job. No-op for unknown jobs."""
        return self._enqueue(self._by_job.get(job_id, ()), message)

    def has_job_connections(self, job_id: str) -> bool:
        """True if at least one live connection is indexed under job_id."""
        return any(cid in self._connections for cid in self._by_job.get(job_id, ()))

    def _enqueue(self, connection_ids: Iterable[str], message: str) -> int:
        sent = 0
        for connection_id in list(connection_ids):
            conn = self._connections.get(connection_id)
            if conn is None:
                continue
            try:
                conn.queue.put_nowait(message)
            except asyncio.QueueFull:
                self.stats.dropped += 1
                logger.debug(
                    "adsync.registry.queue_full",
                    connection_id=connection_id,
                    user_id=conn.user_id,
                )
                continue
            sent += 1
        self.stats.delivered += sent
        return sent

    # ─── Introspection ────────────────────────────────────

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def user_connections(self, user_id: str) -> list[str]:
        return list(self._by_user.get(user_id, ()))

    def job_connections(self, job_id: str) -> list[str]:
        return list(self._by_job.get(job_id, ()))

    def snapshot(self) -> dict:
        """Counts for the health endpoint."""
        return {
            "connections": len(self._connections),
            "users": sum(1 for ids in self._by_user.values() if ids),
            "jobs": sum(1 for ids in self._by_job.values() if ids),
            "delivered": self.stats.delivered,
            "dropped": self.stats.dropped,
        }


def _strip(index: dict[str, list[str]], key: str, connection_id: str) -> None:
    """Remove connection_id from index[key], dropping the entry once empty."""
    ids = index.get(key)
    if ids is None:
        return
    ids[:] = [cid for cid in ids if cid != connection_id]
    if not ids:
        del index[key]
