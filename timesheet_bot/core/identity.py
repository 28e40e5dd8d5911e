"""
Identity resolution: channel identity <-> worker.

The link is a partial bijection: one channel identity maps to at most one
worker and a worker carries at most one channel identity.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

from timesheet_bot.core.domain import Worker, utcnow
from timesheet_bot.core.errors import AlreadyLinkedOther, NotFound, TargetAlreadyLinked
from timesheet_bot.core.ports import AsyncRecordStore
from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.infra.metrics import AppMetrics

logger = get_logger(__name__)

MIN_QUERY_LENGTH = 2


def tokenize(query: str) -> list[str]:
    """Trim, lowercase and split; single-character tokens are dropped."""
    text = query.strip().lower()
    if len(text) < MIN_QUERY_LENGTH:
        return []
    return [t for t in text.split() if len(t) > 1]


@dataclass(frozen=True)
class SearchResult:
    """Ranked search candidates. Iterating restarts from the best match every time."""
    workers: tuple[Worker, ...]
    display_limit: int = 10

    def __iter__(self) -> Iterator[Worker]:
        return iter(self.workers)

    def __len__(self) -> int:
        return len(self.workers)

    def __bool__(self) -> bool:
        return bool(self.workers)

    @property
    def shown(self) -> tuple[Worker, ...]:
        return self.workers[: self.display_limit]

    @property
    def hidden_count(self) -> int:
        return max(0, len(self.workers) - self.display_limit)


def rank_multi_token(workers: Sequence[Worker], tokens: list[str]) -> list[Worker]:
    """Keep workers whose name+position contains every token; prefix matches on the first token first."""
    matches = []
    for w in workers:
        haystack = f"{w.name.lower()} {(w.position or '').lower()}"
        if all(tok in haystack for tok in tokens):
            matches.append(w)

    first = tokens[0]
    return sorted(
        matches,
        key=lambda w: (not w.name.lower().startswith(first), w.name.casefold(), w.id),
    )


class IdentityResolver:
    def __init__(
        self,
        store: AsyncRecordStore,
        *,
        candidate_limit: int = 50,
        display_limit: int = 10,
        scan_limit: int = 1000,
    ) -> None:
        self.store = store
        self.candidate_limit = candidate_limit
        self.display_limit = display_limit
        self.scan_limit = scan_limit

    async def resolve(self, channel_id: str) -> Worker:
        worker = await self.store.get_worker_by_channel(channel_id)
        if worker is None:
            raise NotFound("channel identity is not linked")
        return worker

    async def find(self, channel_id: str) -> Worker | None:
        return await self.store.get_worker_by_channel(channel_id)

    async def link(self, channel_id: str, worker_id: int) -> Worker:
        """
        Link ``channel_id`` to ``worker_id``.

        Raises:
            AlreadyLinkedOther: the channel already belongs to another worker
            NotFound: no such worker
            TargetAlreadyLinked: the worker belongs to another channel
        """
        current = await self.store.get_worker_by_channel(channel_id)
        if current is not None and current.id != worker_id:
            raise AlreadyLinkedOther(current)

        worker = await self.store.get_worker(worker_id)
        if worker is None:
            raise NotFound(f"worker {worker_id} not found")

        if worker.is_linked and worker.channel_id and worker.channel_id != channel_id:
            raise TargetAlreadyLinked(worker)

        if worker.channel_id == channel_id and worker.is_linked:
            return worker

        worker.channel_id = channel_id
        worker.is_linked = True
        worker.updated_at = utcnow()
        await self.store.save_worker(worker)

        AppMetrics.worker_linked()
        logger.info("Worker linked", extra={"channel_id": channel_id, "worker_id": worker.id})
        return worker

    async def unlink(self, worker_id: int) -> Worker:
        worker = await self.store.get_worker(worker_id)
        if worker is None:
            raise NotFound(f"worker {worker_id} not found")

        previous = worker.channel_id
        worker.channel_id = None
        worker.is_linked = False
        worker.updated_at = utcnow()
        await self.store.save_worker(worker)

        AppMetrics.worker_unlinked()
        logger.info("Worker unlinked", extra={"worker_id": worker.id, "channel_id": previous or "-"})
        return worker

    async def unlink_channel(self, channel_id: str) -> list[Worker]:
        """Clear every worker bound to ``channel_id`` (admin force-unlink)."""
        workers = await self.store.clear_channel(channel_id)
        for _ in workers:
            AppMetrics.worker_unlinked()
        if workers:
            logger.info(
                f"Channel force-unlinked from {len(workers)} worker(s)",
                extra={"channel_id": channel_id},
            )
        return workers

    async def search(self, query: str) -> SearchResult:
        tokens = tokenize(query)
        if not tokens:
            return SearchResult((), self.display_limit)

        if len(tokens) == 1:
            found = await self.store.search_workers(tokens[0], self.candidate_limit)
        else:
            pool = await self.store.scan_workers(self.scan_limit)
            found = rank_multi_token(pool, tokens)

        AppMetrics.search_performed(len(tokens), len(found))
        return SearchResult(tuple(found), self.display_limit)
