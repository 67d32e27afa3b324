"""
GhostScore Reputation Service.

Wires the indexer, reputation engine and privacy layer together:

    ledger poll -> PaymentEvents (ledger order) -> ReputationEngine
    read(agent, viewer) -> stored state -> privacy projection -> VisibleReputation

Example:
    >>> async with SolanaRpcClient(RPC_URL) as ledger:
    ...     service = ReputationService(indexer=PaymentIndexer(ledger, FACILITATOR_ADDRESS))
    ...     await service.poll_and_ingest()
    ...     view = await service.get_visible_reputation(agent_id, viewer="client-1")
"""

import logging
from typing import Optional, List, Iterable, Set

from ghostscore.config import POLL_LIMIT
from ghostscore.errors import ConfigurationError
from ghostscore.indexer import (
    PaymentIndexer,
    PollPage,
    SyncEventStore,
    SyncResult,
    SyncStateStoreInterface,
)
from ghostscore.models import PaymentEvent, RatingSubmission
from ghostscore.privacy import PrivacyManager, VisibleReputation, project, public_settings
from ghostscore.reputation import ReputationEngine

logger = logging.getLogger(__name__)


class ReputationService:
    """Read/write facade over the reputation core."""

    def __init__(
        self,
        engine: Optional[ReputationEngine] = None,
        privacy: Optional[PrivacyManager] = None,
        indexer: Optional[PaymentIndexer] = None,
        refresh_tags: bool = True,
    ):
        """
        Args:
            engine: Reputation engine (in-memory one if None).
            privacy: Privacy settings manager (in-memory one if None).
            indexer: Payment indexer; required for polling.
            refresh_tags: Recompute tags after every write.
        """
        self.engine = engine or ReputationEngine()
        self.privacy = privacy or PrivacyManager()
        self.indexer = indexer
        self._refresh_tags = refresh_tags

    async def _after_write(self, agents: Set[str]) -> None:
        if not self._refresh_tags:
            return
        for agent_id in sorted(agents):
            await self.engine.refresh_tags(agent_id)

    async def ingest_payments(self, events: Iterable[PaymentEvent]) -> int:
        """
        Record payments and grant opted-in access to paying clients.

        Returns:
            Number of newly recorded payments.
        """
        events = list(events)
        recorded = await self.engine.ingest(events)

        for event in events:
            if event.success and event.payer:
                await self.privacy.auto_grant(event.merchant, event.payer)

        await self._after_write({e.merchant for e in events})
        return recorded

    async def submit_rating(self, submission: RatingSubmission) -> int:
        score = await self.engine.submit_rating(submission)
        await self._after_write({submission.agent_id})
        return score

    async def submit_ratings(self, submissions: Iterable[RatingSubmission]) -> List[int]:
        submissions = list(submissions)
        scores = await self.engine.apply_ratings(submissions)
        await self._after_write({s.agent_id for s in submissions})
        return scores

    async def get_visible_reputation(
        self, agent_id: str, viewer: Optional[str] = None
    ) -> VisibleReputation:
        """
        What viewer may see of agent_id. Agents without privacy settings
        are treated as fully public.
        """
        state = await self.engine.get_state(agent_id)
        settings = await self.privacy.get_settings(agent_id) or public_settings(agent_id)
        return project(state.metrics, state.score, state.tags, settings, viewer)

    def _require_indexer(self) -> PaymentIndexer:
        if self.indexer is None:
            raise ConfigurationError("ReputationService has no payment indexer")
        return self.indexer

    async def poll_and_ingest(
        self, cursor: Optional[str] = None, limit: int = POLL_LIMIT
    ) -> PollPage:
        """Poll one page and feed it to the engine. NetworkError propagates."""
        page = await self._require_indexer().poll_page(cursor=cursor, limit=limit)
        recorded = await self.ingest_payments(page.events)
        logger.info(f"Poll ingested {recorded} new payments ({len(page.skipped)} skipped)")
        return page

    async def sync_and_ingest(
        self,
        state_store: SyncStateStoreInterface,
        event_store: Optional[SyncEventStore] = None,
        limit: int = POLL_LIMIT,
        max_pages: Optional[int] = None,
    ) -> SyncResult:
        """Forward-sync from the last synced signature and ingest the result."""
        result = await self._require_indexer().sync(
            state_store, event_store=event_store, limit=limit, max_pages=max_pages
        )
        await self.ingest_payments(result.events)
        return result
