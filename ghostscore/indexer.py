"""
GhostScore Payment Indexer.

Discovers payment events by polling the ledger for transfers into the
facilitator account, with no dependency on webhooks. Webhook deliveries, when
present, are cross-checked against on-chain data through SyncEventStore.

Example:
    >>> async with SolanaRpcClient(RPC_URL) as ledger:
    ...     indexer = PaymentIndexer(ledger, facilitator_address=FACILITATOR_ADDRESS)
    ...     events = await indexer.poll_transactions(limit=50)
"""

import json
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Tuple, AsyncIterator
from dataclasses import dataclass, field, asdict

from ghostscore.cache import MemoryCache
from ghostscore.config import (
    FACILITATOR_ADDRESS,
    NETWORK,
    POLL_LIMIT,
    MAX_CONCURRENCY,
    EVENT_CACHE_TTL,
)
from ghostscore.errors import ConfigurationError, NetworkError, ParseError, RequestTimeoutError
from ghostscore.ledger import LedgerClientInterface, SignatureInfo, TransactionDetail
from ghostscore.metrics import GhostScoreMetrics, get_metrics
from ghostscore.models import PaymentEvent

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
TOKEN_PROGRAMS = frozenset({"spl-token", TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})

MEMO_PROGRAMS = frozenset(
    {
        "spl-memo",
        "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr",
        "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo",
    }
)

TRANSFER_TYPES = frozenset({"transfer", "transferChecked"})


@dataclass
class PollPage:
    """
    One page of a poll.

    Attributes:
        events: Qualifying payment events in ledger order.
        next_cursor: Oldest signature listed; pass as ``cursor`` to page back.
        skipped: Signatures that failed to fetch or parse.
        fetched: Number of signatures the ledger listed.
        newest_signature: Newest signature listed, if any.
    """

    events: List[PaymentEvent]
    next_cursor: Optional[str]
    skipped: List[str] = field(default_factory=list)
    fetched: int = 0
    newest_signature: Optional[str] = None


# =============================================================================
# Transaction parsing
# =============================================================================


def _program_of(instruction: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    return instruction.get("program"), instruction.get("programId")


def _is_token_transfer(instruction: Dict[str, Any]) -> bool:
    program, program_id = _program_of(instruction)
    if program not in TOKEN_PROGRAMS and program_id not in TOKEN_PROGRAMS:
        return False
    parsed = instruction.get("parsed")
    return isinstance(parsed, dict) and parsed.get("type") in TRANSFER_TYPES


def _is_memo(instruction: Dict[str, Any]) -> bool:
    program, program_id = _program_of(instruction)
    return program in MEMO_PROGRAMS or program_id in MEMO_PROGRAMS


def _transfer_amount(parsed: Dict[str, Any]) -> int:
    info = parsed["info"]
    if parsed["type"] == "transferChecked":
        raw = info["tokenAmount"]["amount"]
    else:
        raw = info["amount"]
    amount = int(raw)
    if amount < 0:
        raise ValueError(f"negative amount {amount}")
    return amount


def parse_memo(memo: Any) -> Tuple[Optional[int], Optional[Dict[str, Any]]]:
    """
    Decode a JSON payment memo.

    Returns (response_time_ms, metadata). Anything that is not a JSON object
    yields (None, None).
    """
    if not isinstance(memo, str):
        return None, None
    try:
        data = json.loads(memo)
    except ValueError:
        logger.debug(f"Ignoring non-JSON memo: {memo[:64]!r}")
        return None, None
    if not isinstance(data, dict):
        return None, None

    response_time = data.get("responseTimeMs")
    if isinstance(response_time, bool) or not isinstance(response_time, int) or response_time < 0:
        response_time = None

    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {k: v for k, v in data.items() if k != "responseTimeMs"} or None

    return response_time, metadata


def parse_payment(
    detail: TransactionDetail,
    facilitator_address: str,
    network: str,
    now: Optional[int] = None,
) -> Optional[PaymentEvent]:
    """
    Extract a payment event from a parsed transaction.

    Returns None if no token transfer lands on the facilitator.

    Raises:
        ParseError: If a matching transfer is malformed.
    """
    transfer = None
    memo = None
    for instruction in detail.instructions:
        if not isinstance(instruction, dict):
            continue
        if transfer is None and _is_token_transfer(instruction):
            info = instruction["parsed"].get("info")
            if not isinstance(info, dict):
                raise ParseError("Transfer instruction without info", signature=detail.signature)
            if info.get("destination") == facilitator_address:
                transfer = instruction["parsed"]
        elif memo is None and _is_memo(instruction):
            memo = instruction.get("parsed")

    if transfer is None:
        return None

    try:
        amount = _transfer_amount(transfer)
        payer = transfer["info"]["source"]
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"Malformed transfer instruction: {e}", signature=detail.signature)

    response_time_ms, metadata = parse_memo(memo)

    return PaymentEvent(
        signature=detail.signature,
        merchant=facilitator_address,
        payer=payer,
        amount=amount,
        success=detail.err is None,
        timestamp=_event_time(detail.block_time, now),
        network=network,
        slot=detail.slot,
        response_time_ms=response_time_ms,
        metadata=metadata,
    )


def _event_time(block_time: Optional[int], now: Optional[int]) -> int:
    if block_time is not None:
        return block_time
    return now if now is not None else int(time.time())


def ledger_order(events_with_position: List[Tuple[int, PaymentEvent]]) -> List[PaymentEvent]:
    """
    Sort (listing_position, event) pairs into ledger order.

    Listings are newest first, so within a slot a higher position is older.
    """
    ordered = sorted(events_with_position, key=lambda pair: (pair[1].slot, -pair[0]))
    return [event for _, event in ordered]


# =============================================================================
# Indexer
# =============================================================================


class PaymentIndexer:
    """
    Polls the ledger for payments into a facilitator account.

    Parsed events are pinned by signature, so polling the same range twice
    returns identical PaymentEvent records. A transaction without a block
    time takes the listing's block time, and only when both are missing is
    it stamped with the ingestion time; that stamp is stable for as long as
    the event stays in the event cache.
    """

    def __init__(
        self,
        ledger: LedgerClientInterface,
        facilitator_address: str = FACILITATOR_ADDRESS,
        network: str = NETWORK,
        max_concurrency: int = MAX_CONCURRENCY,
        event_cache: Optional[MemoryCache] = None,
        metrics: Optional[GhostScoreMetrics] = None,
    ):
        """
        Initialize the indexer.

        Args:
            ledger: Ledger query client.
            facilitator_address: Account whose incoming transfers are payments.
            network: Network label stamped on events.
            max_concurrency: Concurrent transaction fetches per poll.
            event_cache: Cache pinning parsed events by signature.
            metrics: Metrics collector (global one if None).
        """
        if not facilitator_address:
            raise ConfigurationError("facilitator_address is required")
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")

        self._ledger = ledger
        self._facilitator = facilitator_address
        self._network = network
        self._max_concurrency = max_concurrency
        self._events = event_cache or MemoryCache(max_size=100000, default_ttl=EVENT_CACHE_TTL)
        self._metrics = metrics or get_metrics()

    @property
    def facilitator_address(self) -> str:
        return self._facilitator

    async def _fetch_one(
        self, semaphore: asyncio.Semaphore, info: SignatureInfo
    ) -> Optional[PaymentEvent]:
        cached = await self._events.get(info.signature)
        if cached is not None:
            return cached

        async with semaphore:
            detail = await self._ledger.get_transaction(info.signature)

        if detail is None:
            raise ParseError("Transaction not found", signature=info.signature)

        try:
            event = parse_payment(detail, self._facilitator, self._network, now=info.block_time)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            raise ParseError(f"Malformed transaction: {e}", signature=info.signature)

        if event is None:
            return None

        return await self._events.setdefault(info.signature, event)

    async def _fetch_all(
        self, signatures: List[SignatureInfo]
    ) -> Tuple[List[Tuple[int, PaymentEvent]], List[str]]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def fetch(position: int, info: SignatureInfo):
            try:
                return position, await self._fetch_one(semaphore, info), None
            except RequestTimeoutError:
                raise
            except (NetworkError, ParseError) as e:
                logger.warning(f"Skipping transaction {info.signature}: {e}")
                self._metrics.record_skipped_transaction()
                return position, None, info.signature

        results = await asyncio.gather(
            *(fetch(position, info) for position, info in enumerate(signatures))
        )

        found = [(position, event) for position, event, _ in results if event is not None]
        skipped = [signature for _, _, signature in results if signature is not None]
        return found, skipped

    async def _poll(
        self,
        cursor: Optional[str],
        limit: int,
        until: Optional[str] = None,
    ) -> Tuple[PollPage, List[Tuple[int, PaymentEvent]]]:
        if limit < 1:
            raise ConfigurationError("limit must be at least 1")

        try:
            with self._metrics.poll_timer():
                signatures = await self._ledger.list_signatures(
                    self._facilitator, before=cursor, until=until, limit=limit
                )
                found, skipped = await self._fetch_all(signatures)
        except NetworkError as e:
            logger.warning(f"Poll failed for {self._facilitator}: {e}")
            self._metrics.record_poll(success=False)
            raise

        events = ledger_order(found)
        self._metrics.record_poll(success=True, events=len(events))
        logger.info(
            f"Polled {len(signatures)} signatures for {self._facilitator}: "
            f"{len(events)} payments, {len(skipped)} skipped"
        )

        page = PollPage(
            events=events,
            next_cursor=signatures[-1].signature if signatures else None,
            skipped=skipped,
            fetched=len(signatures),
            newest_signature=signatures[0].signature if signatures else None,
        )
        return page, found

    async def poll_page(
        self,
        cursor: Optional[str] = None,
        limit: int = POLL_LIMIT,
        until: Optional[str] = None,
    ) -> PollPage:
        """
        Poll one page of signatures older than ``cursor``.

        Raises:
            NetworkError: If listing signatures fails, or a single
                transaction fetch times out.
        """
        page, _ = await self._poll(cursor, limit, until)
        return page

    async def poll_transactions(
        self, cursor: Optional[str] = None, limit: int = POLL_LIMIT
    ) -> List[PaymentEvent]:
        """
        Fetch payment events older than ``cursor`` (newest page if None).

        Returns:
            Qualifying events in ledger order.
        """
        page = await self.poll_page(cursor=cursor, limit=limit)
        return page.events

    async def backfill(
        self,
        max_pages: Optional[int] = None,
        limit: int = POLL_LIMIT,
        cursor: Optional[str] = None,
    ) -> AsyncIterator[PollPage]:
        """
        Page backward through history until the ledger returns an empty page.

        Example:
            >>> async for page in indexer.backfill(max_pages=10):
            ...     await engine.ingest(page.events)
        """
        pages = 0
        while max_pages is None or pages < max_pages:
            page = await self.poll_page(cursor=cursor, limit=limit)
            if page.fetched == 0:
                return
            yield page
            pages += 1
            cursor = page.next_cursor

    async def sync(
        self,
        state_store: "SyncStateStoreInterface",
        event_store: Optional["SyncEventStore"] = None,
        limit: int = POLL_LIMIT,
        max_pages: Optional[int] = None,
    ) -> "SyncResult":
        """
        Forward sync everything newer than the last synced signature.

        Raises:
            NetworkError: After recording the failure in the sync state.
        """
        state = await state_store.get_or_create(self._facilitator)
        until = state.last_signature or None

        logger.info(
            f"Starting sync for {self._facilitator} "
            f"(last signature: {until or 'none'}, total synced: {state.total_synced})"
        )

        found: List[Tuple[int, PaymentEvent]] = []
        skipped: List[str] = []
        newest: Optional[str] = None
        cursor: Optional[str] = None
        offset = 0
        pages = 0

        try:
            while max_pages is None or pages < max_pages:
                page, page_found = await self._poll(cursor, limit, until)
                if page.fetched == 0:
                    break
                if newest is None:
                    newest = page.newest_signature
                # pages arrive newest first; offset keeps positions comparable
                found.extend((offset + position, event) for position, event in page_found)
                skipped.extend(page.skipped)
                offset += page.fetched
                pages += 1
                cursor = page.next_cursor
                if page.fetched < limit:
                    break
        except NetworkError as e:
            state.errors += 1
            await state_store.save(state)
            logger.error(f"Sync failed for {self._facilitator}: {e}")
            raise

        events = ledger_order(found)
        if event_store is not None:
            for event in events:
                await event_store.record(
                    event, self._facilitator, source_webhook=False, source_on_chain=True
                )

        if newest is not None:
            state.last_signature = newest
        state.last_sync_at = int(time.time())
        state.total_synced += len(events)
        await state_store.save(state)

        logger.info(f"Synced {len(events)} payments for {self._facilitator}")

        return SyncResult(
            success=True,
            synced_count=len(events),
            last_signature=state.last_signature or None,
            events=events,
            skipped=skipped,
        )


# =============================================================================
# Sync state
# =============================================================================


@dataclass
class SyncState:
    """Per-facilitator sync progress."""

    facilitator_address: str
    last_signature: str = ""
    last_sync_at: int = 0
    total_synced: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SyncResult:
    success: bool
    synced_count: int
    last_signature: Optional[str] = None
    events: List[PaymentEvent] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class SyncStateStoreInterface(ABC):
    """Abstract interface for sync state persistence."""

    @abstractmethod
    async def get(self, facilitator_address: str) -> Optional[SyncState]:
        pass

    @abstractmethod
    async def save(self, state: SyncState) -> None:
        pass

    async def get_or_create(self, facilitator_address: str) -> SyncState:
        state = await self.get(facilitator_address)
        if state is None:
            state = SyncState(facilitator_address=facilitator_address)
            await self.save(state)
            logger.info(f"Initialized sync state for {facilitator_address}")
        return state


class MemorySyncStateStore(SyncStateStoreInterface):
    """In-memory sync state store for development and testing."""

    def __init__(self):
        self._states: Dict[str, SyncState] = {}
        self._lock = asyncio.Lock()

    async def get(self, facilitator_address: str) -> Optional[SyncState]:
        async with self._lock:
            return self._states.get(facilitator_address)

    async def save(self, state: SyncState) -> None:
        async with self._lock:
            self._states[state.facilitator_address] = state

    async def all(self) -> List[SyncState]:
        async with self._lock:
            return list(self._states.values())


# =============================================================================
# Dual-source events
# =============================================================================


@dataclass
class SyncEvent:
    """A payment seen by the webhook, the on-chain sync, or both."""

    signature: str
    facilitator_address: str
    merchant: str
    payer: str
    amount: int
    success: bool
    source_webhook: bool
    source_on_chain: bool
    synced_at: int

    @property
    def verified(self) -> bool:
        return self.source_webhook and self.source_on_chain

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IntegrityReport:
    total: int
    webhook_only: int
    on_chain_only: int
    verified: int
    missed_signatures: List[str] = field(default_factory=list)

    @property
    def verification_rate(self) -> float:
        return (self.verified / self.total) * 100 if self.total else 0.0


class SyncEventStore:
    """
    Tracks which source reported each payment.

    Recording is idempotent per signature: source flags only ever turn on,
    and on-chain data replaces the placeholders a webhook leaves behind.
    """

    def __init__(self):
        self._events: Dict[str, SyncEvent] = {}
        self._lock = asyncio.Lock()

    async def record(
        self,
        event: PaymentEvent,
        facilitator_address: str,
        source_webhook: bool = False,
        source_on_chain: bool = True,
    ) -> SyncEvent:
        async with self._lock:
            existing = self._events.get(event.signature)
            if existing is None:
                record = SyncEvent(
                    signature=event.signature,
                    facilitator_address=facilitator_address,
                    merchant=event.merchant,
                    payer=event.payer,
                    amount=event.amount,
                    success=event.success,
                    source_webhook=source_webhook,
                    source_on_chain=source_on_chain,
                    synced_at=int(time.time()),
                )
                self._events[event.signature] = record
                logger.debug(f"Recorded new sync event {event.signature}")
                return record

            if source_on_chain:
                existing.facilitator_address = facilitator_address
                existing.merchant = event.merchant
                existing.payer = event.payer
                existing.amount = event.amount
                existing.success = event.success
            existing.source_webhook = existing.source_webhook or source_webhook
            existing.source_on_chain = existing.source_on_chain or source_on_chain
            logger.debug(
                f"Updated source flags for {event.signature}: "
                f"webhook={existing.source_webhook}, on_chain={existing.source_on_chain}"
            )
            return existing

    async def mark_webhook_received(
        self, signature: str, merchant: str, timestamp: int
    ) -> SyncEvent:
        """Record a webhook delivery; payer and amount arrive with the on-chain sync."""
        placeholder = PaymentEvent(
            signature=signature,
            merchant=merchant,
            payer="",
            amount=0,
            success=True,
            timestamp=timestamp,
            network="",
        )
        return await self.record(placeholder, "", source_webhook=True, source_on_chain=False)

    async def get(self, signature: str) -> Optional[SyncEvent]:
        async with self._lock:
            return self._events.get(signature)

    async def integrity_report(self) -> IntegrityReport:
        """Compare webhook deliveries against on-chain observations."""
        async with self._lock:
            events = list(self._events.values())

        webhook_only = [e for e in events if e.source_webhook and not e.source_on_chain]
        on_chain_only = [e for e in events if e.source_on_chain and not e.source_webhook]
        verified = [e for e in events if e.verified]

        report = IntegrityReport(
            total=len(events),
            webhook_only=len(webhook_only),
            on_chain_only=len(on_chain_only),
            verified=len(verified),
            missed_signatures=[e.signature for e in on_chain_only],
        )

        if on_chain_only:
            logger.warning(
                f"{len(on_chain_only)} payments not received via webhook, e.g. "
                f"{report.missed_signatures[:5]}"
            )

        return report
