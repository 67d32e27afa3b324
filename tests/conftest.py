"""
Shared pytest fixtures for GhostScore tests.
"""

from typing import Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from ghostscore.cache import MemoryCache
from ghostscore.crypto import KeyPair, generate_keypair
from ghostscore.indexer import MEMO_PROGRAMS, TOKEN_PROGRAM_ID, PaymentIndexer
from ghostscore.ledger import LedgerClientInterface, SignatureInfo, TransactionDetail
from ghostscore.metrics import GhostScoreMetrics
from ghostscore.models import PaymentEvent
from ghostscore.reputation import ReputationEngine

FACILITATOR = "FaciLitator11111111111111111111111111111111"
BLOCK_TIME = 1_700_000_000


class FakeLedger(LedgerClientInterface):
    """
    Scripted ledger. Transfers are added oldest first and listed newest
    first, the way the RPC node lists them.
    """

    def __init__(self):
        self.signatures: List[SignatureInfo] = []
        self.transactions: Dict[str, TransactionDetail] = {}
        self.failures: Dict[str, Exception] = {}
        self.list_error: Optional[Exception] = None
        self.fetches: List[str] = []

    def add_transaction(self, detail: TransactionDetail) -> None:
        self.transactions[detail.signature] = detail
        self.signatures.insert(
            0, SignatureInfo(detail.signature, detail.slot, detail.block_time, detail.err)
        )

    def add_transfer(
        self,
        signature: str,
        slot: int,
        amount: int = 1_000_000,
        payer: str = "payer-1",
        destination: str = FACILITATOR,
        block_time: Optional[int] = BLOCK_TIME,
        err=None,
        memo: Optional[str] = None,
        checked: bool = False,
    ) -> None:
        if checked:
            parsed = {
                "type": "transferChecked",
                "info": {
                    "source": payer,
                    "destination": destination,
                    "tokenAmount": {"amount": str(amount), "decimals": 6},
                },
            }
        else:
            parsed = {
                "type": "transfer",
                "info": {"source": payer, "destination": destination, "amount": str(amount)},
            }

        instructions = [{"program": "spl-token", "programId": TOKEN_PROGRAM_ID, "parsed": parsed}]
        if memo is not None:
            instructions.append(
                {"program": "spl-memo", "programId": sorted(MEMO_PROGRAMS)[0], "parsed": memo}
            )

        self.add_transaction(TransactionDetail(signature, slot, block_time, err, instructions))

    async def list_signatures(self, address, before=None, until=None, limit=100):
        if self.list_error is not None:
            raise self.list_error

        listed = list(self.signatures)
        if before is not None:
            names = [s.signature for s in listed]
            listed = listed[names.index(before) + 1:]
        if until is not None:
            names = [s.signature for s in listed]
            if until in names:
                listed = listed[: names.index(until)]
        return listed[:limit]

    async def get_transaction(self, signature):
        self.fetches.append(signature)
        if signature in self.failures:
            raise self.failures[signature]
        return self.transactions.get(signature)


def make_event(
    signature: str,
    merchant: str = "agent-1",
    payer: str = "payer-1",
    amount: int = 1_000_000,
    success: bool = True,
    timestamp: int = BLOCK_TIME,
    slot: int = 1,
    response_time_ms: Optional[int] = None,
) -> PaymentEvent:
    return PaymentEvent(
        signature=signature,
        merchant=merchant,
        payer=payer,
        amount=amount,
        success=success,
        timestamp=timestamp,
        network="devnet",
        slot=slot,
        response_time_ms=response_time_ms,
    )


@pytest.fixture
def metrics() -> GhostScoreMetrics:
    """Metrics collector with a private Prometheus registry."""
    return GhostScoreMetrics(registry=CollectorRegistry())


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def indexer(ledger: FakeLedger, metrics: GhostScoreMetrics) -> PaymentIndexer:
    """Indexer over the fake ledger with a fresh event cache."""
    return PaymentIndexer(
        ledger,
        facilitator_address=FACILITATOR,
        network="devnet",
        max_concurrency=4,
        event_cache=MemoryCache(max_size=1000, default_ttl=3600),
        metrics=metrics,
    )


@pytest.fixture
def engine(metrics: GhostScoreMetrics) -> ReputationEngine:
    return ReputationEngine(metrics=metrics)


@pytest.fixture
def keypair() -> KeyPair:
    """Generate a fresh X25519 keypair for testing."""
    return generate_keypair()


@pytest.fixture
def memory_cache() -> MemoryCache:
    """Create a memory cache for testing."""
    return MemoryCache(max_size=100, default_ttl=60)
