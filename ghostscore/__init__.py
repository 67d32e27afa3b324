"""
GhostScore - Payment-backed reputation for autonomous agents.

Indexes facilitator payments from the ledger, turns them into per-agent
reputation scores and tags, and controls who may see them.
"""

__version__ = "0.1.0"

# Core types
from .errors import (
    GhostScoreError,
    ConfigurationError,
    NetworkError,
    RequestTimeoutError,
    ParseError,
    ValidationError,
    AuthorizationError,
    TamperEvidenceError,
)
from .models import PaymentEvent, RatingSubmission
from .reputation import ReputationEngine, ReputationMetrics, AgentReputation, apply_rating


def __getattr__(name):
    """Lazy loading of the optional layers."""
    if name in ("PaymentIndexer", "PollPage", "SyncEventStore", "MemorySyncStateStore"):
        from . import indexer

        return getattr(indexer, name)
    elif name in ("SolanaRpcClient", "LedgerClientInterface"):
        from . import ledger

        return getattr(ledger, name)
    elif name in ("TagEngine", "TagScore", "TagCategory"):
        from . import tags

        return getattr(tags, name)
    elif name in (
        "PrivacyManager",
        "PrivacyMode",
        "PrivacySettings",
        "VisibleReputation",
        "ReputationTier",
    ):
        from . import privacy

        return getattr(privacy, name)
    elif name in ("SourceAggregator", "SourceScore"):
        from . import sources

        return getattr(sources, name)
    elif name in (
        "encrypt_amount",
        "decrypt_amount",
        "encrypt_data",
        "decrypt_data",
        "generate_keypair",
        "prepare_for_zk_migration",
    ):
        from . import crypto

        return getattr(crypto, name)
    elif name == "storage_cost":
        from .billing import storage_cost

        return storage_cost
    elif name in ("GhostScoreMetrics", "get_metrics"):
        from . import metrics

        return getattr(metrics, name)
    elif name == "MemoryCache":
        from .cache import MemoryCache

        return MemoryCache
    elif name == "ReputationService":
        from .service import ReputationService

        return ReputationService
    raise AttributeError(f"module 'ghostscore' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Errors
    "GhostScoreError",
    "ConfigurationError",
    "NetworkError",
    "RequestTimeoutError",
    "ParseError",
    "ValidationError",
    "AuthorizationError",
    "TamperEvidenceError",
    # Core
    "PaymentEvent",
    "RatingSubmission",
    "ReputationEngine",
    "ReputationMetrics",
    "AgentReputation",
    "apply_rating",
    # Indexing (lazy loaded)
    "PaymentIndexer",
    "PollPage",
    "SyncEventStore",
    "MemorySyncStateStore",
    "SolanaRpcClient",
    "LedgerClientInterface",
    # Tags
    "TagEngine",
    "TagScore",
    "TagCategory",
    # Privacy
    "PrivacyManager",
    "PrivacyMode",
    "PrivacySettings",
    "VisibleReputation",
    "ReputationTier",
    # Sources
    "SourceAggregator",
    "SourceScore",
    # Confidential amounts
    "encrypt_amount",
    "decrypt_amount",
    "encrypt_data",
    "decrypt_data",
    "generate_keypair",
    "prepare_for_zk_migration",
    # Billing
    "storage_cost",
    # Observability
    "GhostScoreMetrics",
    "get_metrics",
    "MemoryCache",
    # Service
    "ReputationService",
]
