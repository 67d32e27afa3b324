# ghostscore/config.py
"""
Centralized configuration for GhostScore.

All configurable values are read from environment variables with sensible defaults.
This allows different environments (devnet, mainnet, local validator) to use
different settings without code changes.

Usage:
    from ghostscore.config import RPC_URL, FACILITATOR_ADDRESS

    async with SolanaRpcClient(RPC_URL) as ledger:
        indexer = PaymentIndexer(ledger, FACILITATOR_ADDRESS)

Environment Variables:
    GHOSTSCORE_RPC_URL: Ledger JSON-RPC endpoint (default: https://api.devnet.solana.com)
    GHOSTSCORE_NETWORK: Network label stamped on payment events (default: devnet)
    GHOSTSCORE_FACILITATOR_ADDRESS: Account polled for incoming payments (default: empty)
    GHOSTSCORE_HTTP_TIMEOUT: Per-request timeout in seconds (default: 10)
    GHOSTSCORE_POLL_LIMIT: Signatures fetched per poll (default: 100)
    GHOSTSCORE_MAX_CONCURRENCY: Concurrent transaction fetches (default: 10)
    GHOSTSCORE_MAX_AUTHORIZED_VIEWERS: Authorized viewer cap per agent (default: 100)
"""

import os
from typing import Final

# =============================================================================
# Ledger Configuration
# =============================================================================

RPC_URL: Final[str] = os.getenv(
    "GHOSTSCORE_RPC_URL",
    "https://api.devnet.solana.com"
)

NETWORK: Final[str] = os.getenv("GHOSTSCORE_NETWORK", "devnet")

# Empty means "must be supplied by the caller"
FACILITATOR_ADDRESS: Final[str] = os.getenv("GHOSTSCORE_FACILITATOR_ADDRESS", "")

HTTP_TIMEOUT: Final[float] = float(os.getenv("GHOSTSCORE_HTTP_TIMEOUT", "10"))

# =============================================================================
# Indexer Configuration
# =============================================================================

POLL_LIMIT: Final[int] = int(os.getenv("GHOSTSCORE_POLL_LIMIT", "100"))

MAX_CONCURRENCY: Final[int] = int(os.getenv("GHOSTSCORE_MAX_CONCURRENCY", "10"))

# Parsed events stay pinned this long so re-polls return identical records
EVENT_CACHE_TTL: Final[int] = int(os.getenv("GHOSTSCORE_EVENT_CACHE_TTL", "86400"))

# =============================================================================
# Privacy Configuration
# =============================================================================

MAX_AUTHORIZED_VIEWERS: Final[int] = int(
    os.getenv("GHOSTSCORE_MAX_AUTHORIZED_VIEWERS", "100")
)


def print_config() -> None:
    """Print current configuration (useful for debugging)."""
    print("GhostScore Configuration:")
    print(f"  RPC_URL:                {RPC_URL}")
    print(f"  NETWORK:                {NETWORK}")
    print(f"  FACILITATOR_ADDRESS:    {FACILITATOR_ADDRESS or '(unset)'}")
    print(f"  HTTP_TIMEOUT:           {HTTP_TIMEOUT}")
    print(f"  POLL_LIMIT:             {POLL_LIMIT}")
    print(f"  MAX_CONCURRENCY:        {MAX_CONCURRENCY}")
    print(f"  MAX_AUTHORIZED_VIEWERS: {MAX_AUTHORIZED_VIEWERS}")


if __name__ == "__main__":
    print_config()
