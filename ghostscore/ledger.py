"""
GhostScore Ledger Client.

Read-only ledger access for the payment indexer: list the signatures that
touched an account and fetch individual parsed transactions.

LedgerClientInterface is what the indexer depends on. SolanaRpcClient
implements it over JSON-RPC (getSignaturesForAddress / getTransaction) with
an httpx.AsyncClient; tests substitute a fake client or an
httpx.MockTransport.
"""

import logging
import itertools
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

import httpx

from ghostscore.config import RPC_URL, HTTP_TIMEOUT
from ghostscore.errors import ConfigurationError, NetworkError, ParseError, RequestTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class SignatureInfo:
    """One entry of a newest-first signature listing."""

    signature: str
    slot: int
    block_time: Optional[int] = None
    err: Optional[Any] = None
    memo: Optional[str] = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "SignatureInfo":
        return cls(
            signature=data["signature"],
            slot=int(data.get("slot") or 0),
            block_time=data.get("blockTime"),
            err=data.get("err"),
            memo=data.get("memo"),
        )


@dataclass
class TransactionDetail:
    """
    A fetched transaction reduced to what the indexer reads.

    Attributes:
        signature: Transaction signature.
        slot: Ledger slot.
        block_time: Unix block time, None if the ledger did not record one.
        err: Execution error, None on success.
        instructions: Parsed instructions, outer first then inner.
    """

    signature: str
    slot: int
    block_time: Optional[int]
    err: Optional[Any]
    instructions: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, signature: str, data: Dict[str, Any]) -> "TransactionDetail":
        meta = data.get("meta") or {}
        message = (data.get("transaction") or {}).get("message") or {}

        instructions = list(message.get("instructions") or [])
        for inner in meta.get("innerInstructions") or []:
            instructions.extend(inner.get("instructions") or [])

        return cls(
            signature=signature,
            slot=int(data.get("slot") or 0),
            block_time=data.get("blockTime"),
            err=meta.get("err"),
            instructions=instructions,
        )


class LedgerClientInterface(ABC):
    """Abstract ledger query interface."""

    @abstractmethod
    async def list_signatures(
        self,
        address: str,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: int = 100,
    ) -> List[SignatureInfo]:
        """
        List signatures involving address, newest first.

        Raises:
            NetworkError: If the query fails or times out.
        """
        pass

    @abstractmethod
    async def get_transaction(self, signature: str) -> Optional[TransactionDetail]:
        """
        Fetch one parsed transaction. Returns None if the ledger does not
        know the signature.

        Raises:
            NetworkError: If the query fails or times out.
            ParseError: If the transaction body is malformed.
        """
        pass


class SolanaRpcClient(LedgerClientInterface):
    """
    JSON-RPC ledger client.

    Example:
        >>> async with SolanaRpcClient("https://api.devnet.solana.com") as ledger:
        ...     sigs = await ledger.list_signatures(facilitator, limit=10)
    """

    def __init__(
        self,
        rpc_url: str = RPC_URL,
        http_timeout: float = HTTP_TIMEOUT,
        max_connections: int = 100,
        commitment: str = "confirmed",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the RPC client.

        Args:
            rpc_url: JSON-RPC endpoint.
            http_timeout: Per-request timeout in seconds.
            max_connections: Max concurrent HTTP connections.
            commitment: Commitment level passed on every query.
            transport: Optional httpx transport (tests use MockTransport).
        """
        if not rpc_url:
            raise ConfigurationError("rpc_url is required")

        self._rpc_url = rpc_url
        self._http_timeout = http_timeout
        self._max_connections = max_connections
        self._commitment = commitment
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def __aenter__(self):
        self._http_client = httpx.AsyncClient(
            timeout=self._http_timeout,
            limits=httpx.Limits(max_connections=self._max_connections),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _call(self, method: str, params: List[Any]) -> Any:
        if self._http_client is None:
            raise ConfigurationError("SolanaRpcClient must be used as an async context manager")

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            response = await self._http_client.post(self._rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} timed out: {e}")
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} failed: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(f"{method} returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise NetworkError(
                f"{method} returned HTTP {response.status_code}", retryable=False
            )

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(f"{method} returned invalid JSON: {e}")

        if body.get("error"):
            error = body["error"]
            raise NetworkError(
                f"{method} RPC error {error.get('code')}: {error.get('message')}",
                retryable=False,
            )

        return body.get("result")

    async def list_signatures(
        self,
        address: str,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: int = 100,
    ) -> List[SignatureInfo]:
        options: Dict[str, Any] = {"limit": limit, "commitment": self._commitment}
        if before:
            options["before"] = before
        if until:
            options["until"] = until

        result = await self._call("getSignaturesForAddress", [address, options])
        signatures = [SignatureInfo.from_rpc(item) for item in result or []]
        logger.debug(f"Listed {len(signatures)} signatures for {address}")
        return signatures

    async def get_transaction(self, signature: str) -> Optional[TransactionDetail]:
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self._commitment,
                },
            ],
        )
        if result is None:
            return None
        try:
            return TransactionDetail.from_rpc(signature, result)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            raise ParseError(f"Malformed transaction: {e}", signature=signature)
