"""
GhostScore shared records.

PaymentEvent is produced by the indexer and consumed read-only by the
reputation engine. RatingSubmission is the rating payload handed to the
ledger-submission layer.
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass, field, asdict

from ghostscore.errors import ValidationError

MIN_RATING = 1
MAX_RATING = 5


def validate_rating(rating: Any) -> int:
    """Return rating if it is an integer in [1, 5], else raise ValidationError."""
    # bool is an int subclass; True must not count as a 1-star rating
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be an integer, got {type(rating).__name__}")
    if rating < MIN_RATING or rating > MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
    return rating


@dataclass(frozen=True)
class PaymentEvent:
    """
    A payment transfer observed on the ledger.

    Attributes:
        signature: Ledger transaction signature (unique key).
        merchant: Destination account of the transfer.
        payer: Source account of the transfer.
        amount: Transferred quantity in the token's smallest unit.
        success: True if the transaction executed without error.
        timestamp: Block time, or ingestion time if the ledger had none.
        network: Network label (devnet, mainnet-beta, ...).
        slot: Ledger slot, used to restore ledger order.
        response_time_ms: Optional service response time from the memo.
        metadata: Optional free-form memo data.
    """

    signature: str
    merchant: str
    payer: str
    amount: int
    success: bool
    timestamp: int
    network: str
    slot: int = 0
    response_time_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentEvent":
        return cls(**data)


@dataclass
class RatingSubmission:
    """
    A client rating for a completed, paid interaction.

    Attributes:
        agent_id: Rated agent.
        rating: Integer stars, 1-5.
        transaction_signature: Payment the rating refers to.
        feedback: Optional free text.
        slot: Ledger slot of the rating, used for ordering.
    """

    agent_id: str
    rating: int
    transaction_signature: str
    feedback: Optional[str] = None
    slot: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        validate_rating(self.rating)
        if not self.agent_id:
            raise ValidationError("Rating requires an agent_id")
        if not self.transaction_signature:
            raise ValidationError("Rating requires a transaction_signature")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RatingSubmission":
        return cls(**data)
