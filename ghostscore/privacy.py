"""
GhostScore Privacy / Disclosure Engine.

Decides what a given viewer may see of an agent's reputation. The owner and
explicitly authorized viewers always get full access; everyone else sees
what the agent's privacy mode allows:

    PUBLIC        exact score, tier, range, all metrics and tags
    TIER_ONLY     tier label only
    RANGE_ONLY    coarse score bucket only
    CONFIDENTIAL  nothing numeric; disclosure needs a (future) proof
    CUSTOM        per-metric visibility; score/tier/range follow "score"

Scores are basis points (0-10000). to_display_score() is the only place the
0-1000 display scale appears.
"""

import time
import asyncio
import logging
from typing import Optional, List, Dict, Any, Callable, TYPE_CHECKING
from dataclasses import dataclass, field, fields, replace
from enum import Enum

from ghostscore.config import MAX_AUTHORIZED_VIEWERS
from ghostscore.errors import AuthorizationError, ValidationError

if TYPE_CHECKING:
    from ghostscore.reputation import ReputationMetrics
    from ghostscore.tags import TagScore

logger = logging.getLogger(__name__)

MAX_SCORE = 10000


class PrivacyMode(Enum):
    PUBLIC = "public"
    TIER_ONLY = "tier_only"
    RANGE_ONLY = "range_only"
    CONFIDENTIAL = "confidential"
    CUSTOM = "custom"


class VisibilityLevel(Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    ZK_PROOF = "zk_proof"


class ReputationTier(Enum):
    NONE = "none"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class ScoreRange(Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


def _check_score(score: int) -> None:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("Score must be an integer")
    if score < 0 or score > MAX_SCORE:
        raise ValidationError(f"Score must be in [0, {MAX_SCORE}] basis points, got {score}")


def get_reputation_tier(score: int) -> ReputationTier:
    """Step function over the exact basis-point score."""
    _check_score(score)
    if score >= 9000:
        return ReputationTier.PLATINUM
    if score >= 7500:
        return ReputationTier.GOLD
    if score >= 5000:
        return ReputationTier.SILVER
    if score >= 2000:
        return ReputationTier.BRONZE
    return ReputationTier.NONE


def get_score_range(score: int) -> ScoreRange:
    _check_score(score)
    if score < 2000:
        return ScoreRange.VERY_LOW
    if score < 5000:
        return ScoreRange.LOW
    if score < 7500:
        return ScoreRange.MEDIUM
    if score < 9000:
        return ScoreRange.HIGH
    return ScoreRange.VERY_HIGH


def to_display_score(score: int) -> int:
    """Basis points to the 0-1000 display scale. Presentation only."""
    _check_score(score)
    return score // 10


# =============================================================================
# Settings
# =============================================================================


@dataclass
class MetricVisibility:
    """Visibility level per disclosed metric."""

    score: VisibilityLevel = VisibilityLevel.PUBLIC
    jobs_completed: VisibilityLevel = VisibilityLevel.PUBLIC
    success_rate: VisibilityLevel = VisibilityLevel.PUBLIC
    response_time: VisibilityLevel = VisibilityLevel.PUBLIC
    disputes: VisibilityLevel = VisibilityLevel.PUBLIC
    ratings: VisibilityLevel = VisibilityLevel.PUBLIC
    tags: VisibilityLevel = VisibilityLevel.PUBLIC

    @classmethod
    def uniform(cls, level: VisibilityLevel) -> "MetricVisibility":
        return cls(**{f.name: level for f in fields(cls)})

    def levels(self) -> Dict[str, VisibilityLevel]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def is_public(self, metric: str) -> bool:
        return getattr(self, metric) == VisibilityLevel.PUBLIC

    def to_dict(self) -> dict:
        return {name: level.value for name, level in self.levels().items()}

    @classmethod
    def from_dict(cls, data: dict) -> "MetricVisibility":
        return cls(**{name: VisibilityLevel(value) for name, value in data.items()})


def default_metric_visibility(mode: PrivacyMode) -> MetricVisibility:
    if mode == PrivacyMode.PUBLIC:
        return MetricVisibility.uniform(VisibilityLevel.PUBLIC)
    if mode == PrivacyMode.CONFIDENTIAL:
        return MetricVisibility.uniform(VisibilityLevel.ZK_PROOF)
    if mode == PrivacyMode.CUSTOM:
        return MetricVisibility(
            score=VisibilityLevel.PRIVATE,
            disputes=VisibilityLevel.PRIVATE,
        )
    return MetricVisibility.uniform(VisibilityLevel.PRIVATE)


@dataclass
class PrivacySettings:
    """
    Per-agent disclosure policy.

    Attributes:
        agent: Agent the settings apply to.
        owner: Identity allowed to change them.
        mode: Disclosure mode.
        metric_visibility: Per-metric levels (effective in CUSTOM mode).
        authorized_viewers: Identities with full access, in grant order.
        auto_grant_clients: Grant access to payers automatically.
        updated_at: Unix timestamp of the last change.
    """

    agent: str
    owner: str
    mode: PrivacyMode = PrivacyMode.PUBLIC
    metric_visibility: MetricVisibility = field(default_factory=MetricVisibility)
    authorized_viewers: List[str] = field(default_factory=list)
    auto_grant_clients: bool = False
    updated_at: int = 0

    def to_dict(self) -> dict:
        return {
            "agent": self.agent,
            "owner": self.owner,
            "mode": self.mode.value,
            "metric_visibility": self.metric_visibility.to_dict(),
            "authorized_viewers": list(self.authorized_viewers),
            "auto_grant_clients": self.auto_grant_clients,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PrivacySettings":
        return cls(
            agent=data["agent"],
            owner=data["owner"],
            mode=PrivacyMode(data.get("mode", PrivacyMode.PUBLIC.value)),
            metric_visibility=MetricVisibility.from_dict(data.get("metric_visibility", {})),
            authorized_viewers=list(data.get("authorized_viewers", [])),
            auto_grant_clients=bool(data.get("auto_grant_clients", False)),
            updated_at=int(data.get("updated_at", 0)),
        )


def public_settings(agent: str, owner: Optional[str] = None) -> PrivacySettings:
    """Settings used for agents that never configured privacy."""
    return PrivacySettings(
        agent=agent,
        owner=owner or agent,
        mode=PrivacyMode.PUBLIC,
        metric_visibility=default_metric_visibility(PrivacyMode.PUBLIC),
        updated_at=int(time.time()),
    )


def validate_privacy_settings(
    settings: PrivacySettings, max_authorized_viewers: int = MAX_AUTHORIZED_VIEWERS
) -> None:
    """
    Raises:
        ValidationError: Listing every problem found.
    """
    errors = []

    if not isinstance(settings.mode, PrivacyMode):
        errors.append(f"Unknown privacy mode: {settings.mode!r}")

    if settings.mode == PrivacyMode.PUBLIC:
        private = [
            name
            for name, level in settings.metric_visibility.levels().items()
            if level != VisibilityLevel.PUBLIC
        ]
        if private:
            errors.append(f"Public mode cannot have non-public metrics: {', '.join(private)}")

    if len(settings.authorized_viewers) > max_authorized_viewers:
        errors.append(
            f"Too many authorized viewers ({len(settings.authorized_viewers)} > "
            f"{max_authorized_viewers})"
        )

    if len(set(settings.authorized_viewers)) != len(settings.authorized_viewers):
        errors.append("Authorized viewers contain duplicates")

    if errors:
        raise ValidationError("; ".join(errors))


@dataclass
class PrivacyPreset:
    name: str
    mode: PrivacyMode
    metric_visibility: MetricVisibility
    description: str = ""


PRESETS: Dict[str, PrivacyPreset] = {
    "CONSERVATIVE": PrivacyPreset(
        "CONSERVATIVE",
        PrivacyMode.CONFIDENTIAL,
        default_metric_visibility(PrivacyMode.CONFIDENTIAL),
        "Nothing numeric is disclosed without explicit access",
    ),
    "BALANCED": PrivacyPreset(
        "BALANCED",
        PrivacyMode.CUSTOM,
        default_metric_visibility(PrivacyMode.CUSTOM),
        "Activity metrics public, score and disputes private",
    ),
    "OPEN": PrivacyPreset(
        "OPEN",
        PrivacyMode.PUBLIC,
        default_metric_visibility(PrivacyMode.PUBLIC),
        "Everything public",
    ),
}


# =============================================================================
# Projection
# =============================================================================


@dataclass
class VisibleReputation:
    """What one viewer is allowed to see. Hidden fields are None."""

    agent: str
    privacy_mode: PrivacyMode
    has_full_access: bool
    requires_proof: bool = False
    score: Optional[int] = None
    tier: Optional[ReputationTier] = None
    score_range: Optional[ScoreRange] = None
    jobs_completed: Optional[int] = None
    jobs_failed: Optional[int] = None
    success_rate: Optional[int] = None
    avg_response_time: Optional[int] = None
    total_disputes: Optional[int] = None
    disputes_resolved: Optional[int] = None
    avg_rating: Optional[int] = None
    total_ratings_count: Optional[int] = None
    tags: Optional[List["TagScore"]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "privacy_mode": self.privacy_mode.value,
            "has_full_access": self.has_full_access,
            "requires_proof": self.requires_proof,
            "score": self.score,
            "tier": self.tier.value if self.tier else None,
            "score_range": self.score_range.value if self.score_range else None,
            "jobs_completed": self.jobs_completed,
            "jobs_failed": self.jobs_failed,
            "success_rate": self.success_rate,
            "avg_response_time": self.avg_response_time,
            "total_disputes": self.total_disputes,
            "disputes_resolved": self.disputes_resolved,
            "avg_rating": self.avg_rating,
            "total_ratings_count": self.total_ratings_count,
            "tags": [t.to_dict() for t in self.tags] if self.tags is not None else None,
        }


def can_viewer_access(viewer: Optional[str], settings: PrivacySettings) -> bool:
    if not viewer:
        return False
    return viewer == settings.owner or viewer in settings.authorized_viewers


def _disclose_metric(
    visible: VisibleReputation,
    metric: str,
    metrics: "ReputationMetrics",
    tags: List["TagScore"],
) -> None:
    if metric == "jobs_completed":
        visible.jobs_completed = metrics.successful_payments
        visible.jobs_failed = metrics.failed_payments
    elif metric == "success_rate":
        visible.success_rate = metrics.success_rate
    elif metric == "response_time":
        visible.avg_response_time = metrics.avg_response_time
    elif metric == "disputes":
        visible.total_disputes = metrics.total_disputes
        visible.disputes_resolved = metrics.disputes_resolved
    elif metric == "ratings":
        visible.avg_rating = metrics.avg_rating
        visible.total_ratings_count = metrics.total_ratings_count
    elif metric == "tags":
        visible.tags = list(tags)


def _disclose_score(visible: VisibleReputation, score: int) -> None:
    visible.score = score
    visible.tier = get_reputation_tier(score)
    visible.score_range = get_score_range(score)


def project(
    metrics: "ReputationMetrics",
    score: int,
    tags: List["TagScore"],
    settings: PrivacySettings,
    viewer: Optional[str],
) -> VisibleReputation:
    """Filter an agent's reputation down to what viewer may see."""
    _check_score(score)
    full_access = can_viewer_access(viewer, settings)
    mode = settings.mode

    visible = VisibleReputation(
        agent=settings.agent, privacy_mode=mode, has_full_access=full_access
    )
    metric_names = list(settings.metric_visibility.levels())

    if full_access or mode == PrivacyMode.PUBLIC:
        _disclose_score(visible, score)
        for metric in metric_names:
            _disclose_metric(visible, metric, metrics, tags)
    elif mode == PrivacyMode.TIER_ONLY:
        visible.tier = get_reputation_tier(score)
    elif mode == PrivacyMode.RANGE_ONLY:
        visible.score_range = get_score_range(score)
    elif mode == PrivacyMode.CONFIDENTIAL:
        visible.requires_proof = True
    elif mode == PrivacyMode.CUSTOM:
        if settings.metric_visibility.is_public("score"):
            _disclose_score(visible, score)
        for metric in metric_names:
            if metric != "score" and settings.metric_visibility.is_public(metric):
                _disclose_metric(visible, metric, metrics, tags)
        visible.requires_proof = any(
            level == VisibilityLevel.ZK_PROOF
            for level in settings.metric_visibility.levels().values()
        )

    return visible


# =============================================================================
# Settings management
# =============================================================================


def _copy_settings(settings: PrivacySettings) -> PrivacySettings:
    return replace(
        settings,
        metric_visibility=replace(settings.metric_visibility),
        authorized_viewers=list(settings.authorized_viewers),
    )


class PrivacyManager:
    """
    In-memory privacy settings registry.

    Every mutation is checked against the settings owner and validated
    before it replaces the stored settings.

    Example:
        >>> manager = PrivacyManager()
        >>> await manager.initialize("agent-1", owner="owner-1", mode=PrivacyMode.TIER_ONLY)
        >>> await manager.grant_access("agent-1", caller="owner-1", viewer="client-9")
    """

    def __init__(self, max_authorized_viewers: int = MAX_AUTHORIZED_VIEWERS):
        self._settings: Dict[str, PrivacySettings] = {}
        self._max_viewers = max_authorized_viewers
        self._lock = asyncio.Lock()

    async def get_settings(self, agent: str) -> Optional[PrivacySettings]:
        """Copy of the stored settings; changes go through the owner-checked methods."""
        async with self._lock:
            current = self._settings.get(agent)
            return _copy_settings(current) if current is not None else None

    async def initialize(
        self,
        agent: str,
        owner: str,
        mode: PrivacyMode = PrivacyMode.PUBLIC,
        metric_visibility: Optional[MetricVisibility] = None,
        auto_grant_clients: bool = False,
    ) -> PrivacySettings:
        if metric_visibility is None:
            metric_visibility = default_metric_visibility(mode)
        settings = PrivacySettings(
            agent=agent,
            owner=owner,
            mode=mode,
            metric_visibility=replace(metric_visibility),
            auto_grant_clients=auto_grant_clients,
            updated_at=int(time.time()),
        )
        validate_privacy_settings(settings, self._max_viewers)

        async with self._lock:
            if agent in self._settings:
                raise ValidationError(f"Privacy settings already initialized for {agent}")
            self._settings[agent] = settings

        logger.info(f"Initialized privacy for {agent} in {mode.value} mode")
        return _copy_settings(settings)

    async def _mutate(
        self,
        agent: str,
        caller: str,
        change: Optional[Callable[[PrivacySettings], Dict[str, Any]]] = None,
        **changes,
    ) -> PrivacySettings:
        async with self._lock:
            current = self._settings.get(agent)
            if current is None:
                raise ValidationError(f"No privacy settings for {agent}")
            if caller != current.owner:
                raise AuthorizationError(f"{caller} is not the owner of {agent}")

            if change is not None:
                changes.update(change(current))
            updated = replace(current, updated_at=int(time.time()), **changes)
            validate_privacy_settings(updated, self._max_viewers)
            self._settings[agent] = updated
            return _copy_settings(updated)

    async def update_mode(self, agent: str, caller: str, mode: PrivacyMode) -> PrivacySettings:
        """Switch mode; metric levels reset to the mode's defaults."""
        settings = await self._mutate(
            agent, caller, mode=mode, metric_visibility=default_metric_visibility(mode)
        )
        logger.info(f"Privacy mode for {agent} set to {mode.value}")
        return settings

    async def set_metric_visibility(
        self, agent: str, caller: str, visibility: MetricVisibility
    ) -> PrivacySettings:
        def change(current: PrivacySettings) -> Dict[str, Any]:
            if current.mode != PrivacyMode.CUSTOM:
                raise ValidationError("Metric visibility can only be set in custom mode")
            return {"metric_visibility": replace(visibility)}

        return await self._mutate(agent, caller, change)

    async def grant_access(self, agent: str, caller: str, viewer: str) -> PrivacySettings:
        if not viewer:
            raise ValidationError("Viewer identity is required")

        def change(current: PrivacySettings) -> Dict[str, Any]:
            if viewer in current.authorized_viewers:
                return {}
            return {"authorized_viewers": current.authorized_viewers + [viewer]}

        settings = await self._mutate(agent, caller, change)
        logger.debug(f"Granted {viewer} access to {agent}")
        return settings

    async def revoke_access(self, agent: str, caller: str, viewer: str) -> PrivacySettings:
        def change(current: PrivacySettings) -> Dict[str, Any]:
            return {"authorized_viewers": [v for v in current.authorized_viewers if v != viewer]}

        settings = await self._mutate(agent, caller, change)
        logger.debug(f"Revoked {viewer} access to {agent}")
        return settings

    async def set_auto_grant(self, agent: str, caller: str, enabled: bool) -> PrivacySettings:
        return await self._mutate(agent, caller, auto_grant_clients=enabled)

    async def apply_preset(self, agent: str, caller: str, preset: str) -> PrivacySettings:
        try:
            chosen = PRESETS[preset.upper()]
        except KeyError:
            raise ValidationError(f"Unknown privacy preset: {preset}")
        settings = await self._mutate(
            agent,
            caller,
            mode=chosen.mode,
            metric_visibility=replace(chosen.metric_visibility),
        )
        logger.info(f"Applied {chosen.name} privacy preset to {agent}")
        return settings

    async def auto_grant(self, agent: str, viewer: str) -> bool:
        """
        Grant a paying client access if the agent opted in.

        Returns True if the viewer has access afterwards. A full viewer list
        is left unchanged.
        """
        async with self._lock:
            current = self._settings.get(agent)
            if current is None or not current.auto_grant_clients or not viewer:
                return False
            if viewer in current.authorized_viewers:
                return True
            if len(current.authorized_viewers) >= self._max_viewers:
                logger.warning(f"Authorized viewer list for {agent} is full; not granting {viewer}")
                return False
            self._settings[agent] = replace(
                current,
                authorized_viewers=current.authorized_viewers + [viewer],
                updated_at=int(time.time()),
            )
            return True
