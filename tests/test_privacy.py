"""
Tests for tiers, disclosure projection and privacy settings management.
"""

import pytest

from ghostscore.errors import AuthorizationError, ValidationError
from ghostscore.privacy import (
    MetricVisibility,
    PrivacyManager,
    PrivacyMode,
    PrivacySettings,
    ReputationTier,
    ScoreRange,
    VisibilityLevel,
    default_metric_visibility,
    get_reputation_tier,
    get_score_range,
    project,
    public_settings,
    to_display_score,
    validate_privacy_settings,
)
from ghostscore.reputation import ReputationMetrics
from ghostscore.tags import TagScore

AGENT = "agent-1"
OWNER = "owner-1"


@pytest.fixture
def agent_metrics() -> ReputationMetrics:
    return ReputationMetrics(
        successful_payments=9,
        failed_payments=1,
        total_response_time=2000,
        response_time_count=4,
        total_disputes=2,
        disputes_resolved=1,
        total_rating=45,
        total_ratings_count=10,
    )


@pytest.fixture
def agent_tags():
    return [TagScore("fast-responder", 9000, 4, 1_700_000_000)]


def settings_for(mode: PrivacyMode, **kwargs) -> PrivacySettings:
    return PrivacySettings(
        agent=AGENT,
        owner=OWNER,
        mode=mode,
        metric_visibility=kwargs.pop("metric_visibility", default_metric_visibility(mode)),
        **kwargs,
    )


class TestTiers:
    @pytest.mark.parametrize(
        "score,tier",
        [
            (0, ReputationTier.NONE),
            (1999, ReputationTier.NONE),
            (2000, ReputationTier.BRONZE),
            (4999, ReputationTier.BRONZE),
            (5000, ReputationTier.SILVER),
            (7499, ReputationTier.SILVER),
            (7500, ReputationTier.GOLD),
            (8999, ReputationTier.GOLD),
            (9000, ReputationTier.PLATINUM),
            (10000, ReputationTier.PLATINUM),
        ],
    )
    def test_tier_boundaries(self, score, tier):
        assert get_reputation_tier(score) == tier

    @pytest.mark.parametrize(
        "score,bucket",
        [
            (1999, ScoreRange.VERY_LOW),
            (2000, ScoreRange.LOW),
            (5000, ScoreRange.MEDIUM),
            (7500, ScoreRange.HIGH),
            (9000, ScoreRange.VERY_HIGH),
        ],
    )
    def test_score_range_boundaries(self, score, bucket):
        assert get_score_range(score) == bucket

    @pytest.mark.parametrize("score", [-1, 10001])
    def test_out_of_range_rejected(self, score):
        with pytest.raises(ValidationError):
            get_reputation_tier(score)
        with pytest.raises(ValidationError):
            get_score_range(score)

    def test_display_score(self):
        assert to_display_score(9876) == 987
        assert to_display_score(10000) == 1000


class TestProjection:
    """project() per mode and viewer."""

    def test_public_mode_discloses_everything(self, agent_metrics, agent_tags):
        visible = project(agent_metrics, 8200, agent_tags, settings_for(PrivacyMode.PUBLIC), "anyone")

        assert visible.has_full_access is False
        assert visible.score == 8200
        assert visible.tier == ReputationTier.GOLD
        assert visible.score_range == ScoreRange.HIGH
        assert visible.jobs_completed == 9
        assert visible.jobs_failed == 1
        assert visible.success_rate == 9000
        assert visible.avg_response_time == 500
        assert visible.total_disputes == 2
        assert visible.avg_rating == 90
        assert visible.tags == agent_tags
        assert visible.requires_proof is False

    def test_tier_only(self, agent_metrics, agent_tags):
        visible = project(agent_metrics, 8200, agent_tags, settings_for(PrivacyMode.TIER_ONLY), "anyone")

        assert visible.tier == ReputationTier.GOLD
        assert visible.score is None
        assert visible.score_range is None
        assert visible.jobs_completed is None
        assert visible.tags is None

    def test_range_only(self, agent_metrics, agent_tags):
        visible = project(agent_metrics, 8200, agent_tags, settings_for(PrivacyMode.RANGE_ONLY), None)

        assert visible.score_range == ScoreRange.HIGH
        assert visible.score is None
        assert visible.tier is None

    def test_confidential_hides_all_numbers(self, agent_metrics, agent_tags):
        visible = project(
            agent_metrics, 8200, agent_tags, settings_for(PrivacyMode.CONFIDENTIAL), "stranger"
        )

        assert visible.requires_proof is True
        assert visible.score is None
        assert visible.tier is None
        assert visible.score_range is None
        assert visible.success_rate is None
        assert visible.tags is None

    def test_owner_and_authorized_viewers_see_everything(self, agent_metrics, agent_tags):
        settings = settings_for(PrivacyMode.CONFIDENTIAL, authorized_viewers=["client-9"])

        for viewer in (OWNER, "client-9"):
            visible = project(agent_metrics, 8200, agent_tags, settings, viewer)
            assert visible.has_full_access is True
            assert visible.score == 8200
            assert visible.total_disputes == 2
            assert visible.requires_proof is False

    def test_custom_mode_filters_per_metric(self, agent_metrics, agent_tags):
        visible = project(agent_metrics, 8200, agent_tags, settings_for(PrivacyMode.CUSTOM), "anyone")

        assert visible.score is None
        assert visible.tier is None
        assert visible.total_disputes is None
        assert visible.jobs_completed == 9
        assert visible.success_rate == 9000
        assert visible.avg_rating == 90
        assert visible.tags == agent_tags
        assert visible.requires_proof is False

    def test_custom_mode_with_proof_metric(self, agent_metrics, agent_tags):
        visibility = MetricVisibility(ratings=VisibilityLevel.ZK_PROOF)
        settings = settings_for(PrivacyMode.CUSTOM, metric_visibility=visibility)

        visible = project(agent_metrics, 8200, agent_tags, settings, "anyone")

        assert visible.score == 8200
        assert visible.avg_rating is None
        assert visible.requires_proof is True

    def test_serialized_view(self, agent_metrics, agent_tags):
        visible = project(agent_metrics, 8200, agent_tags, settings_for(PrivacyMode.TIER_ONLY), None)
        data = visible.to_dict()

        assert data["privacy_mode"] == "tier_only"
        assert data["tier"] == "gold"
        assert data["score"] is None
        assert data["tags"] is None


class TestValidation:
    def test_public_mode_rejects_private_metrics(self):
        settings = settings_for(
            PrivacyMode.PUBLIC, metric_visibility=MetricVisibility(score=VisibilityLevel.PRIVATE)
        )
        with pytest.raises(ValidationError, match="score"):
            validate_privacy_settings(settings)

    def test_viewer_bound_and_duplicates(self):
        settings = settings_for(PrivacyMode.TIER_ONLY, authorized_viewers=["a", "b", "a"])
        with pytest.raises(ValidationError) as exc_info:
            validate_privacy_settings(settings, max_authorized_viewers=2)

        assert "Too many" in exc_info.value.message
        assert "duplicates" in exc_info.value.message

    def test_settings_persisted_layout(self):
        settings = settings_for(PrivacyMode.CUSTOM, authorized_viewers=["client-1"])
        assert PrivacySettings.from_dict(settings.to_dict()) == settings

    def test_public_settings_default(self):
        settings = public_settings(AGENT)
        assert settings.owner == AGENT
        validate_privacy_settings(settings)


class TestPrivacyManager:
    """Owner-checked settings mutations."""

    @pytest.mark.asyncio
    async def test_initialize_once(self):
        manager = PrivacyManager()
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.TIER_ONLY)

        with pytest.raises(ValidationError):
            await manager.initialize(AGENT, OWNER)

    @pytest.mark.asyncio
    async def test_only_owner_can_mutate(self):
        manager = PrivacyManager()
        await manager.initialize(AGENT, OWNER)

        with pytest.raises(AuthorizationError):
            await manager.update_mode(AGENT, "mallory", PrivacyMode.PUBLIC)
        with pytest.raises(AuthorizationError):
            await manager.grant_access(AGENT, "mallory", "mallory")

    @pytest.mark.asyncio
    async def test_unknown_agent(self):
        with pytest.raises(ValidationError):
            await PrivacyManager().grant_access("ghost", OWNER, "client-1")

    @pytest.mark.asyncio
    async def test_update_mode_resets_metric_levels(self):
        manager = PrivacyManager()
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.CUSTOM)

        settings = await manager.update_mode(AGENT, OWNER, PrivacyMode.PUBLIC)

        assert settings.mode == PrivacyMode.PUBLIC
        assert all(level == VisibilityLevel.PUBLIC for level in settings.metric_visibility.levels().values())

    @pytest.mark.asyncio
    async def test_grant_and_revoke(self):
        manager = PrivacyManager()
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.CONFIDENTIAL)

        await manager.grant_access(AGENT, OWNER, "client-1")
        await manager.grant_access(AGENT, OWNER, "client-2")
        settings = await manager.grant_access(AGENT, OWNER, "client-1")
        assert settings.authorized_viewers == ["client-1", "client-2"]

        settings = await manager.revoke_access(AGENT, OWNER, "client-1")
        assert settings.authorized_viewers == ["client-2"]

    @pytest.mark.asyncio
    async def test_grant_beyond_bound_rejected(self):
        manager = PrivacyManager(max_authorized_viewers=2)
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.CONFIDENTIAL)
        await manager.grant_access(AGENT, OWNER, "client-1")
        await manager.grant_access(AGENT, OWNER, "client-2")

        with pytest.raises(ValidationError):
            await manager.grant_access(AGENT, OWNER, "client-3")

        settings = await manager.get_settings(AGENT)
        assert settings.authorized_viewers == ["client-1", "client-2"]

    @pytest.mark.asyncio
    async def test_metric_visibility_requires_custom_mode(self):
        manager = PrivacyManager()
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.TIER_ONLY)
        visibility = MetricVisibility(score=VisibilityLevel.PRIVATE)

        with pytest.raises(ValidationError):
            await manager.set_metric_visibility(AGENT, OWNER, visibility)

        await manager.update_mode(AGENT, OWNER, PrivacyMode.CUSTOM)
        settings = await manager.set_metric_visibility(AGENT, OWNER, visibility)
        assert settings.metric_visibility.score == VisibilityLevel.PRIVATE

    @pytest.mark.asyncio
    async def test_presets(self):
        manager = PrivacyManager()
        await manager.initialize(AGENT, OWNER)

        balanced = await manager.apply_preset(AGENT, OWNER, "balanced")
        assert balanced.mode == PrivacyMode.CUSTOM
        assert balanced.metric_visibility.score == VisibilityLevel.PRIVATE

        conservative = await manager.apply_preset(AGENT, OWNER, "CONSERVATIVE")
        assert conservative.mode == PrivacyMode.CONFIDENTIAL

        with pytest.raises(ValidationError):
            await manager.apply_preset(AGENT, OWNER, "reckless")

    @pytest.mark.asyncio
    async def test_auto_grant(self):
        manager = PrivacyManager(max_authorized_viewers=1)
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.CONFIDENTIAL)

        assert await manager.auto_grant(AGENT, "client-1") is False

        await manager.set_auto_grant(AGENT, OWNER, True)
        assert await manager.auto_grant(AGENT, "client-1") is True
        assert await manager.auto_grant(AGENT, "client-1") is True
        assert await manager.auto_grant(AGENT, "client-2") is False

        settings = await manager.get_settings(AGENT)
        assert settings.authorized_viewers == ["client-1"]

    @pytest.mark.asyncio
    async def test_returned_settings_are_copies(self):
        manager = PrivacyManager(max_authorized_viewers=1)
        await manager.initialize(AGENT, OWNER, mode=PrivacyMode.CUSTOM)

        settings = await manager.get_settings(AGENT)
        settings.authorized_viewers.extend(["client-1", "client-2"])
        settings.metric_visibility.score = VisibilityLevel.PUBLIC
        granted = await manager.grant_access(AGENT, OWNER, "client-9")
        granted.authorized_viewers.append("client-10")

        stored = await manager.get_settings(AGENT)
        assert stored.authorized_viewers == ["client-9"]
        assert stored.metric_visibility.score == VisibilityLevel.PRIVATE
