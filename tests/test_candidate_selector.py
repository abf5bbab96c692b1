"""Unit tests for CandidateSelector — eligibility, filters and ranking."""
import uuid
from unittest.mock import AsyncMock

import pytest

from app.models.recommendation import Algorithm
from app.schemas.recommendation import MatchFactors
from app.services.candidate_selector import CandidateSelector
from app.services.geo import UNKNOWN_DISTANCE_KM
from app.services.recommendation_store import RecommendationStore
from app.services.user_store import CandidateFilter, UserStore

from conftest import FakeUserStore, add_user, make_profile


def _ids(selection):
    return [c.profile.id for c in selection.candidates]


class TestEligibility:
    """Tests for check_eligibility and the no-op path."""

    @pytest.mark.asyncio
    async def test_missing_looking_for_is_ineligible(self, source_profile):
        store = AsyncMock()
        selector = CandidateSelector(store)
        source = source_profile.model_copy(update={"looking_for_description": None})

        selection = await selector.select(source)

        assert selection.eligible is False
        assert selection.reason == "missing_looking_for_description"
        assert selection.candidates == []
        store.find_candidates.assert_not_awaited()

    def test_whitespace_looking_for_is_ineligible(self, source_profile):
        selector = CandidateSelector(AsyncMock())
        source = source_profile.model_copy(update={"looking_for_description": "   "})
        assert selector.check_eligibility(source) == "missing_looking_for_description"

    def test_missing_location_is_ineligible(self, source_profile):
        selector = CandidateSelector(AsyncMock())
        source = source_profile.model_copy(update={"location": ""})
        assert selector.check_eligibility(source) == "missing_location"

    def test_complete_profile_is_eligible(self, source_profile):
        selector = CandidateSelector(AsyncMock())
        assert selector.check_eligibility(source_profile) is None


class TestFiltersAndRanking:
    """Tests for hard filters, distance ordering and the limit."""

    @pytest.mark.asyncio
    async def test_gender_age_and_distance(self, source_profile):
        """Only in-range Female candidates survive, located ones first."""
        near = make_profile(name="Near", age=30, latitude=30.27, longitude=-97.74)
        male = make_profile(name="Male", gender="Male", age=30)
        too_old = make_profile(name="Old", age=40)
        no_coords = make_profile(name="Nowhere", age=28, latitude=None, longitude=None)
        far = make_profile(name="Far", age=29, latitude=32.7767, longitude=-96.7970)
        store = FakeUserStore([no_coords, far, male, too_old, near])

        selection = await CandidateSelector(store).select(source_profile)

        assert selection.eligible is True
        assert _ids(selection) == [near.id, far.id, no_coords.id]
        assert selection.candidates[-1].distance_km == UNKNOWN_DISTANCE_KM

    @pytest.mark.asyncio
    async def test_empty_interest_set_means_no_gender_filter(self, source_profile):
        source = source_profile.model_copy(update={"interested_in": frozenset()})
        female = make_profile(age=30)
        male = make_profile(gender="Male", age=30)
        store = FakeUserStore([female, male])

        selection = await CandidateSelector(store).select(source)

        assert set(_ids(selection)) == {female.id, male.id}

    @pytest.mark.asyncio
    async def test_source_is_never_a_candidate(self, source_profile):
        store = AsyncMock()
        store.find_candidates.return_value = [source_profile, make_profile(age=30)]

        selection = await CandidateSelector(store).select(source_profile)

        assert source_profile.id not in _ids(selection)
        assert len(selection.candidates) == 1

    @pytest.mark.asyncio
    async def test_limit_keeps_nearest(self, source_profile):
        candidates = [
            make_profile(age=30, latitude=30.2672 + i * 0.1, longitude=-97.7431)
            for i in range(15)
        ]
        store = FakeUserStore(reversed(candidates))

        selection = await CandidateSelector(store, limit=10).select(source_profile)

        assert _ids(selection) == [c.id for c in candidates[:10]]
        distances = [c.distance_km for c in selection.candidates]
        assert distances == sorted(distances)

    @pytest.mark.asyncio
    async def test_source_without_coordinates_keeps_store_order(self, source_profile):
        source = source_profile.model_copy(update={"latitude": None, "longitude": None})
        first = make_profile(age=30)
        second = make_profile(age=31)
        store = FakeUserStore([first, second])

        selection = await CandidateSelector(store).select(source)

        assert _ids(selection) == [first.id, second.id]
        assert all(c.distance_km == UNKNOWN_DISTANCE_KM for c in selection.candidates)

    @pytest.mark.asyncio
    async def test_default_age_bounds_and_filter_passed_to_store(self, source_profile):
        source = source_profile.model_copy(
            update={"age_range_min": None, "age_range_max": None}
        )
        store = FakeUserStore()

        await CandidateSelector(store).select(source)

        candidate_filter = store.candidate_filters[0]
        assert candidate_filter.exclude_id == source.id
        assert (candidate_filter.age_min, candidate_filter.age_max) == (18, 100)
        assert candidate_filter.exclude_already_scored_by == source.id
        assert candidate_filter.algorithm == Algorithm.ONE_WAY


class TestUserStoreCandidates:
    """UserStore.find_candidates against a real (SQLite) schema."""

    @pytest.mark.asyncio
    async def test_excludes_targets_already_scored_one_way(self, session_factory):
        source = await add_user(session_factory, gender="Male", age=31)
        scored = await add_user(session_factory, age=30)
        two_way_only = await add_user(session_factory, age=30)
        fresh = await add_user(session_factory, age=30)
        too_young = await add_user(session_factory, age=19)

        recommendations = RecommendationStore(session_factory)
        await recommendations.upsert(
            source.id, scored.id, Algorithm.ONE_WAY, 70, "ok", MatchFactors()
        )
        await recommendations.upsert(
            source.id, two_way_only.id, Algorithm.TWO_WAY, 30, "ok", MatchFactors()
        )

        users = UserStore(session_factory)
        pool = await users.find_candidates(
            CandidateFilter(
                exclude_id=source.id,
                age_min=25,
                age_max=35,
                exclude_already_scored_by=source.id,
            )
        )

        assert [p.id for p in pool] == [two_way_only.id, fresh.id]
        assert too_young.id not in [p.id for p in pool]

    @pytest.mark.asyncio
    async def test_find_by_id_returns_typed_profile(self, session_factory):
        user = await add_user(
            session_factory,
            interests=["hiking", " hiking ", "jazz"],
            interested_in=["Male", "Female"],
        )

        profile = await UserStore(session_factory).find_by_id(user.id)

        assert profile.interests == ["hiking", "jazz"]
        assert {g.value for g in profile.interested_in} == {"Male", "Female"}

    @pytest.mark.asyncio
    async def test_find_by_id_unknown(self, session_factory):
        assert await UserStore(session_factory).find_by_id(uuid.uuid4()) is None
