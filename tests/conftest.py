"""Shared pytest fixtures for Lumen tests."""
import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

# Settings are read when app modules are first imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["REDIS_URL"] = ""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import Base, build_engine_from_url
from app.models.user import User
from app.schemas.oracle import OracleJudgment, OracleMatchFactors
from app.schemas.user import UserProfile
from app.services.errors import OracleResponseError


# ──────────────────────────────────────────────────────────────────────────────
# Profiles
# ──────────────────────────────────────────────────────────────────────────────

def make_profile(**overrides) -> UserProfile:
    """Build a valid, matchable ``UserProfile``; any field can be overridden."""
    fields = {
        "id": uuid.uuid4(),
        "name": "Alex",
        "age": 30,
        "gender": "Female",
        "location": "Austin, TX",
        "latitude": 30.2672,
        "longitude": -97.7431,
        "job_title": "Engineer",
        "bio": "Coffee and climbing.",
        "interests": ["coffee", "climbing"],
        "looking_for_description": "Someone kind and curious.",
        "photo_url": None,
        "interested_in": [],
        "age_range_min": None,
        "age_range_max": None,
        "onboarding_completed": True,
    }
    fields.update(overrides)
    return UserProfile.model_validate(fields)


@pytest.fixture
def source_profile():
    """A Male source in Austin looking for Female users aged 25-35."""
    return make_profile(
        name="Leo",
        gender="Male",
        age=31,
        interested_in=["Female"],
        age_range_min=25,
        age_range_max=35,
    )


# ──────────────────────────────────────────────────────────────────────────────
# In-memory fakes
# ──────────────────────────────────────────────────────────────────────────────

class FakeUserStore:
    """Dict-backed user store honouring the id / age / already-scored filters."""

    def __init__(self, profiles=(), recommendation_store=None):
        self.profiles = {p.id: p for p in profiles}
        self.recommendation_store = recommendation_store
        self.candidate_filters = []

    def add(self, profile):
        self.profiles[profile.id] = profile
        return profile

    async def find_by_id(self, user_id):
        return self.profiles.get(user_id)

    async def find_candidates(self, candidate_filter):
        self.candidate_filters.append(candidate_filter)
        scored = set()
        if self.recommendation_store is not None and candidate_filter.exclude_already_scored_by:
            scored = {
                target
                for (source, target, algorithm) in self.recommendation_store.rows
                if source == candidate_filter.exclude_already_scored_by
                and algorithm == candidate_filter.algorithm
            }
        return [
            p
            for p in self.profiles.values()
            if p.id != candidate_filter.exclude_id
            and candidate_filter.age_min <= p.age <= candidate_filter.age_max
            and p.id not in scored
        ]


class FakeRecommendationStore:
    """Keeps upserted rows keyed by (source, target, algorithm).

    ``upsert_scores`` writes all of a pair's algorithms or none of them.
    ``fail_for`` fails every write for those targets; ``fail_algorithms``
    fails any write that includes one of those algorithms.
    """

    def __init__(self, fail_for=(), fail_algorithms=()):
        self.rows = {}
        self.fail_for = set(fail_for)
        self.fail_algorithms = set(fail_algorithms)
        self.upsert_calls = 0

    async def upsert(self, source_id, target_id, algorithm, score, reasoning, match_factors):
        await self.upsert_scores(source_id, target_id, {algorithm: score}, reasoning, match_factors)

    async def upsert_scores(self, source_id, target_id, scores, reasoning, match_factors):
        self.upsert_calls += 1
        if target_id in self.fail_for or self.fail_algorithms.intersection(scores):
            raise RuntimeError("database unavailable")
        for algorithm, score in scores.items():
            self.rows[(source_id, target_id, algorithm)] = {
                "score": score,
                "reasoning": reasoning,
                "match_factors": match_factors,
            }


class FakeOracle:
    """Deterministic oracle with per-target probabilities, failures and stalls."""

    def __init__(self, default=(80, 50), judgments=None, fail_for=(), stall_for=(), delay=0.0):
        self.default = default
        self.judgments = judgments or {}
        self.fail_for = set(fail_for)
        self.stall_for = set(stall_for)
        self.delay = delay
        self.calls = []
        self.decoded = []
        self.active = 0
        self.max_active = 0

    async def decode_photo(self, photo_url):
        self.decoded.append(photo_url)
        return None

    def build_request(self, source, target, source_image=None, target_image=None):
        return source, target

    async def judge(self, request):
        source, target = request
        self.calls.append(target.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if target.id in self.stall_for:
                await asyncio.sleep(10)
            if self.delay:
                await asyncio.sleep(self.delay)
            if target.id in self.fail_for:
                raise OracleResponseError("unparseable payload")
            source_p, target_p = self.judgments.get(target.id, self.default)
            return OracleJudgment(
                source_swipe_probability=source_p,
                target_swipe_probability=target_p,
                reasoning=f"{source.name} and {target.name} share a love of coffee.",
                match_factors=OracleMatchFactors(
                    shared_interests=["coffee"],
                    personality_match="Both easygoing",
                    lifestyle_compatibility="Similar weekends",
                ),
            )
        finally:
            self.active -= 1


@pytest.fixture
def recommendation_store():
    return FakeRecommendationStore()


@pytest.fixture
def user_store(recommendation_store):
    return FakeUserStore(recommendation_store=recommendation_store)


@pytest.fixture
def oracle():
    return FakeOracle()


# ──────────────────────────────────────────────────────────────────────────────
# SQLite-backed database
# ──────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database with the full schema, one per test."""
    engine = build_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'lumen.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


_created_at_base = datetime(2025, 1, 1, tzinfo=timezone.utc)


async def add_user(session_factory, **overrides) -> User:
    """Insert a ``users`` row; ``created_at`` increases with each call."""
    add_user.counter += 1
    fields = {
        "email": f"user{add_user.counter}-{uuid.uuid4().hex[:6]}@example.com",
        "name": f"User {add_user.counter}",
        "age": 30,
        "gender": "Female",
        "location": "Austin, TX",
        "latitude": 30.2672,
        "longitude": -97.7431,
        "bio": "Hello there.",
        "interests": ["coffee"],
        "looking_for_description": "Someone kind and curious.",
        "interested_in": [],
        "onboarding_completed": True,
        "created_at": _created_at_base + timedelta(minutes=add_user.counter),
    }
    fields.update(overrides)
    user = User(**fields)
    async with session_factory() as session:
        session.add(user)
        await session.commit()
    return user


add_user.counter = 0
