"""API tests for the users, matching and admin routers."""
import uuid
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from app.api.matching import get_generation_queue, get_recommendation_store, get_user_store
from app.api.users import get_geocoding_service
from app.database import get_db
from app.main import app
from app.models.recommendation import Algorithm
from app.schemas.recommendation import MatchFactors
from app.services.recommendation_store import RecommendationStore
from app.services.user_store import UserStore

from conftest import add_user


@pytest.fixture
def queue():
    queue = MagicMock()
    queue.submit = AsyncMock(return_value=True)
    return queue


@pytest.fixture
def geocoder():
    geocoder = MagicMock()
    geocoder.geocode = AsyncMock(return_value=(30.2672, -97.7431))
    return geocoder


@pytest_asyncio.fixture
async def client(session_factory, queue, geocoder):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_user_store] = lambda: UserStore(session_factory)
    app.dependency_overrides[get_recommendation_store] = lambda: RecommendationStore(session_factory)
    app.dependency_overrides[get_generation_queue] = lambda: queue
    app.dependency_overrides[get_geocoding_service] = lambda: geocoder

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_deep_without_redis(self, client):
        response = await client.get("/health/deep")
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "redis": "not_configured",
        }

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestUsersApi:
    """Create, read and update users."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        payload = {
            "email": "maya@example.com",
            "name": "Maya",
            "age": 29,
            "gender": "Female",
            "location": "Austin, TX",
        }
        created = await client.post("/api/v1/users/", json=payload)

        assert created.status_code == 201
        body = created.json()
        assert body["name"] == "Maya"
        assert body["interests"] == []
        assert body["onboarding_completed"] is False

        fetched = await client.get(f"/api/v1/users/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["email"] == "maya@example.com"

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client):
        payload = {"email": "dup@example.com", "name": "A", "age": 30, "gender": "Male"}
        assert (await client.post("/api/v1/users/", json=payload)).status_code == 201
        assert (await client.post("/api/v1/users/", json=payload)).status_code == 409

    @pytest.mark.asyncio
    async def test_underage_user_rejected(self, client):
        payload = {"email": "kid@example.com", "name": "Kid", "age": 16, "gender": "Male"}
        assert (await client.post("/api/v1/users/", json=payload)).status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.get(f"/api/v1/users/{uuid.uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_geocodes_location_and_triggers_generation(
        self, client, session_factory, queue, geocoder
    ):
        user = await add_user(
            session_factory, location=None, latitude=None, longitude=None,
            onboarding_completed=False,
        )

        response = await client.put(
            f"/api/v1/users/{user.id}",
            json={
                "location": "Austin, TX",
                "looking_for_description": "Someone who loves live music.",
                "interests": ["music", "tacos"],
                "interested_in": ["Male"],
                "age_range_preference": {"min": 27, "max": 38},
                "onboarding_completed": True,
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["latitude"] == 30.2672
        assert body["longitude"] == -97.7431
        assert body["interested_in"] == ["Male"]
        assert (body["age_range_min"], body["age_range_max"]) == (27, 38)
        geocoder.geocode.assert_awaited_once_with("Austin, TX")
        queue.submit.assert_awaited_once_with(user.id)

    @pytest.mark.asyncio
    async def test_explicit_coordinates_skip_geocoding(self, client, session_factory, geocoder):
        user = await add_user(session_factory, onboarding_completed=False)

        response = await client.put(
            f"/api/v1/users/{user.id}",
            json={"location": "Somewhere new", "latitude": 10.5, "longitude": 20.25},
        )

        assert response.status_code == 200
        assert response.json()["latitude"] == 10.5
        geocoder.geocode.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_onboarded_does_not_trigger(self, client, session_factory, queue):
        user = await add_user(session_factory, onboarding_completed=False)

        response = await client.put(f"/api/v1/users/{user.id}", json={"bio": "New bio"})

        assert response.status_code == 200
        queue.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_latitude_without_longitude_rejected(self, client, session_factory):
        user = await add_user(session_factory)
        response = await client.put(f"/api/v1/users/{user.id}", json={"latitude": 10.0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["name", "age", "gender", "onboarding_completed"])
    async def test_null_for_required_column_rejected(self, client, session_factory, field):
        user = await add_user(session_factory)

        response = await client.put(f"/api/v1/users/{user.id}", json={field: None})

        assert response.status_code == 422
        fetched = await client.get(f"/api/v1/users/{user.id}")
        assert fetched.json()[field] is not None

    @pytest.mark.asyncio
    async def test_inverted_age_range_rejected(self, client, session_factory):
        user = await add_user(session_factory)
        response = await client.put(
            f"/api/v1/users/{user.id}",
            json={"age_range_preference": {"min": 40, "max": 30}},
        )
        assert response.status_code == 422


class TestMatchingApi:
    """Trigger and read recommendations."""

    @pytest.mark.asyncio
    async def test_generate_is_accepted(self, client, session_factory, queue):
        user = await add_user(session_factory)

        response = await client.post(f"/api/v1/matches/{user.id}/generate")

        assert response.status_code == 202
        assert response.json() == {"status": "accepted", "user_id": str(user.id)}
        queue.submit.assert_awaited_once_with(user.id)

    @pytest.mark.asyncio
    async def test_generate_while_running(self, client, session_factory, queue):
        user = await add_user(session_factory)
        queue.submit.return_value = False

        response = await client.post(f"/api/v1/matches/{user.id}/generate")

        assert response.status_code == 202
        assert response.json()["status"] == "already_running"

    @pytest.mark.asyncio
    async def test_generate_unknown_user(self, client, queue):
        response = await client.post(f"/api/v1/matches/{uuid.uuid4()}/generate")
        assert response.status_code == 404
        queue.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recommendations_by_type(self, client, session_factory):
        source = await add_user(session_factory, gender="Male")
        target = await add_user(session_factory, name="Maya", interests=["coffee"])
        store = RecommendationStore(session_factory)
        await store.upsert(
            source.id, target.id, Algorithm.ONE_WAY, 80, "Great fit",
            MatchFactors(shared_interests=["coffee"]),
        )
        await store.upsert(source.id, target.id, Algorithm.TWO_WAY, 40, "Great fit", MatchFactors())

        one_way = await client.get(f"/api/v1/matches/{source.id}/recommendations")
        two_way = await client.get(
            f"/api/v1/matches/{source.id}/recommendations", params={"type": "two_way"}
        )

        assert one_way.status_code == 200
        assert [r["score"] for r in one_way.json()] == [80]
        assert one_way.json()[0]["target_user"]["name"] == "Maya"
        assert one_way.json()[0]["match_factors"]["shared_interests"] == ["coffee"]
        assert [(r["algorithm"], r["score"]) for r in two_way.json()] == [("two_way", 40)]

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, client, session_factory):
        user = await add_user(session_factory)
        response = await client.get(
            f"/api/v1/matches/{user.id}/recommendations", params={"type": "three_way"}
        )
        assert response.status_code == 422


class TestAdminDashboard:
    """Headline counts over users and stored recommendations."""

    @pytest.mark.asyncio
    async def test_empty_database(self, client):
        response = await client.get("/api/v1/admin/dashboard")

        assert response.status_code == 200
        assert response.json() == {
            "user_count": 0,
            "active_user_count": 0,
            "match_count": 0,
            "avg_match_score": 0,
        }

    @pytest.mark.asyncio
    async def test_counts_and_rounded_average(self, client, session_factory):
        source = await add_user(session_factory, gender="Male")
        target = await add_user(session_factory)
        await add_user(session_factory, onboarding_completed=False)
        await RecommendationStore(session_factory).upsert_scores(
            source.id, target.id, {Algorithm.ONE_WAY: 81, Algorithm.TWO_WAY: 40},
            "r", MatchFactors(),
        )

        response = await client.get("/api/v1/admin/dashboard")

        assert response.json() == {
            "user_count": 3,
            "active_user_count": 2,
            "match_count": 2,
            "avg_match_score": 61,
        }
