"""Seed a handful of onboarded demo profiles into the users table."""
import asyncio
import sys
sys.path.insert(0, ".")

from sqlalchemy import select
from app.database import async_session_factory
from app.models.user import User


DEMO_USERS = [
    {
        "email": "maya@example.com",
        "name": "Maya",
        "age": 29,
        "gender": "Female",
        "location": "Austin, TX",
        "latitude": 30.2672,
        "longitude": -97.7431,
        "job_title": "Product Designer",
        "bio": "Weekend climber, weekday coffee snob.",
        "interests": ["climbing", "coffee", "indie films"],
        "looking_for_description": "Someone curious and outdoorsy who likes slow mornings.",
        "interested_in": ["Male"],
        "age_range_min": 26,
        "age_range_max": 36,
    },
    {
        "email": "leo@example.com",
        "name": "Leo",
        "age": 31,
        "gender": "Male",
        "location": "Austin, TX",
        "latitude": 30.2849,
        "longitude": -97.7341,
        "job_title": "Backend Engineer",
        "bio": "Runs on tacos and trail miles.",
        "interests": ["running", "coffee", "board games"],
        "looking_for_description": "A partner in crime for road trips and game nights.",
        "interested_in": ["Female"],
        "age_range_min": 25,
        "age_range_max": 35,
    },
    {
        "email": "sam@example.com",
        "name": "Sam",
        "age": 27,
        "gender": "Male",
        "location": "San Antonio, TX",
        "latitude": 29.4241,
        "longitude": -98.4936,
        "job_title": "Chef",
        "bio": "I will cook for you. That is the pitch.",
        "interests": ["cooking", "climbing", "live music"],
        "looking_for_description": "Someone who eats adventurously and laughs easily.",
        "interested_in": ["Female"],
        "age_range_min": 24,
        "age_range_max": 34,
    },
    {
        "email": "ana@example.com",
        "name": "Ana",
        "age": 33,
        "gender": "Female",
        "location": "Dallas, TX",
        "latitude": 32.7767,
        "longitude": -96.7970,
        "job_title": "Architect",
        "bio": "Sketchbook always in my bag.",
        "interests": ["architecture", "coffee", "travel"],
        "looking_for_description": "Kind, ambitious, and up for spontaneous weekends away.",
        "interested_in": ["Male"],
        "age_range_min": 28,
        "age_range_max": 40,
    },
]


async def seed():
    async with async_session_factory() as session:
        for u in DEMO_USERS:
            existing = await session.execute(
                select(User).where(User.email == u["email"])
            )
            if existing.scalar_one_or_none() is None:
                session.add(User(onboarding_completed=True, **u))
                print(f"  Seeded user {u['name']}: {u['email']}")
            else:
                print(f"  User {u['email']} already exists, skipping.")
        await session.commit()
    print("Done seeding users.")


if __name__ == "__main__":
    asyncio.run(seed())
