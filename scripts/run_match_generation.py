"""Run one recommendation generation pass for a user, synchronously.

Useful for operators and for debugging the pipeline outside the API: the
run happens in the foreground and its summary is printed as JSON.

Usage: python -m scripts.run_match_generation <user_id> [--limit 10] [--concurrency 3]
"""
import argparse
import asyncio
import json
import sys
import uuid
sys.path.insert(0, ".")

from app.database import async_session_factory, engine
from app.services.candidate_selector import CandidateSelector
from app.services.match_generation_service import MatchGenerationService
from app.services.oracle_service import GeminiCompatibilityOracle
from app.services.recommendation_store import RecommendationStore
from app.services.user_store import UserStore


async def run(user_id: uuid.UUID, limit: int | None, concurrency: int | None) -> dict:
    user_store = UserStore(async_session_factory)
    service = MatchGenerationService(
        user_store=user_store,
        recommendation_store=RecommendationStore(async_session_factory),
        oracle=GeminiCompatibilityOracle(),
        selector=CandidateSelector(user_store, limit=limit),
        concurrency=concurrency,
    )
    try:
        summary = await service.generate_for_user(user_id)
    finally:
        await engine.dispose()
    return summary.as_dict()


def main():
    parser = argparse.ArgumentParser(description="Lumen match generation")
    parser.add_argument("user_id", type=uuid.UUID, help="Source user id")
    parser.add_argument("--limit", type=int, default=None, help="Max candidates to score")
    parser.add_argument("--concurrency", type=int, default=None, help="Concurrent oracle calls")
    args = parser.parse_args()

    result = asyncio.run(run(args.user_id, args.limit, args.concurrency))
    print(json.dumps(result, indent=2))

    if not result["eligible"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
