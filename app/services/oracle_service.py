"""
Lumen — CompatibilityOracle: Gemini-backed swipe-probability judgments

For one (source, candidate) pair this service asks Gemini to predict, in
both directions, how likely each user is to swipe right on the other, and
to explain why.  It is responsible for:

- Building the textual feature sets of both users
- Attaching inline profile photos when they are valid images
- Calling Gemini with a JSON response schema, a model fallback chain and
  exponential-backoff retry on transient API errors
- Parsing the response with several fallback strategies and validating it
  into an ``OracleJudgment``

The service performs no semantic checks on the judgment.  Missing
probabilities become 0; an unparseable payload raises
``OracleResponseError``; a chain where every model fails raises
``OracleUnavailableError``.

Model fallback chain:
    gemini-2.5-flash-lite -> gemini-2.5-flash
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import json
import re
import time

import google.generativeai as genai
import structlog
from json_repair import repair_json
from PIL import Image
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.schemas.oracle import InlineImage, OracleJudgment, OracleRequest, ProfileFeatures
from app.schemas.user import UserProfile
from app.services.errors import OracleResponseError, OracleUnavailableError

logger = structlog.get_logger("lumen.oracle_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

ALLOWED_IMAGE_MIME_TYPES: frozenset[str] = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
})

_DATA_URL_PATTERN = re.compile(r"^data:([\w.+-]+/[\w.+-]+);base64,(.+)$", re.DOTALL)

# Pillow format name -> mime type, for formats the oracle accepts.
_PIL_FORMAT_MIME: dict[str, str] = {
    "JPEG": "image/jpeg",
    # Multi-frame JPEG (camera photos with a depth or gain-map frame).
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

_RETRY_ATTEMPTS = 3

# Gemini structured-output schema for the judgment.
JUDGMENT_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "sourceSwipeProbability": {
            "type": "INTEGER",
            "description": "0-100 probability the source user swipes right on the candidate.",
        },
        "targetSwipeProbability": {
            "type": "INTEGER",
            "description": "0-100 probability the candidate swipes right on the source user.",
        },
        "reasoning": {
            "type": "STRING",
            "description": "Why these probabilities were predicted.",
        },
        "matchFactors": {
            "type": "OBJECT",
            "properties": {
                "sharedInterests": {"type": "ARRAY", "items": {"type": "STRING"}},
                "personalityMatch": {"type": "STRING"},
                "lifestyleCompatibility": {"type": "STRING"},
            },
        },
    },
    "required": [
        "sourceSwipeProbability",
        "targetSwipeProbability",
        "reasoning",
        "matchFactors",
    ],
}


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Return True if the exception signals a retryable Gemini API error.

    Retries on HTTP 429 (rate limit) and 500/503 (server-side transient)
    errors.  The google-generativeai SDK wraps these as various exception
    types, so both the type name and string representation are inspected.
    """
    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    if "500" in exc_str or "503" in exc_str or "internal" in exc_str:
        return True
    if "resourceexhausted" in exc_type or "serviceunavailable" in exc_type:
        return True

    return False


class GeminiCompatibilityOracle:
    """Compatibility oracle backed by the Gemini API.

    Stateless: every ``judge`` call is an independent request, so callers
    may retry freely and must not expect identical answers for identical
    requests.
    """

    def __init__(self) -> None:
        settings = get_settings()

        genai.configure(api_key=settings.GEMINI_API_KEY)

        self._model_chain: list[str] = [
            settings.GEMINI_MODEL_PRIMARY,
            settings.GEMINI_MODEL_FALLBACK,
        ]
        self._max_image_bytes: int = settings.ORACLE_MAX_IMAGE_BYTES

        self._generation_config = genai.GenerationConfig(
            response_mime_type="application/json",
            response_schema=JUDGMENT_SCHEMA,
            max_output_tokens=1024,
        )

        logger.info(
            "oracle_initialised",
            model_chain=self._model_chain,
            max_image_bytes=self._max_image_bytes,
        )

    # ══════════════════════════════════════════════════════════════════
    # Public API
    # ══════════════════════════════════════════════════════════════════

    async def decode_photo(self, photo_url: str | None) -> InlineImage | None:
        """``decode_inline_image`` off the event loop (Pillow work is blocking)."""
        if not photo_url or not photo_url.startswith("data:"):
            return None
        return await asyncio.to_thread(self.decode_inline_image, photo_url)

    def build_request(
        self,
        source: UserProfile,
        target: UserProfile,
        source_image: InlineImage | None = None,
        target_image: InlineImage | None = None,
    ) -> OracleRequest:
        """Bundle both users' features with already-decoded photos."""
        return OracleRequest(
            source_features=self._features(source, include_preferences=True),
            target_features=self._features(target, include_preferences=False),
            source_image=source_image,
            target_image=target_image,
        )

    async def judge(self, request: OracleRequest) -> OracleJudgment:
        """Ask the oracle for a judgment on one pair.

        Raises
        ------
        OracleUnavailableError
            Every model in the fallback chain failed.
        OracleResponseError
            A model answered but the payload is not a judgment object.
        """
        start_time = time.monotonic()
        contents = self._build_contents(request)

        text, model_used = await self._call_model_chain(contents)
        payload = self._parse_json_response(text)

        try:
            judgment = OracleJudgment.model_validate(payload)
        except ValidationError as exc:
            raise OracleResponseError(
                f"Oracle payload does not match the judgment shape: {exc.error_count()} errors"
            ) from exc

        logger.debug(
            "oracle_judgment_received",
            model=model_used,
            source_probability=judgment.source_swipe_probability,
            target_probability=judgment.target_swipe_probability,
            elapsed_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return judgment

    # ══════════════════════════════════════════════════════════════════
    # Request construction
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def _features(user: UserProfile, include_preferences: bool) -> ProfileFeatures:
        return ProfileFeatures(
            name=user.name,
            age=user.age,
            gender=user.gender.value,
            job_title=user.job_title or "",
            bio=user.bio or "",
            interests=list(user.interests),
            looking_for=user.looking_for_description or "",
            interested_in=(
                sorted(g.value for g in user.interested_in) if include_preferences else []
            ),
        )

    def decode_inline_image(self, photo_url: str | None) -> InlineImage | None:
        """Decode a ``data:<mime>;base64,<payload>`` photo reference.

        Returns ``None`` (and scoring continues text-only) for plain URLs,
        malformed data URLs, disallowed mime types, oversize payloads, and
        bytes Pillow does not recognise as the declared image format.
        """
        if not photo_url or not photo_url.startswith("data:"):
            return None

        match = _DATA_URL_PATTERN.match(photo_url.strip())
        if match is None:
            logger.debug("inline_image_skipped", reason="malformed_data_url")
            return None

        mime_type = match.group(1).lower()
        if mime_type not in ALLOWED_IMAGE_MIME_TYPES:
            logger.debug("inline_image_skipped", reason="mime_type", mime_type=mime_type)
            return None

        try:
            data = base64.b64decode(match.group(2), validate=True)
        except (binascii.Error, ValueError):
            logger.debug("inline_image_skipped", reason="invalid_base64")
            return None

        if not data or len(data) > self._max_image_bytes:
            logger.debug("inline_image_skipped", reason="size", size=len(data))
            return None

        try:
            with Image.open(io.BytesIO(data)) as img:
                detected = _PIL_FORMAT_MIME.get(img.format or "")
                img.verify()
        except Exception as exc:
            logger.debug("inline_image_skipped", reason="not_an_image", error=str(exc))
            return None

        if detected != mime_type:
            logger.debug(
                "inline_image_skipped",
                reason="format_mismatch",
                declared=mime_type,
                detected=detected,
            )
            return None

        return InlineImage(mime_type=mime_type, data=data)

    def _build_prompt(self, request: OracleRequest) -> str:
        """Build the text part of the oracle prompt."""
        source = request.source_features
        target = request.target_features

        def _block(features: ProfileFeatures) -> str:
            lines = [
                f"- Name: {features.name}",
                f"- Age: {features.age}",
                f"- Gender: {features.gender}",
                f"- Job title: {features.job_title or 'not given'}",
                f'- Bio: "{features.bio}"',
                f"- Interests: {', '.join(features.interests) or 'none listed'}",
                f'- Looking for: "{features.looking_for}"',
            ]
            if features.interested_in:
                lines.append(f"- Interested in: {', '.join(features.interested_in)}")
            return "\n".join(lines)

        photo_note = ""
        if request.source_image is not None or request.target_image is not None:
            photo_note = (
                "\nProfile photos follow the text where available; use them "
                "only as a light signal of overall vibe.\n"
            )

        return (
            "You are the ranking model of a dating recommendation system. "
            "Estimate the probability of a right swipe between two people, "
            "in each direction, from their profile features.\n\n"
            "## SOURCE USER (the person browsing)\n"
            f"{_block(source)}\n\n"
            "## CANDIDATE USER (the profile being shown)\n"
            f"{_block(target)}\n\n"
            "## TASK\n"
            "1. sourceSwipeProbability: integer 0-100, how likely the source "
            "swipes right on the candidate. Weigh the candidate against the "
            "source's 'Looking for' text and stated preferences.\n"
            "2. targetSwipeProbability: integer 0-100, how likely the "
            "candidate swipes right on the source. Weigh the source against "
            "the candidate's 'Looking for' text.\n"
            "3. reasoning: a short explanation of both numbers.\n"
            "4. matchFactors: sharedInterests (list of strings), "
            "personalityMatch (string), lifestyleCompatibility (string).\n"
            f"{photo_note}\n"
            "Respond with a single JSON object and nothing else."
        )

    def _build_contents(self, request: OracleRequest) -> list:
        contents: list = [self._build_prompt(request)]
        if request.source_image is not None:
            contents.append("Source user photo:")
            contents.append({
                "mime_type": request.source_image.mime_type,
                "data": request.source_image.data,
            })
        if request.target_image is not None:
            contents.append("Candidate user photo:")
            contents.append({
                "mime_type": request.target_image.mime_type,
                "data": request.target_image.data,
            })
        return contents

    # ══════════════════════════════════════════════════════════════════
    # Gemini calls
    # ══════════════════════════════════════════════════════════════════

    async def _call_model_chain(self, contents: list) -> tuple[str, str]:
        """Try each model in the chain; return (text, model_name)."""
        last_exception: BaseException | None = None

        for model_name in self._model_chain:
            try:
                text = await self._call_gemini_with_retry(model_name, contents)
                return text, model_name
            except Exception as exc:
                last_exception = exc
                logger.warning(
                    "oracle_model_failed",
                    model=model_name,
                    error=str(exc),
                )

        raise OracleUnavailableError(
            f"All oracle models failed. Last error: {last_exception}",
            last_error=last_exception,
        )

    async def _call_gemini_with_retry(self, model_name: str, contents: list) -> str:
        """Call one Gemini model with tenacity retry on transient errors.

        Exponential backoff: 1s initial wait, 2x multiplier, 10s max wait.
        """
        model = genai.GenerativeModel(model_name)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable_api_error),
            stop=stop_after_attempt(_RETRY_ATTEMPTS),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        ):
            with attempt:
                logger.debug(
                    "gemini_call_attempt",
                    model=model_name,
                    attempt_number=attempt.retry_state.attempt_number,
                )
                response = await model.generate_content_async(
                    contents,
                    generation_config=self._generation_config,
                )

                if not response.candidates:
                    raise ValueError(
                        f"Gemini returned no candidates for model {model_name}. "
                        f"Prompt feedback: {response.prompt_feedback}"
                    )

                text = response.text
                if not text or not text.strip():
                    raise ValueError(f"Gemini returned empty text for model {model_name}")

                return text

        raise OracleUnavailableError(f"No attempt was made for model {model_name}")

    # ══════════════════════════════════════════════════════════════════
    # JSON response parsing
    # ══════════════════════════════════════════════════════════════════

    def _parse_json_response(self, text: str) -> dict:
        """Parse the oracle's JSON with several fallback strategies.

        1. Direct ``json.loads``
        2. Markdown code-fence extraction
        3. Outermost ``{...}`` extraction
        4. ``json_repair`` as a last resort

        Raises ``OracleResponseError`` if no strategy yields a JSON object.
        """
        if not text or not text.strip():
            raise OracleResponseError("Empty oracle response")

        cleaned = text.strip()

        try:
            result = json.loads(cleaned)
            if isinstance(result, dict):
                return result
        except (json.JSONDecodeError, TypeError):
            pass

        md_match = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", cleaned, re.DOTALL)
        if md_match:
            try:
                result = json.loads(md_match.group(1).strip())
                if isinstance(result, dict):
                    return result
            except (json.JSONDecodeError, TypeError):
                pass

        first_brace = cleaned.find("{")
        last_brace = cleaned.rfind("}")
        if first_brace >= 0 and last_brace > first_brace:
            try:
                result = json.loads(cleaned[first_brace : last_brace + 1])
                if isinstance(result, dict):
                    return result
            except (json.JSONDecodeError, TypeError):
                pass

        try:
            result = json.loads(repair_json(cleaned))
            if isinstance(result, dict):
                logger.info("json_parsed_via_json_repair", original_preview=cleaned[:80])
                return result
        except Exception as exc:
            logger.debug("json_repair_failed", error=str(exc))

        raise OracleResponseError(
            f"Could not parse oracle response as a JSON object: {cleaned[:120]!r}"
        )
