"""
LLM Gateway — tutoring chat, standard matching, pacing-guide extraction.

Stateless facade over a CompletionClient. Each operation builds its prompt,
makes one completion call (the extraction path may retry on 429/5xx), and
coerces the untrusted model text into a strict result shape.

Chat is lenient: an unparseable reply degrades to the raw text
plus fixed suggestions. Extraction, matching and material analysis are strict
and raise MalformedResponseError / EmptyResultError instead.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any

from ai_resilience import (
    CompletionClient,
    EmptyResultError,
    MalformedResponseError,
    is_transient,
    linear_backoff,
    with_retry,
)
from tutor import FALLBACK_SUGGESTIONS, CourseContext, build_tutor_prompt

logger = logging.getLogger(__name__)

CHAT_TEMPERATURE = 0.7
EXTRACTION_TEMPERATURE = 0.3
MATCHING_TEMPERATURE = 0.1
MATERIAL_TEMPERATURE = 0.3
MATCHING_MAX_TOKENS = 500
MAX_TITLE_LENGTH = 100

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_NEWLINE_RE = re.compile(r"\r\n|\r|\n")
_CONTROL_RE = re.compile("[\u0000-\u001f\u007f-\u009f]")
_BACKSLASH_RE = re.compile(r'\\(["\\/bfnrt]|u[0-9a-fA-F]{4})|\\')
_WHITESPACE_RE = re.compile(r"\s+")

PACING_GUIDE_PROMPT = """You are an expert curriculum analyzer for {grade} grade {subject}.
You will receive text from a pacing guide PDF that may be related to {standards_system}. Extract lessons and format them as a clean JSON array.

Guidelines:
1. Each lesson should have:
   - day: sequential number starting from 1
   - title: clear, concise lesson title
   - standard: standard code (like "CC.3.NBT.1") or null for tests/reviews
2. Clean any special characters from titles
3. Ensure all JSON strings are properly escaped
4. Keep titles under 100 characters

Format your response EXACTLY as this JSON:
{{
  "lessons": [
    {{
      "day": 1,
      "title": "Introduction to Addition",
      "standard": "CC.3.NBT.1"
    }}
  ]
}}"""

STANDARDS_PROMPT = """You are an expert curriculum analyzer. Extract lessons and standards from educational content.
Format your response EXACTLY as this JSON (no other text):
{{
  "standards": [
    {{
      "id": "CC.3.NBT.1",
      "description": "Round numbers",
      "grade": "{grade}",
      "subject": "{subject}",
      "confidence": 1
    }}
  ]
}}
- For id: extract standard ID if it matches format {standards_system}, otherwise use null
- For description: extract the main topic or learning objective
- Always include grade and subject as provided
- Set confidence to 1"""

MATERIAL_PROMPT = """Analyze the educational material and provide your response in this exact JSON format:
{
  "summary": "A concise summary of the material",
  "keyPoints": ["Key point 1", "Key point 2", "Key point 3"],
  "difficulty": 3
}
The difficulty should be a number between 1-5. Make sure your response is valid JSON."""


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _CODE_FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def sanitize_model_json(text: str) -> str:
    """Make near-JSON model output parseable.

    Newlines become spaces, other control characters are removed, and any
    backslash that does not start a valid JSON escape is escaped.
    """
    cleaned = _NEWLINE_RE.sub(" ", text)
    cleaned = _CONTROL_RE.sub("", cleaned)
    cleaned = _BACKSLASH_RE.sub(lambda m: m.group(0) if m.group(1) else "\\\\", cleaned)
    return cleaned.strip()


def _load_object(text: str, what: str) -> dict:
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        logger.error("Failed to parse %s response: %s", what, text[:500])
        raise MalformedResponseError(f"Failed to parse OpenAI response: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MalformedResponseError("Invalid response structure: expected a JSON object")
    return parsed


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_lessons(items: list) -> list[dict]:
    """Keep well-formed lessons in order; drop the rest."""
    lessons = []
    for item in items:
        if not isinstance(item, dict):
            continue
        day = item.get("day")
        title = item.get("title")
        standard = item.get("standard")
        if not _is_number(day):
            continue
        if not isinstance(title, str) or not title.strip():
            continue
        if standard is not None and not isinstance(standard, str):
            continue
        lessons.append({
            "day": day,
            "title": title.strip()[:MAX_TITLE_LENGTH],
            "standard": standard,
        })
    return lessons


class LLMGateway:
    """Request/response facade over the completion API. Holds no per-call state."""

    def __init__(
        self,
        client: CompletionClient,
        max_attempts: int = 3,
        retry_base_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.sleep = sleep

    # ── Tutoring chat ───────────────────────────────────────

    def generate_tutor_reply(
        self,
        message: str,
        context: CourseContext,
        materials: list[dict] | None = None,
    ) -> dict:
        """Grade-appropriate tutor reply: {message, context?, suggestions?}."""
        self.client.ensure_configured()
        system = build_tutor_prompt(context, materials)
        content = self.client.complete(system, message, temperature=CHAT_TEMPERATURE)
        return self._coerce_reply(content)

    @staticmethod
    def _coerce_reply(content: str) -> dict:
        try:
            parsed = json.loads(strip_code_fence(content))
        except ValueError:
            parsed = None

        reply_text = parsed.get("message") if isinstance(parsed, dict) else None
        if not isinstance(reply_text, str) or not reply_text.strip():
            logger.warning("Tutor reply was not valid JSON, falling back to raw text")
            return {"message": content, "suggestions": list(FALLBACK_SUGGESTIONS)}

        reply: dict[str, Any] = {"message": reply_text}
        if isinstance(parsed.get("context"), str) and parsed["context"].strip():
            reply["context"] = parsed["context"]
        suggestions = parsed.get("suggestions")
        if isinstance(suggestions, list):
            reply["suggestions"] = [s for s in suggestions if isinstance(s, str) and s.strip()]
        return reply

    # ── Pacing guide extraction ─────────────────────────────

    def extract_lessons_from_pacing_guide(self, raw_text: str, metadata: dict) -> dict:
        """Segment pacing-guide text into daily lessons: {lessons: [...]}."""
        self.client.ensure_configured()
        logger.info(
            "Starting PDF analysis for %s grade %s (course %s)",
            metadata.get("subject"), metadata.get("grade"), metadata.get("course_id"),
        )
        logger.debug("Content sample: %s", raw_text[:200])

        system = PACING_GUIDE_PROMPT.format(
            grade=metadata.get("grade", ""),
            subject=metadata.get("subject", ""),
            standards_system=metadata.get("standards_system", ""),
        )

        def attempt() -> str:
            return self.client.complete(
                system, raw_text, temperature=EXTRACTION_TEMPERATURE, json_response=True,
            )

        content = with_retry(
            attempt,
            max_attempts=self.max_attempts,
            backoff=linear_backoff(self.retry_base_delay),
            is_retryable=is_transient,
            sleep=self.sleep,
        )
        logger.debug("Raw pacing guide response: %s", content)

        parsed = _load_object(sanitize_model_json(content), "pacing guide")
        items = parsed.get("lessons")
        if not isinstance(items, list):
            raise MalformedResponseError("Invalid response structure: missing lessons list")

        lessons = validate_lessons(items)
        if not lessons:
            raise EmptyResultError("No valid lessons found")
        if len(lessons) < len(items):
            logger.info("Dropped %d malformed lessons", len(items) - len(lessons))
        return {"lessons": lessons}

    # ── Standard matching ───────────────────────────────────

    def match_standards(self, description: str, grade: str, subject: str, standards_system: str) -> dict:
        """Candidate curriculum standards for a lesson description."""
        self.client.ensure_configured()
        system = STANDARDS_PROMPT.format(grade=grade, subject=subject, standards_system=standards_system)
        content = self.client.complete(
            system, description, temperature=MATCHING_TEMPERATURE, max_tokens=MATCHING_MAX_TOKENS,
        )

        cleaned = _WHITESPACE_RE.sub(" ", strip_code_fence(content)).strip()
        parsed = _load_object(cleaned, "standards")
        candidates = parsed.get("standards")
        if not isinstance(candidates, list):
            raise MalformedResponseError("Invalid response structure: missing standards list")

        standards = []
        for item in candidates:
            if not isinstance(item, dict):
                continue
            desc = item.get("description")
            if not isinstance(desc, str) or not desc.strip():
                continue
            std_id = item.get("id")
            standards.append({
                "id": str(std_id) if std_id not in (None, "") else None,
                "description": desc.strip(),
                "grade": grade,
                "subject": subject,
                # Fixed by the prompt contract; not a ranking signal.
                "confidence": 1,
            })

        if not standards:
            raise EmptyResultError("No matching standards found")
        return {"standards": standards}

    # ── Material analysis ───────────────────────────────────

    def analyze_material(self, content: str) -> dict:
        """Summary, key points and 1-5 difficulty for a course material."""
        self.client.ensure_configured()
        raw = self.client.complete(MATERIAL_PROMPT, content, temperature=MATERIAL_TEMPERATURE)
        parsed = _load_object(strip_code_fence(raw), "material analysis")

        summary = parsed.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise MalformedResponseError("Failed to analyze material: Invalid response format")

        key_points = parsed.get("keyPoints")
        if not isinstance(key_points, list):
            key_points = []

        difficulty = parsed.get("difficulty")
        try:
            difficulty = int(difficulty)
        except (TypeError, ValueError, OverflowError):
            difficulty = 3

        return {
            "summary": summary.strip(),
            "keyPoints": [p for p in key_points if isinstance(p, str)],
            "difficulty": min(max(difficulty, 1), 5),
        }
