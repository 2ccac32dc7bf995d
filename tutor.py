"""
AI Tutor prompt construction — grade-scaled language rules.

Builds the system prompt for the course tutor. Sentence length, word length
and vocabulary tier all scale with the course's grade level so replies stay
readable for the youngest students.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

KINDERGARTEN_LABELS = {"k", "kg", "kindergarten", "pre-k", "prek", "tk"}

FALLBACK_SUGGESTIONS = [
    "Can you tell me more?",
    "Would you like another example?",
    "What else should we practice?",
]

TIER_EARLY = "early"
TIER_MIDDLE = "middle"
TIER_ADVANCED = "advanced"

TIER_GUIDANCE = {
    TIER_EARLY: """- Use very simple words and short sentences
- Explain with pictures and real things they can touch
- Use lots of examples from home and school
- Keep numbers small and easy to understand""",
    TIER_MIDDLE: """- Use clear, straightforward language
- Include some new vocabulary, but explain it clearly
- Use examples from both school and wider experiences
- Include moderate-sized numbers and basic fractions""",
    TIER_ADVANCED: """- Use more varied vocabulary
- Include academic terms with explanations
- Use real-world examples and applications
- Work with larger numbers and more complex math""",
}

TUTOR_SYSTEM_PROMPT = """You are a friendly AI tutor for a {grade_label} grade {subject} class.
The class is currently learning about: "{topic}"
{standard_line}
Important guidelines for your responses:
1. Use language appropriate for {grade_label} grade:
   - Keep sentences to {max_sentence_words} words or less
   - Use mostly words with {max_word_length} letters or less
   - Break longer words into simpler ones when possible
2. Explain things step by step, like you're talking to a friend
3. Use examples from a {grade_label} grader's daily life
4. Break down complex ideas into smaller, easier parts
5. Be encouraging and positive
6. If using numbers, keep them within grade-appropriate ranges
7. Define any word that might be new to a {grade_label} grade student

Grade-specific adjustments:
{tier_guidance}

Your response must be in this JSON format:
{{
  "message": "[your grade-appropriate response here]",
  "context": "[simple background info if needed]",
  "suggestions": ["easy follow-up question 1", "easy follow-up question 2", "easy follow-up question 3"]
}}

Make sure your response is a valid JSON object with these exact keys."""


@dataclass(frozen=True)
class Standard:
    identifier: str
    description: str


@dataclass(frozen=True)
class CourseContext:
    """Per-request snapshot of what a course is teaching right now."""

    course_name: str
    subject: str
    grade_level: str
    current_topic: str
    standard: Standard | None = None


def grade_number(grade_level: str) -> int:
    """Numeric grade from a label like "3", "3rd" or "10th grade".

    Kindergarten labels are grade 0; anything else unparseable counts as 1.
    """
    label = (grade_level or "").strip().lower()
    if label in KINDERGARTEN_LABELS:
        return 0
    match = re.match(r"\d+", label)
    if not match:
        return 1
    return int(match.group()) or 1


def max_sentence_words(grade: int) -> int:
    return min(8 + 2 * max(grade, 0), 20)


def max_word_length(grade: int) -> int:
    return min(4 + max(grade, 0) // 2, 8)


def complexity_tier(grade: int) -> str:
    if grade <= 3:
        return TIER_EARLY
    if grade <= 6:
        return TIER_MIDDLE
    return TIER_ADVANCED


def build_tutor_prompt(context: CourseContext, materials: list[dict] | None = None) -> str:
    """System prompt for one tutoring turn, with course materials appended."""
    grade = grade_number(context.grade_level)

    standard_line = ""
    if context.standard:
        standard_line = (
            f"This connects to standard {context.standard.identifier}: "
            f"{context.standard.description}\n"
        )

    prompt = TUTOR_SYSTEM_PROMPT.format(
        grade_label=context.grade_level,
        subject=context.subject,
        topic=context.current_topic,
        standard_line=standard_line,
        max_sentence_words=max_sentence_words(grade),
        max_word_length=max_word_length(grade),
        tier_guidance=TIER_GUIDANCE[complexity_tier(grade)],
    )

    if materials:
        prompt += "\n\nHere are some helpful materials to reference:\n" + "\n".join(
            f"{m.get('type', 'material')}: {m.get('content', '')}" for m in materials
        )
    return prompt
