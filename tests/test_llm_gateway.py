"""Tests for the LLM gateway: tutor replies, lesson extraction, standard matching."""

from __future__ import annotations

import json

import pytest

from ai_resilience import (
    CompletionClient,
    ConfigurationError,
    EmptyResultError,
    MalformedResponseError,
    RetriesExhaustedError,
    TransientProviderError,
    UpstreamError,
)
from llm_fakes import completion, status_error
from llm_gateway import LLMGateway, sanitize_model_json, validate_lessons
from tutor import FALLBACK_SUGGESTIONS, CourseContext, Standard

METADATA = {"grade": "3", "subject": "Mathematics", "course_id": 1, "standards_system": "commonCore"}


def _context(grade="3", topic="Place value", standard=None):
    return CourseContext(
        course_name="Room 3 Math", subject="Mathematics", grade_level=grade,
        current_topic=topic, standard=standard,
    )


def _respond(openai_client, *contents):
    openai_client.chat.completions.create.side_effect = [
        c if isinstance(c, Exception) else completion(c) for c in contents
    ]


def _lessons_json(lessons):
    return json.dumps({"lessons": lessons})


class TestTutorReply:
    def test_parses_json_reply(self, llm_gateway, openai_client):
        _respond(openai_client, json.dumps({
            "message": "Four!",
            "context": "Adding means putting together.",
            "suggestions": ["What is 3+3?", "What is 2+5?", "Can you count to 10?"],
        }))
        reply = llm_gateway.generate_tutor_reply("What is 2+2?", _context())
        assert reply["message"] == "Four!"
        assert reply["context"] == "Adding means putting together."
        assert len(reply["suggestions"]) == 3

    def test_malformed_json_degrades(self, llm_gateway, openai_client):
        _respond(openai_client, "Two plus two is four. {not json")
        reply = llm_gateway.generate_tutor_reply("What is 2+2?", _context())
        assert reply == {
            "message": "Two plus two is four. {not json",
            "suggestions": FALLBACK_SUGGESTIONS,
        }

    def test_json_without_message_degrades(self, llm_gateway, openai_client):
        _respond(openai_client, '{"answer": "4"}')
        reply = llm_gateway.generate_tutor_reply("What is 2+2?", _context())
        assert reply["message"] == '{"answer": "4"}'
        assert reply["suggestions"] == FALLBACK_SUGGESTIONS

    def test_json_array_degrades(self, llm_gateway, openai_client):
        _respond(openai_client, '["four"]')
        reply = llm_gateway.generate_tutor_reply("What is 2+2?", _context())
        assert reply["message"] == '["four"]'

    def test_code_fenced_json_accepted(self, llm_gateway, openai_client):
        _respond(openai_client, '```json\n{"message": "Four!", "suggestions": ["Next?"]}\n```')
        reply = llm_gateway.generate_tutor_reply("What is 2+2?", _context())
        assert reply == {"message": "Four!", "suggestions": ["Next?"]}

    def test_non_string_suggestions_dropped(self, llm_gateway, openai_client):
        _respond(openai_client, json.dumps({"message": "Hi", "suggestions": ["ok", 3, None]}))
        reply = llm_gateway.generate_tutor_reply("hello", _context())
        assert reply["suggestions"] == ["ok"]

    def test_single_call_no_retry(self, llm_gateway, openai_client):
        _respond(openai_client, status_error(429), completion("never reached"))
        with pytest.raises(TransientProviderError):
            llm_gateway.generate_tutor_reply("hello", _context())
        assert openai_client.chat.completions.create.call_count == 1

    def test_prompt_includes_materials_and_standard(self, llm_gateway, openai_client):
        _respond(openai_client, '{"message": "ok"}')
        llm_gateway.generate_tutor_reply(
            "help",
            _context(standard=Standard("CC.3.NBT.1", "Round whole numbers")),
            [{"type": "worksheet", "content": "Round 47 to the nearest ten."}],
        )
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        system = kwargs["messages"][0]["content"]
        assert "CC.3.NBT.1: Round whole numbers" in system
        assert "worksheet: Round 47 to the nearest ten." in system
        assert kwargs["messages"][1]["content"] == "help"
        assert kwargs["temperature"] == 0.7

    def test_kindergarten_scenario(self, llm_gateway, openai_client):
        _respond(openai_client, json.dumps({
            "message": "2 and 2 make 4!",
            "suggestions": ["What is 1+1?", "Can you count to 5?", "What is 3+1?"],
        }))
        reply = llm_gateway.generate_tutor_reply(
            "What is 2+2?", _context(grade="K", topic="Counting"),
        )
        system = openai_client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "Use very simple words and short sentences" in system
        assert "Keep sentences to 8 words or less" in system
        assert '"Counting"' in system
        assert len(reply["suggestions"]) == 3
        assert reply["message"]

    def test_missing_key_fails_fast(self, openai_client):
        gateway = LLMGateway(CompletionClient(api_key=""))
        with pytest.raises(ConfigurationError):
            gateway.generate_tutor_reply("hi", _context())
        openai_client.chat.completions.create.assert_not_called()


class TestLessonExtraction:
    def test_valid_lessons(self, llm_gateway, openai_client):
        _respond(openai_client, _lessons_json([
            {"day": 1, "title": "Intro to Addition", "standard": "CC.3.NBT.2"},
            {"day": 2, "title": "Review", "standard": None},
        ]))
        result = llm_gateway.extract_lessons_from_pacing_guide("Day 1 ...", METADATA)
        assert result == {"lessons": [
            {"day": 1, "title": "Intro to Addition", "standard": "CC.3.NBT.2"},
            {"day": 2, "title": "Review", "standard": None},
        ]}
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.3
        assert "3 grade Mathematics" in kwargs["messages"][0]["content"]

    def test_invalid_lesson_dropped_order_kept(self, llm_gateway, openai_client):
        _respond(openai_client, _lessons_json([
            {"day": 1, "title": "One", "standard": None},
            {"day": 2, "title": "Two", "standard": None},
            {"day": 3, "standard": "CC.3.OA.1"},
            {"day": 4, "title": "Four", "standard": None},
            {"day": 5, "title": "Five", "standard": "CC.3.OA.2"},
        ]))
        lessons = llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)["lessons"]
        assert [l["title"] for l in lessons] == ["One", "Two", "Four", "Five"]

    def test_title_truncated(self, llm_gateway, openai_client):
        _respond(openai_client, _lessons_json([{"day": 1, "title": "x" * 150, "standard": None}]))
        lessons = llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)["lessons"]
        assert len(lessons[0]["title"]) == 100

    def test_empty_after_filtering(self, llm_gateway, openai_client):
        _respond(openai_client, _lessons_json([{"day": "one", "title": "Bad"}, {"day": 2, "title": "  "}]))
        with pytest.raises(EmptyResultError):
            llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)

    def test_empty_list(self, llm_gateway, openai_client):
        _respond(openai_client, '{"lessons": []}')
        with pytest.raises(EmptyResultError):
            llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)

    def test_missing_lessons_key(self, llm_gateway, openai_client):
        _respond(openai_client, '{"days": []}')
        with pytest.raises(MalformedResponseError):
            llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)

    def test_unparseable(self, llm_gateway, openai_client):
        _respond(openai_client, "Here are your lessons: day one is addition")
        with pytest.raises(MalformedResponseError):
            llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)
        assert openai_client.chat.completions.create.call_count == 1

    def test_messy_output_sanitized(self, llm_gateway, openai_client):
        raw = '{"lessons": [\n  {"day": 1, "title": "Fractions \\ decimals\x07", "standard": null}\n]}'
        _respond(openai_client, raw)
        lessons = llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)["lessons"]
        assert lessons == [{"day": 1, "title": "Fractions \\ decimals", "standard": None}]

    def test_three_rate_limits_exhaust(self, llm_gateway, openai_client, sleeps):
        _respond(openai_client, status_error(429), status_error(429), status_error(429))
        with pytest.raises(RetriesExhaustedError) as info:
            llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)
        assert openai_client.chat.completions.create.call_count == 3
        assert info.value.attempts == 3
        assert sleeps == [3.0, 6.0]

    def test_rate_limit_then_success(self, llm_gateway, openai_client, sleeps):
        _respond(openai_client, status_error(429),
                 _lessons_json([{"day": 1, "title": "Counting", "standard": None}]))
        result = llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)
        assert openai_client.chat.completions.create.call_count == 2
        assert result["lessons"][0]["title"] == "Counting"
        assert sleeps == [3.0]

    def test_server_error_retried(self, llm_gateway, openai_client):
        _respond(openai_client, status_error(500), status_error(503),
                 _lessons_json([{"day": 1, "title": "Counting", "standard": None}]))
        llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)
        assert openai_client.chat.completions.create.call_count == 3

    def test_client_error_not_retried(self, llm_gateway, openai_client):
        _respond(openai_client, status_error(400), completion("never reached"))
        with pytest.raises(UpstreamError):
            llm_gateway.extract_lessons_from_pacing_guide("text", METADATA)
        assert openai_client.chat.completions.create.call_count == 1


class TestSanitize:
    def test_newlines_become_spaces(self):
        assert sanitize_model_json('{"a":\n1}') == '{"a": 1}'

    def test_valid_escapes_kept(self):
        text = r'{"a": "line\nbreak \"quoted\" \\ \u00e9"}'
        assert json.loads(sanitize_model_json(text))["a"] == 'line\nbreak "quoted" \\ \u00e9'

    def test_stray_backslash_escaped(self):
        assert json.loads(sanitize_model_json(r'{"a": "C:\path"}'))["a"] == "C:\\path"

    def test_control_characters_removed(self):
        assert sanitize_model_json('{"a": "b\x00\x1f\x7f"}') == '{"a": "b"}'


class TestValidateLessons:
    def test_rejects_boolean_day_and_bad_standard(self):
        items = [
            {"day": True, "title": "Bool day"},
            {"day": 1, "title": "Numeric standard", "standard": 5},
            "not a dict",
            {"day": 2.5, "title": " Padded ", "standard": "X.1"},
        ]
        assert validate_lessons(items) == [{"day": 2.5, "title": "Padded", "standard": "X.1"}]


class TestMatchStandards:
    def test_valid_standards(self, llm_gateway, openai_client):
        _respond(openai_client, json.dumps({"standards": [
            {"id": "CC.3.NBT.1", "description": " Round numbers ", "grade": "9", "subject": "Art", "confidence": 0.2},
            {"id": None, "description": "Estimate sums"},
        ]}))
        result = llm_gateway.match_standards("Rounding to tens", "3", "Mathematics", "commonCore")
        assert result == {"standards": [
            {"id": "CC.3.NBT.1", "description": "Round numbers", "grade": "3",
             "subject": "Mathematics", "confidence": 1},
            {"id": None, "description": "Estimate sums", "grade": "3",
             "subject": "Mathematics", "confidence": 1},
        ]}
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 500

    def test_blank_description_is_empty(self, llm_gateway, openai_client):
        _respond(openai_client, '{"standards":[{"description":""}]}')
        with pytest.raises(EmptyResultError):
            llm_gateway.match_standards("Rounding", "3", "Mathematics", "commonCore")

    def test_unparseable(self, llm_gateway, openai_client):
        _respond(openai_client, "I think CC.3.NBT.1 fits.")
        with pytest.raises(MalformedResponseError):
            llm_gateway.match_standards("Rounding", "3", "Mathematics", "commonCore")

    def test_no_retry(self, llm_gateway, openai_client):
        _respond(openai_client, status_error(429), completion("never reached"))
        with pytest.raises(TransientProviderError):
            llm_gateway.match_standards("Rounding", "3", "Mathematics", "commonCore")
        assert openai_client.chat.completions.create.call_count == 1


class TestAnalyzeMaterial:
    def test_analysis(self, llm_gateway, openai_client):
        _respond(openai_client, json.dumps({
            "summary": "Intro to fractions", "keyPoints": ["halves", 2, "quarters"], "difficulty": 9,
        }))
        result = llm_gateway.analyze_material("Fractions worksheet")
        assert result == {"summary": "Intro to fractions", "keyPoints": ["halves", "quarters"], "difficulty": 5}

    def test_missing_summary(self, llm_gateway, openai_client):
        _respond(openai_client, '{"keyPoints": []}')
        with pytest.raises(MalformedResponseError):
            llm_gateway.analyze_material("Fractions worksheet")


class TestBlankReply:
    def test_blank_chat_completion_is_malformed(self, llm_gateway, openai_client):
        _respond(openai_client, "   ")
        with pytest.raises(MalformedResponseError):
            llm_gateway.generate_tutor_reply("hello", _context())
