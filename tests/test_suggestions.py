"""Suggestion generator ranking and offline fallback."""
import asyncio

from conftest import StubResolver
from customization.entities import Suggestion
from customization.suggestions import FALLBACK_SUGGESTIONS, SuggestionGenerator


def _suggestion(sid: str, priority: str) -> Suggestion:
    return Suggestion(id=sid, priority=priority, command_text=f"do {sid}")


def test_fallback_is_fixed_and_ordered() -> None:
    generator = SuggestionGenerator(StubResolver(suggestions=None))

    first = asyncio.run(generator.generate({"entities": {}}))
    second = asyncio.run(generator.generate({"something": "else"}))

    expected = ["fallback-timestamps", "fallback-soft-delete", "fallback-audit-log"]
    assert [s.id for s in first] == expected
    assert [s.to_wire() for s in first] == [s.to_wire() for s in second]
    assert all(s.title.en and s.title.ar for s in first)


def test_fallback_copies_are_independent() -> None:
    generator = SuggestionGenerator(StubResolver(suggestions=None))
    got = asyncio.run(generator.generate({}))
    got[0].command_text = "changed"
    assert FALLBACK_SUGGESTIONS[0].command_text != "changed"


def test_empty_resolver_answer_falls_back() -> None:
    generator = SuggestionGenerator(StubResolver(suggestions=[]))
    got = asyncio.run(generator.generate({}))
    assert [s.id for s in got][0] == "fallback-timestamps"


def test_resolver_suggestions_are_ranked_by_priority_stably() -> None:
    resolver = StubResolver(
        suggestions=[
            _suggestion("a", "low"),
            _suggestion("b", "high"),
            _suggestion("c", "medium"),
            _suggestion("d", "high"),
        ]
    )
    got = asyncio.run(SuggestionGenerator(resolver).generate({}))
    assert [s.id for s in got] == ["b", "d", "c", "a"]


def test_suggestion_wire_format_is_camel_case() -> None:
    wire = FALLBACK_SUGGESTIONS[2].to_wire()
    assert wire["commandText"]
    assert wire["autoApplicable"] is True
    assert wire["category"] == "security"
    assert set(wire["title"]) == {"en", "ar"}
