"""Pytest configuration: project root on sys.path plus scripted resolver doubles."""
import copy
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from customization.engine import CustomizationEngine
from customization.entities import Bilingual, CommandResult
from customization.intent_resolver import RESOLVER_UNAVAILABLE, ResolverError
from customization.session_store import InMemorySessionStore


def applied(document, summary="done"):
    return CommandResult(
        success=True,
        action_summary=Bilingual.of(summary, summary),
        changes=[],
        updated_document=document,
        explanation=Bilingual.of(summary, summary),
    )


class StubResolver:
    """
    Resolver double. `script` maps a command to either a document (success) or None
    (failure); a callable script receives (command, document) and returns the same.
    """

    def __init__(self, script=None, suggestions=None):
        self.script = script if script is not None else {}
        self.suggestions = suggestions
        self.calls = []

    async def resolve(self, command_text, document):
        self.calls.append((command_text, copy.deepcopy(document)))
        if callable(self.script):
            outcome = self.script(command_text, document)
        else:
            outcome = self.script.get(command_text)
        if outcome is None:
            return CommandResult.failure(document, Bilingual.of("refused", "مرفوض"), command=command_text)
        result = applied(copy.deepcopy(outcome), summary=command_text)
        result.command = command_text
        return result

    async def suggest(self, document):
        if self.suggestions is None:
            raise ResolverError("offline", RESOLVER_UNAVAILABLE)
        return list(self.suggestions)


@pytest.fixture
def stub_resolver():
    return StubResolver()


@pytest.fixture
def engine(stub_resolver):
    return CustomizationEngine(InMemorySessionStore(), stub_resolver)
