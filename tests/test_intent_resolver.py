"""Intent resolver client: parsing, validation and failure folding."""
import asyncio
import json
import time

import pytest

from customization.intent_resolver import (
    RESOLVER_INVALID_OUTPUT,
    RESOLVER_MALFORMED_OUTPUT,
    RESOLVER_REFUSED,
    RESOLVER_SERVICE_ERROR,
    RESOLVER_TIMEOUT,
    RESOLVER_UNAVAILABLE,
    IntentResolver,
    ResolverError,
)


class FakeChatLlm:
    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.messages = None

    def invoke(self, messages):
        self.messages = messages
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


class FakeRepairLlm:
    def __init__(self, reply):
        self.reply = reply
        self.prompts = []

    def invoke(self, prompt):
        self.prompts.append(prompt)
        return self.reply


GOOD_REPLY = {
    "success": True,
    "actionSummary": {"en": "Added createdAt", "ar": "تمت إضافة تاريخ الإنشاء"},
    "changes": [
        {
            "kind": "add",
            "targetKind": "field",
            "path": "entities.User.fields.createdAt",
            "after": {"type": "datetime"},
            "description": {"en": "New timestamp", "ar": "حقل تاريخ جديد"},
        }
    ],
    "updatedDocument": {"entities": {"User": {"fields": {"createdAt": {"type": "datetime"}}}}},
    "explanation": {"en": "Timestamps help auditing", "ar": "التواريخ تساعد في التدقيق"},
}


def test_resolve_parses_fenced_json_reply() -> None:
    llm = FakeChatLlm(reply="```json\n" + json.dumps(GOOD_REPLY, ensure_ascii=False) + "\n```")
    resolver = IntentResolver(llm)

    result = asyncio.run(resolver.resolve("أضف حقل تاريخ الإنشاء", {"entities": {"User": {"fields": {}}}}))

    assert result.success
    assert result.command == "أضف حقل تاريخ الإنشاء"
    assert result.changes[0].target_kind == "field"
    assert result.changes[0].description.ar == "حقل تاريخ جديد"
    assert result.updated_document["entities"]["User"]["fields"]["createdAt"] == {"type": "datetime"}
    # the command and document both reach the model
    prompt = llm.messages[-1].content
    assert "أضف حقل تاريخ الإنشاء" in prompt
    assert '"User"' in prompt


def test_resolve_accepts_legacy_flat_bilingual_keys() -> None:
    reply = {
        "success": True,
        "action": "Renamed entity",
        "actionAr": "تمت إعادة التسمية",
        "changes": [{"type": "rename", "target": "entity", "path": "entities.Client", "description": "Client -> Customer"}],
        "updatedArchitecture": {"entities": {"Customer": {}}},
        "explanation": "Clearer naming",
        "explanationAr": "تسمية أوضح",
    }
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply, ensure_ascii=False)))

    result = asyncio.run(resolver.resolve("rename Client to Customer", {"entities": {"Client": {}}}))

    assert result.success
    assert result.action_summary.en == "Renamed entity"
    assert result.action_summary.ar == "تمت إعادة التسمية"
    assert result.changes[0].kind == "rename"
    assert result.changes[0].description.en == "Client -> Customer"
    assert result.updated_document == {"entities": {"Customer": {}}}


def test_resolve_never_mutates_caller_document() -> None:
    class MutatingLlm(FakeChatLlm):
        def invoke(self, messages):
            return json.dumps(GOOD_REPLY)

    document = {"entities": {"User": {"fields": {}}}}
    resolver = IntentResolver(MutatingLlm())
    result = asyncio.run(resolver.resolve("add createdAt", document))
    result.updated_document["entities"]["User"]["fields"]["extra"] = 1

    assert document == {"entities": {"User": {"fields": {}}}}


def test_unavailable_resolver_reports_failure() -> None:
    result = asyncio.run(IntentResolver(None).resolve("anything", {"a": 1}))
    assert result.success is False
    assert result.explanation == RESOLVER_UNAVAILABLE
    assert result.updated_document == {"a": 1}


def test_refusal_keeps_model_explanation_and_caller_document() -> None:
    reply = {
        "success": False,
        "explanation": {"en": "There is no Orders entity", "ar": "لا يوجد كيان للطلبات"},
        "updatedDocument": {"hijacked": True},
    }
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply, ensure_ascii=False)))

    result = asyncio.run(resolver.resolve("delete Orders", {"entities": {}}))

    assert result.success is False
    assert result.explanation.en == "There is no Orders entity"
    assert result.updated_document == {"entities": {}}
    assert result.command == "delete Orders"


@pytest.mark.parametrize("flag", ["false", 0, "no"])
def test_loosely_typed_refusal_carries_caller_document(flag) -> None:
    reply = {"success": flag, "updatedDocument": {"dropped": True}}
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply)))

    result = asyncio.run(resolver.resolve("x", {"caller": 1}))

    assert result.success is False
    assert result.updated_document == {"caller": 1}
    assert result.explanation == RESOLVER_REFUSED


def test_refusal_with_unusable_changes_is_still_a_refusal() -> None:
    reply = {
        "success": False,
        "changes": [{"kind": 42}],
        "explanation": {"en": "Not possible", "ar": "غير ممكن"},
    }
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply, ensure_ascii=False)))

    result = asyncio.run(resolver.resolve("x", {"caller": 1}))

    assert result.success is False
    assert result.explanation.ar == "غير ممكن"
    assert result.updated_document == {"caller": 1}


def test_transport_error_is_a_failure() -> None:
    resolver = IntentResolver(FakeChatLlm(error=ConnectionError("reset by peer")))
    result = asyncio.run(resolver.resolve("add x", {}))
    assert result.success is False
    assert result.explanation == RESOLVER_SERVICE_ERROR


def test_timeout_is_a_failure() -> None:
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(GOOD_REPLY), delay=0.5), timeout=0.05)
    result = asyncio.run(resolver.resolve("add x", {"k": 1}))
    assert result.success is False
    assert result.explanation == RESOLVER_TIMEOUT
    assert result.updated_document == {"k": 1}


def test_unparseable_reply_is_a_failure() -> None:
    resolver = IntentResolver(FakeChatLlm(reply="I am sorry, I cannot help with that."))
    result = asyncio.run(resolver.resolve("add x", {}))
    assert result.success is False
    assert result.explanation in (RESOLVER_MALFORMED_OUTPUT, RESOLVER_INVALID_OUTPUT)


def test_success_without_document_is_invalid() -> None:
    reply = {k: v for k, v in GOOD_REPLY.items() if k != "updatedDocument"}
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply)))
    result = asyncio.run(resolver.resolve("add x", {}))
    assert result.success is False
    assert result.explanation == RESOLVER_INVALID_OUTPUT


def test_unknown_change_labels_fall_back_to_modify_field() -> None:
    reply = dict(GOOD_REPLY)
    reply["changes"] = [{"kind": "link", "targetKind": "Relation", "path": "entities.Order.customer"}]
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply)))
    result = asyncio.run(resolver.resolve("add relation", {}))
    assert result.success
    assert result.changes[0].kind == "modify"
    assert result.changes[0].target_kind == "field"
    assert result.changes[0].path == "entities.Order.customer"


def test_change_without_kind_is_invalid() -> None:
    reply = dict(GOOD_REPLY)
    reply["changes"] = [{"targetKind": "field", "path": "x"}]
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply)))
    result = asyncio.run(resolver.resolve("add x", {}))
    assert result.success is False
    assert result.explanation == RESOLVER_INVALID_OUTPUT


def test_llm_repair_round_is_used_for_broken_json() -> None:
    repair = FakeRepairLlm(reply=json.dumps(GOOD_REPLY))
    resolver = IntentResolver(FakeChatLlm(reply="<<<not json at all>>>"), repair)
    result = asyncio.run(resolver.resolve("add x", {}))
    assert result.success
    assert len(repair.prompts) == 1


def test_suggest_parses_and_drops_invalid_entries() -> None:
    reply = {
        "suggestions": [
            {
                "id": "add-indexes",
                "category": "performance",
                "priority": "low",
                "title": {"en": "Index lookups", "ar": "فهرسة البحث"},
                "description": "Add indexes",
                "commandText": "add indexes on foreign keys",
                "autoApplicable": True,
            },
            {"id": "broken", "category": "weather"},
            {
                "id": "legacy",
                "type": "security",
                "priority": "high",
                "title": "Encrypt",
                "titleAr": "تشفير",
                "command": "encrypt password fields",
                "autoApply": False,
            },
        ]
    }
    resolver = IntentResolver(FakeChatLlm(reply=json.dumps(reply, ensure_ascii=False)))

    suggestions = asyncio.run(resolver.suggest({"entities": {}}))

    assert [s.id for s in suggestions] == ["add-indexes", "legacy"]
    assert suggestions[1].category == "security"
    assert suggestions[1].command_text == "encrypt password fields"
    assert suggestions[1].title.ar == "تشفير"


def test_suggest_raises_when_unavailable() -> None:
    with pytest.raises(ResolverError):
        asyncio.run(IntentResolver(None).suggest({}))
