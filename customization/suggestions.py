# customization/suggestions.py

from typing import List

from customization.config import logger
from customization.entities import Bilingual, Document, Suggestion
from customization.intent_resolver import IntentResolver, ResolverError

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

# Offline / degraded answer. Order is part of the contract.
FALLBACK_SUGGESTIONS: List[Suggestion] = [
    Suggestion(
        id="fallback-timestamps",
        category="best-practice",
        priority="medium",
        title=Bilingual.of("Add timestamp fields", "إضافة حقول التاريخ"),
        description=Bilingual.of(
            "Add createdAt and updatedAt to every entity so records can be traced over time.",
            "أضف حقلي تاريخ الإنشاء وتاريخ التحديث لكل كيان لتتبع السجلات عبر الزمن.",
        ),
        command_text="أضف حقل تاريخ الإنشاء لجميع الكيانات / Add createdAt and updatedAt fields to all entities",
        auto_applicable=True,
    ),
    Suggestion(
        id="fallback-soft-delete",
        category="data-integrity",
        priority="medium",
        title=Bilingual.of("Add soft delete", "إضافة الحذف المنطقي"),
        description=Bilingual.of(
            "Add an isDeleted flag instead of removing rows, so deleted data can be restored.",
            "أضف علامة isDeleted بدلًا من حذف السجلات نهائيًا حتى يمكن استعادتها.",
        ),
        command_text="أضف حقل الحذف المنطقي لجميع الكيانات / Add an isDeleted soft-delete flag to all entities",
        auto_applicable=True,
    ),
    Suggestion(
        id="fallback-audit-log",
        category="security",
        priority="high",
        title=Bilingual.of("Add an audit log", "إضافة سجل التدقيق"),
        description=Bilingual.of(
            "Record who changed what and when in a dedicated AuditLog entity.",
            "سجّل من قام بالتعديل وماذا عدّل ومتى في كيان مخصص لسجل التدقيق.",
        ),
        command_text="أضف كيان سجل التدقيق لتتبع جميع التعديلات / Add an AuditLog entity that tracks every change",
        auto_applicable=True,
    ),
]


def fallback_suggestions() -> List[Suggestion]:
    return [s.model_copy(deep=True) for s in FALLBACK_SUGGESTIONS]


def rank_suggestions(suggestions: List[Suggestion]) -> List[Suggestion]:
    # sorted() is stable: the resolver's order is kept inside a priority
    return sorted(suggestions, key=lambda s: PRIORITY_RANK.get(s.priority, len(PRIORITY_RANK)))


class SuggestionGenerator:
    """
    Suggest mode of the resolver with a fixed fallback. Never raises to the caller.
    """

    def __init__(self, resolver: IntentResolver):
        self.resolver = resolver

    async def generate(self, document: Document) -> List[Suggestion]:
        try:
            suggestions = await self.resolver.suggest(document)
        except ResolverError as e:
            logger.info(f"[SUGGESTIONS] resolver unavailable, using fallback list: {e}")
            return fallback_suggestions()
        except Exception as e:
            logger.warning(f"[SUGGESTIONS] unexpected resolver error, using fallback list: {e}")
            return fallback_suggestions()

        if not suggestions:
            logger.info("[SUGGESTIONS] resolver returned no usable suggestions, using fallback list")
            return fallback_suggestions()
        return rank_suggestions(suggestions)
