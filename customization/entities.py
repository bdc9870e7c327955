# customization/entities.py
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, TypeAlias, get_args

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column, DateTime, Float, String, func
from sqlalchemy.orm import declarative_base

from customization.config import logger

# Opaque architecture document: any JSON object
Document: TypeAlias = Dict[str, Any]

ChangeKind = Literal["add", "remove", "modify", "rename"]
TargetKind = Literal["field", "entity", "permission", "workflow", "api"]
SuggestionCategory = Literal["security", "performance", "ux", "data-integrity", "best-practice"]
SuggestionPriority = Literal["high", "medium", "low"]


class WireModel(BaseModel):
    """
    camelCase on the wire, snake_case in Python. Unknown keys are dropped.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def _fold_bilingual(data: dict, key: str, target: str | None = None) -> None:
    # {"action": "...", "actionAr": "..."} -> {"action": {"en": "...", "ar": "..."}}
    target = target or key
    en = data.get(key)
    ar = data.pop(f"{key}Ar", None)
    if isinstance(en, BaseModel):
        en = en.model_dump()
    if isinstance(en, dict):
        if ar is not None and not en.get("ar"):
            en = {**en, "ar": ar}
        data[target] = en
    elif en is not None or ar is not None:
        data[target] = {"en": en or "", "ar": ar if ar is not None else (en or "")}
    if target != key:
        data.pop(key, None)


class Bilingual(WireModel):
    en: str = ""
    ar: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_plain_text(cls, data):
        if data is None:
            return {}
        if isinstance(data, str):
            return {"en": data, "ar": data}
        return data

    @classmethod
    def of(cls, en: str, ar: str) -> "Bilingual":
        return cls(en=en, ar=ar)


class Change(WireModel):
    kind: ChangeKind
    target_kind: TargetKind
    path: str = ""
    before: Optional[Any] = None
    after: Optional[Any] = None
    description: Bilingual = Bilingual()

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "kind" not in data and "type" in data:
            data["kind"] = data.pop("type")
        if "targetKind" not in data and "target_kind" not in data and "target" in data:
            data["targetKind"] = data.pop("target")
        if "target_kind" in data and "targetKind" not in data:
            data["targetKind"] = data.pop("target_kind")
        # changes are descriptive only: an unknown label degrades, it does not reject
        for key, vocabulary, fallback in (
            ("kind", get_args(ChangeKind), "modify"),
            ("targetKind", get_args(TargetKind), "field"),
        ):
            value = data.get(key)
            if not isinstance(value, str):
                continue
            value = value.strip().lower()
            if value not in vocabulary:
                logger.warning(f"[ENTITIES] unknown change {key} {value!r}, recorded as {fallback!r}")
                value = fallback
            data[key] = value
        _fold_bilingual(data, "description")
        return data


class CommandResult(WireModel):
    success: bool
    action_summary: Bilingual = Bilingual()
    changes: List[Change] = []
    updated_document: Optional[Document] = None
    explanation: Bilingual = Bilingual()
    command: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "actionSummary" not in data and "action_summary" not in data:
            _fold_bilingual(data, "action", target="actionSummary")
        else:
            _fold_bilingual(data, "actionSummary")
        _fold_bilingual(data, "explanation")
        if "updatedDocument" not in data and "updated_document" not in data:
            for legacy in ("updatedArchitecture", "architecture", "document"):
                if legacy in data:
                    data["updatedDocument"] = data.pop(legacy)
                    break
        return data

    @model_validator(mode="after")
    def _applied_results_carry_a_document(self):
        if self.success and self.updated_document is None:
            raise ValueError("a successful command result must include updatedDocument")
        return self

    @classmethod
    def failure(
        cls,
        document: Document,
        explanation: Bilingual,
        command: str | None = None,
    ) -> "CommandResult":
        return cls(
            success=False,
            action_summary=Bilingual.of("Command not applied", "لم يتم تنفيذ الأمر"),
            changes=[],
            updated_document=copy.deepcopy(document),
            explanation=explanation,
            command=command,
        )


class Suggestion(WireModel):
    id: str
    category: SuggestionCategory = "best-practice"
    priority: SuggestionPriority = "medium"
    title: Bilingual = Bilingual()
    description: Bilingual = Bilingual()
    command_text: str
    auto_applicable: bool = False

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "category" not in data and "type" in data:
            data["category"] = data.pop("type")
        if "commandText" not in data and "command_text" not in data and "command" in data:
            data["commandText"] = data.pop("command")
        if "autoApplicable" not in data and "auto_applicable" not in data and "autoApply" in data:
            data["autoApplicable"] = data.pop("autoApply")
        for key in ("category", "priority"):
            if isinstance(data.get(key), str):
                data[key] = data[key].strip().lower()
        _fold_bilingual(data, "title")
        _fold_bilingual(data, "description")
        return data


@dataclass
class SessionState:
    session_id: str
    current_document: Document
    baseline_document: Document
    history: List[CommandResult] = field(default_factory=list)

    def copy(self) -> "SessionState":
        return SessionState(
            session_id=self.session_id,
            current_document=copy.deepcopy(self.current_document),
            baseline_document=copy.deepcopy(self.baseline_document),
            history=[entry.model_copy(deep=True) for entry in self.history],
        )


@dataclass
class UndoResult:
    nothing_to_undo: bool
    current_document: Optional[Document]
    message: Bilingual
    undone: Optional[CommandResult] = None

    def to_wire(self) -> dict:
        return {
            "undone": self.undone.to_wire() if self.undone else None,
            "currentDocument": self.current_document,
            "nothingToUndo": self.nothing_to_undo,
            "message": self.message.to_wire(),
        }


# --- Persistence ---

Base = declarative_base()


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class CustomizationSession(Base, TimestampMixin):
    __tablename__ = "customization_session"

    session_id = Column(String, primary_key=True)
    current_document = Column(JSON, nullable=False)
    baseline_document = Column(JSON, nullable=False)
    history = Column(JSON, nullable=False, default=list)   # list of CommandResult wire dicts
    expires_at = Column(Float, nullable=True)              # epoch seconds, NULL = never
