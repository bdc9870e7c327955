# customization/engine.py

import asyncio
import copy
import weakref
from typing import Any, Dict, List, Optional

from customization import config
from customization.config import logger
from customization.entities import Bilingual, CommandResult, Document, SessionState, Suggestion, UndoResult
from customization.intent_resolver import IntentResolver, RESOLVER_SERVICE_ERROR
from customization.prompts import DEEP_MODIFICATION_COMMANDS
from customization.session_store import SessionStateStore
from customization.suggestions import SuggestionGenerator

SHAPE_POLICIES = ("accept", "warn", "reject")

NOTHING_TO_UNDO = Bilingual.of("Nothing to undo.", "لا يوجد ما يمكن التراجع عنه.")
UNDONE = Bilingual.of("Last change reverted.", "تم التراجع عن آخر تعديل.")
SHAPE_REJECTED = Bilingual.of(
    "The proposed architecture dropped top-level sections of the current one, so it was not applied.",
    "أزالت البنية المقترحة أقسامًا رئيسية من البنية الحالية، لذلك لم يتم تطبيقها.",
)


class UnknownModificationError(ValueError):
    pass


class CustomizationEngine:
    """
    Per-session command pipeline over an architecture document.

    Session state is (current_document, history). A successful command appends exactly one
    history entry and adopts its updated_document; anything else leaves the state as it was.
    Mutating operations on one session run one at a time.
    """

    def __init__(
        self,
        store: SessionStateStore,
        resolver: IntentResolver,
        *,
        suggestion_generator: Optional[SuggestionGenerator] = None,
        shape_policy: str = config.DOCUMENT_SHAPE_POLICY,
    ):
        if shape_policy not in SHAPE_POLICIES:
            raise ValueError(f"Unknown document shape policy: {shape_policy!r} (expected one of {SHAPE_POLICIES})")
        self.store = store
        self.resolver = resolver
        self.suggestion_generator = suggestion_generator or SuggestionGenerator(resolver)
        self.shape_policy = shape_policy
        # session_id -> lock; an entry lives only while some operation holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # -----------------------
    # Commands
    # -----------------------

    async def process_command(self, session_id: str, command_text: str, caller_document: Document) -> CommandResult:
        async with self._lock_for(session_id):
            return await self._process_command_unlocked(session_id, command_text, caller_document)

    async def _process_command_unlocked(
        self,
        session_id: str,
        command_text: str,
        caller_document: Document,
    ) -> CommandResult:
        state = self.store.get_or_create(session_id, caller_document)

        # the command reasons about the caller's view; history/undo use the stored one
        result = await self._resolve(command_text, caller_document)

        if result.success:
            result = self._apply_shape_policy(result, state, caller_document)
        if not result.success:
            return result

        state.history.append(result)
        state.current_document = copy.deepcopy(result.updated_document)
        self.store.save(state)
        logger.info(f"[ENGINE] session={session_id} applied command #{len(state.history)}: {command_text!r}")
        return result.model_copy(deep=True)

    async def _resolve(self, command_text: str, caller_document: Document) -> CommandResult:
        try:
            return await self.resolver.resolve(command_text, caller_document)
        except Exception as e:
            logger.warning(f"[ENGINE] resolver raised instead of reporting a failure: {e}")
            return CommandResult.failure(caller_document, RESOLVER_SERVICE_ERROR, command=command_text)

    def _apply_shape_policy(self, result: CommandResult, state: SessionState, caller_document: Document) -> CommandResult:
        if self.shape_policy == "accept":
            return result

        before = caller_document if isinstance(caller_document, dict) else state.current_document
        dropped = sorted(set(before or {}) - set(result.updated_document or {}))
        if not dropped:
            return result

        logger.warning(f"[ENGINE] session={state.session_id} updated document drops top-level keys {dropped}")
        if self.shape_policy == "warn":
            return result
        return CommandResult.failure(caller_document, SHAPE_REJECTED, command=result.command)

    async def batch_commands(
        self,
        session_id: str,
        command_texts: List[str],
        caller_document: Document,
    ) -> List[CommandResult]:
        """
        Runs the commands in order under one session lock. Each command sees the document
        produced by the last successful one; failures are reported and skipped.
        """
        results: List[CommandResult] = []
        document = caller_document
        # held across every resolver call of the batch so no other mutation lands in between
        async with self._lock_for(session_id):
            for command_text in command_texts:
                result = await self._process_command_unlocked(session_id, command_text, document)
                results.append(result)
                if result.success:
                    document = result.updated_document
        return results

    async def deep_modification(
        self,
        session_id: str,
        kind: str,
        caller_document: Document,
        *,
        target: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> CommandResult:
        command_text = self.deep_modification_command(kind, target=target, options=options)
        return await self.process_command(session_id, command_text, caller_document)

    @staticmethod
    def deep_modification_command(
        kind: str,
        *,
        target: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        key = (kind or "").strip().lower()
        if key not in DEEP_MODIFICATION_COMMANDS:
            raise UnknownModificationError(
                f"Unknown deep modification '{kind}'. Expected one of: {', '.join(DEEP_MODIFICATION_COMMANDS)}"
            )
        en, ar = DEEP_MODIFICATION_COMMANDS[key]
        command_text = f"{ar}\n{en}"
        if target:
            command_text += f"\nApply this only to / طبّق هذا فقط على: {target}"
        if options:
            rendered = ", ".join(f"{k}={v}" for k, v in options.items())
            command_text += f"\nOptions / خيارات: {rendered}"
        return command_text

    # -----------------------
    # Undo
    # -----------------------

    async def undo(self, session_id: str) -> UndoResult:
        async with self._lock_for(session_id):
            state = self.store.get(session_id)
            if state is None or not state.history:
                current = copy.deepcopy(state.current_document) if state is not None else None
                return UndoResult(nothing_to_undo=True, current_document=current, message=NOTHING_TO_UNDO)

            undone = state.history.pop()
            if state.history:
                state.current_document = copy.deepcopy(state.history[-1].updated_document)
            else:
                state.current_document = copy.deepcopy(state.baseline_document)
            self.store.save(state)

        logger.info(f"[ENGINE] session={session_id} undid a command, {len(state.history)} left in history")
        return UndoResult(
            nothing_to_undo=False,
            current_document=copy.deepcopy(state.current_document),
            message=UNDONE,
            undone=undone,
        )

    # -----------------------
    # Read-only
    # -----------------------

    async def suggestions(self, document: Document) -> List[Suggestion]:
        return await self.suggestion_generator.generate(document)

    def history(self, session_id: str) -> List[CommandResult]:
        state = self.store.get(session_id)
        return list(state.history) if state is not None else []

    def current_document(self, session_id: str) -> Optional[Document]:
        state = self.store.get(session_id)
        return state.current_document if state is not None else None

    def sweep(self) -> int:
        removed = self.store.sweep_expired()
        if removed:
            logger.debug(f"[ENGINE] session sweep: removed {removed} expired sessions")
        return removed
