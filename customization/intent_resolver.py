# customization/intent_resolver.py

import asyncio
import copy
from typing import Any, Dict, List

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from customization import config
from customization.base_utils import BaseUtils, JsonParsingError
from customization.config import logger
from customization.entities import Bilingual, CommandResult, Document, Suggestion
from customization.llm_client import ChatLlmClient, LlmClient, MaxRetryErrorsException
from customization.prompts import RESOLVE_COMMAND_PROMPT, RESOLVER_SYSTEM_PROMPT, SUGGEST_PROMPT


RESOLVER_UNAVAILABLE = Bilingual.of(
    "The reasoning service is not configured, so the command could not be interpreted.",
    "خدمة التحليل غير مهيأة، لذلك تعذر تفسير الأمر.",
)
RESOLVER_TIMEOUT = Bilingual.of(
    "The reasoning service did not answer in time. Please try again.",
    "لم تستجب خدمة التحليل في الوقت المحدد. يرجى المحاولة مرة أخرى.",
)
RESOLVER_SERVICE_ERROR = Bilingual.of(
    "The reasoning service failed while processing the command. Please try again.",
    "فشلت خدمة التحليل أثناء معالجة الأمر. يرجى المحاولة مرة أخرى.",
)
RESOLVER_MALFORMED_OUTPUT = Bilingual.of(
    "The reasoning service returned an unreadable answer. Please rephrase the command.",
    "أعادت خدمة التحليل إجابة غير مقروءة. يرجى إعادة صياغة الأمر.",
)
RESOLVER_INVALID_OUTPUT = Bilingual.of(
    "The reasoning service returned an incomplete change description. Please rephrase the command.",
    "أعادت خدمة التحليل وصفًا غير مكتمل للتغيير. يرجى إعادة صياغة الأمر.",
)
RESOLVER_REFUSED = Bilingual.of(
    "The command could not be applied to the current architecture.",
    "تعذر تطبيق الأمر على البنية الحالية.",
)


class ResolverError(Exception):
    """
    Any failure to turn a request into a usable answer. `explanation` is user-facing.
    """

    def __init__(self, message: str, explanation: Bilingual = RESOLVER_SERVICE_ERROR):
        super().__init__(message)
        self.explanation = explanation


class IntentResolver(BaseUtils):
    """
    Adapter to the reasoning model.

    resolve(): (command, document) -> CommandResult, never raises; failures come back as
               success=False results carrying the caller's document unchanged.
    suggest(): document -> [Suggestion], raises ResolverError on failure.

    Each call has exactly one suspension point: the model round trip (plus JSON repair),
    run in a worker thread and bounded by `timeout`.
    """

    def __init__(
        self,
        chat_llm=None,
        llm=None,
        *,
        timeout: float = config.RESOLVER_TIMEOUT_SECONDS,
        max_suggestions: int = 6,
    ):
        self.chat_llm = chat_llm
        self.llm = llm
        self.timeout = timeout
        self.max_suggestions = max_suggestions

    @property
    def available(self) -> bool:
        return self.chat_llm is not None

    def token_usage(self) -> Dict[str, int]:
        """Tokens spent so far by the chat model and the JSON repair model, summed."""
        totals: Dict[str, int] = {}
        for client in (self.chat_llm, self.llm):
            accrued = getattr(client, "get_accrued_usage", None)
            if accrued is None:
                continue
            for k, v in accrued().items():
                totals[k] = totals.get(k, 0) + (v or 0)
        return totals

    # -----------------------
    # Resolve mode
    # -----------------------

    async def resolve(self, command_text: str, document: Document) -> CommandResult:
        snapshot = copy.deepcopy(document)
        prompt = self.unsafe_string_format(
            RESOLVE_COMMAND_PROMPT,
            CURRENT_DOCUMENT=self.dump_json(snapshot),
            COMMAND=command_text,
        )
        try:
            data = await self._complete_json(prompt)
            return self._to_command_result(data, snapshot, command_text)
        except ResolverError as e:
            logger.info(f"[RESOLVER] command not applied ({e}): {command_text!r}")
            return CommandResult.failure(snapshot, e.explanation, command=command_text)

    def _to_command_result(self, data: Any, snapshot: Document, command_text: str) -> CommandResult:
        if not isinstance(data, dict):
            raise ResolverError(f"expected a JSON object, got {type(data).__name__}", RESOLVER_MALFORMED_OUTPUT)

        try:
            result = CommandResult.model_validate(data)
        except ValidationError as e:
            # a refusal with junk in changes/updatedDocument is still a refusal
            result = self._as_refusal(data)
            if result is None:
                raise ResolverError(f"invalid command result: {e.error_count()} error(s)", RESOLVER_INVALID_OUTPUT) from e

        if not result.success:
            # keep the model's explanation, never its document
            explanation = result.explanation
            if not explanation.en and not explanation.ar:
                explanation = RESOLVER_REFUSED
            raise ResolverError("model refused the command", explanation)

        result.command = command_text
        return result

    @staticmethod
    def _as_refusal(data: dict) -> CommandResult | None:
        try:
            refusal = CommandResult.model_validate({**data, "changes": [], "updatedDocument": None})
        except ValidationError:
            return None
        return refusal if not refusal.success else None

    # -----------------------
    # Suggest mode
    # -----------------------

    async def suggest(self, document: Document) -> List[Suggestion]:
        prompt = self.unsafe_string_format(
            SUGGEST_PROMPT,
            CURRENT_DOCUMENT=self.dump_json(copy.deepcopy(document)),
            MAX_SUGGESTIONS=self.max_suggestions,
        )
        data = await self._complete_json(prompt)

        items = data.get("suggestions") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ResolverError("suggestions payload is not a list", RESOLVER_MALFORMED_OUTPUT)

        suggestions: List[Suggestion] = []
        seen_ids = set()
        for raw in items:
            try:
                suggestion = Suggestion.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"[RESOLVER] dropping invalid suggestion: {e.error_count()} error(s)")
                continue
            if suggestion.id in seen_ids:
                continue
            seen_ids.add(suggestion.id)
            suggestions.append(suggestion)
        return suggestions[: self.max_suggestions]

    # -----------------------
    # LLM plumbing
    # -----------------------

    async def _complete_json(self, prompt: str) -> Any:
        if not self.available:
            raise ResolverError("no chat LLM configured", RESOLVER_UNAVAILABLE)

        messages = [SystemMessage(content=RESOLVER_SYSTEM_PROMPT), HumanMessage(content=prompt)]
        logger.debug("===============Resolver prompt\n\n" + prompt)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._invoke_and_parse, messages),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ResolverError(f"timed out after {self.timeout}s", RESOLVER_TIMEOUT) from e

    def _invoke_and_parse(self, messages) -> Any:
        try:
            raw = self.chat_llm.invoke(messages)
        except MaxRetryErrorsException as e:
            raise ResolverError(str(e), RESOLVER_SERVICE_ERROR) from e
        except Exception as e:
            raise ResolverError(f"LLM call failed: {e}", RESOLVER_SERVICE_ERROR) from e

        raw = getattr(raw, "content", raw)
        if not isinstance(raw, str):
            raw = str(raw)
        logger.debug("===============Resolver response\n\n" + raw)

        try:
            return self.load_fault_tolerant_json(self.clean_triple_backticks(raw).strip(), llm=self.llm)
        except JsonParsingError as e:
            raise ResolverError(str(e), RESOLVER_MALFORMED_OUTPUT) from e
        except Exception as e:
            # the LLM repair round can fail like any other model call
            raise ResolverError(f"JSON repair failed: {e}", RESOLVER_MALFORMED_OUTPUT) from e


def build_intent_resolver(
    model_name: str = config.DEFAULT_LLM_MODEL,
    *,
    timeout: float = config.RESOLVER_TIMEOUT_SECONDS,
) -> IntentResolver:
    """
    Builds the LLM-backed resolver. When the provider cannot be initialized the resolver
    is still returned, unavailable: commands then fail cleanly and suggestions fall back.
    """
    try:
        llm = LlmClient(
            model_name=model_name,
            vertex_project=config.PROJECT_ID,
            vertex_region=config.REGION,
            timeout=timeout,
            retries=config.LLM_RETRIES,
        )
        chat_llm = ChatLlmClient(
            model_name=model_name,
            vertex_project=config.PROJECT_ID,
            vertex_region=config.REGION,
            timeout=timeout,
            retries=config.LLM_RETRIES,
        )
    except Exception as e:
        logger.warning(f"Warning: Could not initialize LLM '{model_name}': {e}. Resolver unavailable.")
        return IntentResolver(None, None, timeout=timeout)
    return IntentResolver(chat_llm, llm, timeout=timeout)
