import asyncio
import threading
import random
import time
import traceback
from typing import Callable, TypeVar, Any, Dict, List, Optional

from openai import OpenAI
from langchain_google_vertexai import VertexAI, ChatVertexAI
from langchain_core.messages import HumanMessage, AIMessage, SystemMessage

from customization.config import logger
from customization.model_props import parse_model_name, is_openai_model

T = TypeVar("T")


class MaxRetryErrorsException(Exception):
    pass


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def _is_timeout_error(e: Exception) -> bool:
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: Exception) -> bool:
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
        )
    )


def _respect_global_backoff() -> None:
    while True:
        with _global_backoff_lock:
            wait = _global_wait_until - time.monotonic()
        if wait <= 0:
            return
        time.sleep(min(wait, 1.0))


def _register_429_and_get_delay() -> float:
    global _global_wait_until, _global_backoff_seconds

    with _global_backoff_lock:
        now = time.monotonic()
        base = _global_backoff_seconds
        delay = random.uniform(base * 0.95, base * 1.35)
        _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
        _global_wait_until = max(_global_wait_until, now + delay)
        return delay


def _reset_backoff_on_success() -> None:
    global _global_backoff_seconds
    with _global_backoff_lock:
        _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    """
    last_exception: Exception | None = None

    for attempt in range(retries):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _is_resource_exhausted_error(e) or _is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {retries} retry attempts failed.") from last_exception


class BaseLlmClient:
    """
    Common token accounting for both completion and chat clients.
    Every call logs its own usage; `get_accrued_usage` returns the running totals.
    """

    last_usage: Optional[Dict[str, int]]

    def _add_usage(self, inc: Dict[str, int]) -> None:
        logger.info(
            f"[LLM-USAGE] model={self.model_name} prompt={inc.get('prompt_token_count', 0)} "
            f"output={inc.get('candidates_token_count', 0)} cached={inc.get('cached_content_token_count', 0)}"
        )
        with self._usage_lock:
            if self.last_usage is None:
                self.last_usage = dict(inc)
                return
            for k, v in inc.items():
                self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_openai_usage(self, resp: Any) -> None:
        usage = getattr(resp, "usage", None) if resp is not None else None
        if usage is None:
            return
        details = getattr(usage, "input_tokens_details", None)
        self._add_usage({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            "cached_content_token_count": getattr(details, "cached_tokens", 0) if details else 0,
        })

    def _merge_vertex_usage(self, resp: Any) -> None:
        # usage_metadata lives either on the message or inside response_metadata
        usage_metadata = getattr(resp, "usage_metadata", None)
        if usage_metadata is None:
            rm = getattr(resp, "response_metadata", None)
            if isinstance(rm, dict):
                usage_metadata = rm.get("usage_metadata")
            elif rm is not None:
                usage_metadata = getattr(rm, "usage_metadata", None)
        if not usage_metadata:
            return

        def get(*keys: str) -> int:
            for k in keys:
                if isinstance(usage_metadata, dict):
                    v = usage_metadata.get(k)
                else:
                    v = getattr(usage_metadata, k, None)
                if v:
                    return int(v)
            return 0

        self._add_usage({
            "prompt_token_count": get("prompt_token_count", "input_tokens"),
            "candidates_token_count": get("candidates_token_count", "output_tokens"),
            "total_token_count": get("total_token_count", "total_tokens"),
            "cached_content_token_count": get("cached_content_token_count"),
        })

    def get_accrued_usage(self) -> Dict[str, int]:
        with self._usage_lock:
            return dict(self.last_usage or {})

    def _init_provider(self, model_name: str, timeout: float | None, vertex_factory) -> None:
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._timeout = timeout
        self.last_usage = None
        self._usage_lock = threading.Lock()
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            self._vertex = vertex_factory()
            self._client = None
        else:
            self._vertex = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)


class LlmClient(BaseLlmClient):
    """
    Completion-style wrapper, used for one-shot repairs of malformed JSON:

        text = llm.invoke("some prompt")

    Under the hood:
    - Vertex: VertexAI.invoke(prompt)
    - OpenAI: Responses API (client.responses.create)
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        retries: int = 3,
    ):
        self.retries = retries
        self._init_provider(
            model_name,
            timeout,
            lambda: VertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
            ),
        )

    def _invoke_once(self, prompt: str) -> str:
        if self.provider == "vertex":
            resp = self._vertex.invoke(prompt)
            self._merge_vertex_usage(resp)
            if isinstance(resp, str):
                return resp
            return getattr(resp, "content", str(resp))

        resp = self._client.responses.create(
            model=self.model_name,
            input=prompt,
            **self._openai_params,
        )
        self._merge_openai_usage(resp)
        return (getattr(resp, "output_text", "") or "").strip()

    def invoke(self, prompt: str, *, retries: int | None = None) -> str:
        return call_with_retries_sync(
            lambda: self._invoke_once(prompt),
            retries=retries or self.retries,
            log=lambda msg: logger.info(f"[LLM-RETRY] {msg}"),
        )


class ChatLlmClient(BaseLlmClient):
    """
    Chat-style wrapper used by the intent resolver:

        text = chat_llm.invoke([SystemMessage(...), HumanMessage(...)])

    Under the hood:
    - Vertex: ChatVertexAI.invoke(messages)
    - OpenAI: Responses API with input=[{role, content}, ...]
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        retries: int = 3,
    ):
        self.retries = retries
        self._init_provider(
            model_name,
            timeout,
            lambda: ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
            ),
        )

    def _to_openai_messages(self, messages: List[HumanMessage | AIMessage | SystemMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def _invoke_once(self, messages: List[HumanMessage | AIMessage | SystemMessage]) -> str:
        if self.provider == "vertex":
            resp = self._vertex.invoke(messages)
            self._merge_vertex_usage(resp)
            if isinstance(resp, str):
                return resp
            return getattr(resp, "content", str(resp))

        resp = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            **self._openai_params,
        )
        self._merge_openai_usage(resp)
        return (getattr(resp, "output_text", "") or "").strip()

    def invoke(
        self,
        messages: List[HumanMessage | AIMessage | SystemMessage],
        *,
        retries: int | None = None,
    ) -> str:
        return call_with_retries_sync(
            lambda: self._invoke_once(messages),
            retries=retries or self.retries,
            log=lambda msg: logger.info(f"[CHAT-LLM-RETRY] {msg}"),
        )
