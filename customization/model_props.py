# customization/model_props.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

#! MODEL NAMES
# A model name is "<base>[_<token>...]", e.g. "gpt-5.1_standard" or "gpt-5.1_low_high_flex".
# Tokens only matter for OpenAI models; Vertex models take the base name as-is.

VERBOSITY_TOKENS = {"low", "medium", "high"}
REASONING_TOKENS = {"none", "minimal", "low", "medium", "high", "xhigh"}
SERVICE_TIER_TOKENS = {"auto", "default", "flex", "priority"}

# preset -> (verbosity, reasoning_effort, service_tier)
PRESETS: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
    # structured document edits: terse output, some reasoning
    "standard": ("low", "low", None),
    "std": ("low", "low", None),
    "fast": ("low", "none", None),
    # deep modifications (restructure / normalize) benefit from more reasoning
    "deep": ("medium", "high", None),
    "standard-flex": ("low", "low", "flex"),
    "deep-flex": ("medium", "high", "flex"),
}


def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "o3", "o4")
    return any((model_name or "").startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """
    Split a model string into (base_model, openai_params).

    'gpt-5.1_deep'      -> ('gpt-5.1', {'text': {'verbosity': 'medium'}, 'reasoning': {'effort': 'high'}, 'service_tier': 'default'})
    'gemini-2.5-flash'  -> ('gemini-2.5-flash', {})
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed.")

    base, *tokens = raw.split("_")
    if not tokens:
        return base, {}

    chosen: Dict[str, Optional[str]] = {"verbosity": None, "reasoning": None, "tier": None}
    unknown = []

    def _take(slot: str, value: Optional[str]) -> None:
        if value is not None and chosen[slot] is None:
            chosen[slot] = value

    for tok in tokens:
        t = tok.strip().lower()
        if not t:
            continue
        if t in PRESETS:
            verbosity, reasoning, tier = PRESETS[t]
            _take("verbosity", verbosity)
            _take("reasoning", reasoning)
            _take("tier", tier)
        elif chosen["verbosity"] is None and t in VERBOSITY_TOKENS:
            chosen["verbosity"] = t
        elif chosen["reasoning"] is None and t in REASONING_TOKENS:
            chosen["reasoning"] = t
        elif chosen["tier"] is None and t in SERVICE_TIER_TOKENS:
            chosen["tier"] = t
        else:
            unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'.")

    params: Dict[str, Any] = {"service_tier": chosen["tier"] or "default"}
    if chosen["verbosity"]:
        params["text"] = {"verbosity": chosen["verbosity"]}
    if chosen["reasoning"]:
        params["reasoning"] = {"effort": chosen["reasoning"]}
    return base, params
