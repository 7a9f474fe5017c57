"""
Language Model Client - intent parsing and tap disambiguation

Talks to an Ollama-compatible chat endpoint (POST /api/chat, non-streaming).
Both entry points degrade instead of raising: parse_intent falls back to a
single LAUNCH_APP plan, disambiguate returns None.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.core.flows.flow_models import ActionPlan, PlanStep, StepType
from mobile_pilot.utils.error_handler import LanguageModelError

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = (
    "Return ONLY a single minified JSON object for ActionPlan:\n"
    '{"title": string, "steps":[{"index":int,"type":"LAUNCH_APP|TAP|INPUT_TEXT|SCROLL_TO|'
    'WAIT_TEXT|ASSERT_TEXT|BACK|SLEEP","targetHint":string?,"value":string?}]}\n'
    "No prose. No code fences. No extra keys."
)

DISAMBIGUATE_SYSTEM_PROMPT = (
    "You are selecting UI elements for Android automation.\n"
    "You get a user hint and a small list of candidates on the current screen.\n"
    "PICK EXACTLY ONE winner id.\n"
    "Rules:\n"
    "- Prefer items whose label best matches the hint semantics, not only tokens.\n"
    "- If the hint sounds like a tab or menu, prefer role 'bottom_nav' or 'tab' if present.\n"
    "- If still tied, choose the one with the most complete label match (all words, same order).\n"
    'Output JSON only: {"winnerId":"<id>"}\n'
    "No extra keys, no prose."
)

FALLBACK_PACKAGE = "com.example.app"

_FENCED_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def extract_json(text: str) -> str:
    """JSON object inside a code fence, else the widest {...} block, else the text."""
    fenced = _FENCED_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1].strip()
    return text


class LanguageModelClient:
    """Thin synchronous client for a local chat model"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        settings: Optional[AppDefaults] = None,
    ):
        self.settings = settings or get_defaults()
        self.base_url = (base_url or self.settings.LLM_SERVER_URL).rstrip("/")
        self.model = model or self.settings.LLM_MODEL

    def complete(self, system: str, user: str, json_mode: bool = True) -> str:
        """One chat turn. Raises LanguageModelError on transport or payload problems."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "stream": False,
            "options": {"temperature": 0.0},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        if json_mode:
            payload["format"] = "json"

        try:
            response = httpx.post(f"{self.base_url}/api/chat", json=payload, timeout=self.settings.LLM_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LanguageModelError(f"Chat request failed: {e}", model=self.model)

        content = (data.get("message") or {}).get("content") if isinstance(data, dict) else None
        if not content:
            raise LanguageModelError("Empty model response", model=self.model)
        return content.strip()

    # =========================================================================
    # Intent parsing
    # =========================================================================

    def parse_intent(self, text: str, package: Optional[str] = None) -> ActionPlan:
        """
        Natural-language task -> ActionPlan.

        Tries the task as-is, then once more with a stricter instruction; when
        neither reply parses, returns a one-step LAUNCH_APP plan.
        """
        prompts = [
            text,
            f"Task: {text}\nOutput: ONLY ActionPlan JSON (minified). Start with {{ and end with }}.",
        ]
        for attempt, prompt in enumerate(prompts, start=1):
            try:
                raw = self.complete(INTENT_SYSTEM_PROMPT, prompt)
                plan = ActionPlan.model_validate(json.loads(extract_json(raw)))
            except LanguageModelError as e:
                logger.warning(f"[LanguageModelClient] {e.message} (attempt {attempt})")
                continue
            except (ValueError, ValidationError) as e:
                logger.warning(f"[LanguageModelClient] Unparseable plan (attempt {attempt}): {e}")
                continue
            if plan.steps:
                logger.info(f"[LanguageModelClient] Parsed {len(plan.steps)} step(s)")
                return plan.reindexed()

        logger.warning("[LanguageModelClient] Falling back to a LAUNCH_APP plan")
        return ActionPlan(
            title="Parsed Task",
            steps=[PlanStep(index=1, type=StepType.LAUNCH_APP, target_hint=package or FALLBACK_PACKAGE)],
        )

    # =========================================================================
    # Disambiguation
    # =========================================================================

    def disambiguate(self, hint: str, candidates: List[Dict[str, Any]], context: Optional[str] = None) -> Optional[str]:
        """Id of the candidate the model prefers for `hint`, or None."""
        if not candidates:
            return None
        payload = json.dumps({"hint": hint, "screen": {"title": context}, "candidates": candidates})
        user = f"CONTEXT_JSON_START\n{payload}\nCONTEXT_JSON_END\nReturn only JSON as specified."
        try:
            raw = self.complete(DISAMBIGUATE_SYSTEM_PROMPT, user)
            winner = json.loads(extract_json(raw)).get("winnerId")
        except (LanguageModelError, ValueError, AttributeError) as e:
            logger.debug(f"[LanguageModelClient] Disambiguation unavailable: {e}")
            return None

        known = {str(c.get("id")) for c in candidates}
        if not winner or str(winner) not in known:
            return None
        logger.info(f"[LanguageModelClient] '{hint}' -> {winner}")
        return str(winner)
