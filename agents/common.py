"""Shared helpers for agent functions."""
import json
import os
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


_DEFAULT_TEMPERATURES: Dict[str, float] = {
    "narrator": 0.7,
    "page_narrator": 0.6,
}


def _agent_temp_env_key(agent_name: str) -> str:
    normalized = "".join(ch if ch.isalnum() else "_" for ch in (agent_name or "default"))
    return f"LLM_TEMPERATURE_{normalized.upper()}"


def _resolve_temperature(agent_name: str) -> float:
    # Per-agent override wins (e.g., LLM_TEMPERATURE_NARRATOR).
    value = os.getenv(_agent_temp_env_key(agent_name))
    if value is not None:
        return float(value)
    return _DEFAULT_TEMPERATURES.get(agent_name, 0.3)


@dataclass
class LLMConfig:
    agent_name: str = "default"
    model: str = os.getenv("LLM_MODEL", "Qwen/Qwen2.5-7B-Instruct")
    base_url: str = os.getenv("VLLM_BASE_URL", "http://localhost:8000/v1")
    api_key: str = os.getenv("VLLM_API_KEY", "EMPTY")
    temperature: Optional[float] = None
    max_tokens: int = int(os.getenv("LLM_MAX_TOKENS", "2048"))
    json_only: bool = True
    timeout_sec: int = int(os.getenv("LLM_TIMEOUT_SEC", "60"))
    attempts: int = 3

    def __post_init__(self) -> None:
        if self.temperature is None:
            self.temperature = _resolve_temperature(self.agent_name)


class LLMClient:
    """OpenAI-compatible chat completions client."""

    def __init__(self, config: Optional[LLMConfig] = None, agent_name: str = "default") -> None:
        self.config = config or LLMConfig(agent_name=agent_name)
        self.last_raw: Optional[str] = None
        self.last_prompt: Optional[str] = None

    def complete_json(self, prompt: str, system: str = "You must respond with JSON only. No prose.") -> Dict[str, Any]:
        """Return a JSON object from the model, salvaging or repairing malformed output."""
        self.last_prompt = prompt
        last_err: Optional[Exception] = None
        for attempt in range(max(1, self.config.attempts)):
            user = prompt
            if attempt:
                user = "Return valid JSON only. Do not include any other text.\n\n" + prompt
            content = self._chat(
                [{"role": "system", "content": system}, {"role": "user", "content": user}],
                temperature=float(self.config.temperature or 0.0),
            )
            try:
                return ensure_json_only(content)
            except json.JSONDecodeError as err:
                last_err = err
                salvage = _extract_json(content)
                if salvage is not None:
                    return salvage
                repaired = self._repair_json(content)
                if repaired is not None:
                    return repaired
        raise last_err or RuntimeError("Failed to parse JSON from LLM")

    def _repair_json(self, bad_json: str) -> Optional[Dict[str, Any]]:
        prompt = "Fix the JSON below. Return valid JSON only.\n\n<json>\n" + bad_json + "\n</json>"
        try:
            content = self._chat(
                [
                    {"role": "system", "content": "You fix invalid JSON. Return only valid JSON. No prose."},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.0,
            )
            return ensure_json_only(content)
        except (OSError, RuntimeError, ValueError):
            return None

    def _chat(self, messages: List[Dict[str, str]], temperature: float) -> str:
        url = self.config.base_url.rstrip("/") + "/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.config.max_tokens,
        }
        if self.config.json_only:
            payload["response_format"] = {"type": "json_object"}
        req = urllib.request.Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers)
        with urllib.request.urlopen(req, timeout=self.config.timeout_sec) as resp:
            raw = resp.read().decode("utf-8")
        self.last_raw = raw
        parsed = json.loads(raw)
        choices = parsed.get("choices", [])
        if not choices:
            raise RuntimeError("LLM returned no choices")
        return choices[0].get("message", {}).get("content", "") or ""


def ensure_json_only(text: str) -> Dict[str, Any]:
    """Parse a JSON-only response string."""
    return json.loads(text)


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
