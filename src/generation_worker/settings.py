import json
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME_MAP = {
    "g2.5-flash": "gemini/gemini-2.5-flash",
    "g2.5-flash-lite": "gemini/gemini-2.5-flash-lite",
    "g2.0-flash": "gemini/gemini-2.0-flash",
    "g2.5-pro": "gemini/gemini-2.5-pro",
}


def parse_int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default
    if value < minimum:
        logger.warning("Ignoring %s=%r: must be >= %d", name, raw, minimum)
        return default
    return value


def get_model_name_map() -> dict[str, str]:
    mapping = dict(DEFAULT_MODEL_NAME_MAP)
    raw = (os.getenv("LLM_MODEL_NAME_MAP") or "").strip()
    if not raw:
        return mapping
    try:
        overrides = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring LLM_MODEL_NAME_MAP: invalid JSON (%s)", exc)
        return mapping
    if not isinstance(overrides, dict):
        logger.warning("Ignoring LLM_MODEL_NAME_MAP: expected an object")
        return mapping
    for model_id, name in overrides.items():
        if isinstance(model_id, str) and isinstance(name, str) and name:
            mapping[model_id] = name
    return mapping


@dataclass(frozen=True)
class WorkerSettings:
    concurrency: int = 5
    max_attempts: int = 3
    estimated_tokens_per_page: int = 2000
    escalation_fail_count: int = 2
    prompt_version: str = "v1"
    usage_ledger_path: str = "llm_usage.json"
    model_name_map: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_MODEL_NAME_MAP)
    )


def get_worker_settings() -> WorkerSettings:
    return WorkerSettings(
        concurrency=parse_int_env("WORKER_CONCURRENCY", 5, minimum=1),
        max_attempts=parse_int_env("WORKER_MAX_ATTEMPTS", 3, minimum=1),
        estimated_tokens_per_page=parse_int_env("ESTIMATED_TOKENS_PER_PAGE", 2000),
        escalation_fail_count=parse_int_env("ESCALATION_FAIL_COUNT", 2, minimum=1),
        prompt_version=(os.getenv("PROMPT_VERSION") or "v1").strip(),
        usage_ledger_path=(os.getenv("USAGE_LEDGER_PATH") or "llm_usage.json").strip(),
        model_name_map=get_model_name_map(),
    )


def get_log_level() -> str:
    return (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
