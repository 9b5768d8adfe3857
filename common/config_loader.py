# common/config_loader.py
import os
import yaml
import logging
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dotenv import load_dotenv

_log = logging.getLogger("property-concierge")

ENV_FILES = ("cloud.secrets.env", ".env.local", "env.local", ".env")


def load_env_files(candidates: Iterable[str] = ENV_FILES) -> None:
    """Load env files from CWD without overriding values already set by the platform."""
    for name in candidates:
        if os.path.exists(name):
            load_dotenv(name, override=False)


def load_config() -> Dict[str, Any]:
    """Load YAML from CONFIG_PATH or ./config.yaml, with safe defaults."""
    config_path = Path(os.getenv("CONFIG_PATH", "config.yaml"))
    if not config_path.exists():
        _log.warning("Config file not found at %s. Using built-in defaults.", config_path)
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except Exception as e:  # noqa: BLE001
        _log.error("Failed to parse %s: %s. Using built-in defaults.", config_path, e)
        return {}


def cfg_get(d: Dict[str, Any], path: str, default=None):
    """Safely fetch a nested key via dotted path, e.g. cfg_get(cfg, 'openai.voice')."""
    cur = d
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def mask_key(key: Optional[str]) -> str:
    if not key:
        return "<none>"
    digest = hashlib.sha256(key.encode()).hexdigest()
    return f"sha256:{digest[:8]}"


# =========================
# Typed settings
# =========================
@dataclass
class Settings:
    # realtime
    realtime_model: str = "gpt-4o-realtime-preview"
    voice: str = "coral"
    transcription_model: str = "whisper-1"
    turn_detection: Dict[str, Any] = field(default_factory=lambda: {
        "type": "server_vad",
        "threshold": 0.8,
        "prefix_padding_ms": 250,
        "silence_duration_ms": 800,
        "create_response": True,
    })

    # remote services
    services_base_url: str = ""
    services_timeout_s: float = 30.0
    tools_path: str = "/functions/v1/realtime_tools"
    phone_auth_path: str = "/functions/v1/phoneAuth"
    schedule_path: str = "/functions/v1/schedule-visit-whatsapp"
    history_path: str = "/functions/v1/update_agent_history"

    # conversation
    default_language: str = "English"
    auth_question_threshold: int = 3
    schedule_prompt_threshold: int = 12
    default_time_slots: List[str] = field(default_factory=lambda: ["11:00 AM", "4:00 PM"])

    # timing (seconds)
    settle_delay_s: float = 0.5
    submit_timeout_s: float = 12.0
    verification_success_revert_s: float = 3.0
    booking_confirmation_revert_s: float = 15.0

    # history
    history_enabled: bool = True
    history_writer: str = "http"
    history_debounce_s: float = 1.0

    # secrets (env only)
    openai_api_key: Optional[str] = None
    services_api_key: Optional[str] = None
    history_api_key: Optional[str] = None


def build_settings(cfg: Optional[Dict[str, Any]] = None) -> Settings:
    """Merge config.yaml values and env secrets over the defaults."""
    load_env_files()
    cfg = cfg if cfg is not None else load_config()
    s = Settings()

    s.realtime_model = cfg_get(cfg, "openai.realtime_model", s.realtime_model)
    s.voice = cfg_get(cfg, "openai.voice", s.voice)
    s.transcription_model = cfg_get(cfg, "openai.transcription_model", s.transcription_model)
    td = cfg_get(cfg, "turn_detection", None)
    if isinstance(td, dict):
        s.turn_detection = {**s.turn_detection, **td}

    s.services_base_url = os.getenv("SERVICES_BASE_URL") or cfg_get(cfg, "services.base_url", s.services_base_url)
    s.services_timeout_s = float(cfg_get(cfg, "services.timeout_s", s.services_timeout_s))
    s.tools_path = cfg_get(cfg, "services.tools_path", s.tools_path)
    s.phone_auth_path = cfg_get(cfg, "services.phone_auth_path", s.phone_auth_path)
    s.schedule_path = cfg_get(cfg, "services.schedule_path", s.schedule_path)
    s.history_path = cfg_get(cfg, "services.history_path", s.history_path)

    s.default_language = cfg_get(cfg, "conversation.default_language", s.default_language)
    s.auth_question_threshold = int(cfg_get(cfg, "conversation.auth_question_threshold", s.auth_question_threshold))
    s.schedule_prompt_threshold = int(cfg_get(cfg, "conversation.schedule_prompt_threshold", s.schedule_prompt_threshold))
    slots = cfg_get(cfg, "conversation.default_time_slots", None)
    if isinstance(slots, list) and slots:
        s.default_time_slots = [str(x) for x in slots]

    s.settle_delay_s = float(cfg_get(cfg, "timing.settle_delay_s", s.settle_delay_s))
    s.submit_timeout_s = float(cfg_get(cfg, "timing.submit_timeout_s", s.submit_timeout_s))
    s.verification_success_revert_s = float(
        cfg_get(cfg, "timing.verification_success_revert_s", s.verification_success_revert_s)
    )
    s.booking_confirmation_revert_s = float(
        cfg_get(cfg, "timing.booking_confirmation_revert_s", s.booking_confirmation_revert_s)
    )

    s.history_enabled = bool(cfg_get(cfg, "history.enabled", s.history_enabled))
    s.history_writer = str(cfg_get(cfg, "history.writer", s.history_writer)).lower()
    s.history_debounce_s = float(cfg_get(cfg, "history.debounce_s", s.history_debounce_s))

    s.openai_api_key = os.getenv("OPENAI_API_KEY")
    s.services_api_key = os.getenv("SERVICES_API_KEY")
    s.history_api_key = os.getenv("HISTORY_API_KEY") or s.services_api_key
    return s
