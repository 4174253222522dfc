import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    dify_api_key: str = ""
    dify_base_url: str = "https://api.dify.ai"

    chat_base_url: str = "http://127.0.0.1:8000"
    state_file: Path = ROOT / ".ev_chat_state.json"
    request_timeout: float = 120.0

    typing_interval: float = 0.018
    typing_chunk: int = 2

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        state_file = os.getenv("EV_CHAT_STATE_FILE", "").strip()
        return cls(
            dify_api_key=os.getenv("DIFY_EV_AGENT", "").strip(),
            dify_base_url=(os.getenv("DIFY_API_BASE_URL") or cls.dify_base_url).rstrip("/"),
            chat_base_url=(os.getenv("EV_CHAT_BASE_URL") or cls.chat_base_url).rstrip("/"),
            state_file=Path(state_file) if state_file else cls.state_file,
            request_timeout=_env_float("EV_CHAT_TIMEOUT", cls.request_timeout),
            typing_interval=_env_float("EV_CHAT_TYPING_INTERVAL", cls.typing_interval),
            typing_chunk=_env_int("EV_CHAT_TYPING_CHUNK", cls.typing_chunk),
            log_level=os.getenv("EV_CHAT_LOG_LEVEL", cls.log_level),
            host=os.getenv("EV_CHAT_HOST", cls.host),
            port=_env_int("EV_CHAT_PORT", cls.port),
        )


SETTINGS = Settings.from_env()
