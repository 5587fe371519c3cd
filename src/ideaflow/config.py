import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class IdeaFlowConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="IDEAFLOW_")

    model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    api_key_file: str = ""

    system_instruction: str = (
        "SYSTEM COMMAND: You are a high-speed speech-to-text machine. "
        "LANGUAGE: ENGLISH ONLY. "
        "CONSTRAINT: NO HINDI. NO SPANISH. NO OTHER LANGUAGES. "
        "ACTION: If audio is Hindi, ignore it. Output ONLY English text chunks. "
        "NO DIALOGUE: Do not talk back. Do not summarize. Just verbatim text. "
        "LATENCY: Output text chunks immediately."
    )

    capture_device: str = ""
    sample_rate: int = 16000
    frame_size: int = 4096
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True

    silence_threshold: float = 0.008

    overlap_window: int = 8
    min_snippet_chars: int = 1
    turn_mode: Literal["per-turn", "session-log"] = "per-turn"
    ascii_only: bool = True

    connect_timeout_seconds: float = 10.0
    teardown_timeout_seconds: float = 2.0

    socket_path: str = "/tmp/ideaflow.sock"
    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def resolve_api_key(self) -> str:
        key = self.read_secret(self.api_key_file)
        if key:
            return key
        return os.environ.get("GEMINI_API_KEY", "") or os.environ.get("GOOGLE_API_KEY", "")
