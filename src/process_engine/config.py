"""
Engine settings loaded from the environment
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class EngineSettings:
    """Runtime settings of the engine and its host loop"""
    tick_interval: float = 0.3  # seconds between host polling ticks
    join_delay_ms: float = 0.0  # minimum wait before a complete join merges
    max_ticks: int = 1000
    condition_variable: str = "data"
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    auto_tick: bool = True

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EngineSettings":
        """Build settings from environment variables (and a .env file)"""
        if dotenv:
            load_dotenv()

        return cls(
            tick_interval=float(os.getenv("PROCESS_ENGINE_TICK_INTERVAL", "0.3")),
            join_delay_ms=float(os.getenv("PROCESS_ENGINE_JOIN_DELAY_MS", "0")),
            max_ticks=int(os.getenv("PROCESS_ENGINE_MAX_TICKS", "1000")),
            condition_variable=os.getenv("PROCESS_ENGINE_CONDITION_VARIABLE", "data"),
            log_level=os.getenv("PROCESS_ENGINE_LOG_LEVEL", "INFO").upper(),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8000")),
            auto_tick=_env_bool("API_AUTO_TICK", "true"),
        )
