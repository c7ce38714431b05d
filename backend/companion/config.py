# companion/config.py
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

SUPPORTED_PROVIDERS = ("lmstudio", "ollama")

DEFAULT_BASE_URLS = {
    "lmstudio": "http://localhost:1234",
    "ollama": "http://localhost:11434",
}

PACKAGED_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    mongo_uri: str = "mongodb://localhost:27017/"
    mongo_db_name: str = "companion_db"

    llm_provider: str = "lmstudio"
    llm_base_url: str = DEFAULT_BASE_URLS["lmstudio"]
    llm_model: str = "llama-2-7b-chat"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2048
    llm_timeout_seconds: float = 120.0
    llm_role_messages: bool = False

    prompts_dir: Path = PACKAGED_PROMPTS_DIR
    memory_limit: int = 10
    default_user_id: str = "demo-user-123"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.getenv("LLM_PROVIDER", "lmstudio").strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise RuntimeError(f"❌ Unsupported LLM_PROVIDER '{provider}', expected one of {SUPPORTED_PROVIDERS}")

        prompts_dir: Optional[str] = os.getenv("PROMPTS_DIR")

        return cls(
            mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017/"),
            mongo_db_name=os.getenv("MONGO_DB_NAME", "companion_db"),
            llm_provider=provider,
            llm_base_url=os.getenv("LLM_BASE_URL", DEFAULT_BASE_URLS[provider]),
            llm_model=os.getenv("LLM_MODEL", "llama-2-7b-chat"),
            llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "2048")),
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "120")),
            llm_role_messages=_env_bool("LLM_ROLE_MESSAGES"),
            prompts_dir=Path(prompts_dir) if prompts_dir else PACKAGED_PROMPTS_DIR,
            memory_limit=int(os.getenv("MEMORY_LIMIT", "10")),
            default_user_id=os.getenv("DEFAULT_USER_ID", "demo-user-123"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
