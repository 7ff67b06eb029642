from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BeforeValidator, HttpUrl, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors(v: Any) -> Any:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",")]
    elif isinstance(v, (list, str)):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Codex HTTP Gateway"
    # Routes are mounted at the root (/chat, /health, /sessions/{id}) unless set
    API_V1_STR: str = ""
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    SENTRY_DSN: Optional[HttpUrl] = None

    BACKEND_CORS_ORIGINS: Annotated[Union[List[str], str], BeforeValidator(parse_cors)] = ["*"]

    HOST: str = "127.0.0.1"
    PORT: int = 3000

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Agent
    MODEL: str = "o4-mini"
    PROVIDER: Literal["openai", "vertex"] = "openai"
    INSTRUCTIONS: str = ""
    WORKDIR: str = "."
    AGENT_MAX_ITERATIONS: int = 8

    # OpenAI (primary provider, model listing)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_ORG: Optional[str] = None
    OPENAI_PROJECT: Optional[str] = None
    OPENAI_TIMEOUT_SECONDS: float = 60.0

    # Vertex AI
    VERTEX_PROJECT: Optional[str] = None
    VERTEX_LOCATION: str = "us-central1"
    VERTEX_MAX_OUTPUT_TOKENS: int = 2048

    # Circuit breaker per provider instance
    CB_FAIL_MAX: int = 5
    CB_RESET_TIMEOUT: int = 30

    MODEL_LIST_TIMEOUT_SECONDS: float = 2.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> List[str]:
        if isinstance(self.BACKEND_CORS_ORIGINS, str):
            return [self.BACKEND_CORS_ORIGINS]
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]


settings = Settings()  # type: ignore
