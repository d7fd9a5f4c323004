from pydantic_settings import BaseSettings

from researcher.errors import ConfigurationError


class Settings(BaseSettings):
    # OpenRouter (required at run time, not at import)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "anthropic/claude-3.5-sonnet"
    openrouter_model: str = ""

    # Search provider
    search_provider: str = "serper"  # serper | tavily
    serper_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_max_results: int = 10
    search_country: str = "us"
    search_language: str = "en"

    # Orchestration loop
    max_research_iterations: int = 3
    refine_window_steps: int = 3
    analysis_max_results: int = 5
    synthesis_analysis_steps: int = 2
    step_max_tokens: int = 1000
    synthesis_max_tokens: int = 2000
    completion_temperature: float = 0.7
    gateway_timeout_seconds: float = 60.0

    # Quota
    daily_completion_limit: int = 200  # 0 disables

    # Sessions
    session_backend: str = "memory"  # memory | supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Trace broadcast
    subscriber_queue_size: int = 256

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


def require_credentials(config: Settings) -> None:
    """Fail fast when a gateway credential is missing.

    Only the key for the active search provider is required; the Tavily key
    is optional when it only backs the fallback path.
    """
    missing: list[str] = []
    if not config.openrouter_api_key.strip():
        missing.append("OPENROUTER_API_KEY")

    provider = config.search_provider.lower().strip()
    if provider == "serper":
        if not config.serper_api_key.strip():
            missing.append("SERPER_API_KEY")
    elif provider == "tavily":
        if not config.tavily_api_key.strip():
            missing.append("TAVILY_API_KEY")
    else:
        raise ConfigurationError(f"Unsupported SEARCH_PROVIDER: {config.search_provider}")

    if missing:
        raise ConfigurationError(
            f"{', '.join(missing)} is not defined in environment variables"
        )


settings = Settings()
