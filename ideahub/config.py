from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Search providers
    serper_api_key: str = ""
    brave_api_key: str = ""
    tavily_api_key: str = ""
    serpapi_api_key: str = ""
    scraperapi_api_key: str = ""
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"

    # Fetch execution
    provider_timeout_seconds: float = 20.0
    provider_max_parallel: int = 8
    provider_results_per_query: int = 10
    circuit_breaker_max_failures: int = 5
    circuit_breaker_reset_seconds: float = 30.0

    # Sentiment classification
    sentiment_classifier: str = "keyword"  # keyword | llm
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    sentiment_model: str = "llama-3.1-8b-instant"
    sentiment_batch_size: int = 25

    # Tile cache
    tile_cache_memory_max_items: int = 100
    tile_cache_persistent: str = "none"  # none | file | supabase
    tile_cache_dir: str = ".cache/tiles"
    tile_cache_default_ttl_seconds: int = 1800
    cache_owner_key: str = "anonymous"

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_cache_table: str = "dashboard_data"

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
