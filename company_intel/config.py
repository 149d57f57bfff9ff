from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Scraping
    scrape_timeout_seconds: float = 20.0
    scrape_retry_max: int = 1
    scrape_batch_size: int = 5
    scrape_batch_delay_ms: int = 1000
    scrape_user_agent: str = "CompanyIntelBot/1.0 (+https://example.local)"
    scrape_passes_per_url: int = 1  # >1 adds passes from lower-priority mergeable plugins
    scrape_cache_enabled: bool = False
    scrape_cache_dir: str = ".cache/scrape"
    scrape_cache_ttl_hours: int = 168

    # Firecrawl (hosted API plugin, disabled without a key)
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    firecrawl_api_key: str = ""
    firecrawl_rate_limit_delay_ms: int = 1000
    firecrawl_extract_schema: bool = True  # ask the API for company fields alongside markdown

    # Headless browser
    browser_headless: bool = True
    browser_capture_screenshot: bool = False
    browser_artifacts_dir: str = ".cache/browser"
    browser_scroll: bool = True
    browser_paginate: bool = False
    pagination_max_pages: int = 5
    pagination_delay_ms: int = 1000
    scroll_distance: int = 500
    scroll_delay_ms: int = 200
    scroll_max_scrolls: int = 10

    # Discovery
    discovery_max_urls: int = 500
    discovery_min_sitemap_urls: int = 5
    discovery_crawl_max_pages: int = 25
    discovery_validate_concurrency: int = 8

    # Category extraction
    extraction_max_matches_per_pattern: int = 10
    extraction_context_chars: int = 200
    extraction_max_context_chars: int = 400
    extraction_progress_interval: int = 10

    # Merge
    merge_conflict_resolution: str = "highest_quality"  # latest | highest_quality | combine | manual
    merge_deduplicate_content: bool = True
    merge_preserve_all_html: bool = False

    # Sessions
    session_backend: str = "supabase"  # supabase | memory
    supabase_url: str = ""
    supabase_anon_key: str = ""
    session_table: str = "company_intelligence_sessions"
    session_update_max_attempts: int = 3

    # App
    cors_origins: str = "http://localhost:3000"
    stream_cancel_grace_seconds: float = 5.0
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
