from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Studio Roster'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Jerusalem'
    database_url: str = 'sqlite:///./studio_roster.db'
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200
    enable_scheduler: bool = True
    instance_generation_days: int = 30
    instance_generation_cron_day_of_week: str = 'sun'
    business_header: str = 'X-Business-Id'
    bootstrap_business_name: str = ''
    bootstrap_business_slug: str = ''


settings = Settings()
