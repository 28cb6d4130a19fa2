from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Learnhub Enrollment'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Kolkata'
    database_url: str = 'sqlite:///./learnhub.db'
    auth_secret: str = 'change-me'
    default_access_days: int = 365
    default_currency: str = 'INR'
    supported_currencies: str = 'USD,EUR,INR,GBP,AUD,CAD'
    emi_default_grace_period_days: int = 5
    emi_default_after_missed: int = 3
    pdf_service_url: str = ''
    storage_service_url: str = ''
    storage_public_base_url: str = ''
    email_service_url: str = ''
    email_sender: str = 'no-reply@learnhub.local'
    external_timeout_seconds: float = 30.0
    side_effect_max_attempts: int = 5
    side_effect_retry_base_seconds: int = 30
    side_effect_batch_size: int = 50
    enable_scheduler: bool = True
    emi_sweep_interval_minutes: int = 60
    expiry_sweep_interval_minutes: int = 60
    side_effect_interval_seconds: int = 30
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200

    @property
    def currency_codes(self) -> tuple[str, ...]:
        return tuple(code.strip().upper() for code in self.supported_currencies.split(',') if code.strip())


settings = Settings()
