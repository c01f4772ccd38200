from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "data/swaami.db"
    host: str = "0.0.0.0"
    port: int = 8000
    initial_credits: int = 3
    completion_credits: int = 1
    default_radius_m: int = 500
    service_key: str | None = None
    store_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 0.1
    retry_backoff_multiplier: float = 2.0
    retry_max_delay_seconds: float = 2.0
    retry_jitter: float = 0.2
    cas_max_attempts: int = 5
    max_endorsements_given: int = 5
    endorsement_expiry_days: int = 7
    endorsement_base_url: str = "https://swaami.app/endorse"
    greeting_message: str = "Hi! I'd love to help with \"{title}\". When suits you?"
    message_max_length: int = 1000
    rate_limit_register: str = "5/hour"
    rate_limit_create: str = "30/minute"
    rate_limit_claim: str = "30/minute"
    rate_limit_message: str = "60/minute"
    rate_limit_read: str = "120/minute"
    rate_limit_enabled: bool = True

    model_config = {"env_prefix": "SWAAMI_"}


settings = Settings()
