"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Публичный URL API (для callBackUrl провайдера генерации). Пусто = без callback, только polling.
    public_base_url: str = ""
    # CORS: через запятую. Пусто = дефолтный список в коде.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # TELEGRAM (уведомления пользователям)
    # ===========================================
    telegram_bot_token: str = ""

    # ===========================================
    # TASK PROVIDER (Kie.ai, nano-banana-pro)
    # ===========================================
    kie_api_key: str = ""
    kie_api_url: str = "https://api.kie.ai/api/v1"
    kie_model: str = "nano-banana-pro"
    kie_timeout: float = 30.0
    kie_aspect_ratio: str = "3:4"
    kie_output_format: str = "jpg"
    kie_max_reference_images: int = 4
    # Токен в query (?token=) для POST /webhooks/tasks. Пусто = callback без проверки.
    kie_callback_token: str = ""

    # ===========================================
    # GENERATION PIPELINE
    # ===========================================
    generation_max_photos: int = 23
    generation_chunk_size: int = 5
    generation_chunk_delay_seconds: float = 1.0
    generation_task_delay_seconds: float = 0.5
    generation_max_submit_attempts: int = 3
    generation_retry_backoff_seconds: float = 2.0
    # Polling: задачи в dispatched старше min_age опрашиваются, старше timeout считаются упавшими
    task_poll_min_age_seconds: int = 30
    task_poll_batch_size: int = 50
    task_poll_timeout_minutes: int = 30
    # Sweep зависших job: processing без обновлений / pending без старта
    stuck_processing_minutes: int = 10
    stuck_pending_minutes: int = 15
    # TTL кэша runtime-настроек генерации (строка app_settings)
    generation_settings_ttl_seconds: int = 60

    # ===========================================
    # PAYMENTS (T-Bank)
    # ===========================================
    tbank_terminal_key: str = ""
    tbank_password: str = ""
    tbank_api_url: str = "https://securepay.tinkoff.ru/v2"
    tbank_timeout: float = 20.0
    # Тарифы: {tier_id: {"price": RUB, "photos": N}}
    pricing_tiers: str = (
        '{"starter": {"price": 499, "photos": 7}, '
        '"standard": {"price": 999, "photos": 15}, '
        '"premium": {"price": 1499, "photos": 23}}'
    )

    # ===========================================
    # REFERRAL PROGRAM
    # ===========================================
    referral_default_rate: float = 0.10
    referral_partner_rate: float = 0.50

    # ===========================================
    # WITHDRAWALS & PAYOUTS (Jump.Finance)
    # ===========================================
    withdrawal_min_amount: int = 5000
    withdrawal_fee_self_employed_percent: float = 3.0
    withdrawal_fee_default_percent: float = 6.0
    jump_api_url: str = "https://api.jump.finance/v1"
    jump_api_key: str = ""
    jump_secret_key: str = ""
    jump_timeout: float = 30.0

    # ===========================================
    # ADMIN & INTERNAL API
    # ===========================================
    admin_api_key: str | None = None  # Optional, but recommended
    # Токен для POST /jobs/failure (dead-letter). Пусто = без проверки (только local).
    internal_api_token: str = ""

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("generation_chunk_size", "generation_max_submit_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("referral_default_rate", "referral_partner_rate")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("referral rate must be between 0 and 1")
        return v

    @property
    def is_local(self) -> bool:
        return self.app_env == "local"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Игнорировать неизвестные поля из .env


settings = Settings()
