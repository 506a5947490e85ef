from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str = "sqlite:///./pdv.db"
    JWT_ISS: str = "pdv"
    JWT_EXP_MIN: int = 12*60
    TZ: str = "America/Sao_Paulo"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    # side effects
    RECEIPT_VIA_STAGGER_MS: int = 500
    COURIER_NOTIFY_DELAY_MS: int = 500
    PRINT_TIMEOUT_S: float = 3.0
    MESSAGING_URL: str | None = None
    MESSAGING_DEVICE_ID: str | None = None
    MESSAGING_TIMEOUT_S: float = 5.0
    # kiosk
    KIOSK_INACTIVITY_SECONDS: int = 120
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
