from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Storefront API"
    DATABASE_URL: str = "sqlite:///./storefront.db"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7 # 1 week

    # Shown in customer-facing promotion messages
    CURRENCY_SYMBOL: str = "₦"

    LOG_LEVEL: str = "INFO"


settings = Settings()
