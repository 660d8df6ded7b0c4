from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./wiki.db"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", 
        env_prefix="",   
        extra="ignore",   
    )

settings = Settings()
