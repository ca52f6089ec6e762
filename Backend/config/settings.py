from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Gemini (document extraction + credit analysis)
    GEMINI_API_KEY: str = ""
    GEMINI_MODELS_PRO: List[str] = ["gemini-3-pro-preview", "gemini-2.5-pro"]
    GEMINI_MODELS_FLASH: List[str] = ["gemini-3-flash-preview", "gemini-2.5-flash"]

    # Remote store (Apps Script web app backed by Sheets + Drive)
    REMOTE_STORE_URL: str = ""
    REMOTE_STORE_TIMEOUT: Optional[float] = None

    # Director authentication
    DEFAULT_DIRECTOR_PIN: str = "442502"
    PIN_CACHE_PATH: str = ".director_pin"

    COMPANY_NAME: str = "Grupo Equitel"
    NOTIFICATION_EMAILS: str = ""

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "standard"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
