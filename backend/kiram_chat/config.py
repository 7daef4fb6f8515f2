from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "kiram_chat"

    # Realtime bus (in-process fanout when unset)
    REDIS_URL: Optional[str] = None

    # API
    API_TITLE: str = "Kiram Chat API"
    API_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Attachments
    FIREBASE_ENABLED: bool = False
    FIREBASE_CREDENTIALS_PATH: str = "firebase-credentials.json"
    FIREBASE_STORAGE_BUCKET: Optional[str] = None
    UPLOAD_DIR: str = "uploads"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    MAX_ATTACHMENT_SIZE: int = 20 * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
