"""
Configuration settings for Relationship Service
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Relationship Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8003

    # Store backend: "mongodb" or "memory"
    STORE_BACKEND: str = "mongodb"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "relationships"
    MONGODB_ACCOUNTS_COLLECTION: str = "accounts"
    MONGODB_GROUPS_COLLECTION: str = "groups"
    MONGODB_TRANSACTIONS_ENABLED: bool = True  # Requires a replica set
    MONGODB_TIMEOUT_MS: int = 5000

    # Store retry discipline
    STORE_MAX_ATTEMPTS: int = 5
    STORE_RETRY_BASE_DELAY: float = 0.05  # seconds
    STORE_RETRY_MAX_DELAY: float = 1.0  # seconds

    # Account directory: "store" or "http"
    ACCOUNT_DIRECTORY_BACKEND: str = "store"
    AUTH_SERVICE_URL: str = "http://localhost:8001"
    AUTH_SERVICE_TIMEOUT: float = 5.0

    # Redis (for caching)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_ENABLED: bool = True

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_ENABLED: bool = True
    KAFKA_TOPIC_FOLLOW_REQUESTED: str = "relationship.follow_requested"
    KAFKA_TOPIC_FOLLOW_ACCEPTED: str = "relationship.follow_accepted"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Relationship rules
    BLOCK_CASCADE_SYMMETRIC: bool = False  # Also drop the blocked account's follow of the blocker

    # Cache TTL (seconds)
    CACHE_TTL_RELATIONSHIP: int = 600  # 10 minutes
    CACHE_TTL_STATS: int = 60  # 1 minute

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
