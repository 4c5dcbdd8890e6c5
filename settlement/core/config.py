from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Settlement Service"
    API_V1_STR: str = "/api/v1"

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "settlement"

    # Full URL override (tests and local runs point this at SQLite)
    DATABASE_URL: str | None = None

    # Redis Configuration
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    PROCESSED_EVENT_TTL: int = 604800  # 7 days

    # Kafka Configuration
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_CONSUMER_GROUP_ID: str = "settlement-notifications"
    KAFKA_LAG_REPORT_INTERVAL: int = 30  # seconds

    # Kafka Topics
    KAFKA_TOPIC_ORDER_PLACED: str = "order.placed"
    KAFKA_TOPIC_ORDER_CONFIRMED: str = "order.confirmed"
    KAFKA_TOPIC_ORDER_SHIPPED: str = "order.shipped"
    KAFKA_TOPIC_ORDER_CANCELLED: str = "order.cancelled"
    KAFKA_TOPIC_ORDER_DELIVERY_MARKED: str = "order.delivery_marked"
    KAFKA_TOPIC_ORDER_DELIVERY_CONFIRMED: str = "order.delivery_confirmed"
    KAFKA_TOPIC_PAYMENT_FAILED: str = "payment.failed"
    KAFKA_TOPIC_PAYMENT_REFUNDED: str = "payment.refunded"

    # Background tasks started with the API process
    ENABLE_NOTIFICATION_CONSUMER: bool = True

    # Payment gateway (Tsara)
    TSARA_BASE_URL: str = "https://api.tsara.ng/v1"
    TSARA_SANDBOX_URL: str = "https://sandbox.tsara.ng/v1"
    TSARA_USE_SANDBOX: bool = True
    TSARA_SECRET_KEY: str = ""
    TSARA_PUBLIC_KEY: str = ""
    TSARA_TIMEOUT_SECONDS: float = 15.0

    # Checkout policy
    APP_URL: str = "http://localhost:3000"
    DEFAULT_CURRENCY: str = "NGN"
    PAYMENT_HOLD_DAYS: int = 30
    ESTIMATED_DELIVERY_DAYS: int = 7
    STABLECOIN_ASSET: str = "USDC"
    STABLECOIN_NETWORK: str = "solana"

    # Email (notifications)
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    SMTP_FROM: str = "noreply@luxela.com"
    SMTP_TIMEOUT_SECONDS: float = 10.0

    # Metrics Configuration
    ENABLE_METRICS: bool = True
    METRICS_PORT: int = 8000

    # Outbox Worker Configuration
    OUTBOX_BATCH_SIZE: int = 100  # Maximum events to process per batch
    OUTBOX_POLL_INTERVAL_SECONDS: int = 1  # How often to check for new events
    OUTBOX_ERROR_BACKOFF_SECONDS: int = 5  # Sleep duration after errors
    OUTBOX_MAX_RETRY_ATTEMPTS: int = 5  # Max attempts before flagging for manual intervention
    OUTBOX_ERROR_MESSAGE_MAX_LENGTH: int = 500  # Max characters to store in last_error field

    # Logging Configuration
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_FORMAT: str = "json"  # json or console (console for dev, json for prod)
    ENVIRONMENT: str = "development"  # development, staging, production
    SERVICE_NAME: str = "settlement-service"
    SERVICE_VERSION: str = "v1.0.0"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+psycopg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def REDIS_URL(self) -> str:
        """Construct Redis connection URL"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def TSARA_API_URL(self) -> str:
        """Sandbox outside production unless explicitly disabled"""
        if self.ENVIRONMENT == "production" or not self.TSARA_USE_SANDBOX:
            return self.TSARA_BASE_URL
        return self.TSARA_SANDBOX_URL

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SETTLEMENT_TOPICS(self) -> list[str]:
        return [
            self.KAFKA_TOPIC_ORDER_PLACED,
            self.KAFKA_TOPIC_ORDER_CONFIRMED,
            self.KAFKA_TOPIC_ORDER_SHIPPED,
            self.KAFKA_TOPIC_ORDER_CANCELLED,
            self.KAFKA_TOPIC_ORDER_DELIVERY_MARKED,
            self.KAFKA_TOPIC_ORDER_DELIVERY_CONFIRMED,
            self.KAFKA_TOPIC_PAYMENT_FAILED,
            self.KAFKA_TOPIC_PAYMENT_REFUNDED,
        ]


settings = Settings()  # type: ignore
