from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # BROKER_URL wins over the host/port/user/password parts when set.
    broker_url: str = Field("", validation_alias="BROKER_URL")
    broker_host: str = Field("", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")
    broker_vhost: str = Field("/", validation_alias="BROKER_VHOST")

    queue_name: str = Field("asb-queue-test", validation_alias="QUEUE_NAME")
    topic_name: str = Field("asb-topic-test", validation_alias="TOPIC_NAME")

    message_source: str = Field("pusher", validation_alias="MESSAGE_SOURCE")
    message_type: str = Field("RandomText", validation_alias="MESSAGE_TYPE")
    publish_timeout_seconds: float = Field(10.0, gt=0, validation_alias="PUBLISH_TIMEOUT_SECONDS")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")
    max_connection_attempts: int = Field(5, ge=1, validation_alias="MAX_CONNECTION_ATTEMPTS")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(False, validation_alias="LOG_JSON")

    def amqp_url(self) -> str:
        if self.broker_url.strip():
            return self.broker_url.strip()
        vhost = "" if self.broker_vhost in ("", "/") else self.broker_vhost.lstrip("/")
        return f"amqp://{self.broker_user}:{self.broker_password}@{self.broker_host}:{self.broker_port}/{vhost}"

    @property
    def broker_configured(self) -> bool:
        return bool(self.broker_url.strip() or self.broker_host.strip())
