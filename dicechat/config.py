from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DICECHAT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Remote dice-chat service
    api_endpoint: str = "http://localhost:5000"
    request_timeout: float = 10.0

    # Room used when the user supplies no id and is not a DM.
    default_room_id: str = "obsidian-room"

    # Message polling: one fetch per interval, never overlapping.
    poll_interval: float = 3.0
    message_limit: int = 50
    message_offset: int = 0

    # Durable local store for the bearer token.
    database_url: str = "sqlite+aiosqlite:///./dicechat.db"
    token_key: str = "dice_chat_token"


settings = Settings()
