from pydantic import BaseModel

from caption_room.shared.config import config


class AppEnvironConfig(BaseModel):
    # Public demo switch: when enabled, the transcriber is stubbed and makes no network calls.
    DEMO_MODE: bool = config.get_bool("DEMO_MODE", True)
    DEBUG: bool = config.get_bool("DEBUG", False)

    # Server
    API_HOST: str = config.get_str("API_HOST", "0.0.0.0")
    API_PORT: int = config.get_int("API_PORT", 8000, minimum=1)
    API_WORKERS: int = config.get_int("API_WORKERS", 1, minimum=1)
    API_CORS_ORIGINS: list[str] = config.get_list("API_CORS_ORIGINS", ["*"])

    # Room configuration
    ROOM_DEFAULT_CAPACITY: int = config.get_int("ROOM_DEFAULT_CAPACITY", 2, minimum=1)
    ROOM_MAX_CAPACITY: int = config.get_int("ROOM_MAX_CAPACITY", 16, minimum=1)
    # Seconds an empty room is kept before eviction; 0 evicts immediately
    ROOM_EVICTION_GRACE_SECONDS: float = config.get_float(
        "ROOM_EVICTION_GRACE_SECONDS", 0.0, minimum=0.0
    )
    # Seconds a room created via POST /api/v1/rooms waits for its first participant
    ROOM_UNCLAIMED_TTL_SECONDS: float = config.get_float(
        "ROOM_UNCLAIMED_TTL_SECONDS", 300.0, minimum=0.0
    )
    CAPTION_HISTORY_LIMIT: int = config.get_int("CAPTION_HISTORY_LIMIT", 200, minimum=0)

    # Speaking turns
    # Upper bound from lock acquisition to recording upload
    AUDIO_TURN_TIMEOUT_SECONDS: float = config.get_float(
        "AUDIO_TURN_TIMEOUT_SECONDS", 120.0, minimum=0.1
    )
    # Upper bound for a single transcription call
    TRANSCRIPTION_TIMEOUT_SECONDS: float = config.get_float(
        "TRANSCRIPTION_TIMEOUT_SECONDS", 60.0, minimum=0.1
    )
    AUDIO_MAX_UPLOAD_BYTES: int = config.get_int(
        "AUDIO_MAX_UPLOAD_BYTES", 25 * 1024 * 1024, minimum=1
    )
    UPLOAD_RATE_LIMIT: str = config.get_str("UPLOAD_RATE_LIMIT", "60/minute")

    # Connection gateway
    CHANNEL_SEND_QUEUE_SIZE: int = config.get_int("CHANNEL_SEND_QUEUE_SIZE", 256, minimum=1)

    # Transcription backend (OpenAI-compatible /v1/audio/transcriptions)
    TRANSCRIBER_URL: str | None = config.get_str("TRANSCRIBER_URL") or None
    TRANSCRIBER_API_KEY: str | None = config.get_str("TRANSCRIBER_API_KEY") or None
    TRANSCRIBER_MODEL: str = config.get_str("TRANSCRIBER_MODEL", "whisper-1")
    TRANSCRIBER_LANGUAGE: str | None = config.get_str("TRANSCRIBER_LANGUAGE") or None

    # Observability
    LOGFIRE_ENABLE: bool = config.get_bool("LOGFIRE_ENABLE", False)
    LOGFIRE_TOKEN: str | None = config.get_str("LOGFIRE_TOKEN") or None


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
