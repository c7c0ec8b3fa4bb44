from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Storage
    DATABASE_URL: str = "sqlite:///./voicepins.db"
    DEFAULT_COLLECTION_ID: str = "default"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"

    # OpenAI (pin content)
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    OPENAI_COST_PER_1K_TOKENS: float = 0.005  # blended gpt-4o input/output

    # ElevenLabs (narration)
    ELEVEN_API_KEY: str | None = None
    ELEVEN_VOICE_ID: str = "EXAVITQu4vr4xnSDxMaL"
    ELEVEN_MODEL_ID: str = "eleven_multilingual_v2"
    ELEVEN_TIMEOUT_SECONDS: float = 60.0
    ELEVEN_COST_PER_1K_CHARS: float = 0.30
    ELEVEN_MEASURE_DURATION: bool = False  # decode mp3 with pydub (needs ffmpeg)

    # Audio assets: "local" directory or "s3"
    AUDIO_BACKEND: str = "local"
    AUDIO_DIR: str = "./data/audio"
    AWS_REGION: str | None = None
    S3_BUCKET: str | None = None
    S3_AUDIO_PREFIX: str = "audio/"

    # Admission control
    TOUR_GENERATION_RATE_LIMIT: int = 5
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    IDEMPOTENCY_TTL_SECONDS: int = 24 * 3600

    # Worker
    MAX_CONCURRENT_JOBS: int = 4

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

settings = Settings()
