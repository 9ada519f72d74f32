from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Groq (structured text generation)
    groq_api_key: str = "gsk_placeholder"
    default_model: str = "llama-3.3-70b-versatile"

    # Gemini (image generation + live transcription)
    gemini_api_key: str = "gemini_placeholder"
    image_model: str = "gemini-2.5-flash-image"
    live_model: str = "gemini-2.5-flash-native-audio-preview-09-2025"

    # Capture
    sample_rate: int = 16000
    frame_size: int = 4096

    # Segmentation
    segment_interval_seconds: float = 7.0
    min_transcript_chars: int = 15

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
