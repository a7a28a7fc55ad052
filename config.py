"""
Visual Search Service - Configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


def _clean_env(value: str) -> str:
    return value.strip().strip('"').strip("'").strip()


class Settings(BaseSettings):
    # GENERAL
    APP_NAME: str = "Visual Search Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False)

    # SERVER
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Distinct 4xx/5xx per error kind. False = every failure is a 500.
    STRICT_ERROR_STATUS: bool = Field(default=True)

    # --- IMAGE ---
    MAX_IMAGE_DIMENSION: int = Field(default=800)
    IMAGE_DOWNLOAD_TIMEOUT: float = Field(default=10.0)

    # --- CROPPING ---
    MAX_REGIONS: int = Field(default=3)
    MIN_CROP_PIXELS: int = Field(default=5)
    CROP_JPEG_QUALITY: int = Field(default=80)

    # --- DETECTOR (OpenAI compatible chat completions, Qwen-VL) ---
    DETECTOR_API_URL: str = Field(
        default="https://dashscope-intl.aliyuncs.com/compatible-mode/v1/chat/completions"
    )
    DETECTOR_API_KEY: str = Field(default="", validation_alias="DASHSCOPE_API_KEY")
    DETECTOR_MODEL: str = Field(default="qwen-vl-plus")
    DETECTOR_TIMEOUT: float = Field(default=30.0)
    DETECTOR_MAX_RETRIES: int = Field(default=1)
    DETECTOR_REPAIR_JSON: bool = Field(default=True)

    # --- EMBEDDINGS (Jina CLIP) ---
    EMBEDDING_API_URL: str = Field(default="https://api.jina.ai/v1/embeddings")
    EMBEDDING_API_KEY: str = Field(default="", validation_alias="JINA_API_KEY")
    EMBEDDING_MODEL: str = Field(default="jina-clip-v2")
    EMBEDDING_QUERY_TASK: str = Field(default="retrieval.query")
    EMBEDDING_DIMENSION: int = Field(default=1024)
    EMBEDDING_TIMEOUT: float = Field(default=30.0)

    # --- SIMILARITY SEARCH ---
    SEARCH_PROVIDER: str = Field(default="rpc")  # rpc | pgvector
    SEARCH_MATCH_THRESHOLD: float = Field(default=0.6)
    SEARCH_MATCH_COUNT: int = Field(default=50)
    SEARCH_TIMEOUT: float = Field(default=10.0)
    SEARCH_FILTER_BY_LABEL: bool = Field(default=False)

    # Supabase RPC
    SUPABASE_URL: str = Field(default="")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(default="")
    SEARCH_RPC_NAME: str = Field(default="match_products")

    # pgvector (direct)
    DB_CONNECTION_STRING: str = Field(default="")
    SEARCH_TABLE: str = Field(default="products")
    SEARCH_EMBEDDING_COLUMN: str = Field(default="image_embedding")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    def clean_env_values(self) -> "Settings":
        """Strip stray quotes that .env editors like to leave around secrets and URLs."""
        fields = (
            "DETECTOR_API_URL", "DETECTOR_API_KEY", "DETECTOR_MODEL",
            "EMBEDDING_API_URL", "EMBEDDING_API_KEY", "EMBEDDING_MODEL",
            "SEARCH_PROVIDER", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY",
            "SEARCH_RPC_NAME", "DB_CONNECTION_STRING",
        )
        cleaned = {
            name: _clean_env(getattr(self, name))
            for name in fields
            if getattr(self, name)
        }
        return self.model_copy(update=cleaned)


settings = Settings().clean_env_values()
