from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    # Full SQLAlchemy URL wins over the DB_* parts when set
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5433
    DB_NAME: str = "prompt_db"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"

    # LLM provider selection: "openai" or "perplexity"
    LLM_PROVIDER: str = "openai"

    PERPLEXITY_API_KEY: str = ""
    PERPLEXITY_MODEL: str = "sonar"

    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-large"
    EMBED_DIM: int = 3072
    USE_MOCK_EMBEDDINGS: bool = True

    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # Blob storage: "local" or "webdav" (Nextcloud)
    BLOB_BACKEND: str = "local"
    BLOB_LOCAL_ROOT: str = "./data/blobs"
    NEXTCLOUD_URL: str = "http://localhost:8081"
    NEXTCLOUD_USERNAME: str = "admin"
    NEXTCLOUD_PASSWORD: str = "admin123"
    NEXTCLOUD_BASE_PATH: str = "/prompts"

    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    MAX_FILES_PER_UPLOAD: int = 10

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

settings = Settings()
