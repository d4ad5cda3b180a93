from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Workspace the backend indexes and searches
    WORKSPACE_ROOT: str = "."

    # Context assembly
    MAX_TOKENS: int = 8000                 # token budget for one ProjectContext
    HISTORY_LIMIT: int = 10                # turns kept by the conversation ledger
    HISTORY_CONTEXT_TURNS: int = 3         # turns attached to each ProjectContext
    SEARCH_TIMEOUT_SECONDS: float = 5.0    # deadline for workspace scanning per request

    # Symbol oracle / file watching
    INDEX_ON_STARTUP: bool = True
    MAX_INDEXED_FILES: int = 5000
    WATCH_FILES: bool = True

    # App settings
    APP_ENV: str = "development"
    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "vscode-webview://*",
    ]
    LOG_LEVEL: str = "INFO"

    # Load environment variables from .env file
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

settings = Settings()
