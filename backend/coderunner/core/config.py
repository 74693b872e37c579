from pydantic_settings import BaseSettings
from functools import lru_cache
import sys, tempfile


class Settings(BaseSettings):
    APP_NAME: str = "Code Runner"
    API_PREFIX: str = "/api"
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]
    LOG_LEVEL: str = "INFO"

    # Scratch space shared by every session; files are uniquely named per run
    SCRATCH_DIR: str | None = None

    # Build and run phases each get their own wall-clock budget
    RUN_TIME_LIMIT_S: float = 8.0
    BUILD_TIME_LIMIT_S: float = 8.0
    READ_CHUNK_BYTES: int = 4096

    # Toolchain
    PYTHON_BIN: str = sys.executable or "python3"
    NODE_BIN: str = "node"
    JAVAC_BIN: str = "javac"
    JAVA_BIN: str = "java"
    CXX_BIN: str = "g++"

    RECENT_RUNS_LIMIT: int = 10

    # AI tutor
    OPENAI_API_KEY: str | None = None
    AI_MODEL: str = "gpt-4o-mini"

    class Config:
        env_file = ".env"

    @property
    def scratch_dir(self) -> str:
        return self.SCRATCH_DIR or tempfile.gettempdir()


@lru_cache
def get_settings() -> Settings:
    return Settings()
