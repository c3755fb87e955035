import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables from .env
load_dotenv()

# Security settings
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")  # Replace with strong env value in production
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))

# Comma-separated "username:password" pairs for the planner login
PLANNER_USERS = os.getenv("PLANNER_USERS", "teacher:password123,hod:admin")

# Frontend origins allowed by CORS
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if o.strip()
]

APP_DIR = Path(__file__).resolve().parent.parent


class AIConfig(BaseSettings):
    """Chat-completion backend configuration, read once at process start."""

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    model: str = "qwen/qwen3-235b-a22b:free"
    fallback_models: List[str] = [
        "qwen/qwen-2.5-72b-instruct:free",
        "qwen/qwen-2-7b-instruct:free",
        "meta-llama/llama-3.2-3b-instruct:free",
    ]
    request_timeout: float = 120.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 10.0
    fallback_delay: float = 0.5
    default_max_tokens: int = 2000
    default_temperature: float = 0.7
    app_referer: str = "https://ai-lesson-planner.local"
    app_title: str = "AI Lesson Planner"

    class Config:
        env_prefix = "AI_"
        case_sensitive = False
        frozen = True


class CurriculumConfig(BaseSettings):
    """Where the curriculum sources live."""

    data_dir: Path = APP_DIR / "data" / "curriculum"
    service_url: str = ""  # processed-curriculum document served over HTTP; empty disables
    data_file: str = ""  # same document on local disk
    http_timeout: float = 10.0
    http_max_retries: int = 2

    class Config:
        env_prefix = "CURRICULUM_"
        case_sensitive = False
        frozen = True
