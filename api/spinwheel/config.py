import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
if ENV_PATH.exists():
    # ensure .env values override empty/previous env
    load_dotenv(ENV_PATH, override=True)
    # BOM-safe fallback: if key was \ufeffDATABASE_URL
    if not os.getenv("DATABASE_URL"):
        for line in ENV_PATH.read_text(encoding="utf-8").splitlines():
            line = line.lstrip("\ufeff")
            if line.startswith("DATABASE_URL="):
                os.environ["DATABASE_URL"] = line.split("=", 1)[1].strip()
                break


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./spinwheel.db")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev_change_me")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    allowed_origins: list[str] = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
    ]
    allowed_origin_regex: str | None = os.getenv("ALLOWED_ORIGIN_REGEX") or None

    # tokens
    token_ttl_hours: float = float(os.getenv("TOKEN_TTL_HOURS", "48"))
    token_code_length: int = int(os.getenv("TOKEN_CODE_LENGTH", "8"))
    max_issue_quantity: int = int(os.getenv("MAX_ISSUE_QUANTITY", "100"))

    # wheel: number of fixed slots on the display wheel, 0 = one slot per active prize
    wheel_slots: int = int(os.getenv("WHEEL_SLOTS", "8"))

    # admin
    admin_username: str = os.getenv("ADMIN_USERNAME", "admin")
    admin_password: str = os.getenv("ADMIN_PASSWORD", "")
    admin_password_hash: str = os.getenv("ADMIN_PASSWORD_HASH", "")  # bcrypt hash
    admin_token_hours: int = int(os.getenv("ADMIN_TOKEN_HOURS", "24"))


settings = Settings()
