# app/core/config.py
import os
from urllib.parse import quote_plus

from dotenv import load_dotenv


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


# Routes that never require a principal. Patterns ending in "*" match by prefix.
DEFAULT_PUBLIC_ROUTES = [
    "/",
    "/health",
    "/auth/check",
    "/users/current",
    "/webhooks/*",
]


class Settings:
    def __init__(self) -> None:
        # Only load .env for local/dev. In deployed environments env vars come from the service config.
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            # Load .env only for non-prod so prod can't be accidentally influenced by local files.
            load_dotenv()

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

        # ----------------------------
        # Database
        # ----------------------------
        self.DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
        self.DB_HOST = os.getenv("DB_HOST", "")
        self.DB_PORT = os.getenv("DB_PORT", "5432")
        self.DB_NAME = os.getenv("DB_NAME", "")
        self.DB_APP_USER = os.getenv("DB_APP_USER", "")
        self.DB_APP_PASSWORD = os.getenv("DB_APP_PASSWORD", "")
        self.DB_MIGRATOR_USER = os.getenv("DB_MIGRATOR_USER", "")
        self.DB_MIGRATOR_PASSWORD = os.getenv("DB_MIGRATOR_PASSWORD", "")
        self.DB_SSLMODE = os.getenv("DB_SSLMODE", "require").strip().lower()

        # ----------------------------
        # Identity webhook (svix-signed)
        # ----------------------------
        self.IDENTITY_WEBHOOK_SECRET = os.getenv("IDENTITY_WEBHOOK_SECRET", "").strip()

        # ----------------------------
        # Identity provider session tokens
        # ----------------------------
        self.IDP_ISSUER = os.getenv("IDP_ISSUER", "").strip().rstrip("/")
        self.IDP_JWKS_URL = os.getenv("IDP_JWKS_URL", "").strip()
        self.IDP_AUTHORIZED_PARTIES = parse_csv(os.getenv("IDP_AUTHORIZED_PARTIES"))
        self.IDP_JWKS_CACHE_SECONDS = int(os.getenv("IDP_JWKS_CACHE_SECONDS", "900"))
        self.IDP_SESSION_COOKIE = os.getenv("IDP_SESSION_COOKIE", "__session").strip()

        # ----------------------------
        # CORS / origin policy
        # ----------------------------
        dev_defaults = [
            "http://localhost:3000",
            "http://localhost:3001",
            "http://localhost:3002",
        ]

        cors_from_env = parse_csv(os.getenv("CORS_ORIGINS"))
        if self.ENV == "prod":
            # In prod: ONLY allow what you explicitly configure
            self.CORS_ORIGINS = merge_unique(cors_from_env)
        else:
            # In dev: allow env + local defaults
            self.CORS_ORIGINS = merge_unique(cors_from_env + dev_defaults)

        self.PUBLIC_ROUTES = merge_unique(DEFAULT_PUBLIC_ROUTES + parse_csv(os.getenv("PUBLIC_ROUTES")))
        # Endpoints under these prefixes check the principal themselves; only honoured outside prod.
        self.SELF_AUTHENTICATED_PREFIXES = parse_csv(os.getenv("SELF_AUTHENTICATED_PREFIXES", "/tools"))
        self.CORS_MAX_AGE_SECONDS = int(os.getenv("CORS_MAX_AGE_SECONDS", "86400"))

        # Final: fail fast in prod
        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []

        if not self.IDENTITY_WEBHOOK_SECRET:
            missing.append("IDENTITY_WEBHOOK_SECRET")
        if not self.IDP_ISSUER:
            missing.append("IDP_ISSUER")
        if not self.DATABASE_URL:
            if not self.DB_HOST:
                missing.append("DB_HOST")
            if not self.DB_NAME:
                missing.append("DB_NAME")
            if not self.DB_APP_USER:
                missing.append("DB_APP_USER")
            if not self.DB_APP_PASSWORD:
                missing.append("DB_APP_PASSWORD")
            if self.DB_SSLMODE != "require":
                raise RuntimeError("DB_SSLMODE must be 'require' in prod")

        if not self.CORS_ORIGINS:
            missing.append("CORS_ORIGINS")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise RuntimeError("CORS_ORIGINS contains localhost/dev origins in prod")

        if self.IDP_ISSUER and not self.IDP_ISSUER.startswith("https://"):
            raise RuntimeError("IDP_ISSUER should be https://... in prod")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def idp_jwks_url(self) -> str:
        if self.IDP_JWKS_URL:
            return self.IDP_JWKS_URL
        if not self.IDP_ISSUER:
            return ""
        return f"{self.IDP_ISSUER}/.well-known/jwks.json"

    def _build_database_url(self, user: str, password: str) -> str:
        encoded_password = quote_plus(password)
        return (
            f"postgresql+psycopg2://{user}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?sslmode={self.DB_SSLMODE}"
        )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return self._build_database_url(self.DB_APP_USER, self.DB_APP_PASSWORD)

    @property
    def migrations_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return self._build_database_url(self.DB_MIGRATOR_USER, self.DB_MIGRATOR_PASSWORD)


settings = Settings()
