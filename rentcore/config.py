from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_OWNER_RESOURCES = ("property", "room", "renter", "contract", "payment", "service", "maintenance", "document")
_RENTER_RESOURCES = ("renter", "room", "contract", "payment", "service", "maintenance", "document")


def _crud(resources: tuple[str, ...]) -> list[str]:
    return [f"{r}:{a}" for r in resources for a in ("create", "read", "update", "delete", "list")]


def _read_only(resources: tuple[str, ...]) -> list[str]:
    return [f"{r}:{a}" for r in resources for a in ("read", "list")]


def default_role_permissions() -> dict[str, list[str]]:
    """
    Role -> "resource:action" grants.

    ADMIN is the super role and is never looked up here; it is listed so the
    role table seeded from this map carries a row for it.
    """
    return {
        "ADMIN": ["*"],
        "PROPERTY_MANAGER": _crud(_OWNER_RESOURCES) + ["user:read", "user:list", "subscription:read", "subscription:list"],
        "USER": _crud(_OWNER_RESOURCES) + ["user:read", "user:list"],
        "RENTER": _read_only(_RENTER_RESOURCES) + ["user:read"],
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "0.1.0"
    database_url: str = "sqlite:///./rentcore.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Auth ----
    auth_mode: str = "dev"  # dev|jwt
    jwt_secret: str = "dev-change-me"
    jwt_exp_minutes: int = 60 * 24

    # ---- Authorization ----
    super_role: str = "ADMIN"
    role_permissions: dict[str, list[str]] = Field(default_factory=default_role_permissions)

    # ---- Lifecycle ----
    # shared_renter: release a room only when no other ACTIVE contract on it
    #   shares a renter with the closed one.
    # room: release a room only when no other ACTIVE contract on it exists.
    room_release_scope: str = "shared_renter"

    # ---- Listing ----
    default_page_size: int = 10
    max_page_size: int = 200

    def model_post_init(self, __context) -> None:
        scope = (self.room_release_scope or "shared_renter").strip().lower()
        if scope not in ("shared_renter", "room"):
            raise ValueError(f"room_release_scope must be 'shared_renter' or 'room', got {self.room_release_scope!r}")
        object.__setattr__(self, "room_release_scope", scope)

        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        # Hard fail: dev header auth lets any caller pick a user id
        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if self.jwt_secret == "dev-change-me":
                raise ValueError("SECURITY: jwt_secret must be set in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
