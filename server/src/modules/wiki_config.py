import os
from dataclasses import dataclass
from functools import lru_cache


MARKUP_KINDS = ("markdown", "text")


def _truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    raw = str(value).strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _bounded_int(raw: str | None, default: int, minimum: int) -> int:
    try:
        return max(minimum, int(str(raw if raw is not None else default).strip()))
    except ValueError:
        return default


@dataclass(frozen=True)
class WikiSettings:
    enabled: bool
    require_auth: bool
    default_markup: str
    max_content_bytes: int
    search_limit: int


@lru_cache
def get_wiki_settings() -> WikiSettings:
    default_markup = str(os.getenv("WIKI_DEFAULT_MARKUP") or "markdown").strip().lower()
    return WikiSettings(
        enabled=_truthy(os.getenv("WIKI_ENABLED"), default=True),
        require_auth=_truthy(os.getenv("WIKI_REQUIRE_AUTH"), default=False),
        default_markup=default_markup,
        max_content_bytes=_bounded_int(os.getenv("WIKI_MAX_CONTENT_BYTES"), 200000, 1000),
        search_limit=_bounded_int(os.getenv("WIKI_SEARCH_LIMIT"), 100, 1),
    )


@dataclass(frozen=True)
class WikiEnvValidation:
    errors: tuple[str, ...]
    warnings: tuple[str, ...]


def validate_wiki_environment() -> WikiEnvValidation:
    cfg = get_wiki_settings()
    if not cfg.enabled:
        return WikiEnvValidation(errors=(), warnings=("WIKI_ENABLED is false; wiki routes remain mounted but answer 503.",))
    errors: list[str] = []
    warnings: list[str] = []
    if cfg.default_markup not in MARKUP_KINDS:
        errors.append(f"Unsupported WIKI_DEFAULT_MARKUP: {cfg.default_markup}")
    if not os.getenv("DATABASE_URL"):
        warnings.append("DATABASE_URL is not set via environment. Falling back to .env or the local SQLite file.")
    if not cfg.require_auth:
        warnings.append("WIKI_REQUIRE_AUTH is false; anonymous requesters can read globally readable pages.")
    return WikiEnvValidation(errors=tuple(errors), warnings=tuple(warnings))
