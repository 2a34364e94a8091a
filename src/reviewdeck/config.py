"""Configuration for reviewdeck.

Loads ``.reviewdeck.toml`` from the project root (walking up to ``.git``),
validates with Pydantic, and applies ``RD_*`` / token environment overrides.
The resulting :class:`Config` is passed explicitly to the GitHub client and the
review engine; nothing in the engine reads the environment.
"""

from __future__ import annotations

import logging
import os
import subprocess  # noqa: S404
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".reviewdeck.toml"
DEFAULT_API_URL = "https://api.github.com"


class GitHubConfig(BaseModel):
    """Repository coordinates and API settings."""

    model_config = ConfigDict(extra="ignore")

    owner: str = Field(default="", description="Repository owner (user or organization)")
    repo: str = Field(default="", description="Repository name")
    token: str = Field(default="", description="Personal access token; resolved from GH_TOKEN/GITHUB_TOKEN/gh if empty")
    api_url: str = Field(default=DEFAULT_API_URL, description="GitHub REST API base URL")
    timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP timeout per request")


class SyncConfig(BaseModel):
    """Settings for the listing cycle."""

    model_config = ConfigDict(extra="ignore")

    max_concurrency: int = Field(default=8, ge=1, description="Maximum PRs whose details are fetched at once")
    pr_state: Literal["open", "closed", "all"] = Field(default="all", description="Which PRs to list")


class Config(BaseModel):
    """Top-level reviewdeck configuration."""

    model_config = ConfigDict(extra="ignore")

    github: GitHubConfig = Field(default_factory=GitHubConfig, description="GitHub repository and API settings")
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Listing cycle settings")

    @property
    def is_complete(self) -> bool:
        """Whether owner, repo and token are all set."""
        gh = self.github
        return bool(gh.owner.strip() and gh.repo.strip() and gh.token.strip())

    def masked_dump(self) -> dict[str, Any]:
        """Dump the config with the token masked, for display."""
        data = self.model_dump(mode="json")
        data["github"]["token"] = mask_token(self.github.token)
        return data


def mask_token(token: str) -> str:
    """Return a short, non-secret preview of a token."""
    if not token:
        return "EMPTY"
    return f"{token[:7]}...***"


# -- Token resolution ----------------------------------------------------------


def resolve_token() -> str:
    """Resolve a GitHub token from the environment.

    Tries (in order):
    1. ``GH_TOKEN`` env var
    2. ``GITHUB_TOKEN`` env var
    3. ``gh auth token`` (reads local ``~/.config/gh/hosts.yml``, no network)

    Returns an empty string when nothing is found.
    """
    token = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        logger.debug("GitHub token resolved from env var")
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            logger.debug("GitHub token resolved from gh auth token")
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        pass

    return ""


# -- Loading -------------------------------------------------------------------


def _collect_unknown_keys(
    data: dict[str, Any],
    model_cls: type[BaseModel],
    prefix: str = "",
) -> list[str]:
    """Recursively find keys in *data* that don't match any field in *model_cls*.

    Returns dotted key paths like ``github.tokn``.
    """
    known = set(model_cls.model_fields)
    unknown: list[str] = []

    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if key not in known:
            unknown.append(dotted)
            continue
        annotation = model_cls.model_fields[key].annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel) and isinstance(value, dict):
            unknown.extend(_collect_unknown_keys(value, annotation, prefix=f"{dotted}."))

    return unknown


def _find_config_file(start: Path) -> Path | None:
    """Walk up from *start* looking for ``.reviewdeck.toml``, stopping at ``.git`` root."""
    current = start.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        if (current / ".git").exists():
            return None
        current = current.parent


def _apply_env_overrides(config: Config) -> Config:
    """Fill owner/repo from ``RD_OWNER``/``RD_REPO`` and the token from the environment."""
    github = config.github
    updates: dict[str, str] = {}
    if owner := os.environ.get("RD_OWNER"):
        updates["owner"] = owner
    if repo := os.environ.get("RD_REPO"):
        updates["repo"] = repo
    if not github.token:
        token = resolve_token()
        if token:
            updates["token"] = token
    if not updates:
        return config
    return config.model_copy(update={"github": github.model_copy(update=updates)})


def load_config(cwd: str | Path | None = None) -> tuple[Config, Path | None]:
    """Load configuration from ``.reviewdeck.toml`` plus environment overrides.

    Walks up from *cwd* (defaulting to the current directory) looking for the
    config file.  If not found, starts from a default ``Config``.

    Returns:
        (config, config_path): the parsed config and the file path (or None
        if no config file was found).

    Raises ``ValueError`` on invalid TOML or validation errors.
    """
    start = Path(cwd) if cwd else Path.cwd()
    config_path = _find_config_file(start)

    if config_path is None:
        logger.info("No %s found, using defaults", CONFIG_FILENAME)
        return _apply_env_overrides(Config()), None

    logger.info("Loading config from %s", config_path)
    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {config_path}: {exc}"
        raise ValueError(msg) from exc

    try:
        config = Config.model_validate(data)
    except Exception as exc:
        msg = f"Invalid config in {config_path}: {exc}"
        raise ValueError(msg) from exc

    for key in _collect_unknown_keys(data, Config):
        logger.warning("Unknown config key '%s' in %s", key, config_path)

    return _apply_env_overrides(config), config_path


# -- Active config -------------------------------------------------------------


class _ConfigState:
    """Holds the active config and where it came from."""

    __slots__ = ("config", "path")

    def __init__(self) -> None:
        self.config: Config = Config()
        self.path: Path | None = None


_state = _ConfigState()


def get_config() -> Config:
    """Return the active configuration."""
    return _state.config


def set_config(config: Config, *, config_path: Path | None = None) -> None:
    """Set the active configuration (called during server startup)."""
    _state.config = config
    _state.path = config_path


def get_config_path() -> Path | None:
    """Return the path to the active config file, or None if using defaults."""
    return _state.path


# -- ``reviewdeck init`` -------------------------------------------------------


def render_config_template(owner: str = "", repo: str = "") -> str:
    """Build the commented ``.reviewdeck.toml`` template."""
    import tomlkit  # noqa: PLC0415

    doc = tomlkit.document()
    doc.add(tomlkit.comment(f"{CONFIG_FILENAME}: reviewdeck configuration"))
    doc.add(tomlkit.comment("The token is read from GH_TOKEN, GITHUB_TOKEN or `gh auth token` when omitted."))
    doc.add(tomlkit.nl())

    github = tomlkit.table()
    github.add("owner", owner)
    github.add("repo", repo)
    github.add("api_url", DEFAULT_API_URL)
    github.add("timeout_seconds", 10.0)
    doc.add("github", github)

    sync = tomlkit.table()
    sync.add("max_concurrency", 8)
    sync["max_concurrency"].comment("PRs whose reviews/comments are fetched at once")
    sync.add("pr_state", "all")
    sync["pr_state"].comment("open, closed or all")
    doc.add("sync", sync)

    return tomlkit.dumps(doc)


def init_config(cwd: Path | None = None, *, owner: str = "", repo: str = "") -> Path:
    """Create a new ``.reviewdeck.toml`` in the given directory.

    Raises ``SystemExit(1)`` if the file already exists.
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if target.exists():
        print(f"Error: {CONFIG_FILENAME} already exists in {target.parent}")  # noqa: T201
        raise SystemExit(1)
    target.write_text(render_config_template(owner, repo), encoding="utf-8")
    print(f"Created {target}")  # noqa: T201
    return target
