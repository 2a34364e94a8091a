"""CLI for reviewdeck, built on cyclopts (same framework as FastMCP's CLI)."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Literal

import cyclopts

app = cyclopts.App(
    name="reviewdeck",
    help="reviewdeck: review GitHub pull requests from your editor's agent or the terminal.",
)


@app.default
def serve() -> None:
    """Run the reviewdeck MCP server (default command)."""
    from reviewdeck.server import mcp  # noqa: PLC0415

    mcp.run()


@app.command(name="list")
def list_prs(
    *,
    filter: Literal["all", "mine", "needs_review"] = "all",  # noqa: A002
) -> None:
    """List pull requests of the configured repository.

    Parameters
    ----------
    filter
        ``all``, ``mine`` (PRs you opened) or ``needs_review`` (assigned to you, not yet reviewed).
    """
    from rich.console import Console  # noqa: PLC0415
    from rich.table import Table  # noqa: PLC0415

    from reviewdeck.config import load_config  # noqa: PLC0415
    from reviewdeck.service import ReviewSession, status_breakdown  # noqa: PLC0415

    console = Console()
    try:
        config, _ = load_config()
        session = ReviewSession(config)
    except Exception as exc:
        console.print(f"[red]❌ {exc}[/red]")
        sys.exit(1)

    result = asyncio.run(session.refresh())
    if not result.ok:
        console.print(f"[red]❌ {result.error}[/red]")
        sys.exit(1)
    for failure in result.excluded:
        console.print(f"[yellow]⚠️  skipped: {failure}[/yellow]")

    prs = sorted(session.pull_requests(filter), key=lambda pr: pr.last_activity, reverse=True)
    table = Table(title=f"{session.repo_slug} ({filter})", show_header=True, header_style="blue")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Status")
    table.add_column("Locked")
    table.add_column("Comments", justify="right")
    for pr in prs:
        table.add_row(
            str(pr.number),
            pr.title,
            pr.author.login,
            pr.status.label,
            "🔒" if pr.is_locked else "",
            str(len(pr.comments)),
        )
    console.print(table)

    breakdown = status_breakdown(prs)
    summary = ", ".join(f"{status}: {count}" for status, count in breakdown.items()) or "no pull requests"
    console.print(f"{len(prs)} PR(s): {summary}")


@app.command(name="check-env")
def check_env() -> None:
    """Validate configuration and GitHub access and print a diagnostic summary.

    Lists the recognized RD_* and token environment variables (masking tokens),
    validates the config file, and checks that the token can reach GitHub.
    """
    from reviewdeck.config import load_config, mask_token  # noqa: PLC0415

    print("reviewdeck check-env")
    print("=" * 40)

    env_vars = {k: v for k, v in sorted(os.environ.items()) if k in _KNOWN_ENV_VARS}
    if not env_vars:
        print("\nNo reviewdeck environment variables set.")
    else:
        print(f"\nFound {len(env_vars)} variable(s):\n")
        for key, value in env_vars.items():
            print(f"  {key} = {_mask_value(key, value)}")

    print("\n" + "-" * 40)
    print("Validating configuration...\n")
    try:
        config, path = load_config()
    except ValueError as exc:
        print(f"❌ Configuration error: {exc}")
        sys.exit(1)

    gh = config.github
    print(f"  Config file: {path or 'none (defaults)'}")
    print(f"  Repository: {gh.owner or '?'}/{gh.repo or '?'}")
    print(f"  API: {gh.api_url} (timeout {gh.timeout_seconds}s)")
    print(f"  Token: {mask_token(gh.token)}")
    print(f"  Sync: max_concurrency={config.sync.max_concurrency}, pr_state={config.sync.pr_state}")

    print("\n" + "-" * 40)
    print("Checking GitHub access...\n")
    try:
        from reviewdeck.github_api import GitHubClient  # noqa: PLC0415

        user = asyncio.run(GitHubClient(config).get_current_user())
        print(f"  ✅ Authenticated as: {user.login}")
    except Exception as exc:
        print(f"  ❌ GitHub error: {exc}")

    print()


@app.command
def init(
    *,
    owner: str = "",
    repo: str = "",
) -> None:
    """Create a .reviewdeck.toml in the current directory.

    Parameters
    ----------
    owner
        Repository owner (user or organization).
    repo
        Repository name, or ``owner/name``.
    """
    from reviewdeck.config import init_config  # noqa: PLC0415
    from reviewdeck.github_api import normalize_repo  # noqa: PLC0415

    if owner or repo:
        owner, repo = normalize_repo(owner, repo)
    init_config(Path.cwd(), owner=owner, repo=repo)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MASK_MIN_LENGTH = 4

_KNOWN_ENV_VARS = frozenset({
    "RD_OWNER",
    "RD_REPO",
    "GH_TOKEN",
    "GITHUB_TOKEN",
})


def _mask_value(key: str, value: str) -> str:
    """Mask sensitive values."""
    if "token" in key.lower():
        if len(value) > _MASK_MIN_LENGTH:
            return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
        return "****"
    return value
