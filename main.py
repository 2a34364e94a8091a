"""Main entry point for reviewdeck."""

from reviewdeck.server import mcp


def main() -> None:
    """Run the reviewdeck MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
