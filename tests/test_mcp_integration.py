"""MCP integration tests using FastMCP Client with in-memory transport.

These tests exercise the full MCP protocol path: schema validation,
tool dispatch, serialization and error reporting, with GitHub mocked at the
HTTP layer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import respx
from fastmcp import Client
from helpers.factories import ALICE, API, BOB, comment_payload, make_config, pr_payload, review_payload, user_payload
from httpx import Response

from reviewdeck.server import mcp

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

REPO = f"{API}/repos/acme/widgets"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(mocker: MockerFixture):
    mocker.patch("reviewdeck.server.load_config", return_value=(make_config(), None))
    async with Client(mcp) as c:
        yield c


@pytest.fixture
def github():
    """Bob is signed in; PR #42 (Alice's, Bob assigned) and PR #7 (Bob's, Alice assigned)."""
    with respx.mock(assert_all_called=False) as router:
        router.get(f"{API}/user").mock(return_value=Response(200, json=user_payload(BOB)))
        router.get(f"{REPO}/pulls").mock(
            return_value=Response(200, json=[pr_payload(42), pr_payload(7, author=BOB, reviewers=(ALICE,))]),
        )
        router.get(url__regex=r".*/pulls/\d+/reviews").mock(return_value=Response(200, json=[]))
        router.get(f"{REPO}/issues/42/comments").mock(
            return_value=Response(
                200,
                json=[comment_payload(10, ALICE, "Ready for review"), comment_payload(11, BOB, "Looking", 5, in_reply_to=10)],
            ),
        )
        router.get(f"{REPO}/issues/7/comments").mock(return_value=Response(200, json=[]))
        yield router


# ---------------------------------------------------------------------------
# Registration & schema tests
# ---------------------------------------------------------------------------


class TestToolRegistration:
    EXPECTED_TOOLS = frozenset({
        "refresh_pull_requests",
        "list_pull_requests",
        "get_pull_request",
        "get_permissions",
        "get_comment_thread",
        "submit_comment",
        "submit_review",
        "show_config",
    })

    async def test_all_tools_registered(self, client: Client):
        tools = await client.list_tools()
        assert {t.name for t in tools} == self.EXPECTED_TOOLS

    async def test_submit_review_schema(self, client: Client):
        tools = await client.list_tools()
        tool = next(t for t in tools if t.name == "submit_review")
        schema = tool.inputSchema
        assert set(schema["required"]) == {"pr_number", "decision"}
        assert "body" in schema["properties"]

    async def test_output_schemas_present(self, client: Client):
        tools = {t.name: t for t in await client.list_tools()}
        for name in ("list_pull_requests", "submit_review", "get_comment_thread"):
            assert tools[name].outputSchema is not None, f"{name} should have an outputSchema"


class TestPromptRegistration:
    async def test_review_queue(self, client: Client):
        from mcp.types import TextContent  # noqa: PLC0415

        prompts = await client.list_prompts()
        assert {p.name for p in prompts} == {"review_queue"}

        result = await client.get_prompt("review_queue")
        content = result.messages[0].content
        assert isinstance(content, TextContent)
        assert 'list_pull_requests(filter="needs_review")' in content.text


# ---------------------------------------------------------------------------
# Tool invocation through the MCP protocol
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_refresh(self, client: Client, github):
        result = await client.call_tool("refresh_pull_requests", {})
        assert result.structured_content["ok"] is True
        assert result.structured_content["count"] == 2

    async def test_list_needs_review(self, client: Client, github):
        result = await client.call_tool("list_pull_requests", {"filter": "needs_review"})
        data = result.structured_content
        assert [pr["number"] for pr in data["pull_requests"]] == [42]
        assert data["status_breakdown"] == {"pending": 1}

    async def test_get_permissions(self, client: Client, github):
        result = await client.call_tool("get_permissions", {"pr_number": 7})
        data = result.structured_content
        assert data["role"] == "author"
        assert data["permissions"]["can_only_comment"] is True
        assert data["permissions"]["can_review_pr"] is False

    async def test_comment_thread_is_nested(self, client: Client, github):
        result = await client.call_tool("get_comment_thread", {"pr_number": 42})
        threads = result.structured_content["threads"]
        assert len(threads) == 1
        assert threads[0]["comment"]["id"] == "comment-10"
        assert threads[0]["replies"][0]["comment"]["id"] == "comment-11"

    async def test_unknown_pr_returns_recovery_hint(self, client: Client, github):
        result = await client.call_tool("get_pull_request", {"pr_number": 999})
        assert not result.is_error
        assert "refresh_pull_requests()" in result.structured_content["error"]

    async def test_refresh_failure_reported(self, client: Client):
        with respx.mock(assert_all_called=False) as router:
            router.get(f"{API}/user").mock(return_value=Response(401, json={"message": "Bad credentials"}))
            result = await client.call_tool("refresh_pull_requests", {})
        assert result.structured_content["ok"] is False
        assert "check your token" in result.structured_content["error"]

    async def test_show_config_masks_token(self, client: Client):
        result = await client.call_tool("show_config", {})
        data = result.structured_content
        assert data["source"] == "defaults"
        assert data["config"]["github"]["token"] == "ghp_tes...***"


class TestActions:
    async def test_approve_locks_pr(self, client: Client, github):
        github.post(f"{REPO}/pulls/42/reviews").mock(
            return_value=Response(200, json=review_payload(50, BOB, "APPROVED", 10)),
        )
        result = await client.call_tool("submit_review", {"pr_number": 42, "decision": "approve"})
        data = result.structured_content
        assert data["state"] == "confirmed"
        assert data["status"] == "approved"
        assert data["is_locked"] is True
        assert data["error"] is None

        blocked = await client.call_tool("submit_comment", {"pr_number": 42, "content": "one more thing"})
        assert "blocked" in blocked.structured_content["error"]

    async def test_rejected_comment_is_rolled_back(self, client: Client, github):
        github.post(f"{REPO}/issues/42/comments").mock(return_value=Response(500, json={"message": "boom"}))
        result = await client.call_tool(
            "submit_comment",
            {"pr_number": 42, "content": "Thanks!", "parent_id": "comment-11"},
        )
        data = result.structured_content
        assert data["state"] == "rolled_back"
        assert "local change was undone" in data["error"]

        thread = await client.call_tool("get_comment_thread", {"pr_number": 42})
        reply = thread.structured_content["threads"][0]["replies"][0]
        assert reply["replies"] == []

    async def test_author_cannot_review(self, client: Client, github):
        result = await client.call_tool("submit_review", {"pr_number": 7, "decision": "approve"})
        assert "get_permissions(7)" in result.structured_content["error"]

    async def test_invalid_decision_is_rejected_by_schema(self, client: Client, github):
        from fastmcp.exceptions import ToolError  # noqa: PLC0415
        from mcp.shared.exceptions import MCPError as McpError  # noqa: PLC0415

        with pytest.raises((ToolError, McpError)):
            await client.call_tool("submit_review", {"pr_number": 42, "decision": "merge"})
