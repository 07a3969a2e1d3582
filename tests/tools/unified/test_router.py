"""Tests for the unified tool action router."""

import pytest

from deep_researcher.tools.unified.router import (
    ActionDefinition,
    ActionRouter,
    ActionRouterError,
)


def make_router():
    return ActionRouter(
        tool_name="research",
        actions=[
            ActionDefinition(name="start", handler=lambda **kw: ("start", kw), summary="Start"),
            ActionDefinition(
                name="status", handler=lambda **kw: ("status", kw), aliases=("get-status",)
            ),
        ],
    )


class TestActionRouter:
    def test_dispatch_passes_kwargs(self):
        assert make_router().dispatch(action="start", query="q") == ("start", {"query": "q"})

    def test_resolve_alias_and_case(self):
        router = make_router()

        assert router.resolve("Get-Status").name == "status"
        assert router.resolve(" START ").name == "start"

    def test_unknown_action_lists_allowed(self):
        with pytest.raises(ActionRouterError) as exc_info:
            make_router().dispatch(action="summon")

        assert exc_info.value.allowed_actions == ["start", "status"]
        assert exc_info.value.tool_name == "research"
        assert "Allowed: start, status" in str(exc_info.value)

    def test_describe(self):
        assert make_router().describe() == {"start": "Start", "status": ""}

    def test_duplicate_action_rejected(self):
        definition = ActionDefinition(name="start", handler=lambda **kw: None)

        with pytest.raises(ValueError, match="Duplicate action"):
            ActionRouter(tool_name="research", actions=[definition, definition])
