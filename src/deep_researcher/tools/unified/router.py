"""Action routing for unified MCP tools.

A unified tool exposes a single MCP entry point that takes an ``action``
argument; the router maps that action to its handler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence


@dataclass(frozen=True)
class ActionDefinition:
    """One routable action.

    Attributes:
        name: Canonical action name
        handler: Callable invoked with the dispatch keyword arguments
        summary: One-line description used in tool docs and errors
        aliases: Alternative names accepted for this action
    """

    name: str
    handler: Callable[..., Any]
    summary: str = ""
    aliases: Sequence[str] = field(default_factory=tuple)


class ActionRouterError(ValueError):
    """Raised when an action is not registered on a router."""

    def __init__(self, tool_name: str, action: str, allowed_actions: list[str]) -> None:
        self.tool_name = tool_name
        self.action = action
        self.allowed_actions = allowed_actions
        super().__init__(
            f"Unsupported {tool_name} action '{action}'. "
            f"Allowed: {', '.join(allowed_actions)}"
        )


class ActionRouter:
    """Map action names (and aliases) to handlers for one tool."""

    def __init__(self, tool_name: str, actions: Iterable[ActionDefinition]) -> None:
        self.tool_name = tool_name
        self._actions: dict[str, ActionDefinition] = {}
        self._lookup: dict[str, ActionDefinition] = {}
        for definition in actions:
            if definition.name in self._actions:
                raise ValueError(
                    f"Duplicate action '{definition.name}' for tool '{tool_name}'"
                )
            self._actions[definition.name] = definition
            for key in (definition.name, *definition.aliases):
                self._lookup[key.strip().lower()] = definition

    def allowed_actions(self) -> list[str]:
        return list(self._actions)

    def describe(self) -> dict[str, str]:
        return {name: d.summary for name, d in self._actions.items()}

    def resolve(self, action: str) -> ActionDefinition:
        """Return the definition for ``action``.

        Raises:
            ActionRouterError: If the action is unknown.
        """
        definition = self._lookup.get((action or "").strip().lower())
        if definition is None:
            raise ActionRouterError(self.tool_name, action, self.allowed_actions())
        return definition

    def dispatch(self, action: str, **kwargs: Any) -> Any:
        """Invoke the handler for ``action``; async handlers return a coroutine."""
        return self.resolve(action).handler(**kwargs)
