"""
Root pytest configuration and shared fixtures.

Provides scripted completion and search collaborators so pipeline tests run
without network access.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
from mcp.types import TextContent

from deep_researcher.core import task_registry
from deep_researcher.core.completion.base import (
    CompletionArguments,
    CompletionProvider,
    CompletionProviderError,
)
from deep_researcher.core.research.providers.base import (
    SearchProvider,
    SearchResponse,
    SearchResult,
)

# Response contract version from responses.py
RESPONSE_CONTRACT_VERSION = "response-v2"

SHARED_SOURCE = "https://encyclopedia.example.org/transistor"

ScriptedValue = Union[str, dict, BaseException, Callable[[Dict[str, Any]], Any], list]


def extract_response_dict(result: Union[Dict[str, Any], TextContent]) -> Dict[str, Any]:
    """Extract dict from tool result, handling both dict and TextContent."""
    if isinstance(result, dict):
        return result
    if isinstance(result, TextContent):
        return json.loads(result.text)
    raise TypeError(f"Expected dict or TextContent, got {type(result).__name__}")


class ScriptedCompletion(CompletionProvider):
    """Completion capability answering from a per-function script.

    Script values:
        str: returned verbatim
        dict: returned as JSON text
        BaseException: raised
        callable: called with the arguments; its result is scripted again
        list: consumed one item per call; the last item repeats
    """

    name = "scripted"

    def __init__(self, responses: Optional[Dict[str, ScriptedValue]] = None) -> None:
        self.responses: Dict[str, ScriptedValue] = dict(responses or {})
        self.calls: List[tuple] = []

    def calls_to(self, function_name: str) -> List[Dict[str, Any]]:
        return [args for name, args in self.calls if name == function_name]

    def _resolve(self, value: Any, arguments: Dict[str, Any]) -> str:
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
            return self._resolve(value, arguments)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return self._resolve(value(arguments), arguments)
        if isinstance(value, dict):
            return json.dumps(value)
        return value

    async def invoke(self, function_name: str, arguments: CompletionArguments) -> str:
        args = dict(arguments)
        self.calls.append((function_name, args))
        if function_name not in self.responses:
            raise CompletionProviderError(
                f"No scripted response for {function_name}", provider=self.name
            )
        return self._resolve(self.responses[function_name], args)


class ScriptedSearch(SearchProvider):
    """Search capability returning a canned answer and two URLs per query.

    Every response includes ``SHARED_SOURCE`` so source de-duplication can be
    observed across subtasks.
    """

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.queries: List[str] = []

    def get_provider_name(self) -> str:
        return "scripted"

    async def search(self, query: str, max_results: int = 10, **kwargs: Any) -> SearchResponse:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        number = len(self.queries)
        return SearchResponse(
            query=query,
            answer=f'Evidence about "{query}"',
            results=(
                SearchResult(title=f"Result {number}", url=f"https://example.com/source-{number}"),
                SearchResult(title="Overview", url=SHARED_SOURCE),
            ),
        )


def _summary(arguments: Dict[str, Any]) -> dict:
    return {
        "subtask_id": arguments["subtask_id"],
        "summary": f"Findings for {arguments['subtask_id']} [1][2].",
    }


DRAFT_ANSWER = (
    "# The Transistor\n\n"
    "## Origins\nBell Labs demonstrated the point-contact transistor in 1947 [1].\n\n"
    "## Impact\nTransistors replaced vacuum tubes in computing [2].\n\n"
    "## Conclusion\nThe transistor underpins modern electronics."
)


def pipeline_responses() -> Dict[str, ScriptedValue]:
    """Script for a clean run through every phase."""
    return {
        "clarify_prompt": {
            "unifiedResearchPrompt": "History and impact of the transistor",
            "clarifyingQuestions": [],
            "readyToProceedMessage": "Ready to proceed with research.",
        },
        "decompose_prompt": {
            "subtasks": [
                {"id": "origins", "description": "How was the first transistor invented at Bell Labs?"},
                {"id": "adoption", "description": "How did transistors replace vacuum tubes in computers?"},
                {"id": "scaling", "description": "How has transistor scaling followed Moore's law since 1965?"},
            ]
        },
        "summarize_results": _summary,
        "combine_summaries": {"final_answer": DRAFT_ANSWER},
        "review_answer": {
            "follow_up_subtasks": [],
            "accuracy_concerns": [],
            "completeness_score": 8,
        },
        "validate_research": {"qualityScore": 8, "issues": [], "passesQualityThreshold": True},
        "enhance_with_citations": lambda args: args["research"],
        "polish_article": lambda args: args["article"],
        "incorporate_feedback": lambda args: args["article"] + "\n\nRevised per feedback.",
        "generate_semantic_key": "transistor history",
    }


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion(pipeline_responses())


@pytest.fixture
def search() -> ScriptedSearch:
    return ScriptedSearch()


@pytest.fixture(autouse=True)
def clean_task_registry():
    """Reset the background task registry around each test."""
    task_registry.reset_task_registry()
    yield
    task_registry.reset_task_registry()
