"""
Prompt templates for the research completion functions.

Each completion function the engines call is a PromptTemplate registered
under the function's name. Templates use ``{variable}`` placeholders; literal
braces in JSON examples are doubled.

Example Usage:
    from deep_researcher.core.completion.prompts import get_prompt_registry

    registry = get_prompt_registry()
    template = registry.get_required("decompose_prompt")
    prompt = template.render({"research_prompt": "History of the transistor"})
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a meticulous research assistant. Follow the output format "
    "exactly and do not add commentary outside it."
)
JSON_SYSTEM_PROMPT = (
    "You are a meticulous research assistant. Respond with a single JSON "
    "object and nothing else."
)


# =============================================================================
# PromptTemplate Dataclass
# =============================================================================


@dataclass(frozen=True)
class PromptTemplate:
    """
    Named prompt backing one completion function.

    Attributes:
        id: Completion function name (e.g. "review_answer")
        version: Template version for tracking changes
        system_prompt: System message sent with the rendered user template
        user_template: User message template with {variable} placeholders
        required_context: Argument names that must be supplied
        expects_json: Whether the model is asked to answer with a JSON object
    """

    id: str
    version: str
    system_prompt: str
    user_template: str
    required_context: List[str] = field(default_factory=list)
    expects_json: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Template id cannot be empty")
        if not self.user_template:
            raise ValueError("Template user_template cannot be empty")

    def get_variables(self) -> Set[str]:
        """Return the variable names used in ``user_template``."""
        pattern = r"(?<!\{)\{([a-zA-Z_][a-zA-Z0-9_]*)\}(?!\})"
        return set(re.findall(pattern, self.user_template))

    def validate_context(self, context: Dict[str, Any]) -> List[str]:
        return [key for key in self.required_context if key not in context]

    def render(self, context: Dict[str, Any], *, strict: bool = True) -> str:
        """
        Render the user template with context substitution.

        List and tuple values are rendered one item per line.

        Raises:
            ValueError: If strict=True and required keys are missing
        """
        missing = self.validate_context(context)
        if missing and strict:
            raise ValueError(
                f"Missing required context keys for template '{self.id}': {missing}"
            )

        render_context: Dict[str, Any] = {key: "" for key in self.get_variables()}
        for key, value in context.items():
            if isinstance(value, (list, tuple)):
                render_context[key] = "\n".join(str(item) for item in value)
            else:
                render_context[key] = value

        try:
            return self.user_template.format(**render_context)
        except (KeyError, IndexError) as exc:
            raise ValueError(
                f"Missing context key for template '{self.id}': {exc}"
            ) from exc


# =============================================================================
# PromptRegistry
# =============================================================================


class PromptRegistry:
    """Registry of prompt templates keyed by completion function name."""

    def __init__(self) -> None:
        self._templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate, *, replace: bool = False) -> None:
        """
        Register a prompt template.

        Raises:
            ValueError: If template ID already registered and replace=False
        """
        if template.id in self._templates and not replace:
            raise ValueError(
                f"Template '{template.id}' is already registered. "
                "Use replace=True to overwrite."
            )
        self._templates[template.id] = template
        logger.debug(
            "Registered prompt template '%s' (version %s)",
            template.id,
            template.version,
        )

    def get(self, template_id: str) -> Optional[PromptTemplate]:
        return self._templates.get(template_id)

    def get_required(self, template_id: str) -> PromptTemplate:
        """
        Retrieve a template by ID, raising if not found.

        Raises:
            KeyError: If template not found
        """
        template = self._templates.get(template_id)
        if template is None:
            available = ", ".join(sorted(self._templates.keys())) or "(none)"
            raise KeyError(
                f"Template '{template_id}' not found. Available: {available}"
            )
        return template

    def list_templates(self) -> List[str]:
        return sorted(self._templates.keys())

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates


# =============================================================================
# Research Prompt Library
# =============================================================================

CLARIFY_PROMPT = PromptTemplate(
    id="clarify_prompt",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Decide whether the research request below is specific enough to research.

Rewrite it as a single, self-contained research prompt. If essential details are
missing, ask up to three short clarifying questions. If the request is already
clear, return no questions.

Research request:
{user_prompt}

Respond in JSON:
{{
  "unifiedResearchPrompt": "the rewritten research prompt",
  "clarifyingQuestions": ["question", "..."],
  "readyToProceedMessage": "one sentence saying whether research can begin"
}}""",
    required_context=["user_prompt"],
    expects_json=True,
)

DECOMPOSE_PROMPT = PromptTemplate(
    id="decompose_prompt",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Break the research topic below into 4 to 8 focused, non-overlapping research
questions. Each description must be a complete question of at least one sentence.

Research topic:
{research_prompt}

Respond in JSON:
{{
  "subtasks": [
    {{"id": "short-stable-id", "description": "full research question"}}
  ]
}}""",
    required_context=["research_prompt"],
    expects_json=True,
)

SUMMARIZE_RESULTS = PromptTemplate(
    id="summarize_results",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Write a detailed 600-800 word summary of the evidence below for the research
question "{subtask_id}", in the context of the overall topic: {research_prompt}

Cite claims with bracketed numbers [1], [2], ... matching the order of the source
URLs listed below.

Evidence:
{tavily_answer}

Source URLs (in citation order):
{urls}

Respond in JSON:
{{"subtask_id": "{subtask_id}", "summary": "the cited summary"}}""",
    required_context=["subtask_id", "tavily_answer", "urls", "research_prompt"],
    expects_json=True,
)

COMBINE_SUMMARIES = PromptTemplate(
    id="combine_summaries",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Combine the research summaries below into one coherent, well-structured
article with markdown headings that answers the original request. Keep the
citation markers from the summaries.

Original request:
{original_prompt}

Research topic:
{research_prompt}

Summaries (JSON):
{summaries}

Respond in JSON:
{{"final_answer": "the combined article in markdown"}}""",
    required_context=["original_prompt", "summaries", "research_prompt"],
    expects_json=True,
)

REVIEW_ANSWER = PromptTemplate(
    id="review_answer",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Critically review the draft answer below against the original request and
the research summaries it was written from. Identify knowledge gaps worth one
more round of research, factual accuracy concerns, and structural problems.

Original request:
{original_prompt}

Research topic:
{research_prompt}

Draft answer:
{final_answer}

Research summaries (JSON):
{summaries}

Respond in JSON:
{{
  "follow_up_subtasks": [{{"id": "gap-id", "description": "research question"}}],
  "accuracy_concerns": [{{"issue": "...", "severity": "high|medium|low", "details": "..."}}],
  "structural_feedback": "...",
  "completeness_score": 0
}}""",
    required_context=["original_prompt", "final_answer", "summaries", "research_prompt"],
    expects_json=True,
)

MERGE_REFINEMENTS = PromptTemplate(
    id="merge_refinements",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Integrate the new research summaries into the existing answer. Keep the
existing structure and citations, add the new material where it belongs.

Research topic:
{research_prompt}

Existing answer:
{original_answer}

New summaries (JSON):
{new_summaries}

Respond in JSON:
{{"updated_answer": "the full updated answer in markdown"}}""",
    required_context=["original_answer", "new_summaries", "research_prompt"],
    expects_json=True,
)

GENERATE_SEMANTIC_KEY = PromptTemplate(
    id="generate_semantic_key",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Reduce the research query below to a short canonical key: lowercase, the
essential subject terms only, sorted alphabetically, separated by single spaces.
Two queries asking for the same research must produce the same key.

Query:
{query}

Return only the key.""",
    required_context=["query"],
)

FALLBACK_SYNTHESIS = PromptTemplate(
    id="fallback_synthesis",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Write a comprehensive markdown article answering the request below, using
only the research notes provided. Keep any citation markers.

Request:
{original_prompt}

Research topic:
{research_prompt}

Research notes:
{summaries}

Return only the article.""",
    required_context=["original_prompt", "research_prompt", "summaries"],
)

VALIDATE_RESEARCH = PromptTemplate(
    id="validate_research",
    version="1.0",
    system_prompt=JSON_SYSTEM_PROMPT,
    user_template="""Critically evaluate the research below for factual accuracy, source quality,
logical coherence, comprehensiveness and objectivity. For each issue give a
description, its location in the text and a suggested correction.

Research:
{research}

Respond in JSON:
{{
  "overallAssessment": "brief overall evaluation",
  "qualityScore": 0,
  "issues": [
    {{
      "type": "factual|logical|bias|omission|structure",
      "severity": "high|medium|low",
      "description": "...",
      "location": "...",
      "suggestion": "..."
    }}
  ],
  "passesQualityThreshold": true
}}""",
    required_context=["research"],
    expects_json=True,
)

CORRECT_RESEARCH_ISSUES = PromptTemplate(
    id="correct_research_issues",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Revise the research text below to address these issues:

{issues}

Original text:
{research}

Return the fully revised text, keeping its overall structure. Do not add comments
or explanations.""",
    required_context=["research", "issues"],
)

ENHANCE_WITH_CITATIONS = PromptTemplate(
    id="enhance_with_citations",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Enhance the research below with numbered in-text citations in square
brackets ([1], [2], ...) referring to the numbered sources, clear paragraph
breaks and consistent markdown formatting.

Research text:
{research}

Available sources:
{sources}

Return only the enhanced text.""",
    required_context=["research", "sources"],
)

POLISH_ARTICLE = PromptTemplate(
    id="polish_article",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Edit the draft research article below for clarity, coherence and
professionalism. Fix grammatical errors and awkward phrasing, keep the structure
logical and the tone academic. Do not shorten it.

{article}

Return only the polished article.""",
    required_context=["article"],
)

INCORPORATE_FEEDBACK = PromptTemplate(
    id="incorporate_feedback",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Revise the research article below to incorporate the reader's feedback while
keeping the article's structure and depth.

Original article:
{article}

Reader feedback:
{feedback}

Return the complete revised article.""",
    required_context=["article", "feedback"],
)

EXPAND_SECTION = PromptTemplate(
    id="expand_section",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Expand the section below into a detailed analysis for a research article on:
{topic}

Add technical explanations, concrete examples and relevant data. Keep existing
citations. Do not summarize or add a conclusion.

Section:
{section}

Return only the expanded section with its heading.""",
    required_context=["section", "topic"],
)

EXPAND_CONCLUSION = PromptTemplate(
    id="expand_conclusion",
    version="1.0",
    system_prompt=DEFAULT_SYSTEM_PROMPT,
    user_template="""Expand the conclusion below into an insightful closing section for a
research article on: {topic}

Summarize the key findings, outline future implications, name open questions and
end with a closing thought.

Conclusion:
{section}

Return only the expanded conclusion.""",
    required_context=["section", "topic"],
)

RESEARCH_PROMPTS = (
    CLARIFY_PROMPT,
    DECOMPOSE_PROMPT,
    SUMMARIZE_RESULTS,
    COMBINE_SUMMARIES,
    REVIEW_ANSWER,
    MERGE_REFINEMENTS,
    GENERATE_SEMANTIC_KEY,
    FALLBACK_SYNTHESIS,
    VALIDATE_RESEARCH,
    CORRECT_RESEARCH_ISSUES,
    ENHANCE_WITH_CITATIONS,
    POLISH_ARTICLE,
    INCORPORATE_FEEDBACK,
    EXPAND_SECTION,
    EXPAND_CONCLUSION,
)


def get_prompt_registry() -> PromptRegistry:
    """Return a registry holding every research completion function."""
    registry = PromptRegistry()
    for template in RESEARCH_PROMPTS:
        registry.register(template)
    return registry


__all__ = [
    "PromptTemplate",
    "PromptRegistry",
    "RESEARCH_PROMPTS",
    "get_prompt_registry",
]
