"""Tests for SynthesisEngine."""

import asyncio
import json

import pytest

from deep_researcher.core.research.errors import CollaboratorFailure
from deep_researcher.core.research.models import SubtaskSummary
from deep_researcher.core.research.synthesis import (
    SynthesisEngine,
    fallback_notes,
    serialize_summaries,
)
from tests.conftest import ScriptedCompletion


def make_summaries(count):
    return [
        SubtaskSummary(subtask_id=f"s{i}", summary=f"summary {i}", urls=[f"https://e/{i}"])
        for i in range(1, count + 1)
    ]


def batch_ids(args):
    return [item["subtask_id"] for item in json.loads(args["summaries"])]


class TestHelpers:
    def test_serialize_summaries(self):
        data = json.loads(serialize_summaries(make_summaries(2)))
        assert data[0] == {"subtask_id": "s1", "summary": "summary 1", "urls": ["https://e/1"]}

    def test_fallback_notes(self):
        notes = fallback_notes(make_summaries(2))
        assert notes == "Topic: s1\nsummary 1\n\nTopic: s2\nsummary 2\n"


class TestCombine:
    """Tests for the primary and fallback synthesis paths."""

    @pytest.mark.asyncio
    async def test_single_call_below_threshold(self):
        completion = ScriptedCompletion({"combine_summaries": {"final_answer": "draft"}})
        engine = SynthesisEngine(completion)

        draft = await engine.combine(make_summaries(10), "original", "topic")

        assert draft == "draft"
        calls = completion.calls_to("combine_summaries")
        assert len(calls) == 1
        assert calls[0]["original_prompt"] == "original"
        assert calls[0]["research_prompt"] == "topic"
        assert len(batch_ids(calls[0])) == 10

    @pytest.mark.asyncio
    async def test_batches_cover_every_summary_once(self):
        completion = ScriptedCompletion(
            {"combine_summaries": lambda args: {"final_answer": ",".join(batch_ids(args))}}
        )
        engine = SynthesisEngine(completion, batch_threshold=10, batch_size=5)

        draft = await engine.combine(make_summaries(12), "original", "topic")

        calls = completion.calls_to("combine_summaries")
        assert [len(batch_ids(c)) for c in calls] == [5, 5, 2]
        covered = [sid for c in calls for sid in batch_ids(c)]
        assert covered == [f"s{i}" for i in range(1, 13)]
        assert draft == "s1,s2,s3,s4,s5\n\ns6,s7,s8,s9,s10\n\ns11,s12"

    @pytest.mark.asyncio
    async def test_failed_batch_is_skipped(self):
        def combine(args):
            if "s6" in batch_ids(args):
                raise RuntimeError("batch failed")
            return {"final_answer": batch_ids(args)[0]}

        completion = ScriptedCompletion({"combine_summaries": combine})
        engine = SynthesisEngine(completion, batch_threshold=10, batch_size=5)
        log = []

        draft = await engine.combine(make_summaries(12), "original", "topic", log.append)

        assert draft == "s1\n\ns11"
        assert any("Error processing batch 2" in entry for entry in log)

    @pytest.mark.asyncio
    async def test_fallback_on_primary_error(self):
        completion = ScriptedCompletion(
            {
                "combine_summaries": RuntimeError("primary down"),
                "fallback_synthesis": "Plain fallback text",
            }
        )
        engine = SynthesisEngine(completion)

        draft = await engine.combine(make_summaries(3), "original", "topic")

        assert draft == "Plain fallback text"
        args = completion.calls_to("fallback_synthesis")[0]
        assert args["summaries"].startswith("Topic: s1\nsummary 1\n")

    @pytest.mark.asyncio
    async def test_fallback_on_unparseable_output(self):
        completion = ScriptedCompletion(
            {"combine_summaries": "not json", "fallback_synthesis": "fallback"}
        )
        engine = SynthesisEngine(completion)

        assert await engine.combine(make_summaries(2), "o", "t") == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_on_timeout(self):
        class SlowCompletion(ScriptedCompletion):
            async def invoke(self, function_name, arguments):
                if function_name == "combine_summaries":
                    await asyncio.sleep(1)
                return await super().invoke(function_name, arguments)

        completion = SlowCompletion(
            {"combine_summaries": {"final_answer": "late"}, "fallback_synthesis": "fallback"}
        )
        engine = SynthesisEngine(completion, timeout=0.01)
        log = []

        draft = await engine.combine(make_summaries(2), "o", "t", log.append)

        assert draft == "fallback"
        assert any("timed out" in entry for entry in log)

    @pytest.mark.asyncio
    async def test_raises_when_fallback_fails(self):
        completion = ScriptedCompletion(
            {
                "combine_summaries": RuntimeError("primary down"),
                "fallback_synthesis": RuntimeError("fallback down"),
            }
        )
        engine = SynthesisEngine(completion)

        with pytest.raises(CollaboratorFailure, match="Fallback synthesis failed"):
            await engine.combine(make_summaries(2), "o", "t")

    @pytest.mark.asyncio
    async def test_raises_when_fallback_is_empty(self):
        completion = ScriptedCompletion(
            {"combine_summaries": RuntimeError("down"), "fallback_synthesis": "   "}
        )
        engine = SynthesisEngine(completion)

        with pytest.raises(CollaboratorFailure, match="no output"):
            await engine.combine(make_summaries(2), "o", "t")

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValueError):
            SynthesisEngine(ScriptedCompletion(), batch_size=0)
