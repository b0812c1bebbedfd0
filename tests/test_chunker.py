import pytest

from sitecloner.agents.chunker import ContextChunker, build_overview, partition
from sitecloner.errors import CandidatesExhaustedError, ProviderFatalError
from tests.conftest import ProviderHTTPError, make_gateway, make_snapshot


def scripted(chunk_reply=None, split_reply=None):
    """Handler answering overview, chunk, split and compaction prompts."""
    counter = {"compact": 0}

    def handler(model, prompt):
        if prompt.startswith("Summarize all analysis"):
            counter["compact"] += 1
            return f"SUMMARY-{counter['compact']}"
        if prompt.startswith("Here is a partial chunk"):
            return split_reply(model, prompt) if split_reply else "half notes"
        if prompt.startswith("Here is chunk"):
            return chunk_reply(model, prompt) if chunk_reply else "chunk notes"
        return "overview acknowledged"

    return handler


def test_partition_splits_lists_independently():
    chunks = partition(make_snapshot(styles=5, layout=2, animations=0), chunk_size=2)
    assert [(c.kind, c.index, c.total, len(c.items)) for c in chunks] == [
        ("styles", 0, 3, 2),
        ("styles", 1, 3, 2),
        ("styles", 2, 3, 1),
        ("layout", 0, 1, 2),
    ]


def test_partition_rejects_non_positive_size():
    with pytest.raises(ValueError):
        partition(make_snapshot(), chunk_size=0)


def test_overview_truncates_dom():
    overview = build_overview(make_snapshot())
    dom = overview["dom"]
    assert len(dom["children"]) == 10
    assert len(dom["children"][0]["children"]) == 3
    assert dom["children"][0]["children"][0]["children"] == []
    assert overview["stats"]["totalStyles"] == 3
    assert "totalAssets" not in overview["stats"]


@pytest.mark.asyncio
async def test_compaction_cadence():
    gateway, provider = make_gateway(scripted())
    chunker = ContextChunker(gateway, chunk_size=2, max_chunks=20, compact_every=3)

    result = await chunker.execute(make_snapshot(styles=3, layout=2, animations=1))

    prompts = [p for _, p in provider.calls]
    assert len(prompts) == 7
    assert len([p for p in prompts if p.startswith("Summarize all analysis")]) == 2
    # compaction after the third chunk and after the last one
    assert prompts[4].startswith("Summarize all analysis so far (3 chunks")
    assert prompts[6].startswith("Summarize all analysis so far (4 chunks")
    assert result.summary == "SUMMARY-2"
    assert result.total_chunks == 4
    assert result.processed_chunks == 4
    assert result.calls == 7


@pytest.mark.asyncio
async def test_chunks_after_compaction_carry_only_the_summary():
    gateway, provider = make_gateway(scripted())
    chunker = ContextChunker(gateway, chunk_size=1, max_chunks=20, compact_every=2)

    await chunker.execute(make_snapshot(styles=3, layout=0, animations=0))

    chunk_prompts = [p for _, p in provider.calls if p.startswith("Here is chunk")]
    assert "overview acknowledged" in chunk_prompts[0]
    assert "SUMMARY-1" in chunk_prompts[2]
    assert "chunk notes" not in chunk_prompts[2]


@pytest.mark.asyncio
async def test_chunk_ceiling():
    gateway, provider = make_gateway(scripted())
    chunker = ContextChunker(gateway, chunk_size=1, max_chunks=2, compact_every=3)

    result = await chunker.execute(make_snapshot(styles=3, layout=2, animations=0))

    assert result.total_chunks == 5
    assert result.processed_chunks == 2
    assert result.unsent_chunks == 3
    assert len([p for _, p in provider.calls if p.startswith("Here is chunk")]) == 2
    assert result.summary == "SUMMARY-1"


@pytest.mark.asyncio
async def test_oversized_chunk_is_split_in_half():
    gateway, provider = make_gateway(
        scripted(chunk_reply=lambda model, prompt: ProviderHTTPError("request too large", 413))
    )
    chunker = ContextChunker(gateway, chunk_size=4, compact_every=3)

    result = await chunker.execute(make_snapshot(styles=4, layout=0, animations=0))

    assert result.split_chunks == 1
    assert result.processed_chunks == 1
    assert result.skipped_chunks == 0
    assert len([p for _, p in provider.calls if p.startswith("Here is a partial chunk")]) == 2


@pytest.mark.asyncio
async def test_chunk_skipped_when_halves_still_too_large():
    too_large = lambda model, prompt: ProviderHTTPError("request too large", 413)  # noqa: E731
    gateway, _ = make_gateway(scripted(chunk_reply=too_large, split_reply=too_large))
    chunker = ContextChunker(gateway, chunk_size=4, compact_every=3)

    result = await chunker.execute(make_snapshot(styles=4, layout=0, animations=0))

    assert result.skipped_chunks == 1
    assert result.processed_chunks == 0
    assert result.summary == "SUMMARY-1"


@pytest.mark.asyncio
async def test_single_item_chunk_is_skipped_without_splitting():
    gateway, provider = make_gateway(
        scripted(chunk_reply=lambda model, prompt: ProviderHTTPError("request too large", 413))
    )
    chunker = ContextChunker(gateway, chunk_size=1, compact_every=3)

    result = await chunker.execute(make_snapshot(styles=1, layout=0, animations=0))

    assert result.skipped_chunks == 1
    assert not any(p.startswith("Here is a partial chunk") for _, p in provider.calls)


@pytest.mark.asyncio
async def test_quota_exhaustion_is_not_treated_as_size():
    gateway, _ = make_gateway(
        scripted(chunk_reply=lambda model, prompt: ProviderHTTPError("quota exceeded", 429))
    )
    chunker = ContextChunker(gateway, chunk_size=4)

    with pytest.raises(CandidatesExhaustedError):
        await chunker.execute(make_snapshot(styles=4, layout=0, animations=0))


@pytest.mark.asyncio
async def test_fatal_error_propagates():
    gateway, _ = make_gateway(
        scripted(chunk_reply=lambda model, prompt: ProviderHTTPError("invalid api key", 401))
    )
    chunker = ContextChunker(gateway, chunk_size=4)

    with pytest.raises(ProviderFatalError):
        await chunker.execute(make_snapshot(styles=4, layout=0, animations=0))
