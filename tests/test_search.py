import uuid

import pytest

from promptrag.errors import EmbeddingDimensionError, InvalidInputError
from promptrag.models import Embedding
from promptrag.services.search import cosine_distances

from conftest import DIM, TENANT


async def _store_chunks(db, embedder, prompt_id, texts, tenant=TENANT):
    vectors = await embedder.embed_batch(texts)
    async with db.session() as session:
        session.add_all(
            Embedding(domain_id=tenant, prompt_id=prompt_id, chunk_id=f"prompt_{i}", text=t, vector=v)
            for i, (t, v) in enumerate(zip(texts, vectors))
        )
        await session.commit()


SENTENCES = [f"Sentence number {i} about topic {i % 3}." for i in range(12)]


async def test_similarity_search_orders_limits_and_thresholds(db, embedder, search, make_prompt):
    pid = await make_prompt("body")
    await _store_chunks(db, embedder, pid, SENTENCES)

    results = await search.similarity_search(TENANT, "topic query", top_k=5, min_similarity=-1.0)
    assert len(results) == 5
    scores = [r.similarity_score for r in results]
    assert scores == sorted(scores, reverse=True)

    filtered = await search.similarity_search(TENANT, "topic query", top_k=5, min_similarity=0.0)
    assert len(filtered) <= 5
    assert all(r.similarity_score >= 0.0 for r in filtered)


async def test_exact_text_query_ranks_first_with_score_one(db, embedder, search, make_prompt):
    pid = await make_prompt("body", name="Stats")
    await _store_chunks(db, embedder, pid, SENTENCES)

    results = await search.similarity_search(TENANT, SENTENCES[4], top_k=3)
    assert results[0].text == SENTENCES[4]
    assert results[0].similarity_score == pytest.approx(1.0)
    assert results[0].prompt_name == "Stats"


async def test_threshold_is_applied_to_the_top_k_rows(db, embedder, search, make_prompt):
    pid = await make_prompt("body")
    await _store_chunks(db, embedder, pid, SENTENCES)

    everything = await search.similarity_search(TENANT, "q", top_k=len(SENTENCES), min_similarity=-1.0)
    third = everything[2].similarity_score

    limited = await search.similarity_search(TENANT, "q", top_k=2, min_similarity=third)
    assert [r.embedding_id for r in limited] == [r.embedding_id for r in everything[:2]]

    second = everything[1].similarity_score
    cut = await search.similarity_search(TENANT, "q", top_k=4, min_similarity=second)
    assert [r.embedding_id for r in cut] == [r.embedding_id for r in everything[:2]]

    above_all = everything[0].similarity_score + 0.01
    assert await search.similarity_search(TENANT, "q", top_k=4, min_similarity=above_all) == []


async def test_search_is_scoped_by_tenant_and_prompt(db, embedder, search, make_prompt):
    p1 = await make_prompt("one")
    p2 = await make_prompt("two")
    other = await make_prompt("three", tenant="tenant-b")
    await _store_chunks(db, embedder, p1, ["alpha text"])
    await _store_chunks(db, embedder, p2, ["beta text"])
    await _store_chunks(db, embedder, other, ["alpha text"], tenant="tenant-b")

    all_results = await search.similarity_search(TENANT, "alpha text", top_k=10, min_similarity=-1.0)
    assert {r.prompt_id for r in all_results} == {p1, p2}

    scoped = await search.similarity_search(TENANT, "alpha text", top_k=10, min_similarity=-1.0, prompt_id=p2)
    assert [r.prompt_id for r in scoped] == [p2]

    assert await search.similarity_search("tenant-c", "alpha text", top_k=10, min_similarity=-1.0) == []


async def test_empty_query_and_tenant_are_rejected(search):
    with pytest.raises(InvalidInputError):
        await search.similarity_search(TENANT, "   ")
    with pytest.raises(InvalidInputError):
        await search.similarity_search("", "query")


async def test_find_related_prompts_groups_by_prompt(db, embedder, search, make_prompt):
    p1 = await make_prompt("one", name="First")
    p2 = await make_prompt("two", name="Second")
    long_text = "x" * 250
    await _store_chunks(db, embedder, p1, SENTENCES[:6] + [long_text])
    await _store_chunks(db, embedder, p2, SENTENCES[6:])

    related = await search.find_related_prompts(TENANT, long_text, top_k=5, min_similarity=-1.0)
    ids = [r.prompt_id for r in related]
    assert len(ids) == len(set(ids)) == 2
    assert related[0].prompt_id == p1
    assert related[0].max_similarity == pytest.approx(1.0)
    assert related[0].best_chunk == "x" * 200 + "..."
    assert related[0].chunk_count == 7
    assert related[1].chunk_count == 6


async def test_find_related_prompts_counts_only_passing_chunks(db, embedder, search, make_prompt):
    pid = await make_prompt("one")
    await _store_chunks(db, embedder, pid, SENTENCES)
    query = SENTENCES[0]

    scored = await search.similarity_search(TENANT, query, top_k=len(SENTENCES), min_similarity=-1.0)
    threshold = scored[3].similarity_score
    expected = sum(1 for r in scored if r.similarity_score >= threshold)

    related = await search.find_related_prompts(TENANT, query, top_k=5, min_similarity=threshold)
    assert len(related) == 1
    assert related[0].chunk_count == expected
    assert related[0].best_chunk == SENTENCES[0]


async def test_get_context_formats_scores(db, embedder, search, make_prompt):
    pid = await make_prompt("one")
    await _store_chunks(db, embedder, pid, ["first chunk", "second chunk"])

    context = await search.get_context(TENANT, pid, "first chunk", max_chunks=1)
    assert context == "[Score: 1.000] first chunk"

    both = await search.get_context(TENANT, pid, "first chunk", max_chunks=5)
    assert both.startswith("[Score: 1.000] first chunk\n\n[Score: ")


async def test_get_context_empty_without_chunks(search, make_prompt):
    pid = await make_prompt("one")
    assert await search.get_context(TENANT, pid, "anything") == ""


async def test_get_stats(db, embedder, search, make_prompt):
    p1 = await make_prompt("one")
    p2 = await make_prompt("two")
    await _store_chunks(db, embedder, p1, ["abcd", "abcdef"])
    await _store_chunks(db, embedder, p2, ["ab"])

    stats = await search.get_stats(TENANT)
    assert stats.total_embeddings == 3
    assert stats.prompts_with_embeddings == 2
    assert stats.average_chunk_length == 4

    empty = await search.get_stats("nobody")
    assert empty.total_embeddings == 0
    assert empty.average_chunk_length == 0


def test_cosine_distances_checks_dimensions():
    with pytest.raises(EmbeddingDimensionError):
        cosine_distances([1.0] * DIM, [[1.0] * (DIM - 1)], DIM)
    d = cosine_distances([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]], 2)
    assert list(d) == pytest.approx([0.0, 1.0, 1.0])
