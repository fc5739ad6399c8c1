from __future__ import annotations

"""Chunking behavior tests."""

from src.loaders.chunking import Chunker, ChunkerConfig, chunk_text
from src.rag.types import Article


def test_short_text_is_single_chunk() -> None:
    text = "Markets rallied on Friday."

    assert chunk_text(text, max_size=1000, overlap=100) == [text]


def test_long_text_respects_bounds_and_overlap() -> None:
    text = "word " * 600

    chunks = chunk_text(text, max_size=1000, overlap=100, min_size=100)

    assert len(chunks) > 1
    assert all(100 <= len(chunk) <= 1000 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        assert previous[-100:] == current[:100]


def test_paragraph_break_preferred_within_lookback() -> None:
    text = "A" * 850 + "\n\n" + "B" * 900

    chunks = chunk_text(text, max_size=1000, overlap=0, min_size=10)

    assert chunks[0] == "A" * 850 + "\n\n"


def test_distant_break_keeps_naive_boundary() -> None:
    text = "A" * 500 + "\n\n" + "B" * 1500

    chunks = chunk_text(text, max_size=1000, overlap=0, min_size=10)

    assert chunks[0] == text[:1000]


def test_short_trailing_window_is_dropped() -> None:
    text = "x" * 1050

    chunks = chunk_text(text, max_size=1000, overlap=0, min_size=100)

    assert chunks == ["x" * 1000]


def test_overlap_not_smaller_than_window_still_progresses() -> None:
    text = "y" * 2500

    chunks = chunk_text(text, max_size=1000, overlap=1000, min_size=1)

    assert [len(chunk) for chunk in chunks] == [1000, 1000, 500]


def test_process_documents_tags_and_merges_metadata() -> None:
    chunker = Chunker(ChunkerConfig(max_chunk_size=300, overlap=30, min_chunk_size=50))
    articles = [
        Article(
            id="ai-1",
            title="AI regulation",
            content="Lawmakers debated new rules. " * 40,
            source="Tech Daily",
            link="https://example.com/ai",
            metadata={"doc_id": "spoofed", "category": "tech"},
        ),
        Article(title="", content="   "),
        Article(title="", content="Short wire report about the harbour reopening."),
    ]

    chunks = chunker.process_documents(articles)

    first_doc = [chunk for chunk in chunks if chunk.metadata["doc_id"] == "ai-1"]
    assert len(first_doc) > 1
    assert [chunk.metadata["chunk_index"] for chunk in first_doc] == list(range(len(first_doc)))
    assert {chunk.metadata["total_chunks"] for chunk in first_doc} == {len(first_doc)}
    assert first_doc[0].metadata["category"] == "tech"
    assert first_doc[0].metadata["source"] == "Tech Daily"
    assert first_doc[0].metadata["link"] == "https://example.com/ai"
    assert first_doc[0].metadata["doc_title"] == "AI regulation"

    fallback = chunks[-1]
    assert fallback.metadata["doc_id"] == "2"
    assert fallback.metadata["doc_title"] == "Document 2"
    assert fallback.metadata["source"] == "unknown"
    assert fallback.metadata["total_chunks"] == 1
    assert not any(chunk.metadata["doc_id"] == "1" for chunk in chunks)


def test_article_shorter_than_limit_is_one_chunk() -> None:
    chunker = Chunker(ChunkerConfig(max_chunk_size=1000))
    article = Article(title="Three", content="Sentence one. Sentence two. Sentence three.")

    chunks = chunker.process_documents([article])

    assert len(chunks) == 1
    assert chunks[0].text == article.content
    assert chunks[0].metadata["chunk_index"] == 0
    assert chunks[0].metadata["total_chunks"] == 1
