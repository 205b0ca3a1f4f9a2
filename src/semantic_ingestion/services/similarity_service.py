"""
Similarity graph computation.

Pure functions over embedded chunks. They run inside the graph worker
process, so they must not touch settings, the network or the event loop.
"""

import math
from typing import Iterable, List, Optional, Sequence

import numpy as np

from semantic_ingestion.models.chunk import ChunkMetadata
from semantic_ingestion.models.graph import EmbeddedChunk, GraphNode, SimilarityEdge


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, clamped to [-1, 1].

    Returns 0 when either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


def determine_relationship(similarity: float) -> str:
    if similarity > 0.8:
        return "strong"
    if similarity > 0.6:
        return "similar"
    if similarity > 0.4:
        return "related"
    return "weak"


def calculate_significance(metadata: Optional[ChunkMetadata]) -> float:
    """Node weight: 1, plus log10(tokens + 1) when known, plus 0.5 under a heading."""
    if metadata is None:
        return 0.0
    score = 1.0
    if metadata.num_tokens:
        score += math.log10(metadata.num_tokens + 1)
    if metadata.headings:
        score += 0.5
    return score


def _unit_rows(vectors: List[List[float]]) -> np.ndarray:
    arr = np.array(vectors, dtype=np.float64)
    norms = np.linalg.norm(arr, axis=1)
    # Zero vectors stay zero and score 0 against everything
    norms[norms == 0] = 1.0
    return arr / norms[:, np.newaxis]


def calculate_similarities(
    embeddings: Sequence[EmbeddedChunk],
    top_k: int,
    min_similarity: float = 0.0,
    source_ids: Optional[Iterable[str]] = None,
) -> List[SimilarityEdge]:
    """
    Top-K most similar neighbours for every source chunk.

    Candidates must score strictly above ``min_similarity``. Each source's
    candidates are sorted by descending similarity (ties keep input order)
    before truncation to ``top_k``. Chunks without an embedding are skipped.

    Args:
        embeddings: Corpus of embedded chunks
        top_k: Maximum outgoing edges per source
        min_similarity: Exclusive lower bound on kept similarities
        source_ids: Only emit edges from these chunks (every chunk when None)

    Raises:
        ValueError: If top_k is not positive or embeddings differ in dimension
    """
    if top_k <= 0:
        raise ValueError(f"top_k must be > 0, got {top_k}")

    embedded = [c for c in embeddings if c.embedding]
    if len(embedded) < 2:
        return []

    dimensions = {len(c.embedding) for c in embedded}
    if len(dimensions) > 1:
        raise ValueError(f"Vector length mismatch: found dimensions {sorted(dimensions)}")

    if source_ids is None:
        sources = list(range(len(embedded)))
    else:
        wanted = set(source_ids)
        sources = [i for i, c in enumerate(embedded) if c.id in wanted]
    if not sources:
        return []

    unit = _unit_rows([c.embedding for c in embedded])
    # rows: sources, columns: whole corpus
    similarity = np.clip(unit[sources] @ unit.T, -1.0, 1.0)

    edges: List[SimilarityEdge] = []
    for row_index, i in enumerate(sources):
        row = similarity[row_index]
        candidates = np.flatnonzero(row > min_similarity)
        candidates = candidates[candidates != i]
        if candidates.size == 0:
            continue
        ranked = candidates[np.argsort(-row[candidates], kind="stable")][:top_k]
        source_id = embedded[i].id
        for j in ranked:
            score = float(row[j])
            edges.append(
                SimilarityEdge(
                    source=source_id,
                    target=embedded[j].id,
                    similarity=score,
                    relationship=determine_relationship(score),
                )
            )
    return edges


def build_graph(embeddings: Sequence[EmbeddedChunk]) -> List[GraphNode]:
    """One node per embedded chunk, labelled by first keyword and grouped by first topic."""
    nodes = []
    for chunk in embeddings:
        if not chunk.embedding:
            continue
        metadata = chunk.metadata
        nodes.append(
            GraphNode(
                id=chunk.id,
                label=(metadata.keywords[0] if metadata and metadata.keywords else chunk.id[:8]),
                group=(metadata.topics[0] if metadata and metadata.topics else "default"),
                significance=calculate_significance(metadata),
            )
        )
    return nodes
