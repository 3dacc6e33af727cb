from __future__ import annotations

import math
from typing import List, Sequence

from deepfind.rag.text import is_id_token, tokenize
from deepfind.rag.types import DocumentChunk, ScoredChunk

PHRASE_WEIGHT = 2.0
ID_WEIGHT = 1.5


def lexical_score(query: str, text: str) -> float:
    """Score text against query.

    overlap + 2.0 * phrase_bonus + 1.5 * id_hits - log1p(len(text tokens)) / 10
    """
    q_orig, q = tokenize(query)
    _, t = tokenize(text)
    tset = set(t)

    overlap = float(sum(1 for w in q if w in tset))
    if not q or not t:
        return overlap

    # substring on the space-joined token streams
    phrase_bonus = 1.0 if " ".join(q) in " ".join(t) else 0.0

    # id/code emphasis decided on original casing, matched lowercased
    id_hits = float(sum(1 for w_orig, w in zip(q_orig, q) if is_id_token(w_orig) and w in tset))

    length_penalty = math.log1p(len(t)) / 10.0

    return overlap + PHRASE_WEIGHT * phrase_bonus + ID_WEIGHT * id_hits - length_penalty


def score_chunks(query: str, chunks: Sequence[DocumentChunk]) -> List[ScoredChunk]:
    scored = [ScoredChunk(c, lexical_score(query, c.content)) for c in chunks]
    # stable: equal scores keep their input order
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored


def rerank_lexical(query: str, chunks: Sequence[DocumentChunk]) -> List[DocumentChunk]:
    return [s.chunk for s in score_chunks(query, chunks)]
