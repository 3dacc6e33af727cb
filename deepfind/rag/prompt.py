from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from deepfind.rag.text import count_words
from deepfind.rag.types import DocumentChunk

SEPARATOR = "\n\n---\n\n"

SYSTEM_RULES = """You are a careful assistant answering questions about the user's own documents.

Rules:
1) Use ONLY the provided context blocks.
2) If the context does not contain the answer, say you don't know based on the provided documents.
3) Do NOT use general knowledge. Do NOT guess. Do NOT invent.
4) When you use a block, mention its file and page.
"""


def estimate_tokens(text: str) -> int:
    # blend of word-based and char-based estimates, padded by 10%
    words = count_words(text)
    return round(1.1 * max(1.3 * words, len(text) / 4))


@dataclass
class ContextWindow:
    text: str = ""
    chunks: List[DocumentChunk] = field(default_factory=list)
    tokens: int = 0

    @property
    def empty(self) -> bool:
        return not self.chunks


def _format_block(rank: int, c: DocumentChunk) -> str:
    page_str = f", page={c.page_number}" if c.page_number is not None else ""
    return (
        f"[{rank}] source={c.file_path}{page_str}, chunk_id={c.id}, seq={c.chunk_number}\n"
        f"{c.content}"
    )


def assemble_context(chunks: Sequence[DocumentChunk], token_budget: int) -> ContextWindow:
    """Pack ranked chunks into the budget; the first chunk that does not fit ends the window."""
    window = ContextWindow()
    blocks: List[str] = []

    for c in chunks:
        tokens = estimate_tokens(c.content)
        if window.tokens + tokens > token_budget:
            break
        window.tokens += tokens
        window.chunks.append(c)
        blocks.append(_format_block(len(blocks) + 1, c))

    window.text = SEPARATOR.join(blocks)
    return window


def build(question: str, context: str) -> Tuple[str, str]:
    question = (question or "").strip()

    user_prompt = f"""Based on the following context from the user's documents, answer the question.

CONTEXT:
{context if context else "(no context)"}

QUESTION:
{question}

Answer helpfully and accurately using only the information in the context above.
"""
    return SYSTEM_RULES, user_prompt
