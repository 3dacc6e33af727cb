from __future__ import annotations

import re
from typing import FrozenSet, List

# anything that is not latin a-z or 0-9 once the query is lowercased
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

ENGLISH_STOP_WORDS: FrozenSet[str] = frozenset({
    # articles
    "a", "an", "the",
    # conjunctions
    "and", "but", "or", "nor", "for", "yet", "so", "as", "because", "however",
    "though", "although", "until", "while",
    # prepositions
    "in", "on", "at", "to", "with", "by", "from", "up", "down", "over", "under",
    "into", "onto", "upon", "of", "off",
    # pronouns
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
    "my", "your", "his", "its", "our", "their", "this", "that", "these", "those",
    # be verbs
    "am", "is", "are", "was", "were", "be", "been", "being",
    # common verbs & modals
    "do", "does", "did", "have", "has", "had", "will", "would", "should", "could",
    "can", "might", "must", "shall",
    # question words
    "what", "when", "where", "why", "how", "which", "who", "whom",
    # quantities
    "all", "any", "both", "each", "few", "many", "some", "one", "two", "three",
    "four", "five", "first", "second", "third", "once", "twice",
    # filler
    "please", "about", "then", "there", "here", "just", "very", "really", "also",
    "too", "again", "still", "such", "like",
    # query verbs
    "tell", "explain", "describe", "write", "know", "everything", "give",
})

STOP_WORDS_BY_LANG = {"en": ENGLISH_STOP_WORDS}


def detect_lang(text: str) -> str:
    # Always English. Other languages would plug in here with their own stop-word set.
    return "en"


def get_query_keywords(query: str) -> List[str]:
    """Lowercased query words with punctuation and stop-words removed.

    Non-ASCII letters are stripped along with punctuation. Word order is kept
    and duplicates are not removed.
    """
    lower = (query or "").lower()
    stop = STOP_WORDS_BY_LANG.get(detect_lang(lower), ENGLISH_STOP_WORDS)

    cleaned = _NON_ALNUM.sub(" ", lower)
    return [w for w in cleaned.split() if w and w not in stop]
