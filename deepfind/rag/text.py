from __future__ import annotations

import unicodedata
from itertools import groupby
from typing import List, Tuple


def _is_token_char(ch: str) -> bool:
    # letters (with their combining marks), decimal digits, underscore
    if ch == "_" or ch.isalpha() or ch.isdecimal():
        return True
    return unicodedata.category(ch).startswith("M")


def tokenize(text: str) -> Tuple[List[str], List[str]]:
    """Split text into maximal runs of letters, digits and underscores.

    Returns two parallel lists: tokens in their original casing and the
    same tokens lowercased. Every other character is a separator. There is
    no word segmentation, so a contiguous CJK run is a single token.
    """
    originals: List[str] = []
    lowers: List[str] = []
    for is_token, run in groupby(text or "", key=_is_token_char):
        if not is_token:
            continue
        token = "".join(run)
        originals.append(token)
        lowers.append(token.lower())
    return originals, lowers


def count_words(text: str) -> int:
    return len((text or "").split())


def is_id_token(token: str) -> bool:
    """Heuristic for names, codes and ids: has a digit, or all its letters are uppercase."""
    has_digit = any(ch.isdecimal() for ch in token)
    letters = "".join(ch for ch in token if ch.isalpha())
    if has_digit:
        return True
    return bool(letters) and letters == letters.upper()
