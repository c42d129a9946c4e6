"""
Quick similarity score between two narratives, no model involved.

Both texts are lowercased, stripped of punctuation and split on whitespace.
Words of three characters or fewer and a fixed set of filler/persona words are
dropped. The score is the Jaccard similarity of the remaining word sets, scaled
to 0-100 and rounded half-up. Two texts without any significant word score 0.

Used for instant UI feedback and as the degraded path of the duplicate check.
"""

import math

from ..core.text import significant_tokens


def quick_score(text_a: str, text_b: str) -> int:
    words_a = significant_tokens(text_a)
    words_b = significant_tokens(text_b)

    total = len(words_a | words_b)
    if total == 0:
        return 0

    common = len(words_a & words_b)
    return int(math.floor(100 * common / total + 0.5))
