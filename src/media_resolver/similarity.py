"""Title similarity scoring.

Scores how well a catalog title matches what the user typed, in [0, 1].
Several signals are blended: whole-string edit distance, greedy word
alignment, a bonus for preserved word order, and penalties for length
mismatch and for short queries swallowed by a longer title. The weights and
thresholds are calibrated against the greedy word matcher below, so keep
the matcher greedy.
"""

from __future__ import annotations

import re
import unicodedata

from rapidfuzz.distance import Levenshtein

WORD_MATCH_FLOOR = 0.70
FUZZY_WORD_WEIGHT = 0.7
LENGTH_PENALTY_PER_WORD = 0.15
LENGTH_SLACK = 2
ORDER_BONUS = 0.10
SHORT_QUERY_WORDS = 2
SHORT_QUERY_CAP = 0.30
WEAK_MATCH_PENALTY = 0.15

_LEADING_ARTICLES = frozenset({"the", "a", "an"})

_FOLD = str.maketrans(
    {
        "‘": "'",
        "’": "'",
        "‛": "'",
        "′": "'",
        "‐": "-",
        "‑": "-",
        "‒": "-",
        "–": "-",
        "—": "-",
        "―": "-",
        "&": " and ",
    }
)


def normalize_title(text: str) -> str:
    """Reduce a title to lowercase words without punctuation.

    A single leading article is dropped when more words follow, so
    "The Matrix" and "Matrix" normalize identically.
    """
    text = unicodedata.normalize("NFKC", text).lower().translate(_FOLD)
    text = re.sub(r"'s\b", "", text)
    text = text.replace("-", " ")
    text = re.sub(r"[^\w\s]|_", "", text)
    words = text.split()
    if len(words) > 1 and words[0] in _LEADING_ARTICLES:
        words = words[1:]
    return " ".join(words)


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length; 1.0 for two empty strings."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def _align_words(query_words: list[str], candidate_words: list[str]) -> tuple[int, float, list[int]]:
    """Greedy one-to-one word alignment in query order.

    Returns (exact match count, sum of fuzzy match scores, candidate positions
    of the exact matches in query order).
    """
    used: set[int] = set()
    exact = 0
    fuzzy_total = 0.0
    exact_positions: list[int] = []

    for q_word in query_words:
        best_score = 0.0
        best_idx = -1
        for idx, c_word in enumerate(candidate_words):
            if idx in used:
                continue
            if q_word == c_word:
                best_score, best_idx = 1.0, idx
                break
            score = levenshtein_similarity(q_word, c_word)
            if score >= WORD_MATCH_FLOOR and score > best_score:
                best_score, best_idx = score, idx

        if best_idx < 0:
            continue
        used.add(best_idx)
        if best_score == 1.0:
            exact += 1
            exact_positions.append(best_idx)
        else:
            fuzzy_total += best_score

    return exact, fuzzy_total, exact_positions


def title_similarity(query: str, candidate: str) -> float:
    """
    Score how well candidate matches query.

    Directional: query is what the user meant, candidate is a catalog title.
    Pure and deterministic.
    """
    a = normalize_title(query)
    b = normalize_title(candidate)

    if not a:
        return 0.0
    if a == b:
        return 1.0

    lev = levenshtein_similarity(a, b)

    query_words = [w for w in a.split() if len(w) > 1]
    candidate_words = [w for w in b.split() if len(w) > 1]
    if not query_words:
        return 0.0

    exact, fuzzy_total, exact_positions = _align_words(query_words, candidate_words)
    word_ratio = (exact + fuzzy_total * FUZZY_WORD_WEIGHT) / len(query_words)

    word_diff = abs(len(candidate_words) - len(query_words))
    length_penalty = LENGTH_PENALTY_PER_WORD * (word_diff - LENGTH_SLACK) if word_diff > LENGTH_SLACK else 0.0

    order_bonus = 0.0
    if exact >= 2 and all(x <= y for x, y in zip(exact_positions, exact_positions[1:])):
        order_bonus = ORDER_BONUS

    if len(query_words) <= SHORT_QUERY_WORDS:
        if len(candidate_words) > len(query_words) + 1 and exact < len(query_words):
            return SHORT_QUERY_CAP
        score = 0.6 * word_ratio + 0.3 * lev + order_bonus - length_penalty
    else:
        score = 0.5 * word_ratio + 0.35 * lev + order_bonus - length_penalty

    if exact < len(query_words) / 2:
        score -= WEAK_MATCH_PENALTY

    return max(0.0, min(1.0, score))


def best_title_similarity(query: str, title: str, original_title: str | None = None) -> float:
    """Similarity against a title and its original-language title, whichever is higher."""
    score = title_similarity(query, title)
    if original_title and original_title != title:
        score = max(score, title_similarity(query, original_title))
    return score


## Tests


def test_normalize_title():
    assert normalize_title("The Matrix") == "matrix"
    assert normalize_title("Spider-Man: Homecoming") == "spider man homecoming"
    assert normalize_title("Ocean’s Eleven") == "ocean eleven"
    assert normalize_title("Fast & Furious") == "fast and furious"
    assert normalize_title("The") == "the"
    assert normalize_title("  !!  ") == ""


def test_exact_after_normalization():
    assert title_similarity("the matrix", "The Matrix") == 1.0
    assert title_similarity("Matrix", "The Matrix") == 1.0
    assert title_similarity("The Matrix", "Matrix") == 1.0


def test_empty_query_scores_zero():
    assert title_similarity("", "Anything") == 0.0
    assert title_similarity("...", "Anything") == 0.0


def test_short_query_cap():
    assert title_similarity("Eternity", "Eternity in the Universe of Forever") <= 0.3
    # Cap fires when a query word is not matched exactly
    assert title_similarity("Eternal", "Eternity in the Universe of Forever") == SHORT_QUERY_CAP


def test_order_bonus_applies_to_franchise_subtitle():
    score = title_similarity("Spider-Man", "Spider-Man: Homecoming")
    assert 0.8 < score < 0.9


def test_unrelated_titles_score_low():
    assert title_similarity("Rental Family", "Rent-a-Girlfriend") < 0.8
    assert title_similarity("Inception", "Interstellar") < 0.5


def test_original_title_considered():
    assert best_title_similarity("Parasite", "Parasite", "기생충") == 1.0
    assert best_title_similarity("Gisaengchung", "Parasite", "Gisaengchung") == 1.0
