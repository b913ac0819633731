"""Turning fetched pages into comparable text, and scoring two texts.

Both pieces sit behind small protocols so the analysis service can be given
any extractor or scorer; the defaults mirror what the archive comparison has
always used: markup with scripts, styles and comments stripped, compared by
the Sørensen–Dice coefficient over character bigrams.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Protocol

from bs4 import BeautifulSoup, Comment

_WHITESPACE = re.compile(r"\s+")


class TextExtractor(Protocol):
    def extract(self, html: str) -> str: ...


class SimilarityOracle(Protocol):
    def score(self, first: str, second: str) -> float: ...


class HtmlTextExtractor:
    """Drops ``<script>``/``<style>`` elements and comments, collapses whitespace."""

    def extract(self, html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
            comment.extract()
        return _WHITESPACE.sub(" ", str(soup)).strip()


def _bigrams(text: str) -> Counter[str]:
    return Counter(text[i : i + 2] for i in range(len(text) - 1))


class DiceSimilarity:
    """Sørensen–Dice coefficient over character bigrams, in ``[0, 1]``.

    Whitespace is ignored.  Identical strings score 1.0; anything shorter
    than two characters (after whitespace removal) scores 0.0.
    """

    def score(self, first: str, second: str) -> float:
        first = _WHITESPACE.sub("", first)
        second = _WHITESPACE.sub("", second)
        if first == second:
            return 1.0
        if len(first) < 2 or len(second) < 2:
            return 0.0
        overlap = sum((_bigrams(first) & _bigrams(second)).values())
        return 2.0 * overlap / (len(first) + len(second) - 2)
