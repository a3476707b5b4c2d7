"""Turn a spoken sentence into a draft transaction.

The grammar is small:

* type keywords: ``received``, ``earned``, ``got``, ``salary``, ``income``
  mark income; ``spent``, ``paid``, ``bought``, ``expense`` mark an expense.
  Without either, the draft is an expense.
* amount: the first number in the text (``1,500`` and ``12.50`` both work).
* category: the words after ``on``/``for``/``from``/``at``, matched against the
  names of categories of the draft's type, case-insensitively and allowing
  one typo. Any category name appearing anywhere in the text is the fallback.
* date: ``today`` (default), ``yesterday``, ``day before yesterday`` or
  ``<n> days ago``.

Nothing here touches storage; callers pass the categories in.
"""

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from models import Category, TransactionType


INCOME_WORDS = ("received", "earned", "got", "salary", "income")
EXPENSE_WORDS = ("spent", "spend", "paid", "bought", "expense")
CATEGORY_MARKERS = ("on", "for", "from", "at")

_AMOUNT_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")
_DAYS_AGO_RE = re.compile(r"\b(\d+)\s+days?\s+ago\b")
_WORD_RE = re.compile(r"[a-z]+")


@dataclass
class VoiceDraft:
    type: TransactionType
    amount: float
    description: str
    category_id: Optional[int]
    date: date
    keywords: list[str] = field(default_factory=list)


def _detect_type(words: list[str]) -> tuple[TransactionType, Optional[str]]:
    for word in words:
        if word in INCOME_WORDS:
            return TransactionType.income, word
        if word in EXPENSE_WORDS:
            return TransactionType.expense, word
    return TransactionType.expense, None


def _detect_amount(text: str) -> float:
    match = _AMOUNT_RE.search(text)
    if not match:
        raise ValueError("No amount found in voice input")
    amount = float(match.group(0).replace(",", ""))
    if amount <= 0:
        raise ValueError("Amount must be positive")
    return amount


def _detect_date(text: str, today: date) -> tuple[date, Optional[str]]:
    if "day before yesterday" in text:
        return today - timedelta(days=2), "day before yesterday"
    if "yesterday" in text:
        return today - timedelta(days=1), "yesterday"
    match = _DAYS_AGO_RE.search(text)
    if match:
        return today - timedelta(days=int(match.group(1))), match.group(0)
    return today, "today" if "today" in text else None


def _closest(candidate: str, categories: list[Category]) -> Optional[Category]:
    best: Optional[Category] = None
    best_distance: Optional[int] = None
    for category in categories:
        name = category.name.strip().lower()
        dist = int(Levenshtein.distance(candidate, name))
        if best_distance is None or dist < best_distance:
            best, best_distance = category, dist
    if best_distance is not None and best_distance <= 1:
        return best
    return None


def _detect_category(
    words: list[str], categories: list[Category]
) -> tuple[Optional[Category], Optional[str]]:
    if not categories:
        return None, None
    for idx, word in enumerate(words[:-1]):
        if word not in CATEGORY_MARKERS:
            continue
        nxt = words[idx + 1]
        # "on the groceries", "for my dinner"
        if nxt in ("the", "my", "a", "an") and idx + 2 < len(words):
            nxt = words[idx + 2]
        match = _closest(nxt, categories)
        if match:
            return match, nxt
    for word in words:
        match = _closest(word, categories)
        if match and len(word) > 3:
            return match, word
    return None, None


def parse_voice_input(
    text: str,
    categories: Iterable[Category],
    *,
    today: Optional[date] = None,
) -> VoiceDraft:
    clean = " ".join(text.split())
    if not clean:
        raise ValueError("Voice input is empty")
    today = today or date.today()
    lowered = clean.lower()
    words = _WORD_RE.findall(lowered)

    txn_type, type_word = _detect_type(words)
    amount = _detect_amount(_DAYS_AGO_RE.sub(" ", lowered))
    when, date_word = _detect_date(lowered, today)
    candidates = [c for c in categories if c.type == txn_type]
    category, category_word = _detect_category(words, candidates)

    keywords = [kw for kw in (type_word, category_word, date_word) if kw]
    return VoiceDraft(
        type=txn_type,
        amount=amount,
        description=clean[0].upper() + clean[1:],
        category_id=category.id if category else None,
        date=when,
        keywords=keywords,
    )
