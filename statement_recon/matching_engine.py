"""
Match scoring between bank transactions and open ledger entries.

Scores are additive bonuses, not normalized to 100:
1. Amount (exact within tolerance, or percentage-close)
2. Date proximity to the entry's due date
3. Description keyword overlap
4. Status bonus for entries still awaiting payment
"""
import re
import unicodedata
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .config import config, MatchingConfig
from .models import (
    BankTransaction, EntryTable, LedgerEntry, LedgerStatus,
    MatchConfidence, ReconciliationMatch
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def normalize_for_match(text: str) -> List[str]:
    """Lowercase, strip accents, keep alphanumerics and drop words of 2 chars or less."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _NON_ALNUM_RE.sub(" ", stripped)
    return [word for word in cleaned.split() if len(word) > 2]


def _format_pct(value: Decimal) -> str:
    return f"{float(value) * 100:.1f}"


class MatchScorer:
    """
    Deterministic scorer for (transaction, candidate) pairs.

    The scorer holds no state beyond its configuration; the same inputs
    always yield the same score and reasons.
    """

    def __init__(self, cfg: Optional[MatchingConfig] = None):
        self.config = cfg or config.matching

    def score(self, transaction: BankTransaction, entry: LedgerEntry) -> Tuple[int, List[str]]:
        """Score a candidate entry against a transaction."""
        score = 0
        reasons: List[str] = []

        for points, reason in (
            self._amount_score(transaction, entry),
            self._date_score(transaction, entry),
            self._description_score(transaction, entry),
            self._status_score(entry),
        ):
            score += points
            if reason:
                reasons.append(reason)

        return score, reasons

    def confidence_for(self, score: int) -> MatchConfidence:
        if score >= self.config.high_confidence_score:
            return MatchConfidence.HIGH
        if score >= self.config.medium_confidence_score:
            return MatchConfidence.MEDIUM
        if score >= self.config.min_match_score:
            return MatchConfidence.LOW
        return MatchConfidence.NONE

    def suggest_matches(
        self,
        transaction: BankTransaction,
        candidates: Iterable[LedgerEntry]
    ) -> List[ReconciliationMatch]:
        """
        Rank candidates for a transaction.

        Only entries from the table matching the transaction's direction are
        scored (credits against receivables, debits against payables), and
        only those reaching the minimum score are kept.
        """
        table = EntryTable.for_class(transaction.type)
        matches: List[ReconciliationMatch] = []

        for entry in candidates:
            if entry.table is not table:
                continue

            score, reasons = self.score(transaction, entry)
            if score < self.config.min_match_score:
                continue

            matches.append(ReconciliationMatch(
                entry_id=entry.id,
                entry_table=entry.table,
                description=entry.description,
                amount=entry.amount,
                due_date=entry.due_date,
                status=entry.status,
                category=entry.category,
                score=score,
                confidence=self.confidence_for(score),
                match_reasons=reasons,
            ))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:self.config.max_suggestions]

    def _amount_score(self, transaction: BankTransaction, entry: LedgerEntry) -> Tuple[int, Optional[str]]:
        tx_amount = transaction.absolute_amount
        entry_amount = abs(entry.amount)
        diff = abs(tx_amount - entry_amount)

        if diff <= self.config.amount_tolerance:
            return self.config.weight_exact_amount, "Valor exato"

        pct_diff = diff / entry_amount if entry_amount > 0 else Decimal("1")
        if pct_diff <= self.config.close_amount_pct:
            return self.config.weight_close_amount, f"Valor próximo ({_format_pct(pct_diff)}% diferença)"
        if pct_diff <= self.config.similar_amount_pct:
            return self.config.weight_similar_amount, f"Valor similar ({_format_pct(pct_diff)}% diferença)"

        return 0, None

    def _date_score(self, transaction: BankTransaction, entry: LedgerEntry) -> Tuple[int, Optional[str]]:
        if entry.due_date is None:
            return 0, None

        days_diff = abs((transaction.transaction_date - entry.due_date).days)
        if days_diff > self.config.date_window_days:
            return 0, None

        points = max(0, self.config.weight_date - days_diff * self.config.date_decay_per_day)
        if days_diff <= 1:
            return points, "Data coincidente"
        return points, f"Data próxima ({days_diff} dias)"

    def _description_score(self, transaction: BankTransaction, entry: LedgerEntry) -> Tuple[int, Optional[str]]:
        entry_words = set(normalize_for_match(entry.description))
        overlap = []
        for word in normalize_for_match(transaction.description):
            if word in entry_words and word not in overlap:
                overlap.append(word)

        if not overlap:
            return 0, None

        points = min(
            self.config.weight_description,
            len(overlap) * self.config.description_points_per_token
        )
        return points, f"Descrição similar ({', '.join(overlap)})"

    def _status_score(self, entry: LedgerEntry) -> Tuple[int, Optional[str]]:
        if entry.status in (LedgerStatus.PENDING, LedgerStatus.PARTIAL):
            return self.config.weight_status_bonus, "Pagamento pendente"
        return 0, None
