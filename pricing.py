"""
Per-lesson fee calculation.

A subject's price is chosen from an ordered list of tiers keyed by the number
of students in the lesson. Lookup order for a subject is: the tutor's own
override table, then the default table, then a flat rate per student.
"""

from typing import Dict, List, Mapping, Optional, Sequence

from schemas import PricingTier, SubjectPricing

FLAT_RATE_PER_STUDENT = 5


def _tiers(*prices: float) -> List[PricingTier]:
    return [PricingTier(min_students=i + 1, price=p) for i, p in enumerate(prices)]


DEFAULT_PRICING: List[SubjectPricing] = [
    SubjectPricing(subject="İngilis dili", tiers=_tiers(6, 8, 10)),
    SubjectPricing(subject="SAT", tiers=_tiers(8, 10, 12)),
    SubjectPricing(subject="IELTS", tiers=_tiers(8, 10, 12)),
    SubjectPricing(subject="Speaking", tiers=_tiers(3, 4, 5, 6, 7, 8)),
    SubjectPricing(subject="Kids", tiers=_tiers(6, 8, 10)),
]

SUBJECTS = [p.subject for p in DEFAULT_PRICING]


def _key(subject: str) -> str:
    return (subject or "").strip().lower()


def calculate_student_count(student_names: Optional[str]) -> int:
    if not student_names or not student_names.strip():
        return 0
    return len([name for name in student_names.split(",") if name.strip()])


def select_tier(tiers: Sequence[PricingTier], student_count: int) -> PricingTier:
    # The first tier is a floor: a count below every threshold still gets it.
    selected = tiers[0]
    for tier in tiers:
        if student_count >= tier.min_students:
            selected = tier
        else:
            break
    return selected


def default_subject_tiers() -> Dict[str, List[PricingTier]]:
    """Fresh copy of the default table, used to seed a tutor's override editor."""
    return {p.subject: [t.model_copy() for t in p.tiers] for p in DEFAULT_PRICING}


class PriceCalculator:
    """
    Resolves the fee for one lesson.

    ``overrides`` maps a tutor id to that tutor's ``{subject: tiers}`` table.
    Subjects are matched case-insensitively everywhere.
    """

    def __init__(self, table: Sequence[SubjectPricing] = DEFAULT_PRICING,
                 overrides: Optional[Mapping[str, Mapping[str, Sequence[PricingTier]]]] = None):
        self._table = {_key(p.subject): list(p.tiers) for p in table}
        self._overrides: Dict[str, Dict[str, List[PricingTier]]] = {}
        for tutor_id, subjects in (overrides or {}).items():
            self.set_override(tutor_id, subjects)

    def set_override(self, tutor_id: str, subjects: Mapping[str, Sequence[PricingTier]]) -> None:
        self._overrides[tutor_id] = {_key(s): list(tiers) for s, tiers in subjects.items()}

    def tiers_for(self, subject: str, tutor_id: Optional[str] = None) -> Optional[List[PricingTier]]:
        if tutor_id is not None:
            tiers = self._overrides.get(tutor_id, {}).get(_key(subject))
            if tiers:
                return tiers
        return self._table.get(_key(subject)) or None

    def price(self, subject: str, student_names: Optional[str], tutor_id: Optional[str] = None) -> float:
        student_count = calculate_student_count(student_names)
        tiers = self.tiers_for(subject, tutor_id)
        if tiers is None:
            return student_count * FLAT_RATE_PER_STUDENT
        return select_tier(tiers, student_count).price


default_calculator = PriceCalculator()


def calculate_price(subject: str, student_names: Optional[str], tutor_id: Optional[str] = None) -> float:
    return default_calculator.price(subject, student_names, tutor_id)
