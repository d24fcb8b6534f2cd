"""
Read-side duplicate detection for invoices.

Two invoices conflict when they share the same amount, KSeF number and
company. Grouping never blocks a submission; it only reports.
"""
from collections import defaultdict
from decimal import Decimal
from typing import Hashable, Iterable, List, Optional, Protocol, Tuple

from mobifaktura.utils.money import to_money


class DuplicateCandidate(Protocol):
    id: str
    kwota: Optional[Decimal]
    ksef_number: Optional[str]
    company_id: Optional[str]


def duplicate_key(invoice: DuplicateCandidate) -> Optional[Tuple[Hashable, ...]]:
    """(kwota, ksef_number, company_id) or None when any part is missing."""
    if invoice.kwota is None or not invoice.ksef_number or not invoice.company_id:
        return None
    return (to_money(invoice.kwota), invoice.ksef_number.strip(), invoice.company_id)


def group_duplicates(invoices: Iterable[DuplicateCandidate]) -> List[List[DuplicateCandidate]]:
    """Return groups of two or more invoices sharing the same duplicate key, in input order."""
    groups = defaultdict(list)
    for invoice in invoices:
        key = duplicate_key(invoice)
        if key is not None:
            groups[key].append(invoice)
    return [group for group in groups.values() if len(group) > 1]
