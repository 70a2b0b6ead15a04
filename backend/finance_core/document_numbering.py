"""
DOCUMENT NUMBERING

Numbers look like PREFIX-YYYYMM-NNN (e.g. EXP-202501-003):
1. Read the highest existing number for (prefix, period) inside the
   caller's transaction
2. Increment its numeric suffix (start at 1 when none exist)
3. Zero-pad to 3 digits (wider once a month passes 999)

Two concurrent writers can read the same "last" number. The unique index on
document_number makes the second insert fail; the lifecycle retries the whole
unit of work with a fresh read (see DocumentLifecycle.create).
"""

from datetime import datetime
from typing import Optional, Tuple
import logging

from finance_core.document_types import DocumentType

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 3


def period_for(when: datetime) -> str:
    """Year-month period key used in document numbers."""
    return when.strftime("%Y%m")


def number_prefix(prefix: str, period: str) -> str:
    return f"{prefix}-{period}-"


def format_document_number(prefix: str, period: str, sequence: int) -> str:
    return f"{number_prefix(prefix, period)}{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(document_number: Optional[str]) -> int:
    """Numeric suffix of a document number, 0 for None or a malformed value."""
    if not document_number:
        return 0
    suffix = document_number.rsplit("-", 1)[-1]
    try:
        return int(suffix)
    except ValueError:
        logger.warning(f"[NUMBERING] Ignoring malformed document number: {document_number}")
        return 0


class DocumentNumbering:
    """
    Per-type, per-month document number generator.

    Must run against the same store (transaction) as the insert that uses
    the number.
    """

    async def next_number(
        self,
        store,
        doc_type: DocumentType,
        period: str
    ) -> Tuple[str, int]:
        """
        Returns:
            tuple: (document_number, sequence_number)
        """
        prefix = number_prefix(doc_type.prefix, period)
        last_number = await store.find_last_document_number(doc_type, prefix)
        sequence = parse_sequence(last_number) + 1
        document_number = format_document_number(doc_type.prefix, period, sequence)

        logger.debug(
            f"[NUMBERING] {doc_type.kind.value}: last={last_number} next={document_number}"
        )
        return document_number, sequence
