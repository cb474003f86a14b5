"""
Document size limits enforced before any embedding spend.

Limits are measured on extracted structure, so the check runs after
extraction but before chunking and embedding.
"""
import logging
from dataclasses import dataclass

from django.conf import settings

from apps.indexing.extractor import DocMeta, DocumentMeta, PdfMeta, TextMeta

logger = logging.getLogger(__name__)

PDF_PAGE_LIMIT = 20
WORD_LIMIT = 30000
PASTED_TEXT_CHAR_LIMIT = 50000


class LimitExceeded(Exception):
    """Raised when a document exceeds a size limit."""

    def __init__(self, limit_name: str, limit: int, measured: int):
        super().__init__(
            f"{limit_name} limit exceeded: measured {measured:,}, limit is {limit:,}"
        )
        self.limit_name = limit_name
        self.limit = limit
        self.measured = measured

    def to_dict(self) -> dict:
        return {
            "limitName": self.limit_name,
            "limit": self.limit,
            "measured": self.measured,
        }


@dataclass(frozen=True)
class IngestionLimits:
    pdf_pages: int = PDF_PAGE_LIMIT
    words: int = WORD_LIMIT
    pasted_chars: int = PASTED_TEXT_CHAR_LIMIT

    @classmethod
    def from_settings(cls) -> 'IngestionLimits':
        return cls(
            pdf_pages=getattr(settings, 'PDF_PAGE_LIMIT', PDF_PAGE_LIMIT),
            words=getattr(settings, 'WORD_LIMIT', WORD_LIMIT),
            pasted_chars=getattr(settings, 'PASTED_TEXT_CHAR_LIMIT', PASTED_TEXT_CHAR_LIMIT),
        )


def _enforce(limit_name: str, limit: int, measured: int) -> None:
    if measured > limit:
        logger.info(f"Rejecting document: {limit_name} {measured} > {limit}")
        raise LimitExceeded(limit_name, limit, measured)


def check_limits(metadata: DocumentMeta, limits: IngestionLimits) -> None:
    """
    Check extracted metadata against the limits for its kind.

    Raises:
        LimitExceeded: If the measured value is above the limit
    """
    if isinstance(metadata, PdfMeta):
        _enforce("pages", limits.pdf_pages, metadata.page_count)
    elif isinstance(metadata, (DocMeta, TextMeta)):
        _enforce("words", limits.words, metadata.word_count)
    else:
        raise TypeError(f"Unknown document metadata: {type(metadata).__name__}")


def check_pasted_text(text: str, limits: IngestionLimits) -> None:
    """Pasted text needs no extraction, so its cap is checked up front."""
    _enforce("characters", limits.pasted_chars, len(text))
