"""
Text extraction from uploaded document buffers.

Supports:
- pdf: page-by-page text extraction using PyMuPDF
- docx/doc: raw paragraph text using python-docx
- txt/md/rtf: UTF-8 text kept verbatim (with fallback for encoding errors)

Every extraction returns the text together with a small, format-specific
metadata record that the ingestion limits are measured against.
"""
import io
import logging
import math
from dataclasses import dataclass
from typing import Dict, Union

logger = logging.getLogger(__name__)

# Words per page used to estimate the length of Word documents
WORDS_PER_PAGE = 250

PDF_FORMATS = ('pdf',)
WORD_FORMATS = ('docx', 'doc')
TEXT_FORMATS = ('txt', 'md', 'rtf')
SUPPORTED_FORMATS = PDF_FORMATS + WORD_FORMATS + TEXT_FORMATS


class ExtractionError(Exception):
    """Raised when text extraction fails."""
    pass


class UnsupportedFormat(ExtractionError):
    """Raised when the declared format is not one we can extract."""

    def __init__(self, declared_format: str):
        super().__init__(
            f"Unsupported file type: {declared_format!r}. "
            f"Supported formats: {', '.join(f.upper() for f in SUPPORTED_FORMATS)}"
        )
        self.declared_format = declared_format


class EmptyExtraction(ExtractionError):
    """Raised when a document yields no usable text."""

    def __init__(self, source_format: str):
        super().__init__(
            f"No text could be extracted from the {source_format.upper()} file."
        )
        self.source_format = source_format


@dataclass(frozen=True)
class PdfMeta:
    page_count: int

    def to_dict(self) -> Dict[str, int]:
        return {"pageCount": self.page_count}


@dataclass(frozen=True)
class DocMeta:
    word_count: int
    page_estimate: int

    def to_dict(self) -> Dict[str, int]:
        return {"wordCount": self.word_count, "pageEstimate": self.page_estimate}


@dataclass(frozen=True)
class TextMeta:
    word_count: int
    char_count: int

    def to_dict(self) -> Dict[str, int]:
        return {"wordCount": self.word_count, "charCount": self.char_count}


DocumentMeta = Union[PdfMeta, DocMeta, TextMeta]


@dataclass
class ExtractionResult:
    """Extracted text plus structural metadata for one document."""
    text: str
    source_format: str
    metadata: DocumentMeta


def normalize_format(declared_format: str) -> str:
    """Lower-case a declared format and strip a leading dot ('.PDF' -> 'pdf')."""
    return (declared_format or '').strip().lower().lstrip('.')


def count_words(text: str) -> int:
    """Count whitespace-delimited tokens; runs of whitespace count once."""
    return len(text.split())


def decode_text(buffer: bytes) -> str:
    """Decode a text buffer as UTF-8, dropping undecodable bytes if needed."""
    try:
        return buffer.decode('utf-8')
    except UnicodeDecodeError:
        logger.warning("UTF-8 decode failed, using errors='ignore'")
        return buffer.decode('utf-8', errors='ignore')


def extract_pdf(buffer: bytes) -> ExtractionResult:
    """
    Extract text from a PDF buffer using PyMuPDF.

    Pages are joined with blank lines. Scanned, image-only pages produce no
    text; we don't do OCR.

    Raises:
        ExtractionError: If the buffer is not a readable PDF
    """
    import fitz  # PyMuPDF

    try:
        with fitz.open(stream=buffer, filetype='pdf') as doc:
            page_count = doc.page_count
            pages = [page.get_text() for page in doc]
    except Exception as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")

    return ExtractionResult(
        text="\n\n".join(pages),
        source_format='pdf',
        metadata=PdfMeta(page_count=page_count),
    )


def extract_word(buffer: bytes, source_format: str) -> ExtractionResult:
    """
    Extract raw paragraph text from a Word document using python-docx.

    Raises:
        ExtractionError: If python-docx cannot open the buffer
    """
    from docx import Document as DocxDocument

    try:
        document = DocxDocument(io.BytesIO(buffer))
    except Exception as e:
        raise ExtractionError(f"Failed to read Word document: {e}")

    text = "\n".join(paragraph.text for paragraph in document.paragraphs)
    word_count = count_words(text)

    return ExtractionResult(
        text=text,
        source_format=source_format,
        metadata=DocMeta(
            word_count=word_count,
            page_estimate=math.ceil(word_count / WORDS_PER_PAGE),
        ),
    )


def extract_plain(buffer: bytes, source_format: str) -> ExtractionResult:
    """Decode txt/md/rtf buffers verbatim (RTF control words are kept)."""
    text = decode_text(buffer)
    return ExtractionResult(
        text=text,
        source_format=source_format,
        metadata=TextMeta(word_count=count_words(text), char_count=len(text)),
    )


def extract_document(buffer: bytes, declared_format: str) -> ExtractionResult:
    """
    Extract text from a document buffer.

    Args:
        buffer: Raw file bytes, already size-checked by the caller
        declared_format: File type such as 'pdf', 'docx' or '.md'

    Returns:
        ExtractionResult with the text and format-specific metadata

    Raises:
        UnsupportedFormat: If the format is not recognized
        EmptyExtraction: If no non-whitespace text was found
        ExtractionError: If the document cannot be parsed
    """
    source_format = normalize_format(declared_format)

    logger.info(f"Extracting text (format={source_format}, {len(buffer)} bytes)")

    if source_format in PDF_FORMATS:
        result = extract_pdf(buffer)
    elif source_format in WORD_FORMATS:
        result = extract_word(buffer, source_format)
    elif source_format in TEXT_FORMATS:
        result = extract_plain(buffer, source_format)
    else:
        raise UnsupportedFormat(declared_format)

    if not result.text.strip():
        logger.warning(f"No text extracted from {source_format} document")
        raise EmptyExtraction(source_format)

    logger.info(
        f"Extracted {len(result.text)} characters from {source_format} document "
        f"({result.metadata.to_dict()})"
    )
    return result
