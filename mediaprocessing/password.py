"""PDF password removal."""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import pikepdf

from .compression.errors import InvalidInput, InvalidPassword, PasswordRequired

logger = logging.getLogger(__name__)


@dataclass
class UnlockResult:
    data: bytes
    page_count: int
    was_encrypted: bool


def is_encrypted(data: bytes) -> bool:
    """True if the PDF needs a password to open."""
    try:
        with pikepdf.open(BytesIO(data)):
            return False
    except pikepdf.PasswordError:
        return True
    except pikepdf.PdfError as e:
        raise InvalidInput(f"Cannot open PDF: {e}") from e


def remove_password(data: bytes, password: Optional[str] = None) -> UnlockResult:
    """
    Open an encrypted PDF and save it without encryption.

    PDFs that only carry an owner password (permissions) open without one
    and come out unrestricted.

    Args:
        data: Source PDF bytes
        password: User or owner password

    Returns:
        UnlockResult with the decrypted PDF

    Raises:
        PasswordRequired: Encrypted and no password given
        InvalidPassword: The password does not open the PDF
        InvalidInput: Not a readable PDF
    """
    try:
        pdf = pikepdf.open(BytesIO(data), password=password or "")
    except pikepdf.PasswordError as e:
        if not password:
            raise PasswordRequired("PDF is password-protected; a password is required") from e
        raise InvalidPassword("Invalid password provided for the encrypted PDF") from e
    except pikepdf.PdfError as e:
        raise InvalidInput(f"Failed to process the PDF. It might be corrupted: {e}") from e

    with pdf:
        was_encrypted = pdf.is_encrypted
        buffer = BytesIO()
        # Omitting `encryption` drops the security handler on save
        pdf.save(buffer)
        page_count = len(pdf.pages)

    logger.info("Removed PDF protection (%d pages, encrypted=%s)", page_count, was_encrypted)
    return UnlockResult(data=buffer.getvalue(), page_count=page_count, was_encrypted=was_encrypted)
