"""
Barcode validation for flushed scanner input.
"""

import re
import logging

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 8
DEFAULT_MAX_LENGTH = 20

_DIGITS_ONLY = re.compile(r'[0-9]+')


class BarcodeValidationError(Exception):
    """Exception raised when barcode validation fails"""

    kind = "invalid"

    def __init__(self, message, barcode=""):
        super().__init__(message)
        self.barcode = barcode


class BarcodeLengthError(BarcodeValidationError):
    """Barcode is shorter than the minimum or longer than the maximum length"""

    kind = "length"


class BarcodeFormatError(BarcodeValidationError):
    """Barcode contains characters other than decimal digits"""

    kind = "format"


def validate_barcode(barcode, min_length=DEFAULT_MIN_LENGTH, max_length=DEFAULT_MAX_LENGTH):
    """
    Validate and normalize a scanned barcode.

    The length check always runs before the format check, so a string that
    fails both reports only the length failure.

    Args:
        barcode (str): Raw scanner text
        min_length (int): Minimum accepted length (inclusive)
        max_length (int): Maximum accepted length (inclusive)

    Returns:
        str: The trimmed barcode

    Raises:
        BarcodeLengthError: If the trimmed barcode is outside [min_length, max_length]
        BarcodeFormatError: If the trimmed barcode is not all decimal digits
    """
    barcode = str(barcode or "").strip()
    length = len(barcode)

    if length < min_length or length > max_length:
        raise BarcodeLengthError(f"Barcode length invalid: {barcode} ({length} chars)", barcode)

    # ASCII digits only; str.isdigit() would also accept superscripts
    if not _DIGITS_ONLY.fullmatch(barcode):
        raise BarcodeFormatError(f"Invalid barcode format: {barcode}", barcode)

    return barcode


def is_valid_barcode_format(barcode, min_length=DEFAULT_MIN_LENGTH, max_length=DEFAULT_MAX_LENGTH):
    """
    Check if a barcode is acceptable without raising exceptions.

    Args:
        barcode (str): The barcode to check

    Returns:
        bool: True if the barcode passes both length and format checks
    """
    try:
        validate_barcode(barcode, min_length, max_length)
        return True
    except BarcodeValidationError:
        return False
