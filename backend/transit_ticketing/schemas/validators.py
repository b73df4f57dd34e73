"""
Field formats shared by request schemas and by the engine's path-style arguments.
"""

import re

from transit_ticketing.core.exceptions import ValidationError

TAX_CODE_PATTERN = r"^[a-zA-Z0-9]{14}$"
CONTACT_PATTERN = r"^\S+@\S+\.\S+$"

# fullmatch: a bare $ would also accept a trailing newline
_tax_code_re = re.compile(TAX_CODE_PATTERN)
_contact_re = re.compile(CONTACT_PATTERN)


def validate_tax_code(tax_code: str) -> str:
    if not isinstance(tax_code, str) or not _tax_code_re.fullmatch(tax_code):
        raise ValidationError("Invalid tax code format")
    return tax_code


def validate_contact(contact: str) -> str:
    if not isinstance(contact, str) or not _contact_re.fullmatch(contact):
        raise ValidationError("Invalid contact format")
    return contact
