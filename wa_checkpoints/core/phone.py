import re

BRAZIL_CODE = "55"

_NON_DIGIT = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """Canonical identity key for a phone number.

    Keeps digits only. Brazilian mobile numbers written with the ninth digit
    (55 + DDD + 9 + 8 digits) are folded into the legacy 10-digit national
    form, so both spellings of the same line match the same conversation.
    """
    digits = _NON_DIGIT.sub("", raw or "")
    if digits.startswith(BRAZIL_CODE):
        national = digits[len(BRAZIL_CODE):]
        if len(national) == 11 and national[2] == "9":
            return BRAZIL_CODE + national[:2] + national[3:]
    return digits
