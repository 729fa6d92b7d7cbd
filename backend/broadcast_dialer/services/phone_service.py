import re

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone(raw: str | None) -> str | None:
    """Return ``raw`` as an E.164 number, assuming NANP for bare 10-digit input."""
    if not raw:
        return None
    stripped = raw.strip()
    digits = re.sub(r"\D", "", stripped)
    if not digits:
        return None
    if stripped.startswith("+"):
        candidate = "+" + digits
    elif digits.startswith("00"):
        candidate = "+" + digits[2:]
    elif len(digits) == 10:
        candidate = "+1" + digits
    else:
        candidate = "+" + digits
    if not E164_PATTERN.match(candidate):
        return None
    return candidate


def area_code(number: str | None) -> str | None:
    # only NANP numbers carry a usable area code
    if number and number.startswith("+1") and len(number) == 12:
        return number[2:5]
    return None
