import re


def normalize_phone_number(raw_phone) -> str:
    """
    Normalize a phone number to a consistent international format.

    Rules:
    - Accept numbers as ``int`` too (the vendor sends destAddr as a JSON number).
    - Strip everything except digits and a leading '+'.
    - If the number already starts with '+', keep the prefix and its digits.
    - If it has at least 10 digits and does not start with '0',
        -> prefix with '+' -> '+919892488888'.
    - Otherwise return the cleaned input.
    """
    if raw_phone is None:
        return ""

    phone = str(raw_phone).strip()
    if not phone:
        return ""

    has_plus = phone.startswith("+")
    digits = re.sub(r"\D+", "", phone)

    if has_plus:
        return "+" + digits

    if len(digits) >= 10 and not digits.startswith("0"):
        return "+" + digits

    return digits
