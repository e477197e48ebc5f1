"""Merchant and spending-category hints for bank statement rows."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CategoryHint:
    category: str | None = None
    merchant: str | None = None
    is_recurring: bool | None = None


_RULES: list[tuple[str, str, str | None, bool | None]] = [
    (r"COSTCO|SAFEWAY|WHOLE FOODS|TRADER JOE|KROGER|PUBLIX|ALDI|WALMART.*GROCERY", "GROCERIES", "Grocery Store", None),
    (r"INSTACART", "GROCERIES", "Instacart", None),
    (r"DOORDASH|UBER EATS|GRUBHUB|POSTMATES", "DINING", "Food Delivery", None),
    (r"STARBUCKS|DUNKIN|COFFEE", "DINING", "Coffee Shop", None),
    (r"MCDONALD|BURGER KING|WENDY|CHICK-FIL|TACO BELL|CHIPOTLE", "DINING", "Fast Food", None),
    (r"NETFLIX", "STREAMING", "Netflix", True),
    (r"SPOTIFY", "STREAMING", "Spotify", True),
    (r"APPLE\.COM.*BILL|APPLE MUSIC|ITUNES", "STREAMING", "Apple", True),
    (r"AMAZON PRIME", "MEMBERSHIPS", "Amazon Prime", True),
    (r"HULU", "STREAMING", "Hulu", True),
    (r"DISNEY\+|DISNEYPLUS", "STREAMING", "Disney+", True),
    (r"HBO|MAX\.COM", "STREAMING", "HBO Max", True),
    (r"YOUTUBE|GOOGLE.*PLAY", "STREAMING", "YouTube/Google", True),
    (r"AMAZON\.COM|AMZN\.COM|AMAZON MKTPL", "SHOPPING", "Amazon", None),
    (r"TARGET", "SHOPPING", "Target", None),
    (r"WALMART(?!.*GROCERY)", "SHOPPING", "Walmart", None),
    (r"UBER(?!\s*EATS)", "TRANSPORT", "Uber", None),
    (r"LYFT", "TRANSPORT", "Lyft", None),
    (r"SHELL|CHEVRON|EXXON|MOBIL|BP |76 |ARCO|\bGAS\b|FUEL", "FUEL", "Gas Station", None),
    (r"PARKING|PARKWHIZ|SPOTHERO", "PARKING", None, None),
    (r"AT&T|VERIZON|T-MOBILE|SPRINT", "PHONE", "Phone Carrier", True),
    (r"ELECTRIC|POWER|ENERGY|EDISON", "ELECTRICITY", None, True),
    (r"WATER.*UTILITY|WATER.*DISTRICT", "WATER_SEWER", None, True),
    (r"COMCAST|XFINITY|SPECTRUM|\bCOX\b|INTERNET", "INTERNET", None, True),
    (r"PAYROLL|DIRECT DEP|SALARY", "SALARY", "Employer", None),
    (r"ZELLE|VENMO|PAYPAL.*TRANSFER|CASH APP", "TRANSFER", None, None),
    (r"WIRE.*CREDIT|FEDWIRE.*CREDIT", "TRANSFER", None, None),
    (r"ATM.*WITHDRAWAL|ATM.*CASH", "ATM_WITHDRAWAL", None, None),
    (r"WIRE.*FEE|BANK.*FEE|SERVICE.*FEE|MAINTENANCE.*FEE|OVERDRAFT", "BANK_FEES", None, None),
    (r"CVS|WALGREENS|RITE AID|PHARMACY", "MEDICINE", "Pharmacy", None),
    (r"DOCTOR|MEDICAL|HOSPITAL|CLINIC", "DOCTOR_DENTIST", None, None),
    (r"GEICO|ALLSTATE|STATE FARM|PROGRESSIVE|AUTO.*INS", "AUTO_INSURANCE", None, True),
    (r"HEALTH.*INS|BLUE.*CROSS|AETNA|CIGNA|UNITED.*HEALTH", "HEALTH_INSURANCE", None, True),
    (r"RENT|LANDLORD|PROPERTY.*MGMT", "RENT", None, True),
    (r"HOME.*DEPOT|LOWE'?S|ACE.*HARDWARE", "HOME_MAINTENANCE", "Home Improvement", None),
    (r"CLEANING|MAID|HOUSE.*CLEAN", "HOUSE_CLEANING", None, None),
    (r"EXTRA SPACE|PUBLIC STORAGE|CUBESMART|STORAGE", "HOME_SUPPLIES", "Storage Unit", True),
]

MERCHANT_CATEGORY_PATTERNS: list[tuple[re.Pattern[str], CategoryHint]] = [
    (re.compile(pattern, re.IGNORECASE), CategoryHint(category, merchant, recurring))
    for pattern, category, merchant, recurring in _RULES
]

_TRAILING_DATE_RE = re.compile(r"\d{2}/\d{2}$")
_TRAILING_STATE_RE = re.compile(r"\s+[A-Z]{2}\s*$")
_PHONE_RE = re.compile(r"\s+\d{3}-\d{3}-\d{4}\s*")
_WEB_ID_RE = re.compile(r"WEB ID:.*$", re.IGNORECASE)


def detect_category(description: str) -> CategoryHint:
    for pattern, hint in MERCHANT_CATEGORY_PATTERNS:
        if pattern.search(description or ""):
            return hint
    return CategoryHint()


def extract_merchant(description: str) -> str:
    cleaned = _TRAILING_DATE_RE.sub("", (description or "").strip())
    cleaned = _TRAILING_STATE_RE.sub("", cleaned)
    cleaned = _PHONE_RE.sub(" ", cleaned)
    cleaned = _WEB_ID_RE.sub("", cleaned)
    # Runs of two or more spaces separate the merchant from location noise.
    head = re.split(r"\s{2,}|\t", cleaned.strip())[0]
    return " ".join(head.split())


def categorize(description: str) -> CategoryHint:
    """Category hint for ``description`` with a merchant name always filled in."""
    hint = detect_category(description)
    merchant = hint.merchant or extract_merchant(description) or None
    return CategoryHint(hint.category, merchant, hint.is_recurring)
