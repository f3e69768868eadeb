from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from models import DEFAULT_CATEGORY

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Food": (
        "food",
        "restaurant",
        "grocery",
        "coffee",
        "lunch",
        "dinner",
        "breakfast",
        "snack",
        "pizza",
        "burger",
        "swiggy",
        "zomato",
        "dominos",
    ),
    "Transportation": (
        "gas",
        "fuel",
        "uber",
        "taxi",
        "bus",
        "train",
        "parking",
        "metro",
        "transport",
        "ola",
        "auto",
        "rickshaw",
        "petrol",
    ),
    "Entertainment": (
        "movie",
        "cinema",
        "game",
        "concert",
        "show",
        "entertainment",
        "netflix",
        "spotify",
        "amazon prime",
        "hotstar",
    ),
    "Shopping": (
        "shopping",
        "clothes",
        "amazon",
        "store",
        "mall",
        "purchase",
        "flipkart",
        "myntra",
        "ajio",
    ),
    "Health": (
        "doctor",
        "medicine",
        "pharmacy",
        "hospital",
        "health",
        "medical",
        "dentist",
        "apollo",
        "medplus",
    ),
    "Utilities": (
        "electricity",
        "water",
        "internet",
        "phone",
        "utility",
        "bill",
        "recharge",
        "broadband",
        "wifi",
    ),
    "Education": (
        "book",
        "course",
        "school",
        "education",
        "tuition",
        "learning",
        "udemy",
        "coursera",
    ),
}

KNOWN_CATEGORIES = tuple(CATEGORY_KEYWORDS) + (DEFAULT_CATEGORY,)


def auto_categorize(description: str) -> str:
    """First category whose keyword appears in the description, else Other."""
    desc = (description or "").lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in desc for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def normalize_category(
    raw: Optional[str], known: Iterable[str] = KNOWN_CATEGORIES
) -> Optional[str]:
    """Map user input onto a known category name.

    Exact case-insensitive matches win; otherwise a single-edit typo of a known
    name is accepted. Unknown names are kept verbatim (stripped) since
    categories are free-form. Empty input returns None.
    """
    if raw is None:
        return None
    name = raw.strip()
    if not name:
        return None

    lowered = name.casefold()
    candidates = list(known)
    for candidate in candidates:
        if candidate.casefold() == lowered:
            return candidate

    matches = [
        candidate
        for candidate in candidates
        if Levenshtein.distance(lowered, candidate.casefold(), score_cutoff=1) <= 1
    ]
    if len(matches) == 1:
        return matches[0]
    return name


def resolve_category(raw: Optional[str], description: str) -> str:
    category = normalize_category(raw)
    if not category or category == DEFAULT_CATEGORY:
        return auto_categorize(description)
    return category
