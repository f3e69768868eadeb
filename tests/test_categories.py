from categories import auto_categorize, normalize_category, resolve_category


def test_auto_categorize_matches_keywords() -> None:
    assert auto_categorize("Uber to airport") == "Transportation"
    assert auto_categorize("Pizza night") == "Food"
    assert auto_categorize("Electricity bill") == "Utilities"
    assert auto_categorize("Birthday present") == "Other"


def test_normalize_category_fixes_case_and_single_typos() -> None:
    assert normalize_category("  food ") == "Food"
    assert normalize_category("Helth") == "Health"
    assert normalize_category("Gardening") == "Gardening"
    assert normalize_category("   ") is None


def test_resolve_category_auto_assigns_when_missing_or_other() -> None:
    assert resolve_category(None, "Netflix subscription") == "Entertainment"
    assert resolve_category("Other", "Coffee with team") == "Food"
    assert resolve_category("Shopping", "Coffee beans") == "Shopping"
