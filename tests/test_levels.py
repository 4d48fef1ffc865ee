from utils.levels import framework_for_language, level_index, resolve_allowed_levels


def test_framework_lookup_defaults_to_cefr():
    assert framework_for_language("ja") == "JLPT"
    assert framework_for_language("zh-TW") == "HSK"
    assert framework_for_language("ko") == "TOPIK"
    assert framework_for_language("es") == "CEFR"
    assert framework_for_language(None) == "CEFR"


def test_jlpt_range_expands_to_explicit_levels():
    framework, levels = resolve_allowed_levels("ja", "N4", "N2")
    assert framework == "JLPT"
    assert levels == ["N4", "N3", "N2"]
    assert "N5" not in levels and "N1" not in levels


def test_open_ended_ranges():
    assert resolve_allowed_levels("en", "B2", None) == ("CEFR", ["B2", "C1", "C2"])
    assert resolve_allowed_levels("en", None, "A2") == ("CEFR", ["A1", "A2"])
    assert resolve_allowed_levels("zh", "hsk3", "HSK 4") == ("HSK", ["3", "4"])


def test_no_filter_for_missing_unknown_or_inverted_bounds():
    assert resolve_allowed_levels("en", None, None) == ("CEFR", None)
    assert resolve_allowed_levels("en", "Z9", None) == ("CEFR", None)
    assert resolve_allowed_levels("en", "C1", "A1") == ("CEFR", None)


def test_level_index():
    assert level_index("a1", "CEFR") == 0
    assert level_index("N1", "JLPT") == 4
    assert level_index("N6", "JLPT") == -1
