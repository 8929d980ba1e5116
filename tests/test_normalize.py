import pytest

from eowkit.normalize import clamp_text_length, collapse_whitespace, html_to_text


def test_html_to_text_basic():
    html = "<p>Hello <b>world</b>!</p>"
    assert html_to_text(html) == "Hello world !"


def test_html_to_text_collapses_whitespace():
    raw = "   <div>Hello \n\t  world</div>\n"
    assert html_to_text(raw) == "Hello world"


def test_html_to_text_drops_script_and_style():
    html = "<style>.x{color:red}</style><p>kept</p><script>alert(1)</script>"
    assert html_to_text(html) == "kept"


def test_html_to_text_malformed_markup_does_not_raise():
    assert "unclosed" in html_to_text("<div><p>unclosed <b>tags <i>everywhere")
    assert html_to_text(None) == ""
    assert html_to_text("") == ""


def test_collapse_whitespace():
    assert collapse_whitespace("  a \n\n b\t c ") == "a b c"
    assert collapse_whitespace(None) == ""


def test_clamp_text_length():
    text = "x" * 2100
    assert len(clamp_text_length(text, 2000)) == 2000
    assert clamp_text_length("short", 2000) == "short"
    with pytest.raises(ValueError):
        clamp_text_length("x", -1)
