from __future__ import annotations

from novelist.markup import extract_text_from_html, normalize_extracted_text


def test_block_elements_become_paragraphs() -> None:
    html = "<html><head><title>Skip me</title></head><body><h1>Title</h1>\n<p>One</p>\n<p>Two<br/>Three</p></body></html>"

    assert extract_text_from_html(html) == "Title\n\nOne\n\nTwo\nThree"


def test_scripts_and_styles_are_dropped() -> None:
    html = "<body><style>p { color: red; }</style><p>Visible</p><script>alert('x')</script></body>"

    assert extract_text_from_html(html) == "Visible"


def test_whitespace_is_collapsed() -> None:
    html = "<body><p>  lots\t of   space  </p>\n\n\n<div><p>nested</p></div></body>"

    assert extract_text_from_html(html) == "lots of space\n\nnested"


def test_fragment_without_body_uses_root_text() -> None:
    assert extract_text_from_html("<div>Loose <b>text</b></div>") == "Loose text"


def test_entities_are_decoded() -> None:
    assert extract_text_from_html("<body><p>Tom &amp; Jerry &lt;3</p></body>") == "Tom & Jerry <3"


def test_empty_input_yields_empty_string() -> None:
    assert extract_text_from_html("") == ""


def test_normalize_limits_blank_lines() -> None:
    assert normalize_extracted_text("a\r\n\r\n\r\n\r\nb  \n  c") == "a\n\nb\nc"
