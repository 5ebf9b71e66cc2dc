from __future__ import annotations

import logging

import pytest

from confluence_rag.ingest.headings import track_headings
from confluence_rag.ingest.markdown import MarkdownExtractor, extract_markdown
from confluence_rag.ingest.people import UserDirectory


def test_basic_html_produces_heading_and_paragraph(extractor: MarkdownExtractor) -> None:
    result = extractor.extract_markdown("<h1>Test Heading</h1><p>This is a test paragraph with some content.</p>")

    assert result == ["# Test Heading", "This is a test paragraph with some content."]


def test_lists_are_rendered_without_indentation(extractor: MarkdownExtractor) -> None:
    xml = """<ul>
        <li>First item</li>
        <li>Second item</li>
    </ul>"""

    assert extractor.extract_markdown(xml) == ["- First item", "- Second item"]


def test_ordered_and_nested_lists(extractor: MarkdownExtractor) -> None:
    xml = """<ol>
        <li>Step one<ul><li>Detail <strong>a</strong></li><li>Detail b</li></ul></li>
        <li>Step two</li>
        <li>   </li>
        <li>Step three</li>
    </ol>"""

    assert extractor.extract_markdown(xml) == [
        "1. Step one",
        "  - Detail **a**",
        "  - Detail b",
        "2. Step two",
        "3. Step three",
    ]


def test_sibling_lists_are_not_separated_by_blank_line(extractor: MarkdownExtractor) -> None:
    result = extractor.extract("<div><ul><li>a</li></ul><ul><li>b</li></ul><p>after</p></div>")

    assert result.lines == ["- a", "- b", "after"]


def test_invalid_xml_returns_empty_result(extractor: MarkdownExtractor, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="confluence_rag.ingest.markdown"):
        result = extractor.extract("This is not valid XML <unclosed tag")

    assert result.lines == []
    assert result.parse_failed
    assert result.parse_error
    assert "Failed to parse" in caplog.text
    assert extractor.extract_markdown("not valid <xml") == []


@pytest.mark.parametrize("markup", ["", "   \n  "])
def test_empty_content_returns_empty_list(extractor: MarkdownExtractor, markup: str) -> None:
    result = extractor.extract(markup)

    assert result.lines == []
    assert not result.parse_failed


def test_formatting_tags_are_kept_inline(extractor: MarkdownExtractor) -> None:
    result = extractor.extract_markdown(
        "<p><strong>Bold text</strong> and <em>italic text</em> and <code>code text</code></p>"
    )

    assert result == ["**Bold text** and *italic text* and `code text`"]


def test_inline_code_in_list_items_stays_inline(extractor: MarkdownExtractor) -> None:
    xml = """<ul>
        <li><p>Install the <code>app.exe</code> file to <code>/usr/local/bin</code> directory.</p></li>
        <li><p>Set the <code>PATH</code> environment variable correctly.</p></li>
    </ul>"""

    result = extractor.extract_markdown(xml)

    assert "- Install the `app.exe` file to `/usr/local/bin` directory." in result
    assert "- Set the `PATH` environment variable correctly." in result
    assert all(line.count("`") % 2 == 0 for line in result)


def test_multiple_inline_elements_share_one_line(extractor: MarkdownExtractor) -> None:
    xml = (
        "<p>This document contains <strong>important information</strong> about our "
        "<em>new procedures</em> and includes <code>system commands</code> for reference.</p>"
    )

    assert extractor.extract_markdown(xml) == [
        "This document contains **important information** about our *new procedures* "
        "and includes `system commands` for reference."
    ]


@pytest.mark.parametrize(
    ("xml", "expected"),
    [
        ("<p>Simple text without formatting.</p>", ["Simple text without formatting."]),
        ("<em>italic</em>", ["*italic*"]),
        ("<strong>bold</strong>", ["**bold**"]),
        ("<p><s>gone</s> <del>old</del> x<sup>2</sup> H<sub>2</sub>O</p>", ["~~gone~~ ~~old~~ x^2^ H~2~O"]),
        ('<p><span style="text-decoration: line-through;">struck</span> <span>plain</span></p>', ["~~struck~~ plain"]),
        ("<p><em>   </em></p>", []),
        ("<p>Line one<br/>line two</p>", ["Line one line two"]),
    ],
)
def test_single_line_rendering(extractor: MarkdownExtractor, xml: str, expected: list) -> None:
    assert extractor.extract_markdown(xml) == expected


def test_structured_code_macro_keeps_code_lines(extractor: MarkdownExtractor) -> None:
    xml = """<p>Configuration example:</p>
    <ac:structured-macro ac:name="code" ac:schema-version="1">
        <ac:parameter ac:name="language">json</ac:parameter>
        <ac:plain-text-body><![CDATA[{
  "name": "test-app",
  "version": "1.0.0"
}]]></ac:plain-text-body>
    </ac:structured-macro>
    <p>End of example.</p>"""

    assert extractor.extract_markdown(xml) == [
        "Configuration example:",
        "```json",
        "{",
        '  "name": "test-app",',
        '  "version": "1.0.0"',
        "}",
        "```",
        "End of example.",
    ]


def test_links_and_rules(extractor: MarkdownExtractor) -> None:
    xml = '<p>See <a href="https://example.com/docs">the docs</a> or <a>plain</a>.</p><hr/><blockquote><p>Quoted</p></blockquote>'

    assert extractor.extract_markdown(xml) == [
        "See [the docs](https://example.com/docs) or plain.",
        "---",
        "> Quoted",
    ]


def test_nested_headings_are_flattened(extractor: MarkdownExtractor) -> None:
    assert extractor.extract_markdown("<div><h2>Inner</h2><p>Body</p></div>") == ["Inner", "Body"]


def test_top_level_heading_without_text_is_skipped(extractor: MarkdownExtractor) -> None:
    result = extractor.extract("<h2>  </h2><p>Body</p>")

    assert result.lines == ["Body"]
    assert result.headings[0].levels == ("",) * 6


def test_heading_context_follows_each_line(extractor: MarkdownExtractor) -> None:
    xml = "<h1>Intro</h1><p>a</p><h3>Details</h3><p>b</p><h2>Overview</h2><p>c</p>"

    result = extractor.extract(xml)

    assert result.lines == ["# Intro", "a", "### Details", "b", "## Overview", "c"]
    assert result.headings == track_headings(result.lines)
    assert result.headings[-1].levels == ("Intro", "Overview", "", "", "", "")


def test_entities_are_decoded_before_parsing(extractor: MarkdownExtractor) -> None:
    xml = "<p>It&rsquo;s&nbsp;done &amp; dusted &copy; &mystery;</p>"

    assert extractor.extract_markdown(xml) == ["It's done & dusted ©"]


def test_top_level_text_is_kept(extractor: MarkdownExtractor) -> None:
    assert extractor.extract_markdown("Loose text<p>Para</p>") == ["Loose text", "Para"]


def test_extract_markdown_function_uses_user_directory(people_file) -> None:
    xml = '<p><ri:user ri:account-id="5fad1bf6c824730070816da5" /></p>'

    assert extract_markdown(xml, UserDirectory.from_file(people_file)) == ["User: John Doe"]
    assert extract_markdown(xml) == ["User ID: 5fad1bf6c824730070816da5"]


def test_extractor_can_be_reused(extractor: MarkdownExtractor) -> None:
    nested = "<ul><li>a<ul><li>b</li></ul></li></ul>"

    first = extractor.extract_markdown(nested)
    second = extractor.extract_markdown(nested)

    assert first == second == ["- a", "  - b"]


def test_deeply_nested_markup_is_reported_not_raised(
    extractor: MarkdownExtractor, caplog: pytest.LogCaptureFixture
) -> None:
    markup = "<div>" * 3000 + "deep" + "</div>" * 3000

    with caplog.at_level(logging.WARNING, logger="confluence_rag.ingest.markdown"):
        result = extractor.extract(markup)

    assert result.lines == []
    assert result.parse_failed
    assert "nested too deeply" in caplog.text
    assert extractor.extract_markdown(markup) == []


def test_moderately_nested_markup_is_rendered(extractor: MarkdownExtractor) -> None:
    markup = "<div>" * 50 + "deep" + "</div>" * 50

    assert extractor.extract_markdown(markup) == ["deep"]
