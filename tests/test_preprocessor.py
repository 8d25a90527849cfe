"""Tests for shokamark.preprocessor module."""

import json

import pytest
from bs4 import BeautifulSoup

from shokamark.config import ShokamarkConfig
from shokamark.context import RenderContext
from shokamark.crypto import ShokamarkError
from shokamark.nodes import MAX_CONTAINER_DEPTH
from shokamark.preprocessor import (
    ScanOptions,
    parse_directive_attrs,
    preprocess,
    process_containers,
    process_inline_super_sub,
    process_outside_protected_regions,
)


def soup_of(text):
    return BeautifulSoup(text, "html.parser")


class TestNoteBlocks:
    """Tests for ::: note containers."""

    def test_simple_note(self):
        """Test a note becomes a Markdown-enabled wrapper."""
        out = process_containers(":::info\nSome **text**\n:::")
        div = soup_of(out).find("div", class_="note-block")

        assert div is not None
        assert div["class"] == ["note-block", "note-info"]
        assert div["markdown"] == "1"
        assert "Some **text**" in div.get_text()

    def test_no_icon(self):
        """Test the no-icon flag adds a class."""
        out = process_containers(":::warning no-icon\nx\n:::")
        div = soup_of(out).find("div", class_="note-block")
        assert "no-icon" in div["class"]

    def test_nested_notes(self):
        """Test nested same-syntax containers yield two nested wrappers."""
        out = process_containers(":::info\n:::warn\ntext\n:::\n:::")
        outer = soup_of(out).find("div", class_="note-info")
        inner = outer.find("div", class_="note-warn")

        assert inner is not None
        assert "text" in inner.get_text()
        assert ":::" not in out

    def test_text_around_note_preserved(self):
        """Test lines outside the container pass through."""
        out = process_containers("before\n:::tip\ninside\n:::\nafter")
        assert out.startswith("before\n")
        assert out.rstrip().endswith("after")

    def test_stray_closer_passes_through(self):
        """Test a closer with no opener is plain text."""
        assert process_containers("hello\n:::") == "hello\n:::"


class TestFenceImmunity:
    """Tests that code fences are never interpreted."""

    def test_fenced_container_verbatim(self):
        """Test :::note inside a fence is emitted verbatim."""
        text = "```\n:::note\nnot a container\n:::\n```"
        assert process_containers(text) == text

    def test_tilde_fence(self):
        """Test ~~~ fences are tracked too."""
        text = "~~~md\n+++primary Title\nx\n+++\n~~~"
        assert process_containers(text) == text

    def test_longer_closing_fence(self):
        """Test a fence closes only on the same character, at least as long."""
        text = "````\n```\n:::note\n````\n:::note\nreal\n:::"
        out = process_containers(text)
        assert out.startswith("````\n```\n:::note\n````")
        assert "note-block note-note" in out

    def test_closer_inside_body_fence(self):
        """Test a closer inside a fenced block in a body does not close it."""
        out = process_containers(":::info\n```\n:::\n```\nafter code\n:::")
        div = soup_of(out).find("div", class_="note-info")
        assert "after code" in div.get_text()
        assert "```\n:::\n```" in out


class TestCollapse:
    """Tests for +++ collapse containers."""

    def test_collapse(self):
        """Test collapse renders details with an escaped summary."""
        out = process_containers("+++primary Title & <more>\nbody\n+++")
        details = soup_of(out).find("details")

        assert details["class"] == ["collapse-block", "collapse-primary"]
        assert details.summary.get_text() == "Title & <more>"
        assert "&lt;more&gt;" in out
        content = details.find("div", class_="collapse-content")
        assert "body" in content.get_text()

    def test_nested_collapse(self):
        """Test nested collapse blocks."""
        out = process_containers("+++info Outer\n+++danger Inner\nx\n+++\n+++")
        outer = soup_of(out).find("details", class_="collapse-info")
        assert outer.find("details", class_="collapse-danger") is not None


class TestTabGroups:
    """Tests for ;;; tab grouping."""

    def test_adjacent_panels_merge(self):
        """Test panels with the same id form one group, in order."""
        out = process_containers(";;;a First\ncontent1\n;;;\n\n;;;a Second\ncontent2\n;;;")
        soup = soup_of(out)
        groups = soup.find_all("div", class_="tab-group")

        assert len(groups) == 1
        assert groups[0]["data-tab-group"] == "a"
        headers = groups[0].find_all("button", class_="tab-header")
        assert [h.get_text() for h in headers] == ["First", "Second"]
        assert headers[0]["aria-selected"] == "true"
        assert headers[1]["aria-selected"] == "false"
        panels = groups[0].find_all("div", class_="tab-panel")
        assert [p["data-tab-index"] for p in panels] == ["0", "1"]
        assert "active" in panels[0]["class"]
        assert "active" not in panels[1]["class"]
        assert "content1" in panels[0].get_text()
        assert "content2" in panels[1].get_text()

    def test_different_id_starts_new_group(self):
        """Test a panel with another id splits the groups."""
        text = ";;;a First\nc1\n;;;\n\n;;;b Other\nc2\n;;;\n\n;;;a Second\nc3\n;;;"
        groups = soup_of(process_containers(text)).find_all("div", class_="tab-group")

        assert [g["data-tab-group"] for g in groups] == ["a", "b", "a"]
        assert len(groups[0].find_all("div", class_="tab-panel")) == 1

    def test_text_flushes_group(self):
        """Test a non-blank line between panels ends the group."""
        text = ";;;a One\nx\n;;;\ninterlude\n;;;a Two\ny\n;;;"
        out = process_containers(text)
        assert len(soup_of(out).find_all("div", class_="tab-group")) == 2
        assert "interlude" in out

    def test_fence_flushes_group(self):
        """Test a code fence ends the group."""
        text = ";;;a One\nx\n;;;\n```\ncode\n```"
        out = process_containers(text)
        assert out.index("tab-group") < out.index("```")


class TestHexoTags:
    """Tests for {% links %} and {% media %} tags."""

    def test_links(self):
        """Test friend links render as cards with validated colors."""
        text = (
            "{% links %}\n"
            "- site: Alpha\n"
            "  url: https://a.example\n"
            "  desc: First <site>\n"
            "  color: '#ff0000'\n"
            "- site: Beta\n"
            "  url: https://b.example\n"
            "  color: 'red; background: url(x)'\n"
            "{% endlinks %}"
        )
        soup = soup_of(process_containers(text))
        grid = soup.find("div", class_="friend-links-grid")
        cards = grid.find_all("a", class_="friend-link-card")

        assert [c["href"] for c in cards] == ["https://a.example", "https://b.example"]
        assert cards[0]["style"] == "border-color: #ff0000"
        assert not cards[1].has_attr("style")
        assert cards[0].find("div", class_="desc").get_text() == "First <site>"
        assert json.loads(grid["data-links"])[1]["site"] == "Beta"

    def test_links_bad_yaml(self):
        """Test unparsable YAML becomes a comment and a warning."""
        context = RenderContext()
        out = process_containers(
            "{% links %}\n- site: [oops\n{% endlinks %}", ScanOptions(), 0, context
        )
        assert "<!-- Failed to parse links YAML -->" in out
        assert any("links YAML" in w for w in context.warnings)

    def test_links_not_a_list(self):
        """Test YAML that is not a list renders nothing."""
        out = process_containers("{% links %}\nsite: Alpha\n{% endlinks %}")
        assert "friend-links-grid" not in out
        assert "Alpha" not in out

    def test_audio(self):
        """Test audio media becomes a player placeholder with JSON groups."""
        text = (
            "{% media audio %}\n"
            "- title: Album\n"
            "  list:\n"
            "    - https://a.example/1.mp3\n"
            "- url: https://a.example/2.mp3\n"
            "{% endmedia %}"
        )
        div = soup_of(process_containers(text)).find("div", attrs={"data-audio-player": True})
        assert json.loads(div["data-src"]) == [
            {"title": "Album", "list": ["https://a.example/1.mp3"]},
            {"list": ["https://a.example/2.mp3"]},
        ]

    def test_video(self):
        """Test video media keeps only items with a url."""
        text = (
            "{% media video %}\n"
            "- name: Clip\n"
            "  url: https://v.example/c.mp4\n"
            "- name: Broken\n"
            "{% endmedia %}"
        )
        div = soup_of(process_containers(text)).find("div", attrs={"data-video-player": True})
        assert json.loads(div["data-src"]) == [
            {"name": "Clip", "url": "https://v.example/c.mp4"}
        ]

    def test_hexo_tags_disabled(self):
        """Test tags pass through when disabled."""
        text = "{% links %}\n- site: A\n{% endlinks %}"
        assert process_containers(text, ScanOptions(enable_hexo_tags=False)) == text


class TestEncryptedDirective:
    """Tests for :::encrypted{password=...} containers."""

    def test_disabled_by_default(self):
        """Test the directive is plain text unless enabled."""
        out = process_containers(':::encrypted{password="pw"}\nsecret\n:::')
        assert "encrypted-block" not in out

    def test_enabled(self):
        """Test the directive becomes a block carrying its password."""
        options = ScanOptions(enable_encrypted_block=True)
        out = process_containers(':::encrypted{password="p&w"}\nsecret\n:::', options)
        div = soup_of(out).find("div", class_="encrypted-block")

        assert div["data-password"] == "p&w"
        assert "secret" in div.get_text()

    def test_missing_password_is_empty(self):
        """Test a directive without a password carries an empty one."""
        options = ScanOptions(enable_encrypted_block=True)
        out = process_containers(":::encrypted{}\nsecret\n:::", options)
        assert soup_of(out).find("div", class_="encrypted-block")["data-password"] == ""

    def test_parse_directive_attrs(self):
        """Test quoted and bare directive values."""
        assert parse_directive_attrs("password=\"a b\" hint='x' mode=fast") == {
            "password": "a b",
            "hint": "x",
            "mode": "fast",
        }


class TestUnterminatedAndDepth:
    """Tests for unterminated containers and the depth guard."""

    def test_unterminated_consumes_to_end(self):
        """Test an unclosed container takes the rest of the input and warns."""
        context = RenderContext()
        out = process_containers(":::info\nline one\nline two", ScanOptions(), 0, context)
        div = soup_of(out).find("div", class_="note-info")

        assert "line two" in div.get_text()
        assert len(context.warnings) == 1
        assert "Unterminated" in context.warnings[0]

    def test_unterminated_strict(self):
        """Test strict mode turns an unclosed container into an error."""
        with pytest.raises(ShokamarkError, match="Unterminated"):
            process_containers(":::info\nx", ScanOptions(strict=True))

    def test_depth_limit_leaves_text(self):
        """Test scanning stops at the maximum depth."""
        text = ":::note\nx\n:::"
        assert process_containers(text, depth=MAX_CONTAINER_DEPTH) == text

    def test_pathological_nesting_terminates(self):
        """Test 1000 nested openers finish without recursion errors."""
        n = 1000
        text = "\n".join([":::note"] * n + ["deep"] + [":::"] * n)
        out = process_containers(text)

        assert out.count('class="note-block note-note"') == MAX_CONTAINER_DEPTH
        assert "deep" in out

    def test_pathological_unterminated(self):
        """Test 1000 unclosed openers finish too."""
        context = RenderContext()
        text = "\n".join([":::note"] * 1000)
        out = process_containers(text, ScanOptions(), 0, context)
        assert "note-block" in out
        assert context.warnings


class TestSuperSub:
    """Tests for ~sub~ and ^sup^."""

    def test_sub_and_sup(self):
        """Test basic rewriting."""
        assert process_inline_super_sub("H~2~O and x^2^") == (
            "H<sub>2</sub>O and x<sup>2</sup>"
        )

    def test_content_escaped(self):
        """Test content is HTML-escaped."""
        assert process_inline_super_sub("a~<b>~") == "a<sub>&lt;b&gt;</sub>"

    def test_strikethrough_untouched(self):
        """Test ~~strike~~ is not a subscript."""
        assert process_inline_super_sub("~~strike~~") == "~~strike~~"

    def test_escaped_markers(self):
        """Test backslash-escaped markers are left alone."""
        assert process_inline_super_sub(r"\~a~") == r"\~a~"

    def test_code_and_math_protected(self):
        """Test inline code, fences and math are copied verbatim."""
        text = "`H~2~O` and $x^2^$ and\n```\nx^2^\n```\n$$a~b~$$"
        assert process_inline_super_sub(text) == text


class TestProtectedRegions:
    """Tests for process_outside_protected_regions."""

    def test_fn_sees_only_unprotected(self):
        """Test the callback never receives code or math."""
        seen = []

        def collect(segment):
            seen.append(segment)
            return segment.upper()

        out = process_outside_protected_regions("a `b` c $d$ e", collect)
        assert out == "A `b` C $d$ E"
        assert all("`" not in s and "$" not in s for s in seen)

    def test_no_protected_regions(self):
        """Test plain text goes through fn once."""
        assert process_outside_protected_regions("abc", str.upper) == "ABC"

    def test_tag_attributes_protected(self):
        """Test attribute values inside HTML tags are copied verbatim."""
        text = '<div data-password="x^y^z" markdown="1">a~b~</div>'
        assert process_inline_super_sub(text) == (
            '<div data-password="x^y^z" markdown="1">a<sub>b</sub></div>'
        )

    def test_link_destination_protected(self):
        """Test Markdown link URLs are copied verbatim."""
        text = "[home](https://ex.com/~a/b~c) and H~2~O"
        assert process_inline_super_sub(text) == (
            "[home](https://ex.com/~a/b~c) and H<sub>2</sub>O"
        )


class TestPreprocess:
    """Tests for the preprocess entry point."""

    def test_runs_containers_then_super_sub(self):
        """Test both stages run with the context's config."""
        out = preprocess(":::info\nH~2~O\n:::", RenderContext())
        assert "note-info" in out
        assert "H<sub>2</sub>O" in out

    def test_respects_flags(self):
        """Test disabled features are left alone."""
        config = ShokamarkConfig()
        config.content.enable_containers = False
        config.content.enable_hexo_tags = False
        config.content.enable_effects = False
        text = ":::info\nH~2~O\n:::"
        assert preprocess(text, RenderContext(config=config)) == text
