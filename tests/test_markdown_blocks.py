"""Regression tests for markdown block segmentation and span layout."""

from __future__ import annotations

import dataclasses
import threading
import unittest
from typing import List

from pygments.token import Token

import markdown_blocks
from markdown_blocks import Block, BlockKind, PygmentsHighlighter, RenderSpan, layout_blocks, segment


class TestSegmentScenarios(unittest.TestCase):
    """Concrete inputs with fully specified outputs."""

    def test_empty_input_yields_no_blocks(self) -> None:
        self.assertEqual(segment(""), [])

    def test_blank_only_input_yields_no_blocks(self) -> None:
        self.assertEqual(segment("\n\n   \n\t\n"), [])

    def test_text_code_text(self) -> None:
        text = "Intro line\n\n```python\nprint(1)\n```\n\nOutro line\n"
        self.assertEqual(
            segment(text),
            [
                Block.text("Intro line"),
                Block.code("python", "print(1)"),
                Block.text("Outro line"),
            ],
        )

    def test_heading_then_body(self) -> None:
        self.assertEqual(
            segment("## Title\nBody text\n"),
            [Block.heading(2, "Title"), Block.text("Body text")],
        )

    def test_unterminated_fence_flushes_as_code(self) -> None:
        self.assertEqual(segment("```rust\nfn main() {}\n"), [Block.code("rust", "fn main() {}")])

    def test_indented_reply_with_whitespace_separators(self) -> None:
        text = (
            "\n"
            "        Here is a python hello world program:\n"
            "        \n"
            "        ```python\n"
            '        print("Hello, World!")\n'
            "        ```\n"
            "        \n"
            "        Happy coding!\n"
            "        "
        )
        blocks = segment(text)
        self.assertEqual(len(blocks), 3)
        self.assertEqual(blocks[0], Block.text("Here is a python hello world program:"))
        self.assertEqual(blocks[1], Block.code("python", 'print("Hello, World!")'))
        self.assertEqual(blocks[2], Block.text("Happy coding!"))

    def test_paragraphs_split_on_blank_lines(self) -> None:
        self.assertEqual(
            segment("first\nsecond\n\n\n\nthird"),
            [Block.text("first\nsecond"), Block.text("third")],
        )

    def test_single_paragraph_is_trimmed_input(self) -> None:
        text = "   leading spaces\nmiddle line\ntrailing spaces   "
        self.assertEqual(segment(text), [Block.text(text.strip())])


class TestSegmentEdgeCases(unittest.TestCase):
    """Tie-breaks around fences and heading markers."""

    def test_fence_without_language_has_empty_tag(self) -> None:
        self.assertEqual(segment("```\nls -la\n```"), [Block.code("", "ls -la")])

    def test_fence_language_ignores_surrounding_whitespace(self) -> None:
        self.assertEqual(segment("   ```bash  \necho hi\n   ```"), [Block.code("bash", "echo hi")])

    def test_code_preserves_indentation_and_inner_blank_lines(self) -> None:
        text = "```python\ndef f():\n    x = 1\n\n    return x\n```"
        self.assertEqual(segment(text), [Block.code("python", "def f():\n    x = 1\n\n    return x")])

    def test_empty_fence_pair_yields_nothing(self) -> None:
        self.assertEqual(segment("```js\n```"), [])
        self.assertEqual(segment("```js\n   \n```"), [])

    def test_language_resets_after_close(self) -> None:
        text = "```go\nfmt.Println()\n```\n```\nplain\n```"
        self.assertEqual(segment(text), [Block.code("go", "fmt.Println()"), Block.code("", "plain")])

    def test_open_fence_keeps_pending_text(self) -> None:
        # Opening a fence does not flush text that has no blank line after it.
        self.assertEqual(segment("Run this:\n```sh\nls\n```"), [Block.code("sh", "Run this:\nls")])

    def test_fence_lines_never_appear_in_content(self) -> None:
        for block in segment("text\n\n```py\nx = 1\n```\n\n```\n"):
            self.assertNotIn("```", block.content)

    def test_heading_level_is_not_clamped(self) -> None:
        self.assertEqual(segment("##### Deep"), [Block.heading(5, "Deep")])
        self.assertEqual(segment("######### Very deep")[0].level, 9)

    def test_heading_without_space(self) -> None:
        self.assertEqual(segment("#Title"), [Block.heading(1, "Title")])

    def test_heading_strips_hashes_before_whitespace(self) -> None:
        self.assertEqual(segment("###   Spaced out   "), [Block.heading(3, "Spaced out")])
        self.assertEqual(segment("## # inner"), [Block.heading(2, "# inner")])

    def test_indented_hash_is_text(self) -> None:
        self.assertEqual(segment("  # not a heading"), [Block.text("# not a heading")])

    def test_heading_inside_fence_is_still_a_heading(self) -> None:
        text = "```python\na = 1\n# comment\nb = 2\n```"
        self.assertEqual(
            segment(text),
            [Block.heading(1, "comment"), Block.code("python", "a = 1\nb = 2")],
        )

    def test_heading_does_not_flush_pending_text(self) -> None:
        self.assertEqual(
            segment("line one\n# Heading\nline two"),
            [Block.heading(1, "Heading"), Block.text("line one\nline two")],
        )

    def test_fence_language_drops_leading_whitespace(self) -> None:
        self.assertEqual(segment("``` python\nx = 1\n```"), [Block.code("python", "x = 1")])

    def test_only_newline_splits_lines(self) -> None:
        self.assertEqual(segment("a\x0cb"), [Block.text("a\x0cb")])
        self.assertEqual(segment("x\x1c# h"), [Block.text("x\x1c# h")])
        self.assertEqual(segment("p\u2028# q\x85r"), [Block.text("p\u2028# q\x85r")])
        self.assertEqual(markdown_blocks.count_headings("x\x1c# h\n# real"), 1)

    def test_split_lines_matches_newline_semantics(self) -> None:
        self.assertEqual(markdown_blocks.split_lines(""), [])
        self.assertEqual(markdown_blocks.split_lines("a\n"), ["a"])
        self.assertEqual(markdown_blocks.split_lines("a\r\n\nb\x0bc"), ["a", "", "b\x0bc"])

    def test_windows_line_endings(self) -> None:
        self.assertEqual(
            segment("# Title\r\nbody\r\n\r\n```c\r\nint x;\r\n```\r\n"),
            [Block.heading(1, "Title"), Block.text("body"), Block.code("c", "int x;")],
        )


class TestSegmentProperties(unittest.TestCase):
    """Properties that hold for every input."""

    SAMPLES = [
        "",
        "plain",
        "# A\n## B\ntext\n#C",
        "```py\n# inside\n```\n# outside",
        "para\n\n  # indented\n###\n",
        "Intro line\n\n```python\nprint(1)\n```\n\nOutro line\n",
        "```\nunterminated\n\n# head\nmore",
        "\n\n\n",
        "form\x0c# feed\n# after",
        "sep\u2028# unicode",
    ]

    def test_heading_count_matches_hash_lines(self) -> None:
        for sample in self.SAMPLES:
            with self.subTest(sample=sample):
                headings = [b for b in segment(sample) if b.kind is BlockKind.HEADING]
                self.assertEqual(len(headings), markdown_blocks.count_headings(sample))

    def test_no_block_is_empty(self) -> None:
        for sample in self.SAMPLES:
            for block in segment(sample):
                if block.kind is not BlockKind.HEADING:
                    self.assertTrue(block.content)
                    self.assertEqual(block.content, block.content.strip())

    def test_every_content_line_is_kept(self) -> None:
        sample = "alpha\nbeta\n\n```py\ngamma\n```\n\n# delta\nepsilon"
        joined = "\n".join(block.content for block in segment(sample))
        for word in ("alpha", "beta", "gamma", "delta", "epsilon"):
            self.assertEqual(joined.count(word), 1)

    def test_segmenting_is_deterministic(self) -> None:
        for sample in self.SAMPLES:
            self.assertEqual(segment(sample), segment(sample))

    def test_concurrent_calls_agree(self) -> None:
        sample = "# T\n\n" + "\n\n".join(f"para {i}\n```py\nx = {i}\n```" for i in range(50))
        expected = segment(sample)
        results: List[List[Block]] = []
        lock = threading.Lock()

        def _worker() -> None:
            blocks = segment(sample)
            with lock:
                results.append(blocks)

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(results), 8)
        for blocks in results:
            self.assertEqual(blocks, expected)


class TestBlockModel(unittest.TestCase):
    def test_factories_set_payload(self) -> None:
        code = Block.code("rust", "fn x() {}")
        self.assertIs(code.kind, BlockKind.CODE)
        self.assertEqual(code.language, "rust")
        heading = Block.heading(3, "H")
        self.assertIs(heading.kind, BlockKind.HEADING)
        self.assertEqual(heading.level, 3)
        text = Block.text("t")
        self.assertEqual((text.language, text.level), ("", 0))

    def test_blocks_are_immutable(self) -> None:
        block = Block.text("fixed")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            block.content = "changed"  # type: ignore[misc]

    def test_str_forms(self) -> None:
        self.assertEqual(str(Block.code("py", "x")), "Code('py', 'x')")
        self.assertEqual(str(Block.heading(2, "T")), "Heading(2, 'T')")
        self.assertEqual(str(Block.text("t")), "Text('t')")

    def test_heading_helpers(self) -> None:
        self.assertEqual(markdown_blocks.heading_level("### x"), 3)
        self.assertEqual(markdown_blocks.heading_level("plain"), 0)
        self.assertEqual(markdown_blocks.strip_heading("##  x  "), "x")


class TestLayoutBlocks(unittest.TestCase):
    """Span layout shared by the tkinter view."""

    def test_layout_without_highlighter(self) -> None:
        blocks = [Block.heading(2, "Title"), Block.text("Body"), Block.code("py", "x = 1")]
        self.assertEqual(
            layout_blocks(blocks),
            [
                RenderSpan("Title\n", ("heading", "h2")),
                RenderSpan("\n", ("gap",)),
                RenderSpan("Body\n", ("text",)),
                RenderSpan("\n", ("gap",)),
                RenderSpan("py\n", ("code-lang",)),
                RenderSpan("x = 1", ("code",)),
                RenderSpan("\n", ("code",)),
            ],
        )

    def test_code_without_language_has_no_caption(self) -> None:
        spans = layout_blocks([Block.code("", "ls")])
        self.assertEqual(spans, [RenderSpan("ls", ("code",)), RenderSpan("\n", ("code",))])

    def test_deep_headings_share_last_style(self) -> None:
        spans = layout_blocks([Block.heading(9, "Deep")])
        self.assertEqual(spans[0].tags, ("heading", "h6"))
        self.assertEqual(markdown_blocks.heading_tag(1), "h1")

    def test_empty_sequence(self) -> None:
        self.assertEqual(layout_blocks([]), [])

    def test_highlighted_code_reassembles(self) -> None:
        code = "def f():\n    return 1  # one"
        spans = layout_blocks([Block.code("python", code)], PygmentsHighlighter())
        code_spans = [span for span in spans if span.tags[0] == "code"][:-1]
        self.assertEqual("".join(span.text for span in code_spans), code)
        self.assertIn(RenderSpan("def", ("code", "tok-keyword")), code_spans)
        self.assertIn(RenderSpan("f", ("code", "tok-function")), code_spans)
        self.assertTrue(any(span.tags[1] == "tok-comment" for span in code_spans))


class TestPygmentsHighlighter(unittest.TestCase):
    def setUp(self) -> None:
        self.highlighter = PygmentsHighlighter()

    def test_unknown_language_falls_back_to_plain_text(self) -> None:
        tokens = list(self.highlighter.tokens("some code", "no-such-language"))
        self.assertEqual("".join(value for _, value in tokens), "some code")
        self.assertTrue(all(tag == "tok-plain" for tag, _ in tokens))

    def test_empty_language_falls_back_to_plain_text(self) -> None:
        tokens = list(self.highlighter.tokens("a\nb", ""))
        self.assertEqual("".join(value for _, value in tokens), "a\nb")

    def test_language_lookup_is_case_insensitive(self) -> None:
        self.assertEqual(self.highlighter.lexer_for("Python").name, self.highlighter.lexer_for("python").name)

    def test_tag_for_maps_token_families(self) -> None:
        self.assertEqual(PygmentsHighlighter.tag_for(Token.Comment.Single), "tok-comment")
        self.assertEqual(PygmentsHighlighter.tag_for(Token.Keyword.Constant), "tok-keyword")
        self.assertEqual(PygmentsHighlighter.tag_for(Token.Name.Builtin.Pseudo), "tok-builtin")
        self.assertEqual(PygmentsHighlighter.tag_for(Token.Literal.String.Double), "tok-string")
        self.assertEqual(PygmentsHighlighter.tag_for(Token.Text), "tok-plain")

    def test_every_tag_is_known(self) -> None:
        tokens = self.highlighter.tokens("@dec\nclass A:\n    x = len('s') + 2\n", "python")
        for tag, _ in tokens:
            self.assertIn(tag, markdown_blocks.TOKEN_TAGS)


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    unittest.main(verbosity=2)
