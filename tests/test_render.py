from __future__ import annotations

from assistant_shells.render import TemplateRenderer, text_to_str


def _renderer(**ctx):
    return TemplateRenderer(
        prompts={"explain": "Explain {this}", "empty": "{missing_value}"},
        context=lambda: ctx,
    )


def test_placeholders_expand_to_tagged_chunks():
    rendered, text = _renderer(file="a.py", this=lambda: "a.py:3").render("fix {file} at {this}")
    assert rendered == "fix a.py at a.py:3"
    assert text == [[("fix ", "text"), ("a.py", "file"), (" at ", "text"), ("a.py:3", "this")]]


def test_unknown_placeholders_stay_literal():
    rendered, text = _renderer().render("keep {nope} and {}")
    assert rendered == "keep {nope} and {}"
    assert text == [[("keep ", "text"), ("{nope}", "text"), (" and {}", "text")]]


def test_named_prompt_then_message():
    rendered, text = _renderer(this="x").render("carefully", prompt="explain")
    assert rendered == "Explain x\ncarefully"
    assert text == [[("Explain ", "text"), ("x", "this")], [("carefully", "text")]]
    assert text_to_str(text) == rendered


def test_unknown_prompt_and_empty_results():
    assert _renderer().render(prompt="nope") == ("", None)
    assert _renderer().render("") == ("", None)
    assert _renderer(missing_value=None).render(prompt="empty") == ("", None)


def test_multiline_values_split_into_lines():
    rendered, text = _renderer(selection="one\ntwo").render("{selection}")
    assert rendered == "one\ntwo"
    assert text == [[("one", "selection")], [("two", "selection")]]
