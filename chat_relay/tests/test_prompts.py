from chat_relay.domain.models import PromptArgument
from chat_relay.prompts import (
    apply_user_template,
    find_missing,
    find_placeholders,
    resolve,
    validate_user_template,
)


def test_resolve_first_occurrence_wins():
    args = [
        {"key": "tone", "value": "friendly"},
        {"key": "language", "value": "English"},
        {"key": "tone", "value": "rude"},
    ]
    assert resolve("Use {tone} tone and {language}.", args) == "Use friendly tone and English."


def test_resolve_duplicate_key_after_trim_is_ignored():
    args = [PromptArgument("tone", "calm"), PromptArgument("  tone ", "loud")]
    assert resolve("{tone}", args) == "calm"


def test_resolve_skips_blank_keys():
    args = [PromptArgument("   ", "x"), PromptArgument("name", "Ada")]
    assert resolve("Hi {name} {}", args) == "Hi Ada {}"


def test_resolve_does_not_match_longer_placeholder():
    args = [PromptArgument("tone", "warm")]
    assert resolve("{tone} {tonexyz}", args) == "warm {tonexyz}"


def test_resolve_is_not_recursive():
    args = [PromptArgument("a", "{b}"), PromptArgument("b", "B")]
    assert resolve("{a} {b}", args) == "{b} B"


def test_resolve_replaces_every_occurrence_literally():
    args = [PromptArgument("x", r"\1 $&")]
    assert resolve("{x}-{x}", args) == r"\1 $&-\1 $&"


def test_resolve_reordered_unique_arguments_are_equivalent():
    a = [PromptArgument("tone", "dry"), PromptArgument("language", "French")]
    b = list(reversed(a))
    template = "Be {tone}; reply in {language}."
    assert resolve(template, a) == resolve(template, b)


def test_find_placeholders_distinct_in_order():
    assert find_placeholders("{b} {a} {b}") == ["b", "a"]


def test_find_missing():
    assert set(find_missing("Hello {name}, you are {mood}", {"name"})) == {"mood"}


def test_validate_user_template():
    assert validate_user_template("Q: {message}") == []
    issues = validate_user_template("no placeholder")
    assert len(issues) == 1
    assert "{message}" in issues[0]


def test_apply_user_template_first_occurrence_only():
    assert apply_user_template("{message} / {message}", "hi") == "hi / {message}"
