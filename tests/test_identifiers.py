"""Tests for IdentifierSet, reconciliation and slug derivation."""

import pytest

from openrouter_model_monitor import IdentifierSet, derive_slug, reconcile


class TestIdentifierSet:
    def test_sorted_ascending(self) -> None:
        ids = IdentifierSet.of(["openai/gpt-4o", "anthropic/claude-3", "google/gemini"])
        assert ids.sorted() == ["anthropic/claude-3", "google/gemini", "openai/gpt-4o"]
        assert list(ids) == ids.sorted()

    def test_duplicates_collapse(self) -> None:
        ids = IdentifierSet.of(["a", "b", "a"])
        assert len(ids) == 2

    def test_equality_ignores_insertion_order(self) -> None:
        assert IdentifierSet.of(["x", "y", "z"]) == IdentifierSet.of(["z", "x", "y"])

    def test_unicode_line_separators_are_ordinary_characters(self) -> None:
        ids = IdentifierSet.of(["vendor/odd\u2028model", "x\x85y"])
        assert "vendor/odd\u2028model" in ids
        assert len(ids) == 2

    @pytest.mark.parametrize("bad", ["", "   ", " a", "a ", "a\nb", "a\rb", 42, None])
    def test_rejects_invalid(self, bad: object) -> None:
        with pytest.raises(ValueError):
            IdentifierSet.of([bad])  # type: ignore[list-item]

    def test_empty_is_falsy(self) -> None:
        assert not IdentifierSet()
        assert not IdentifierSet.of([])

    def test_immutable(self) -> None:
        ids = IdentifierSet.of(["a"])
        with pytest.raises(AttributeError):
            ids.ids = frozenset({"b"})  # type: ignore[misc]


class TestReconcile:
    def test_set_difference(self) -> None:
        previous = IdentifierSet.of(["a", "b"])
        current = IdentifierSet.of(["a", "b", "c"])
        assert reconcile(current, previous) == IdentifierSet.of(["c"])

    def test_removed_entries_are_not_reported(self) -> None:
        previous = IdentifierSet.of(["a", "b", "old"])
        current = IdentifierSet.of(["a", "b", "new"])
        assert reconcile(current, previous) == IdentifierSet.of(["new"])

    def test_independent_of_insertion_order(self) -> None:
        a1 = IdentifierSet.of(["m", "k", "z"])
        a2 = IdentifierSet.of(["z", "m", "k"])
        b1 = IdentifierSet.of(["q", "k", "p", "m"])
        b2 = IdentifierSet.of(["m", "p", "k", "q"])
        assert reconcile(b1, a1) == reconcile(b2, a2) == IdentifierSet.of(["p", "q"])

    def test_idempotent(self) -> None:
        previous = IdentifierSet.of(["a"])
        current = IdentifierSet.of(["a", "b"])
        first = reconcile(current, previous)
        assert reconcile(current, previous) == first
        # inputs are untouched
        assert current == IdentifierSet.of(["a", "b"])
        assert previous == IdentifierSet.of(["a"])

    def test_no_new_entries(self) -> None:
        same = IdentifierSet.of(["a", "b"])
        assert not reconcile(same, same)


class TestDeriveSlug:
    def test_documented_example(self) -> None:
        assert derive_slug("Foo/Bar_1.0") == "foo-bar_1.0"

    def test_keeps_safe_characters(self) -> None:
        assert derive_slug("meta-llama/llama-3.1-8b_instruct") == "meta-llama-llama-3.1-8b_instruct"

    def test_replaces_each_unsafe_character(self) -> None:
        assert derive_slug("a b:c") == "a-b-c"
        assert derive_slug("openai/gpt-4o:free") == "openai-gpt-4o-free"

    def test_deterministic(self) -> None:
        assert derive_slug("Qwen/Qwen2 72B") == derive_slug("Qwen/Qwen2 72B")
