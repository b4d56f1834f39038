"""Tests for printable string extraction."""

from rcspy.services.analyzers.byte_strings import extract_search_corpus, iter_printable_runs


class TestPrintableRuns:
    def test_keeps_runs_of_four_or_more(self):
        data = b"ab\x00abcd\x01xyz12\x00\x7fhi"
        assert list(iter_printable_runs(data)) == ["abcd", "xyz12"]

    def test_trailing_run_is_emitted(self):
        assert list(iter_printable_runs(b"\x00\x01tail")) == ["tail"]

    def test_space_and_tilde_are_printable(self):
        assert list(iter_printable_runs(b"\x00a b~\x00")) == ["a b~"]

    def test_no_run_shorter_than_minimum(self):
        data = bytes(range(256)) * 3 + b"\x00abc\x00de\x00fghij"
        runs = list(iter_printable_runs(data))
        assert runs
        assert all(len(run) >= 4 for run in runs)

    def test_custom_minimum(self):
        assert list(iter_printable_runs(b"ab\x00abc", min_length=2)) == ["ab", "abc"]

    def test_empty_buffer(self):
        assert list(iter_printable_runs(b"")) == []
        assert extract_search_corpus(b"") == ""

    def test_is_lazy(self):
        runs = iter_printable_runs(b"first\x00second")
        assert next(runs) == "first"
        assert next(runs) == "second"


class TestSearchCorpus:
    def test_corpus_joins_runs_with_single_space(self):
        data = b"\x01\x02https://example.com\x00\x00\x00ab\x00AIzaKey1\x03"
        runs = list(iter_printable_runs(data))
        assert extract_search_corpus(data) == " ".join(runs)
        assert extract_search_corpus(data) == "https://example.com AIzaKey1"

    def test_corpus_is_deterministic(self):
        data = b"\x00value-one\x00\x00value-two\xff"
        assert extract_search_corpus(data) == extract_search_corpus(data)
