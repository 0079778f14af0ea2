"""Tests for searchengine.indexing.normalizer."""

from searchengine.indexing.normalizer import (
    MAX_TERM_LENGTH,
    TermNormalizer,
    normalize,
    tokenize_identifier,
    tokenize_query,
    tokenize_text,
)

normalizer = TermNormalizer()


class TestTokenizers:
    def test_text_keeps_apostrophes_inside_words(self):
        assert tokenize_text("Don't stop, it's 2024!") == ["Don't", "stop", "it's", "2024"]

    def test_text_splits_letters_from_digits(self):
        assert tokenize_text("mp3 player") == ["mp", "3", "player"]

    def test_identifier_drops_apostrophes(self):
        assert tokenize_identifier("/blog/o'reilly-books") == ["blog", "o", "reilly", "books"]

    def test_query_splits_on_whitespace_only(self):
        assert tokenize_query("  isn't \t python-3  ") == ["isn't", "python-3"]

    def test_empty_input(self):
        assert tokenize_text("") == []
        assert tokenize_text(None) == []
        assert tokenize_identifier("") == []
        assert tokenize_query("") == []


class TestContractions:
    def test_negation_adds_not_before_the_root(self):
        assert normalizer.normalize_token("isn't") == ["not", "be"]

    def test_will_contraction(self):
        assert normalizer.normalize_token("they'll") == ["be", "thei"]

    def test_possessive_has_no_synthetic_term(self):
        assert normalizer.normalize_token("Boston's") == ["boston"]

    def test_irregular_contraction(self):
        assert normalizer.normalize_token("it's") == ["be", "it"]

    def test_are_contraction(self):
        assert normalizer.normalize_token("we're") == ["be", "we"]

    def test_plural_possessive(self):
        assert normalizer.normalize_token("players'") == ["player"]

    def test_be_forms_collapse(self):
        for word in ("is", "Was", "were", "been", "am"):
            assert normalizer.normalize_token(word) == ["be"]

    def test_contraction_matching_ignores_case(self):
        assert normalizer.normalize_token("ISN'T") == ["not", "be"]


class TestStem:
    def test_plural_is_stemmed(self):
        assert normalizer.stem("widgets") == "widget"

    def test_stem_lowercases(self):
        assert normalizer.stem("Widgets") == "widget"

    def test_classic_porter_rules(self):
        assert normalizer.stem("news") == "new"
        assert normalizer.stem("buy") == "bui"

    def test_apostrophes_only_is_skipped(self):
        assert normalizer.stem("''") == ""
        assert normalizer.normalize_token("'") == []

    def test_overlong_root_is_skipped(self):
        assert normalizer.stem("x" * (MAX_TERM_LENGTH + 1)) == ""

    def test_failing_stemmer_skips_the_token(self):
        class BrokenStemmer:
            def stem(self, word):
                raise ValueError("cannot stem")

        broken = TermNormalizer()
        broken.stemmer = BrokenStemmer()
        assert broken.normalize(["anything", "isn't"]) == ["not"]


class TestNormalize:
    def test_ordered_and_deduplicated(self):
        assert normalize(["Widgets", "widget", "isn't", "is"]) == ["widget", "not", "be"]

    def test_deterministic(self):
        tokens = tokenize_text("They'll say the widgets aren't Boston's best")
        assert normalize(tokens) == normalize(tokens)

    def test_count_terms_folds_raw_tokens(self):
        counts = normalizer.count_terms(["Widgets", "Widgets", "widget", "isn't"])
        assert counts == {"widget": 3, "not": 1, "be": 1}

    def test_count_terms_of_nothing(self):
        assert normalizer.count_terms([]) == {}
