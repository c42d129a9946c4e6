"""
Tests for the quick similarity score (consolidation/steps/scoring.py)

Run: python -m pytest tests/test_scoring.py -q
"""

import pytest

from consolidation.core.text import significant_tokens, strip_persona_clause
from consolidation.steps.scoring import quick_score


class TestSignificantTokens:
    def test_drops_short_words_and_punctuation(self):
        assert significant_tokens("Cancel my table, now!") == {"cancel", "table"}

    def test_drops_stop_words(self):
        assert significant_tokens("As a member I want to see that booking") == {"booking"}

    def test_empty(self):
        assert significant_tokens("") == set()


class TestQuickScore:
    @pytest.mark.parametrize("a,b", [
        ("As a member, I want to cancel my reservation", "Cancel a table reservation quickly"),
        ("export monthly invoices", "download monthly statements"),
        ("", "anything at all here"),
        ("alpha bravo charlie", "charlie delta"),
    ])
    def test_symmetric(self, a, b):
        assert quick_score(a, b) == quick_score(b, a)

    @pytest.mark.parametrize("text", [
        "As a member, I want to view my reservations",
        "reservation",
        "Export monthly invoices to accounting",
    ])
    def test_identity(self, text):
        assert quick_score(text, text) == 100

    def test_stop_words_ignored(self):
        assert quick_score("I want a reservation", "I would like a reservation") >= 80

    def test_punctuation_and_case_ignored(self):
        assert quick_score("Cancel, RESERVATION!", "cancel reservation") == 100

    def test_jaccard_over_significant_tokens(self):
        # {cancel, reservation, online} vs {cancel, reservation, offline} -> 2/4
        assert quick_score("cancel reservation online", "cancel reservation offline") == 50

    def test_disjoint(self):
        assert quick_score("export invoices", "reset password") == 0

    def test_no_significant_tokens_scores_zero(self):
        assert quick_score("I am a user", "as an admin I want it") == 0

    def test_rounds_half_up(self):
        # 1 shared token of 8 distinct -> 12.5
        assert quick_score("alpha", "alpha bravo charlie delta echo foxtrot golf hotel") == 13

    def test_two_thirds(self):
        assert quick_score("alpha bravo charlie", "alpha bravo") == 67


class TestStripPersonaClause:
    def test_strips_leading_clause(self):
        assert strip_persona_clause("As a member, I want to see bookings") == "I want to see bookings"

    def test_case_insensitive_and_an(self):
        assert strip_persona_clause("as an Account Admin, I need reports") == "I need reports"

    def test_no_clause_unchanged(self):
        assert strip_persona_clause("I want to see bookings") == "I want to see bookings"
