from __future__ import annotations

from deepresearch.models.research import DedupLedger, ResearchSession


class TestDedupLedger:
    def test_records_queries_and_urls(self):
        ledger = DedupLedger()
        assert ledger.has_query("solar") is False
        ledger.record_query("solar")
        ledger.record_url("https://a.com")
        assert ledger.has_query("solar") is True
        assert ledger.has_url("https://a.com") is True
        assert ledger.has_url("https://b.com") is False

    def test_query_match_is_exact(self):
        ledger = DedupLedger()
        ledger.record_query("Solar power")
        assert ledger.has_query("solar power") is False

    def test_claims_succeed_only_once(self):
        ledger = DedupLedger()
        assert ledger.claim_url("https://a.com") is True
        assert ledger.claim_url("https://a.com") is False
        assert ledger.claim_query("wind") is True
        assert ledger.claim_query("wind") is False

    def test_recording_twice_never_shrinks(self):
        ledger = DedupLedger()
        ledger.record_url("https://a.com")
        ledger.record_url("https://a.com")
        ledger.record_url("https://b.com")
        assert ledger.seen_urls == {"https://a.com", "https://b.com"}


def test_session_round_trips_through_json():
    session = ResearchSession(id="s1", topic="wind")
    session.ledger.record_query("wind turbines")
    session.ledger.record_url("https://b.com")
    session.ledger.record_url("https://a.com")

    dumped = session.model_dump(mode="json")
    assert dumped["ledger"]["seen_urls"] == ["https://a.com", "https://b.com"]

    restored = ResearchSession.model_validate(dumped)
    assert restored.ledger.has_url("https://a.com")
    assert restored.ledger.has_query("wind turbines")
    assert restored.ledger.claim_url("https://c.com") is True


def test_learning_keeps_at_most_one_follow_up():
    from deepresearch.models.research import Learning

    learning = Learning(
        text="t",
        follow_up_questions=["  first   question ", "second"],
        source_url="https://a.com",
    )
    assert learning.follow_up_questions == ["first question"]
