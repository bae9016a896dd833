"""Tests for the rolling consistency vote."""

import pytest

from face_checkpoint.recognize.voter import ConsistencyVoter, is_confirmed


def _voter_with(*names):
    voter = ConsistencyVoter(capacity=5, window=3)
    for name in names:
        voter.record(name)
    return voter


class TestConsistencyVoter:
    def test_first_observation_confirms(self):
        assert ConsistencyVoter().observe("Alice") is True

    def test_second_observation_confirms_during_bootstrap(self):
        assert _voter_with("Bob").observe("Alice") is True

    @pytest.mark.parametrize("prior, name, confirmed", [
        (("Bob", "Carol"), "Alice", False),
        (("Alice", "Bob"), "Alice", True),
        (("Bob", "Carol", "Alice"), "Alice", True),
        # Alice fell out of the last three
        (("Alice", "Bob", "Carol", "Dan"), "Alice", False),
    ])
    def test_vote_reads_window_before_append(self, prior, name, confirmed):
        assert _voter_with(*prior).observe(name) is confirmed

    def test_record_returns_history_with_eviction(self):
        voter = _voter_with("a", "b", "c", "d", "e")
        assert voter.record("f") == ("b", "c", "d", "e", "f")
        assert len(voter) == 5

    @pytest.mark.parametrize("prior, name, confirmed", [
        ((), "Alice", True),
        (("Bob",), "Alice", True),
        (("Bob", "Carol"), "Alice", False),
        (("Alice", "Bob", "Carol"), "Alice", True),
        (("Alice", "Bob", "Carol", "Dan"), "Alice", False),
    ])
    def test_is_confirmed_on_prior_history(self, prior, name, confirmed):
        assert is_confirmed(prior, name, window=3) is confirmed

    def test_observe_records_after_voting(self):
        voter = _voter_with("Bob", "Carol")
        assert voter.observe("Alice") is False
        assert voter.history == ("Bob", "Carol", "Alice")
        assert voter.observe("Alice") is True

    def test_reset_clears_everything(self):
        voter = _voter_with("Alice", "Alice", "Alice")
        voter.reset()
        assert voter.history == ()
        # back to bootstrap
        assert voter.observe("Bob") is True
