import pytest

from cryptomonitor.core.classifier import classify, is_relevant
from cryptomonitor.core.models import Direction

from tests.conftest import STRANGER_1, STRANGER_2, WATCHED_A, WATCHED_B, make_tx


class TestRelevance:

    def test_watched_sender_unwatched_recipient(self, watch_set):
        assert is_relevant(make_tx("0x01", WATCHED_A, STRANGER_1), watch_set)

    def test_unwatched_sender_watched_recipient(self, watch_set):
        assert is_relevant(make_tx("0x02", STRANGER_1, WATCHED_B), watch_set)

    def test_neither_watched(self, watch_set):
        assert not is_relevant(make_tx("0x03", STRANGER_1, STRANGER_2), watch_set)

    def test_contract_creation_by_unwatched_sender(self, watch_set):
        assert not is_relevant(make_tx("0x04", STRANGER_1, None), watch_set)

    def test_contract_creation_by_watched_sender(self, watch_set):
        assert is_relevant(make_tx("0x05", WATCHED_A, None), watch_set)

    def test_matching_ignores_casing(self, watch_set):
        tx = make_tx("0x06", STRANGER_1, WATCHED_B.lower())
        assert is_relevant(tx, watch_set)


class TestDirection:

    @pytest.mark.parametrize("sender,recipient,expected", [
        (WATCHED_A, WATCHED_B, Direction.SELF_TRANSFER),
        (WATCHED_A, WATCHED_A, Direction.SELF_TRANSFER),
        (STRANGER_1, WATCHED_A, Direction.INBOUND),
        (WATCHED_B, STRANGER_1, Direction.OUTBOUND),
        (WATCHED_B, None, Direction.OUTBOUND),
    ])
    def test_rules(self, watch_set, sender, recipient, expected):
        assert classify(make_tx("0x10", sender, recipient), watch_set) is expected

    def test_transfer_between_two_watched_addresses_is_one_self_transfer(self, watch_set):
        # Direction is decided against the whole watch-list
        tx = make_tx("0x11", WATCHED_A.upper().replace("0X", "0x"), WATCHED_B.lower())
        assert classify(tx, watch_set) is Direction.SELF_TRANSFER

    def test_direction_values(self):
        assert Direction.INBOUND.value == "in"
        assert Direction.OUTBOUND.value == "out"
        assert Direction.SELF_TRANSFER.value == "self"
