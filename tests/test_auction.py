import pytest

from saving_circle.auction import (
    parse_auction_size,
    resolve_all,
    resolve_default,
    resolve_for_participant,
    validate_auction_size,
)
from saving_circle.errors import AuctionSizeExceedsCeiling, ConfigurationError

from conftest import make_participant


def test_protocol_reward_is_the_default():
    assert resolve_default(None, 10) == 10


def test_minimal_unit_when_no_reward():
    assert resolve_default(None, 0) == 1


def test_explicit_override_beats_protocol_reward():
    assert resolve_default("25", 10) == 25


def test_participant_override_wins():
    assert resolve_for_participant("account_2", 10, {"account_2": "40"}) == 40
    assert resolve_for_participant("account_1", 10, {"account_2": "40"}) == 10


@pytest.mark.parametrize("value", ["abc", "0", "-3", "1.5", "", True])
def test_invalid_sizes_rejected(value):
    with pytest.raises(ConfigurationError):
        parse_auction_size(value, "account_1")


def test_ceiling_is_enforced():
    assert validate_auction_size(5, 5, "account_1") == 5
    with pytest.raises(AuctionSizeExceedsCeiling) as exc:
        validate_auction_size(6, 5, "account_1")
    assert exc.value.label == "account_1"
    assert exc.value.ceiling == 5


def test_resolve_all_sets_sizes_on_copies():
    people = [make_participant("account_1", 0), make_participant("account_2", 0)]
    out = resolve_all(people, None, 10, 100, {"account_2": "30"})
    assert [p.auction_size for p in out] == [10, 30]
    assert [p.auction_size for p in people] == [0, 0]
    assert out[0].address == people[0].address


def test_resolve_all_fails_on_any_override_above_ceiling():
    people = [make_participant("account_1", 0), make_participant("account_2", 0)]
    with pytest.raises(AuctionSizeExceedsCeiling):
        resolve_all(people, None, 10, 20, {"account_2": "21"})


def test_resolve_all_checks_default_against_ceiling():
    with pytest.raises(AuctionSizeExceedsCeiling) as exc:
        resolve_all([make_participant("account_1", 0)], "50", 10, 20, {})
    assert exc.value.label == "Default"


def test_unknown_override_is_ignored(caplog):
    out = resolve_all([make_participant("account_1", 0)], None, 10, 100, {"ghost": "3"})
    assert out[0].auction_size == 10
    assert "ghost" in caplog.text
