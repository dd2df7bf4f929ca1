import json

import pytest

from saving_circle import config as cfg
from saving_circle.errors import ConfigurationError
from saving_circle.registry import DeploymentRecord, save_deployment

BASE_ENV = {"ALGOD_ADDRESS": "http://localhost:4001", "ALGOD_TOKEN": "a" * 64}


def test_env_get_tries_upper_case():
    assert cfg.env_get({"ACCOUNT_1_MNEMONIC": " words "}, "account_1_mnemonic") == "words"
    assert cfg.env_get({"x": "   "}, "x") is None


def test_env_first_aliases_and_required():
    assert cfg.env_first("ALGOD_ADDRESS", "ALGOD_URL", environ={"ALGOD_URL": "u"}) == "u"
    assert cfg.env_first("NOPE", required=False, environ={}) == ""
    with pytest.raises(ConfigurationError):
        cfg.env_first("NOPE", environ={})


def test_env_first_int_rejects_text():
    with pytest.raises(ConfigurationError):
        cfg.env_first_int("CONFIRM_ROUNDS", environ={"CONFIRM_ROUNDS": "ten"})


def test_app_id_from_cli_wins(tmp_path):
    env = dict(BASE_ENV, SAVING_CIRCLE_APP_ID="11")
    assert cfg.resolve_app_id(env, 5, tmp_path / "none.json") == 5


def test_app_id_from_env(tmp_path):
    env = dict(BASE_ENV, CIRCLE_APP_ID="11")
    assert cfg.resolve_app_id(env, None, tmp_path / "none.json") == 11


def test_app_id_from_registry(tmp_path):
    path = tmp_path / "deployments" / "SavingCircle.json"
    save_deployment(path, DeploymentRecord(address="APPADDR", app_id=99, txid="TX"))
    assert cfg.resolve_app_id(BASE_ENV, None, path) == 99


def test_missing_app_id(tmp_path):
    with pytest.raises(ConfigurationError) as exc:
        cfg.resolve_app_id(BASE_ENV, None, tmp_path / "none.json")
    assert "--app-id" in str(exc.value)


def test_labels():
    assert cfg.parse_labels(None) == cfg.DEFAULT_ACCOUNT_LABELS
    assert cfg.parse_labels("alice, bob") == ("alice", "bob")
    with pytest.raises(ConfigurationError):
        cfg.parse_labels(" , ")
    with pytest.raises(ConfigurationError):
        cfg.parse_labels("alice,alice")


def test_load_run_config_from_env(tmp_path):
    env = dict(
        BASE_ENV,
        SAVING_CIRCLE_APP_ID="77",
        AUCTION_SIZE="12",
        ACCOUNT_2_AUCTION_SIZE="40",
        POLL_INTERVAL_SECONDS="2.5",
        CONFIRM_ROUNDS="20",
        ALGOD_HEADERS_JSON=json.dumps({"X-API-Key": "k"}),
    )
    rc = cfg.load_run_config(env, registry_path=tmp_path / "none.json")
    assert rc.app_id == 77
    assert rc.labels == cfg.DEFAULT_ACCOUNT_LABELS
    assert rc.auction_size == "12"
    assert rc.auction_overrides == {"account_2": "40"}
    assert rc.poll_interval == 2.5
    assert rc.confirm_rounds == 20
    assert rc.algod.headers == {"X-API-Key": "k"}
    assert rc.cohort_path is None


def test_cli_arguments_override_env(tmp_path):
    env = dict(BASE_ENV, SAVING_CIRCLE_APP_ID="77", AUCTION_SIZE="12", POLL_INTERVAL_SECONDS="2.5")
    rc = cfg.load_run_config(
        env, app_id=3, auction_size="8", poll_interval=1.0, registry_path=tmp_path / "none.json"
    )
    assert (rc.app_id, rc.auction_size, rc.poll_interval) == (3, "8", 1.0)


def test_defaults(tmp_path):
    rc = cfg.load_run_config(dict(BASE_ENV, SAVING_CIRCLE_APP_ID="1"), registry_path=tmp_path / "x.json")
    assert rc.poll_interval == cfg.POLL_INTERVAL_SECONDS
    assert rc.confirm_rounds == cfg.CONFIRM_ROUNDS
    assert rc.auction_size is None


@pytest.mark.parametrize(
    "extra",
    [
        {"POLL_INTERVAL_SECONDS": "0"},
        {"POLL_INTERVAL_SECONDS": "soon"},
        {"ALGOD_HEADERS_JSON": "{not json"},
        {"ALGOD_HEADERS_JSON": "[1, 2]"},
    ],
)
def test_invalid_env_values(tmp_path, extra):
    env = dict(BASE_ENV, SAVING_CIRCLE_APP_ID="1", **extra)
    with pytest.raises(ConfigurationError):
        cfg.load_run_config(env, registry_path=tmp_path / "x.json")


def test_missing_algod_address(tmp_path):
    with pytest.raises(ConfigurationError):
        cfg.load_run_config({"SAVING_CIRCLE_APP_ID": "1"}, registry_path=tmp_path / "x.json")


def test_reads_process_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("ALGOD_SERVER", "http://node:8080")
    monkeypatch.setenv("SAVING_CIRCLE_APP_ID", "31")
    monkeypatch.delenv("ALGOD_ADDRESS", raising=False)
    monkeypatch.delenv("ALGOD_URL", raising=False)
    rc = cfg.load_run_config(registry_path=tmp_path / "x.json")
    assert rc.algod.address == "http://node:8080"
    assert rc.app_id == 31


def test_per_label_override_with_upper_case_suffix(tmp_path):
    env = dict(BASE_ENV, SAVING_CIRCLE_APP_ID="1", account_1_AUCTION_SIZE="15", account_3_auction_size="9")
    rc = cfg.load_run_config(env, registry_path=tmp_path / "x.json")
    assert rc.auction_overrides == {"account_1": "15", "account_3": "9"}


def test_env_label_lookup_order():
    assert cfg.env_label({"alice_AUCTION_SIZE": "2", "ALICE_AUCTION_SIZE": "3"}, "alice", "auction_size") == "2"
    assert cfg.env_label({"ALICE_AUCTION_SIZE": "3"}, "alice", "auction_size") == "3"
    assert cfg.env_label({}, "alice", "auction_size") is None
