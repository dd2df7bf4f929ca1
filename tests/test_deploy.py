import base64
import json
from unittest.mock import MagicMock

import pytest
from algosdk import account

from saving_circle.deploy import ARGUMENT_NAMES, deploy_circle, parse_circle_args, parse_circle_args_json
from saving_circle.errors import ConfigurationError
from saving_circle.registry import load_deployment

from conftest import suggested_params


@pytest.fixture
def admin():
    return account.generate_account()[1]


def _raw(admin, start="1700000000"):
    return ["1001", "1002", "100", "10", "3", start, "60", "3", admin, "1000000000"]


def test_parse_ordered_arguments(admin):
    args = parse_circle_args(_raw(admin))
    assert args.installment_asset == 1001
    assert args.num_rounds == 3
    assert args.admin == admin
    assert len(args.app_args()) == 10
    assert args.app_args()[0] == (1001).to_bytes(8, "big")
    assert args.as_dict()["round_duration"] == "60"


def test_relative_start_time_uses_ledger_clock(admin):
    args = parse_circle_args(_raw(admin, "+30"), now=lambda: 1_000)
    assert args.start_time == 1_030


def test_relative_start_time_needs_a_clock(admin):
    with pytest.raises(ConfigurationError):
        parse_circle_args(_raw(admin, "+30"))


def test_keyed_arguments(admin):
    raw = dict(zip(ARGUMENT_NAMES, _raw(admin)))
    assert parse_circle_args(raw).reward_asset == 1002
    del raw["max_auction_size"]
    with pytest.raises(ConfigurationError):
        parse_circle_args(raw)


def test_json_arguments(admin):
    assert parse_circle_args_json(json.dumps(_raw(admin))).num_users == 3
    with pytest.raises(ConfigurationError):
        parse_circle_args_json("[1, 2")
    with pytest.raises(ConfigurationError):
        parse_circle_args_json('"1001"')


@pytest.mark.parametrize(
    "index, value",
    [(8, "not-an-address"), (2, "ten"), (2, "-1"), (4, "0"), (6, "0"), (0, "")],
)
def test_invalid_arguments(admin, index, value):
    raw = _raw(admin)
    raw[index] = value
    with pytest.raises(ConfigurationError):
        parse_circle_args(raw)


def test_wrong_argument_count(admin):
    with pytest.raises(ConfigurationError) as exc:
        parse_circle_args(_raw(admin)[:9])
    assert "received 9" in str(exc.value)


def test_deploy_creates_funds_and_records(tmp_path, admin):
    approval = tmp_path / "approval.teal"
    clear = tmp_path / "clear.teal"
    approval.write_text("#pragma version 8\nint 1\n", encoding="utf-8")
    clear.write_text("#pragma version 8\nint 1\n", encoding="utf-8")

    client = MagicMock()
    client.compile.return_value = {"result": base64.b64encode(b"\x08\x81\x01").decode()}
    client.suggested_params.side_effect = lambda: suggested_params()
    client.send_transaction.side_effect = ["CREATETX", "FUNDTX"]
    client.status.return_value = {"last-round": 5}
    client.pending_transaction_info.return_value = {"confirmed-round": 6, "application-index": 77}

    deployer_sk, _ = account.generate_account()
    registry_path = tmp_path / "deployments" / "SavingCircle.json"
    record = deploy_circle(
        client, deployer_sk, approval, clear, parse_circle_args(_raw(admin)),
        fund_microalgos=500_000, registry_path=registry_path,
    )

    assert record.app_id == 77
    assert record.txid == "CREATETX"
    assert client.send_transaction.call_count == 2
    create = client.send_transaction.call_args_list[0][0][0].transaction
    assert create.app_args[8] == parse_circle_args(_raw(admin)).app_args()[8]
    fund = client.send_transaction.call_args_list[1][0][0].transaction
    assert fund.amt == 500_000
    assert fund.receiver == record.address
    assert load_deployment(registry_path).app_id == 77


def test_deploy_missing_teal(tmp_path, admin):
    client = MagicMock()
    with pytest.raises(ConfigurationError):
        deploy_circle(
            client, account.generate_account()[0], tmp_path / "nope.teal", tmp_path / "nope.teal",
            parse_circle_args(_raw(admin)),
        )
    client.send_transaction.assert_not_called()
