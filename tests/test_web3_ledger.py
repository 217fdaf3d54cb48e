from unittest.mock import MagicMock

import pytest
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from quizledger.managers.BalanceManager import BalanceManager
from quizledger.managers.Config import Config
from quizledger.models.database import db
from quizledger.models.typings import PayoutPendingException, TransferPendingException
from quizledger.services.Commitment import hash_answer
from quizledger.services.TokenService import Web3TokenLedger

from conftest import CREATOR, DAY, JWT_SECRET, PLAYER, START, auth_headers

POOL = "0x" + "4" * 40
TOKEN = "0x" + "5" * 40
SENT_TX = "0x" + "12" * 32


@pytest.fixture
def web3():
    Config.load_dict({
        "JWT_SECRET_KEY": JWT_SECRET,
        "web3_chain_id": 97,
        "web3_token_pool_address": POOL,
        "web3_token_pool_private_key": "0x" + "11" * 32,
        "web3_token_contract_address": TOKEN,
        "web3_token_decimals": 2,
    })
    web3 = MagicMock()
    web3.is_connected.return_value = True
    web3.eth.get_transaction_count.return_value = 7
    web3.to_wei.return_value = 10_000_000_000
    web3.eth.account.sign_transaction.return_value = MagicMock(raw_transaction=b"raw")
    web3.eth.send_raw_transaction.return_value = b"\x12" * 32
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    return web3


@pytest.fixture
def ledger(web3):
    return Web3TokenLedger(web3=web3)


def test_transfer_sends_erc20_transfer(web3):
    ledger = Web3TokenLedger(web3=web3)
    assert ledger.transfer(PLAYER, 5) is True

    contract = web3.eth.contract.return_value
    contract.functions.transfer.assert_called_once_with(PLAYER, 500)
    tx_params = contract.functions.transfer.return_value.build_transaction.call_args[0][0]
    assert tx_params["chainId"] == 97
    assert tx_params["nonce"] == 7
    web3.eth.send_raw_transaction.assert_called_once_with(b"raw")


def test_reverted_receipt_is_failure(web3):
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
    assert Web3TokenLedger(web3=web3).transfer(PLAYER, 5) is False


def test_disconnected_node_is_failure(web3):
    web3.is_connected.return_value = False
    assert Web3TokenLedger(web3=web3).transfer(PLAYER, 5) is False
    web3.eth.send_raw_transaction.assert_not_called()


@pytest.mark.parametrize("error", [Web3Exception("nonce too low"), TimeExhausted("no receipt")])
def test_errors_before_broadcast_are_failure(web3, error):
    web3.eth.send_raw_transaction.side_effect = error
    assert Web3TokenLedger(web3=web3).transfer(PLAYER, 5) is False


@pytest.mark.parametrize("error", [TimeExhausted("no receipt"), OSError("connection reset")])
def test_missing_receipt_after_broadcast_is_pending(web3, error):
    web3.eth.wait_for_transaction_receipt.side_effect = error
    with pytest.raises(TransferPendingException) as exc:
        Web3TokenLedger(web3=web3).transfer(PLAYER, 5)
    assert exc.value.tx_hash == SENT_TX


def test_check_transfer_reads_receipt(web3):
    ledger = Web3TokenLedger(web3=web3)
    web3.eth.get_transaction_receipt.return_value = {"status": 1}
    assert ledger.check_transfer(SENT_TX) is True
    web3.eth.get_transaction_receipt.return_value = {"status": 0}
    assert ledger.check_transfer(SENT_TX) is False


def test_check_transfer_still_in_mempool(web3):
    web3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
    web3.eth.get_transaction.return_value = {"hash": SENT_TX}
    assert Web3TokenLedger(web3=web3).check_transfer(SENT_TX) is None


def test_check_transfer_dropped(web3):
    web3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
    web3.eth.get_transaction.side_effect = TransactionNotFound("unknown")
    assert Web3TokenLedger(web3=web3).check_transfer(SENT_TX) is False


def test_check_transfer_rpc_error_is_unknown(web3):
    web3.eth.get_transaction_receipt.side_effect = Web3Exception("rpc down")
    assert Web3TokenLedger(web3=web3).check_transfer(SENT_TX) is None


def test_timed_out_payout_is_broadcast_once(web3, manager):
    web3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("no receipt"), {"status": 1}]
    manager.launch(CREATOR, hash_answer("blue"), START + DAY, 0, "")

    with pytest.raises(TransferPendingException):
        manager.guess(PLAYER, 0, "blue", 5)
    with pytest.raises(PayoutPendingException):
        manager.guess(PLAYER, 0, "blue", 5)
    assert web3.eth.send_raw_transaction.call_count == 1
    assert manager.get_quiz(0).pending_tx_hash == SENT_TX

    web3.eth.get_transaction_receipt.return_value = {"status": 1}
    manager.settle_payout(0)
    web3.eth.get_transaction_receipt.assert_called_with(SENT_TX)
    assert web3.eth.send_raw_transaction.call_count == 1
    quiz = manager.get_quiz(0)
    assert quiz.winner == PLAYER
    assert quiz.pledged == 0


def test_timed_out_payout_over_http(web3, client):
    BalanceManager.instance().credit(PLAYER, 20)
    db.session.commit()
    client.post("/quiz/launch", headers=auth_headers(CREATOR),
                json={"commitment": hash_answer("blue"), "end_time": START + DAY, "price": 10})
    web3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")

    resp = client.post("/quiz/0/guess", headers=auth_headers(PLAYER), json={"answer": "blue", "amount": 10})
    assert resp.status_code == 202
    assert resp.get_json()["data"] == {"error": "TransferPending", "tx_hash": SENT_TX}
    # 已广播的竞猜不回滚，支付已扣除
    assert BalanceManager.instance().get_balance(PLAYER) == 10

    resp = client.post("/quiz/0/guess", headers=auth_headers(PLAYER), json={"answer": "blue", "amount": 10})
    assert resp.status_code == 409
    assert resp.get_json()["data"]["error"] == "PayoutPending"
    assert BalanceManager.instance().get_balance(PLAYER) == 10
    assert web3.eth.send_raw_transaction.call_count == 1

    quiz = client.get("/quiz/0").get_json()["data"]["quiz"]
    assert quiz["status"] == "payout_pending"
    assert quiz["pending_tx_hash"] == SENT_TX

    web3.eth.get_transaction_receipt.return_value = {"status": 1}
    resp = client.post("/quiz/0/settle", headers=auth_headers(CREATOR))
    assert resp.get_json()["data"] == {"quiz_id": 0, "recipient": PLAYER, "amount": 10, "event": "won"}
    assert client.get("/quiz/0").get_json()["data"]["quiz"]["winner"] == PLAYER
    assert web3.eth.send_raw_transaction.call_count == 1
