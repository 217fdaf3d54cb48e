import logging

from web3 import Web3
from web3.exceptions import Web3Exception

from quizledger.managers.BalanceManager import BalanceManager
from quizledger.models.DepositRecord import DepositRecord
from quizledger.models.database import db
from quizledger.models.typings import (
    DepositAlreadyCreditedException,
    InvalidDepositException,
    InvalidParameterException,
)
from quizledger.services.TokenService import TokenService

logger = logging.getLogger(__name__)


class DepositManager:
    """
    充值：用户先把代币转到托管钱包，再提交交易哈希，
    核对链上 Transfer 事件后按转入数量给站内余额入账。
    竞猜的支付从站内余额扣除，奖池转账从托管钱包发出，两边对应同一个钱包
    """
    _instance = None

    @classmethod
    def instance(cls):
        """单例模式"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self, token_service=None):
        self.token_service = token_service or TokenService()

    def verify_deposit(self, user_address, tx_hash):
        """
        核对充值交易并入账
        :param user_address: 充值用户（登录地址），必须是 Transfer 的付款方
        :param tx_hash: 充值交易哈希
        :return: {"tx_hash", "amount": 入账数量, "user_balance": 入账后余额}
        """
        if not isinstance(tx_hash, str):
            raise InvalidParameterException("tx_hash must be a string.")
        tx_hash = tx_hash.strip().lower()
        if not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash
        if len(tx_hash) != 66:
            raise InvalidParameterException("tx_hash must be 32 bytes of hex.")
        try:
            bytes.fromhex(tx_hash[2:])
        except ValueError:
            raise InvalidParameterException("tx_hash must be 32 bytes of hex.")

        if DepositRecord.query.filter_by(tx_hash=tx_hash).first() is not None:
            raise DepositAlreadyCreditedException(f"Deposit {tx_hash} has already been credited.")

        try:
            chain_amount = self.token_service.deposited_amount(tx_hash, user_address)
        except (Web3Exception, ValueError, OSError) as e:
            logger.error("查询充值交易 %s 失败: %s", tx_hash, e)
            raise InvalidDepositException(f"Deposit {tx_hash} could not be verified.")

        # 不足一个站内单位的零头不入账
        amount = self.token_service.from_chain_amount(chain_amount)
        if amount <= 0:
            raise InvalidDepositException(f"Transaction {tx_hash} is not a deposit to the token pool.")

        try:
            address = Web3.to_checksum_address(user_address)
            db.session.add(DepositRecord(tx_hash=tx_hash, user_address=address,
                                         amount=amount, chain_amount=str(chain_amount)))
            balance = BalanceManager.instance().credit(address, amount)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("地址 %s 的充值交易 %s 验证成功，入账 %s，当前余额 %s", address, tx_hash, amount, balance)
        return {"tx_hash": tx_hash, "amount": amount, "user_balance": balance}
