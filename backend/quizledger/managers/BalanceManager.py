from quizledger.models.TokenBalance import TokenBalance
from quizledger.models.database import db
from quizledger.models.typings import InsufficientBalanceException, InvalidParameterException


class BalanceManager:
    """
    站内代币余额管理器
    用于：竞猜时扣除附带的支付、站内账本模式下给获胜者/出题人入账
    这里的方法都不提交事务，由调用方（QuizManager / 路由）统一提交或回滚
    """
    _instance = None

    @classmethod
    def instance(cls):
        """单例模式"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _get_or_create(self, user_address):
        record = TokenBalance.query.filter_by(user_address=user_address).with_for_update().first()
        if record is None:
            record = TokenBalance(user_address=user_address, token_balance=0)
            db.session.add(record)
        return record

    def get_balance(self, user_address):
        record = TokenBalance.query.filter_by(user_address=user_address).first()
        return record.token_balance if record else 0

    def credit(self, user_address, amount):
        """增加余额"""
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise InvalidParameterException("入账金额必须是非负整数")
        record = self._get_or_create(user_address)
        record.token_balance += amount
        db.session.flush()
        return record.token_balance

    def debit(self, user_address, amount):
        """扣除余额，余额不足直接抛异常"""
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise InvalidParameterException("扣除金额必须是非负整数")
        record = TokenBalance.query.filter_by(user_address=user_address).with_for_update().first()
        current = record.token_balance if record else 0
        if current < amount:
            raise InsufficientBalanceException(f"余额不足（当前{current}，需支付{amount}）")
        if amount == 0:
            return current
        record.token_balance -= amount
        db.session.flush()
        return record.token_balance
