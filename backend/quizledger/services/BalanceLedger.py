import logging

from quizledger.managers.BalanceManager import BalanceManager

logger = logging.getLogger(__name__)


class BalanceLedger:
    """
    站内余额账本：transfer 直接给收款人入账，和竞猜状态变更处在同一个数据库事务里，
    提交失败时一起回滚
    """

    def __init__(self, balance_manager=None):
        self.balance_manager = balance_manager or BalanceManager.instance()

    def transfer(self, recipient, amount):
        new_balance = self.balance_manager.credit(recipient, amount)
        logger.info("站内转账 %s -> %s，当前余额 %s", amount, recipient, new_balance)
        return True
