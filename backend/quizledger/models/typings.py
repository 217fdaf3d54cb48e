# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
import logging

from quizledger.models.ErrorLog import ErrorLog
from quizledger.models.database import db

logger = logging.getLogger(__name__)


class CustomException(Exception):
    """
    自定义的异常类的基类
    code 给前端判断错误类型，http_status 给路由层返回状态码
    """
    code = "error"
    http_status = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def record_error(self):
        """
        把异常记录到数据库中，调用方需要先回滚业务事务，避免把半成品状态一起提交
        :return:
        """
        try:
            error = ErrorLog(error_code=self.code, error_event=self.message)
            db.session.add(error)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error("[CustomException] %s (无法记录到数据库: %s)", self.message, e)


class ConfigOperationException(CustomException):
    """
    配置文件操作异常类
    """
    code = "ConfigOperation"
    http_status = 500


class InvalidParameterException(CustomException):
    """
    请求参数类型或取值不合法
    """
    code = "InvalidParameter"


class InvalidCommitmentException(CustomException):
    """
    答案承诺为空、全零或者不是32字节
    """
    code = "InvalidCommitment"


class InvalidDurationException(CustomException):
    """
    截止时间不在 (now, now + 90天] 之内
    """
    code = "InvalidDuration"


class QuizNotFoundException(CustomException):
    code = "QuizNotFound"
    http_status = 404


class QuizExpiredException(CustomException):
    code = "QuizExpired"
    http_status = 409


class SelfPlayForbiddenException(CustomException):
    code = "SelfPlayForbidden"
    http_status = 403


class AlreadyWonException(CustomException):
    code = "AlreadyWon"
    http_status = 409


class InsufficientPaymentException(CustomException):
    code = "InsufficientPayment"


class NotCreatorException(CustomException):
    code = "NotCreator"
    http_status = 403


class QuizStillOpenException(CustomException):
    code = "QuizStillOpen"
    http_status = 409


class InsufficientBalanceException(CustomException):
    """
    站内代币余额不足以支付本次竞猜
    """
    code = "InsufficientBalance"


class TransferFailedException(CustomException):
    """
    转账失败，整个操作已回滚，这类错误需要落库排查
    """
    code = "TransferFailed"
    http_status = 502


class TransferPendingException(CustomException):
    """
    转账交易已经广播但还没确认，竞猜被冻结，等待 settle 查询同一笔交易的结果
    """
    code = "TransferPending"
    http_status = 202

    def __init__(self, message, tx_hash=None):
        super().__init__(message)
        self.tx_hash = tx_hash


class PayoutPendingException(CustomException):
    """
    竞猜还有未确认的奖池转账，暂停竞猜和领取
    """
    code = "PayoutPending"
    http_status = 409


class NoPendingPayoutException(CustomException):
    code = "NoPendingPayout"
    http_status = 409


class InvalidDepositException(CustomException):
    """
    充值交易不存在、执行失败，或者没有向托管钱包转入代币
    """
    code = "InvalidDeposit"


class DepositAlreadyCreditedException(CustomException):
    code = "DepositAlreadyCredited"
    http_status = 409
