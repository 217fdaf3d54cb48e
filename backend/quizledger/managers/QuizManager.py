import logging
import time

from web3 import Web3

from quizledger.managers.Config import Config
from quizledger.models.Quiz import Quiz
from quizledger.models.QuizCounter import QuizCounter
from quizledger.models.QuizEvent import QuizEvent
from quizledger.models.database import db
from quizledger.models.typings import (
    AlreadyWonException,
    CustomException,
    InsufficientPaymentException,
    InvalidDurationException,
    InvalidParameterException,
    NoPendingPayoutException,
    NotCreatorException,
    PayoutPendingException,
    QuizExpiredException,
    QuizNotFoundException,
    QuizStillOpenException,
    SelfPlayForbiddenException,
    TransferFailedException,
    TransferPendingException,
)
from quizledger.services.Commitment import hash_answer, normalize_commitment
from quizledger.services.TokenService import build_value_ledger

logger = logging.getLogger(__name__)


def _is_uint(value):
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _checksum_address(value):
    """地址统一成 checksum 格式，大小写不同的同一地址视为同一人"""
    try:
        return Web3.to_checksum_address(value)
    except (TypeError, ValueError):
        raise InvalidParameterException(f"Invalid address: {value}")


def system_clock():
    return int(time.time())


class QuizManager:
    """
    竞猜托管账本：出题人提交答案承诺创建竞猜，参与者付费竞猜，
    第一个猜中的人拿走整个奖池；过期无人猜中时出题人领回奖池。

    每个写操作都是一个数据库事务：先做完全部校验再修改状态，
    需要转账时转账和状态变更一起提交，转账失败整体回滚。
    链上转账已广播但没等到回执时不回滚，竞猜冻结，由 settle_payout 确认同一笔交易。
    """
    _instance = None
    MAX_DURATION = 90 * 24 * 3600  # 竞猜最长持续90天
    DEFAULT_PAGE_SIZE = 20

    @classmethod
    def instance(cls):
        """单例模式"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self, value_ledger=None, clock=None):
        self.value_ledger = value_ledger if value_ledger is not None else build_value_ledger()
        self.clock = clock or system_clock
        self.max_page_size = int(Config.get_value('max_page_size', default=100))

    def now(self):
        return int(self.clock())

    def _emit(self, quiz_id, event_type, user_address, now, **fields):
        event = QuizEvent(quiz_id=quiz_id, event_type=event_type, user_address=user_address,
                          created_at=now, **fields)
        db.session.add(event)
        logger.info("竞猜 %s 通知 %s: %s %s", quiz_id, event_type, user_address, fields)
        return event

    def _load_for_update(self, quiz_id):
        if not _is_uint(quiz_id):
            raise QuizNotFoundException(f"Quiz {quiz_id} not found.")
        quiz = db.session.get(Quiz, quiz_id, with_for_update=True)
        if quiz is None:
            raise QuizNotFoundException(f"Quiz {quiz_id} not found.")
        return quiz

    def _pay(self, recipient, amount):
        """调用外部账本转账，失败或异常都视为转账失败；已广播未确认的转账原样抛出"""
        try:
            success = self.value_ledger.transfer(recipient, amount)
        except CustomException:
            raise
        except Exception as e:
            logger.exception("转账给 %s 时账本抛出异常", recipient)
            raise TransferFailedException(f"Transfer of {amount} to {recipient} failed: {e}")
        if not success:
            raise TransferFailedException(f"Transfer of {amount} to {recipient} failed.")

    def _apply_payout(self, quiz, recipient, amount, kind, now):
        """转账确认后修改竞猜状态并发出通知"""
        quiz.pledged = 0
        if kind == QuizEvent.WON:
            quiz.winner = recipient
        elif quiz.claimed_at is None:
            quiz.claimed_at = now
        quiz.pending_tx_hash = None
        quiz.pending_recipient = None
        quiz.pending_amount = None
        quiz.pending_kind = None
        self._emit(quiz.id, kind, recipient, now, amount=amount)

    def _settle_payout(self, quiz, recipient, amount, kind, now):
        """
        转出奖池并修改状态，调用方负责提交
        转账已广播但未确认时，记下交易哈希并提交（奖池和本次支付都保留），竞猜冻结到 settle_payout 确认为止
        """
        db.session.flush()
        if amount > 0:
            try:
                self._pay(recipient, amount)
            except TransferPendingException as e:
                quiz.pending_tx_hash = e.tx_hash
                quiz.pending_recipient = recipient
                quiz.pending_amount = amount
                quiz.pending_kind = kind
                db.session.commit()
                logger.warning("竞猜 %s 的奖池转账 %s 未确认，竞猜冻结", quiz.id, e.tx_hash)
                raise
        self._apply_payout(quiz, recipient, amount, kind, now)

    def launch(self, creator, commitment, end_time, price, metadata_uri=""):
        """
        创建竞猜
        :param creator: 出题人地址（调用者）
        :param commitment: 答案承诺，32字节 hex
        :param end_time: 截止时间（unix秒），需满足 now < end_time <= now + 90天
        :param price: 每次竞猜最低支付额
        :param metadata_uri: 描述信息，不做解析
        :return: 新竞猜ID
        """
        creator = _checksum_address(creator)
        now = self.now()
        commitment = normalize_commitment(commitment)
        if not _is_uint(end_time) or end_time <= now or end_time > now + self.MAX_DURATION:
            raise InvalidDurationException("End time must be in the future and at most 90 days away.")
        if not _is_uint(price):
            raise InvalidParameterException("Price must be a non-negative integer.")
        if metadata_uri is None:
            metadata_uri = ""
        if not isinstance(metadata_uri, str):
            raise InvalidParameterException("metadata_uri must be a string.")

        try:
            counter = db.session.get(QuizCounter, QuizCounter.SINGLETON_ID, with_for_update=True)
            if counter is None:
                counter = QuizCounter(id=QuizCounter.SINGLETON_ID, next_id=0)
                db.session.add(counter)
            quiz_id = counter.next_id
            counter.next_id = quiz_id + 1

            quiz = Quiz(
                id=quiz_id,
                creator=creator,
                answer_commitment=commitment,
                price=price,
                pledged=0,
                created_at=now,
                expires_at=end_time,
                metadata_uri=metadata_uri,
            )
            db.session.add(quiz)
            self._emit(quiz_id, QuizEvent.CREATED, creator, now,
                       end_time=end_time, metadata_uri=metadata_uri, price=price)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return quiz_id

    def guess(self, caller, quiz_id, answer, amount):
        """
        竞猜：附带的 amount 无论对错都进入奖池；猜中则整个奖池转给调用者
        :return: {"won": 是否猜中, "amount": 猜中时为奖池金额，猜错时为本次支付, "pledged": 当前奖池}
        """
        if not isinstance(answer, str):
            raise InvalidParameterException("Answer must be a string.")
        if not _is_uint(amount):
            raise InvalidParameterException("Amount must be a non-negative integer.")
        caller = _checksum_address(caller)

        try:
            now = self.now()
            quiz = self._load_for_update(quiz_id)
            if quiz.pending_tx_hash is not None:
                raise PayoutPendingException("Quiz has a payout waiting for confirmation.")
            if quiz.is_expired(now):
                raise QuizExpiredException("Quiz has expired.")
            if caller == quiz.creator:
                raise SelfPlayForbiddenException("Creator cannot play their own quiz.")
            if quiz.winner is not None:
                raise AlreadyWonException("Quiz has already been won.")
            if amount < quiz.price:
                raise InsufficientPaymentException(f"Payment {amount} is below the price {quiz.price}.")

            quiz.pledged += amount
            if hash_answer(answer) != quiz.answer_commitment:
                self._emit(quiz.id, QuizEvent.LOST, caller, now, amount=amount)
                db.session.commit()
                return {"won": False, "amount": amount, "pledged": quiz.pledged}

            payout = quiz.pledged
            self._settle_payout(quiz, caller, payout, QuizEvent.WON, now)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return {"won": True, "amount": payout, "pledged": 0}

    def claim(self, caller, quiz_id):
        """
        出题人在竞猜过期且无人猜中后领回奖池
        重复领取视为成功的空操作：返回0，不会再调用账本转账
        :return: 本次领回金额
        """
        caller = _checksum_address(caller)
        try:
            now = self.now()
            quiz = self._load_for_update(quiz_id)
            if quiz.pending_tx_hash is not None:
                raise PayoutPendingException("Quiz has a payout waiting for confirmation.")
            if caller != quiz.creator:
                raise NotCreatorException("Only the creator can claim this quiz.")
            if not quiz.is_expired(now):
                raise QuizStillOpenException("Quiz is still open.")
            if quiz.winner is not None:
                raise AlreadyWonException("Quiz has already been won.")

            payout = quiz.pledged
            self._settle_payout(quiz, caller, payout, QuizEvent.CLAIMED, now)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return payout

    def settle_payout(self, quiz_id):
        """
        确认冻结竞猜的奖池转账：查询之前广播的同一笔交易，不会重复转账
        交易成功则完成猜中/领取；交易失败或已被丢弃才重新转账；仍未确认抛 TransferPendingException
        :return: {"recipient": 收款地址, "amount": 金额, "event": won/claimed}
        """
        try:
            now = self.now()
            quiz = self._load_for_update(quiz_id)
            tx_hash = quiz.pending_tx_hash
            if tx_hash is None:
                raise NoPendingPayoutException("Quiz has no payout waiting for confirmation.")
            recipient, amount, kind = quiz.pending_recipient, quiz.pending_amount, quiz.pending_kind

            confirmed = self.value_ledger.check_transfer(tx_hash)
            if confirmed is None:
                raise TransferPendingException(f"Transfer {tx_hash} is waiting for confirmation.", tx_hash=tx_hash)
            if confirmed:
                self._apply_payout(quiz, recipient, amount, kind, now)
            else:
                logger.warning("竞猜 %s 的奖池转账 %s 失败，重新转账", quiz.id, tx_hash)
                quiz.pending_tx_hash = None
                self._settle_payout(quiz, recipient, amount, kind, now)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return {"recipient": recipient, "amount": amount, "event": kind}

    def get_quiz(self, quiz_id):
        quiz = db.session.get(Quiz, quiz_id) if _is_uint(quiz_id) else None
        if quiz is None:
            raise QuizNotFoundException(f"Quiz {quiz_id} not found.")
        return quiz

    def get_events(self, quiz_id):
        self.get_quiz(quiz_id)
        return QuizEvent.query.filter_by(quiz_id=quiz_id).order_by(QuizEvent.id.asc()).all()

    def list_all(self):
        """全部竞猜，按ID升序；数据量大时请用 list_quizzes 分页"""
        return Quiz.query.order_by(Quiz.id.asc()).all()

    def list_quizzes(self, offset=0, limit=None):
        if limit is None:
            limit = self.DEFAULT_PAGE_SIZE
        if not _is_uint(offset):
            raise InvalidParameterException("offset must be a non-negative integer.")
        if not _is_uint(limit) or limit < 1 or limit > self.max_page_size:
            raise InvalidParameterException(f"limit must be between 1 and {self.max_page_size}.")
        total = Quiz.query.count()
        items = Quiz.query.order_by(Quiz.id.asc()).offset(offset).limit(limit).all()
        return {"items": items, "total": total, "offset": offset, "limit": limit}
