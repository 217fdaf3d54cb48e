from quizledger.models.database import db


class Quiz(db.Model):
    __tablename__ = 'quiz'
    __table_args__ = (
        db.Index('idx_quiz_creator', 'creator'),
        {'comment': '竞猜托管记录表（创建后永不删除，便于审计）'},
    )

    # id 由 QuizCounter 分配，从 0 开始严格递增，不能交给数据库自增
    id = db.Column(db.BigInteger, primary_key=True, autoincrement=False, comment='竞猜ID')
    creator = db.Column(db.String(64), nullable=False, comment='出题人钱包地址')
    answer_commitment = db.Column(db.String(66), nullable=False, comment='答案承诺（keccak256，0x开头）')
    price = db.Column(db.BigInteger, nullable=False, default=0, comment='每次竞猜最低支付额')
    pledged = db.Column(db.BigInteger, nullable=False, default=0, comment='当前奖池')
    created_at = db.Column(db.BigInteger, nullable=False, comment='创建时间（unix秒）')
    expires_at = db.Column(db.BigInteger, nullable=False, comment='截止时间（unix秒，创建后不可修改）')
    metadata_uri = db.Column(db.Text, nullable=False, default='', comment='描述信息URI')
    winner = db.Column(db.String(64), nullable=True, comment='获胜者地址，只会被设置一次')
    claimed_at = db.Column(db.BigInteger, nullable=True, comment='出题人领回奖池时间')
    # 奖池转账已广播但未确认时记录交易，期间竞猜冻结
    pending_tx_hash = db.Column(db.String(66), nullable=True, comment='未确认的奖池转账交易哈希')
    pending_recipient = db.Column(db.String(64), nullable=True, comment='未确认转账的收款地址')
    pending_amount = db.Column(db.BigInteger, nullable=True, comment='未确认转账的金额')
    pending_kind = db.Column(db.String(16), nullable=True, comment='未确认转账对应的通知类型（won/claimed）')

    def is_expired(self, now):
        return now > self.expires_at

    def status(self, now):
        if self.pending_tx_hash is not None:
            return 'payout_pending'
        if self.winner is not None:
            return 'won'
        if self.claimed_at is not None:
            return 'claimed'
        if self.is_expired(now):
            return 'expired'
        return 'open'

    def to_dict(self, now):
        return {
            "id": self.id,
            "creator": self.creator,
            "answer_commitment": self.answer_commitment,
            "price": self.price,
            "pledged": self.pledged,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "metadata_uri": self.metadata_uri,
            "winner": self.winner,
            "claimed_at": self.claimed_at,
            "pending_tx_hash": self.pending_tx_hash,
            "status": self.status(now),
        }
