from datetime import datetime, timezone

from quizledger.models.database import db


class DepositRecord(db.Model):
    __tablename__ = 'deposit_records'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True, comment='主键ID')
    # 同一笔链上交易只能入账一次
    tx_hash = db.Column(db.String(66), unique=True, nullable=False, comment='充值交易哈希')
    user_address = db.Column(db.String(64), nullable=False, comment='充值用户地址')
    amount = db.Column(db.BigInteger, nullable=False, comment='入账的站内代币数量')
    chain_amount = db.Column(db.String(80), nullable=False, comment='链上转入数量（含精度）')
    create_time = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), comment='入账时间')

