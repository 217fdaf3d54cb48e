from datetime import datetime, timezone

from quizledger.models.database import db


class TokenBalance(db.Model):
    __tablename__ = 'token_balances'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True, comment='主键ID')
    user_address = db.Column(db.String(64), unique=True, nullable=False, comment='用户钱包地址')
    token_balance = db.Column(db.BigInteger, default=0, nullable=False, comment='站内代币余额')
    update_time = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc),
                            onupdate=lambda: datetime.now(timezone.utc), comment='更新时间')
