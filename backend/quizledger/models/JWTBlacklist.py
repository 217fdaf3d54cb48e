from datetime import datetime, timezone

from quizledger.models.database import db


class JWTBlacklist(db.Model):
    """
    失效JWT表模型
    """
    __tablename__ = 'jwt_blacklist'
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(2048), nullable=False)
    invalidated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), comment='失效时间')
