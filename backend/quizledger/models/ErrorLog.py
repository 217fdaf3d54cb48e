# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
from datetime import datetime, timezone

from quizledger.models.database import db


class ErrorLog(db.Model):
    """
    错误日志模型，目前只记录转账失败这类集成错误
    """
    __tablename__ = 'error_log'
    error_log_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    error_code = db.Column(db.String(64), nullable=True, comment='异常编码')
    error_event = db.Column(db.Text, nullable=True)
    error_time = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), comment='记录时间')
