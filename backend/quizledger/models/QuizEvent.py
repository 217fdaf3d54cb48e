from quizledger.models.database import db


class QuizEvent(db.Model):
    __tablename__ = 'quiz_events'
    __table_args__ = (
        db.Index('idx_quiz_event_quiz_id', 'quiz_id'),
        {'comment': '竞猜通知记录（创建/猜错/猜中/领回）'},
    )

    CREATED = 'created'
    LOST = 'lost'
    WON = 'won'
    CLAIMED = 'claimed'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True, comment='主键ID')
    quiz_id = db.Column(db.BigInteger, nullable=False, comment='竞猜ID')
    event_type = db.Column(db.String(16), nullable=False, comment='通知类型')
    user_address = db.Column(db.String(64), nullable=False, comment='触发地址')
    amount = db.Column(db.BigInteger, nullable=True, comment='本次金额')
    price = db.Column(db.BigInteger, nullable=True, comment='创建时的价格')
    end_time = db.Column(db.BigInteger, nullable=True, comment='创建时的截止时间')
    metadata_uri = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.BigInteger, nullable=False, comment='通知时间（unix秒）')

    def to_dict(self):
        data = {
            "quiz_id": self.quiz_id,
            "event_type": self.event_type,
            "user_address": self.user_address,
            "created_at": self.created_at,
        }
        if self.event_type == self.CREATED:
            data.update({
                "end_time": self.end_time,
                "metadata_uri": self.metadata_uri,
                "price": self.price,
            })
        else:
            data["amount"] = self.amount
        return data
