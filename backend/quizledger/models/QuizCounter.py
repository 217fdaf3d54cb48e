from quizledger.models.database import db


class QuizCounter(db.Model):
    """
    竞猜ID计数器，整张表只有 id=1 这一行
    """
    __tablename__ = 'quiz_counter'

    SINGLETON_ID = 1

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    next_id = db.Column(db.BigInteger, nullable=False, default=0, comment='下一个待分配的竞猜ID')
