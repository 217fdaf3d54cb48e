from datetime import datetime, timedelta, timezone

import jwt
import pytest

from quizledger.managers.Config import Config
from quizledger.managers.QuizManager import QuizManager
from quizledger.models.database import db
from quizledger.models.typings import TransferPendingException
from server import create_app

JWT_SECRET = "test-secret"
START = 1_700_000_000
DAY = 24 * 3600

CREATOR = "0x" + "1" * 40
PLAYER = "0x" + "2" * 40
PLAYER2 = "0x" + "3" * 40


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeLedger:
    def __init__(self):
        self.transfers = []
        self.fail = False
        self.error = None
        # 设置后下一次转账以“已广播未确认”结束，值为交易哈希
        self.pending = None
        self.broadcasts = []
        self.results = {}

    def transfer(self, recipient, amount):
        if self.error is not None:
            raise self.error
        if self.pending is not None:
            tx_hash, self.pending = self.pending, None
            self.broadcasts.append((tx_hash, recipient, amount))
            raise TransferPendingException(f"Transfer {tx_hash} is waiting for confirmation.", tx_hash=tx_hash)
        if self.fail:
            return False
        self.transfers.append((recipient, amount))
        return True

    def check_transfer(self, tx_hash):
        return self.results.get(tx_hash)


@pytest.fixture(autouse=True)
def _config():
    Config.load_dict({"JWT_SECRET_KEY": JWT_SECRET, "max_page_size": 50, "value_ledger": "balance"})
    yield
    Config._instance = None


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def app(clock, ledger):
    manager = QuizManager(value_ledger=ledger, clock=clock)
    app = create_app({"SQLALCHEMY_DATABASE_URI": "sqlite://", "TESTING": True}, quiz_manager=manager)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def manager(app):
    return app.extensions['quiz_manager']


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(address, secret=JWT_SECRET):
    token = jwt.encode({"user_address": address, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
                       secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}
