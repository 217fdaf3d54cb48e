# -*- coding: utf-8 -*-
import logging
import traceback
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from eth_account.messages import encode_defunct
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS, cross_origin
from web3 import Web3

from quizledger.managers.BalanceManager import BalanceManager
from quizledger.managers.Config import Config
from quizledger.managers.DepositManager import DepositManager
from quizledger.managers.QuizManager import QuizManager
from quizledger.models.JWTBlacklist import JWTBlacklist
from quizledger.models.database import db
from quizledger.models.typings import (
    CustomException,
    InvalidParameterException,
    TransferFailedException,
    TransferPendingException,
)

logger = logging.getLogger(__name__)

quiz_bp = Blueprint('quiz', __name__)
w3 = Web3()


def success(data=None, message="success"):
    return jsonify({
        "status": "success",
        "data": data or {},
        "message": message
    })


def error(message, data=None, http_status=200):
    return jsonify({
        "status": "error",
        "data": data or {},
        "message": message
    }), http_status


def get_quiz_manager():
    return current_app.extensions['quiz_manager']


def get_deposit_manager():
    return current_app.extensions['deposit_manager']


def is_token_blacklisted(token):
    """
    判断jwt是否已经失效
    :param token: jwt
    :return:
    """
    return JWTBlacklist.query.filter_by(token=token).first() is not None


def token_required(f):
    """
    鉴权，并从jwt中获取用户地址
    :param f:
    :return: 用户地址
    """
    @wraps(f)
    def decorator(*args, **kwargs):
        token = None
        auth_header = request.headers.get('Authorization')

        if auth_header and auth_header.startswith('Bearer '):
            token = auth_header[7:]

        if not token:
            return error("Token is missing!", http_status=401)

        try:
            decoded = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=["HS256"])
            user_address = Web3.to_checksum_address(decoded['user_address'])
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as e:
            return error(f"Invalid token: {str(e)}", http_status=401)

        if is_token_blacklisted(token):
            return error("Token is blacklisted.", http_status=401)

        return f(user_address, *args, **kwargs)

    return decorator


def _json_body():
    return request.get_json(force=True, silent=True) or {}


def _uint_arg(data, key, default=None):
    """请求里的金额/时间必须是非负整数，不接受浮点和布尔"""
    value = data.get(key, default)
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidParameterException(f"{key} must be a non-negative integer.")
    return value


@quiz_bp.app_errorhandler(CustomException)
def handle_custom_exception(e):
    # 先回滚，竞猜附带支付的扣款也在这个事务里
    db.session.rollback()
    data = {"error": e.code}
    if isinstance(e, TransferPendingException):
        data["tx_hash"] = e.tx_hash
    if isinstance(e, (TransferFailedException, TransferPendingException)):
        e.record_error()
    logger.warning("请求 %s 失败: %s %s", request.path, e.code, e.message)
    return error(e.message, data=data, http_status=e.http_status)


@quiz_bp.route('/', methods=['GET', 'POST'])
def index():
    return "ok"


@quiz_bp.route('/login', methods=['POST'])
@cross_origin()
def login():
    data = _json_body()
    signature = data.get('signature')
    ts = data.get('ts')
    if not signature or not ts:
        return error("Signature information is missing or invalid.", http_status=400)
    try:
        signable_message = encode_defunct(text=str(ts))
        user_address = w3.eth.account.recover_message(signable_message, signature=signature)
    except Exception as e:
        logger.info("登录签名校验失败: %s", e)
        return error("Signature information is missing or invalid.", http_status=400)

    token = jwt.encode({'user_address': user_address,
                        'exp': datetime.now(timezone.utc) + timedelta(hours=current_app.config['JWT_EXPIRE_HOURS'])},
                       current_app.config['JWT_SECRET_KEY'], algorithm="HS256")
    return success({
        "access_token": token,
        "user_address": user_address,
        "user_balance": BalanceManager.instance().get_balance(user_address)
    }, "Login successful.")


@quiz_bp.route('/logout', methods=['GET'])
@cross_origin()
@token_required
def logout(user_address):
    token = request.headers.get('Authorization')[7:]
    db.session.add(JWTBlacklist(token=token))
    db.session.commit()
    return success(message="User logged out successfully")


@quiz_bp.route('/get_user_balance', methods=['GET'])
@cross_origin()
@token_required
def get_user_balance(user_address):
    return success({"user_balance": BalanceManager.instance().get_balance(user_address)}, "Query successful")


@quiz_bp.route('/deposit', methods=['POST'])
@cross_origin()
@token_required
def deposit(user_address):
    """用户向托管钱包转账后提交交易哈希，核对通过后计入站内余额"""
    data = _json_body()
    result = get_deposit_manager().verify_deposit(user_address, data.get('tx_hash'))
    return success(result, "Deposit credited.")


@quiz_bp.route('/quiz/launch', methods=['POST'])
@cross_origin()
@token_required
def launch_quiz(user_address):
    data = _json_body()
    quiz_id = get_quiz_manager().launch(
        creator=user_address,
        commitment=data.get('commitment'),
        end_time=_uint_arg(data, 'end_time'),
        price=_uint_arg(data, 'price'),
        metadata_uri=data.get('metadata_uri', ''),
    )
    return success({"quiz_id": quiz_id}, "Quiz launched.")


@quiz_bp.route('/quiz/<int:quiz_id>/guess', methods=['POST'])
@cross_origin()
@token_required
def guess_quiz(user_address, quiz_id):
    data = _json_body()
    answer = data.get('answer')
    amount = _uint_arg(data, 'amount')
    if not isinstance(answer, str):
        raise InvalidParameterException("answer must be a string.")

    # 附带的支付从站内余额扣除，和竞猜在同一个事务里，竞猜被拒绝时回滚退回
    BalanceManager.instance().debit(user_address, amount)
    outcome = get_quiz_manager().guess(user_address, quiz_id, answer, amount)
    return success(outcome, "Correct answer!" if outcome["won"] else "Incorrect answer!")


@quiz_bp.route('/quiz/<int:quiz_id>/claim', methods=['POST'])
@cross_origin()
@token_required
def claim_quiz(user_address, quiz_id):
    payout = get_quiz_manager().claim(user_address, quiz_id)
    return success({"quiz_id": quiz_id, "amount": payout}, "Claim successful.")


@quiz_bp.route('/quiz/<int:quiz_id>/settle', methods=['POST'])
@cross_origin()
@token_required
def settle_quiz(user_address, quiz_id):
    result = get_quiz_manager().settle_payout(quiz_id)
    result["quiz_id"] = quiz_id
    return success(result, "Payout settled.")


@quiz_bp.route('/quiz/<int:quiz_id>', methods=['GET'])
@cross_origin()
def get_quiz(quiz_id):
    manager = get_quiz_manager()
    quiz = manager.get_quiz(quiz_id)
    return success({"quiz": quiz.to_dict(manager.now())}, "Query successful")


@quiz_bp.route('/quiz/<int:quiz_id>/events', methods=['GET'])
@cross_origin()
def get_quiz_events(quiz_id):
    events = get_quiz_manager().get_events(quiz_id)
    return success({"events": [event.to_dict() for event in events]}, "Query successful")


@quiz_bp.route('/quizzes', methods=['GET'])
@cross_origin()
def list_quizzes():
    manager = get_quiz_manager()
    offset = _uint_arg(request.args, 'offset', 0)
    limit = _uint_arg(request.args, 'limit', manager.DEFAULT_PAGE_SIZE)
    page = manager.list_quizzes(offset, limit)
    now = manager.now()
    return success({
        "quizzes": [quiz.to_dict(now) for quiz in page["items"]],
        "total": page["total"],
        "offset": page["offset"],
        "limit": page["limit"]
    }, "Query successful")


@quiz_bp.route('/quizzes/all', methods=['GET'])
@cross_origin()
def list_all_quizzes():
    manager = get_quiz_manager()
    now = manager.now()
    return success({"quizzes": [quiz.to_dict(now) for quiz in manager.list_all()]}, "Query successful")


def create_app(overrides=None, quiz_manager=None, deposit_manager=None):
    """
    创建 flask 应用
    :param overrides: 覆盖 app.config 的配置（测试用）
    :param quiz_manager: 自定义的 QuizManager（测试时注入假时钟和假账本）
    :param deposit_manager: 自定义的 DepositManager（测试时注入假的链上查询）
    """
    app = Flask(__name__)
    CORS(app)
    app.config['SQLALCHEMY_DATABASE_URI'] = Config.get_value("database_url", default="sqlite:///quizledger.db")
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = Config.get_value("JWT_SECRET_KEY")
    app.config['JWT_EXPIRE_HOURS'] = int(Config.get_value("JWT_EXPIRE_HOURS", default=12))
    if overrides:
        app.config.update(overrides)
    if not app.config['JWT_SECRET_KEY']:
        raise InvalidParameterException("JWT_SECRET_KEY is not configured.")

    db.init_app(app)
    app.register_blueprint(quiz_bp)

    with app.app_context():
        db.create_all()
        app.extensions['quiz_manager'] = quiz_manager or QuizManager.instance()
        app.extensions['deposit_manager'] = deposit_manager or DepositManager.instance()

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        app = create_app()
        app.run(
            host=Config.get_value("host", default='0.0.0.0'),
            port=int(Config.get_value("port", default=5000)),
            debug=False,
            threaded=True
        )
    except Exception:
        error_stack = traceback.format_exc()
        with open("error.log", "a", encoding="utf-8") as f:
            f.write(f"[{datetime.now(timezone.utc)}] {error_stack}\n")
        raise
