import logging

from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from quizledger.managers.Config import Config
from quizledger.models.typings import ConfigOperationException, TransferPendingException
from quizledger.services.BalanceLedger import BalanceLedger

logger = logging.getLogger(__name__)

# 简化的 ERC-20 ABI，只包含 transfer 函数和 Transfer 事件
ERC20_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"}
        ],
        "name": "Transfer",
        "type": "event"
    }
]


class TokenService:
    """
    托管钱包（token pool）对应的链上代币信息，web3 连接和合约对象都从配置文件获取
    """

    def __init__(self, web3=None):
        self.rpc_url = Config.get_value('web3_rpc_url')
        self.chain_id = int(Config.get_value('web3_chain_id', default=97))
        self.pool_address = Config.get_value('web3_token_pool_address')
        self.pool_private_key = Config.get_value('web3_token_pool_private_key')
        self.contract_address = Config.get_value('web3_token_contract_address')
        self.decimals = int(Config.get_value('web3_token_decimals', default=18))
        self.receipt_timeout = int(Config.get_value('web3_receipt_timeout', default=120))
        self.gas = int(Config.get_value('web3_gas', default=200000))
        self.gas_price_gwei = Config.get_value('web3_gas_price_gwei', default='10')
        self.web3 = web3 or Web3(Web3.HTTPProvider(self.rpc_url))

    def to_chain_amount(self, amount):
        return amount * (10 ** self.decimals)

    def from_chain_amount(self, chain_amount):
        """链上数量换算成站内单位，不足一个单位的零头不入账"""
        return chain_amount // (10 ** self.decimals)

    def contract(self):
        return self.web3.eth.contract(address=Web3.to_checksum_address(self.contract_address), abi=ERC20_ABI)

    def get_receipt(self, tx_hash):
        """
        查询交易回执
        :return: 回执；交易还没上链时返回 None
        """
        try:
            return self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    def deposited_amount(self, tx_hash, sender):
        """
        统计一笔已成功上链的交易里 sender 转入托管钱包的代币数量（链上精度）
        交易不存在、未上链或执行失败都返回 0
        """
        receipt = self.get_receipt(tx_hash)
        if receipt is None or receipt["status"] != 1:
            return 0

        token = Web3.to_checksum_address(self.contract_address)
        pool = Web3.to_checksum_address(self.pool_address)
        sender = Web3.to_checksum_address(sender)
        total = 0
        # 同一笔交易里可能有别的合约发出的同名事件，需要核对合约地址
        for event in self.contract().events.Transfer().process_receipt(receipt, errors=DISCARD):
            args = event["args"]
            if (Web3.to_checksum_address(event["address"]) == token
                    and Web3.to_checksum_address(args["from"]) == sender
                    and Web3.to_checksum_address(args["to"]) == pool):
                total += args["value"]
        return total


class Web3TokenLedger(TokenService):
    """
    链上账本：奖池从托管钱包以 ERC-20 transfer 打给收款人，
    等到交易回执且 status == 1 才算成功。
    交易广播之后没等到回执不能当作失败，抛 TransferPendingException 交给 QuizManager 冻结竞猜
    """

    def transfer(self, recipient, amount):
        web3 = self.web3
        try:
            if not web3.is_connected():
                logger.error("无法连接到链上节点 %s", self.rpc_url)
                return False

            sender_address = Web3.to_checksum_address(self.pool_address)
            receiver_address = Web3.to_checksum_address(recipient)

            # 构建交易，nonce 取 pending 状态，避免和未确认的交易冲突
            nonce = web3.eth.get_transaction_count(sender_address, 'pending')
            tx = self.contract().functions.transfer(receiver_address, self.to_chain_amount(amount)).build_transaction({
                'chainId': self.chain_id,
                'gas': self.gas,
                'gasPrice': web3.to_wei(self.gas_price_gwei, 'gwei'),
                'nonce': nonce
            })

            signed_tx = web3.eth.account.sign_transaction(tx, self.pool_private_key)
            tx_hash = web3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except (Web3Exception, ValueError, OSError) as e:
            logger.error("链上转账 %s -> %s 失败: %s", amount, recipient, e)
            return False

        # 到这里交易已经广播，之后的任何错误都只代表结果未知
        tx_hex = Web3.to_hex(tx_hash)
        try:
            receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except (Web3Exception, ValueError, OSError) as e:
            logger.error("链上转账交易 %s 未确认: %s", tx_hex, e)
            raise TransferPendingException(f"Transfer {tx_hex} is waiting for confirmation.", tx_hash=tx_hex)

        if receipt["status"] != 1:
            logger.error("链上转账交易 %s 执行失败", tx_hex)
            return False
        logger.info("链上转账 %s -> %s 成功，交易哈希: %s", amount, recipient, tx_hex)
        return True

    def check_transfer(self, tx_hash):
        """
        查询之前广播的转账结果
        :return: True 已成功，False 已失败或交易已被丢弃，None 仍未确认
        """
        try:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt["status"] == 1
            try:
                self.web3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                logger.warning("链上转账交易 %s 已不在交易池中", tx_hash)
                return False
        except (Web3Exception, ValueError, OSError) as e:
            logger.error("查询链上转账交易 %s 失败: %s", tx_hash, e)
        return None


def build_value_ledger():
    """
    按配置选择账本实现：balance（默认，站内余额）或 web3（链上 ERC-20）
    """
    kind = Config.get_value('value_ledger', default='balance')
    if kind == 'web3':
        return Web3TokenLedger()
    if kind == 'balance':
        return BalanceLedger()
    raise ConfigOperationException(f"未知的 value_ledger 配置: {kind}")
