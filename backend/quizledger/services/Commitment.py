from eth_utils import is_hex
from web3 import Web3

from quizledger.models.typings import InvalidCommitmentException

COMMITMENT_SIZE = 32


def hash_answer(answer):
    """
    计算答案承诺：keccak256(utf-8 编码的答案)，与链上 keccak256(abi.encodePacked(string)) 一致
    :param answer: 明文答案
    :return: 0x 开头的小写 hex 字符串
    """
    return Web3.to_hex(Web3.keccak(text=answer))


def normalize_commitment(commitment):
    """
    校验并规范化出题人提交的承诺，空值、非32字节、全零都视为无效
    :param commitment: hex 字符串（可带 0x）或 bytes
    :return: 0x 开头的小写 hex 字符串
    """
    if isinstance(commitment, (bytes, bytearray)):
        raw = bytes(commitment)
    elif isinstance(commitment, str) and commitment and is_hex(commitment):
        hexstr = commitment[2:] if commitment[:2].lower() == '0x' else commitment
        if len(hexstr) != COMMITMENT_SIZE * 2:
            raise InvalidCommitmentException("Commitment must be 32 bytes.")
        raw = bytes.fromhex(hexstr)
    else:
        raise InvalidCommitmentException("Commitment is missing or not hex.")

    if len(raw) != COMMITMENT_SIZE:
        raise InvalidCommitmentException("Commitment must be 32 bytes.")
    if not any(raw):
        raise InvalidCommitmentException("Commitment must not be zero.")
    return Web3.to_hex(raw)
