"""Document AEAD and canonical wire serialization for the re-encryption protocol."""

import base64
import json
import os
from typing import Any, Dict, Tuple

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from constants import NONCE_LEN
from data_models import (
    CommitmentPolynomial,
    MessageReencrypt,
    MessageReencryptReply,
    PartialShare,
    ReencryptionRequest,
)
from group import Point


class CryptoManager:
    """加密管理器，处理文档加密以及消息的规范序列化."""

    MSG_REENCRYPT = "reencrypt"
    MSG_REPLY = "reply"

    # —— 文档对称加密 ——

    @staticmethod
    def aead_seal(key: bytes, data: bytes) -> bytes:
        """使用AES-GCM加密文档 / Seal a document; the nonce is appended to the ciphertext."""
        aesgcm = AESGCM(key)
        # 同一密钥下随机nonce不应超过2^32次
        nonce = os.urandom(NONCE_LEN)
        return aesgcm.encrypt(nonce, data, None) + nonce

    @staticmethod
    def aead_open(key: bytes, sealed: bytes) -> bytes:
        """使用AES-GCM解密文档 / Open a document sealed by :meth:`aead_seal`."""
        if len(sealed) < NONCE_LEN:
            raise ValueError("ciphertext too short")
        aesgcm = AESGCM(key)
        nonce = sealed[-NONCE_LEN:]
        return aesgcm.decrypt(nonce, sealed[:-NONCE_LEN], None)

    # —— 消息序列化 ——

    @staticmethod
    def serialize_request(request: ReencryptionRequest) -> Dict[str, Any]:
        payload = request.verification_payload
        return {
            'U': request.commit.hex(),
            'Xc': request.reader_public.hex(),
            'threshold': request.threshold,
            'verification_payload': base64.b64encode(payload).decode() if payload is not None else None,
            'commits': [commit.hex() for commit in request.commitment_polynomial.commits],
        }

    @staticmethod
    def deserialize_request(data: Dict[str, Any]) -> ReencryptionRequest:
        payload = data['verification_payload']
        return ReencryptionRequest(
            commit=Point.from_hex(data['U']),
            reader_public=Point.from_hex(data['Xc']),
            threshold=int(data['threshold']),
            verification_payload=base64.b64decode(payload) if payload is not None else None,
            commitment_polynomial=CommitmentPolynomial(tuple(Point.from_hex(c) for c in data['commits'])),
        )

    @staticmethod
    def serialize_partial_share(share: PartialShare) -> Dict[str, Any]:
        return {
            'index': share.index,
            'value': share.value.hex(),
            'challenge': format(share.challenge, 'x'),
            'response': format(share.response, 'x'),
        }

    @staticmethod
    def deserialize_partial_share(data: Dict[str, Any]) -> PartialShare:
        return PartialShare(
            index=int(data['index']),
            value=Point.from_hex(data['value']),
            challenge=int(data['challenge'], 16),
            response=int(data['response'], 16),
        )

    @staticmethod
    def encode_message(msg_type: str, message: Any) -> bytes:
        """序列化网络消息 / Deterministic JSON encoding of a protocol message."""
        if msg_type == CryptoManager.MSG_REENCRYPT:
            body = {
                'run_id': message.run_id,
                'request': CryptoManager.serialize_request(message.request),
                'budget': message.budget,
            }
        elif msg_type == CryptoManager.MSG_REPLY:
            body = {
                'run_id': message.run_id,
                'sender_id': message.sender_id,
                'shares': [CryptoManager.serialize_partial_share(s) for s in message.shares],
                'refusals': message.refusals,
                'responders': list(message.responders),
            }
        else:
            raise ValueError(f"unknown message type {msg_type!r}")
        return json.dumps({'type': msg_type, 'body': body}, sort_keys=True).encode()

    @staticmethod
    def decode_message(raw: bytes) -> Tuple[str, Any]:
        envelope = json.loads(raw.decode())
        msg_type = envelope['type']
        body = envelope['body']
        if msg_type == CryptoManager.MSG_REENCRYPT:
            return msg_type, MessageReencrypt(
                run_id=body['run_id'],
                request=CryptoManager.deserialize_request(body['request']),
                budget=float(body['budget']),
            )
        if msg_type == CryptoManager.MSG_REPLY:
            return msg_type, MessageReencryptReply(
                run_id=body['run_id'],
                sender_id=int(body['sender_id']),
                shares=[CryptoManager.deserialize_partial_share(s) for s in body['shares']],
                refusals=int(body['refusals']),
                responders=[int(r) for r in body['responders']],
            )
        raise ValueError(f"unknown message type {msg_type!r}")
