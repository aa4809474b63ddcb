"""
技能请求鉴权的业务逻辑层。
此模块按固定顺序串联核心校验，任何一步失败立即中止，提供更清晰的接口供分发层调用。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Mapping

from cryptography import x509
from loguru import logger

from . import core
from .errors import MalformedInputError
from .fetcher import CertificateFetcher
from ..ask.schemas import VALID_REQUEST_TYPES, SkillRequest

CERT_CHAIN_URL_HEADER = "SignatureCertChainUrl"
SIGNATURE_HEADER = "Signature"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # 普通 dict 大小写敏感，兜底做一次不区分大小写的查找
        lowered = name.lower()
        for key, v in headers.items():
            if key.lower() == lowered:
                return v
    return value


class RequestGate:
    """
    请求鉴权入口。
    :param fetcher: 证书下载器（自带缓存），启动时创建并注入。
    :param trust_roots: 受信任的根证书。
    :param cert_host: 证书托管域名。
    :param cert_path_prefix: 证书 URL 路径前缀。
    :param service_identity: 签名证书 SAN 必须包含的名称。
    :param max_timestamp_skew_seconds: 时间戳允许的最大延迟。
    :param signature_hash_algorithm: 签名摘要算法。
    :param clock: 当前时间来源，测试时可替换。
    """

    def __init__(
        self,
        fetcher: CertificateFetcher,
        trust_roots: List[x509.Certificate],
        cert_host: str = "s3.amazonaws.com",
        cert_path_prefix: str = "/echo.api/",
        service_identity: str = "echo-api.amazon.com",
        max_timestamp_skew_seconds: int = 30,
        signature_hash_algorithm: str = "SHA1",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.chain_validator = core.ChainValidator(trust_roots, service_identity)
        self.cert_host = cert_host
        self.cert_path_prefix = cert_path_prefix
        self.max_timestamp_skew_seconds = max_timestamp_skew_seconds
        # 不支持的算法在构建时即抛出 ValueError
        core.signature_hash(signature_hash_algorithm)
        self.signature_hash_algorithm = signature_hash_algorithm
        self.clock = clock

    def verify_request_signature(self, headers: Mapping[str, str], body: bytes) -> None:
        """校验证书链 URL、下载证书链、校验证书链与请求签名。"""
        cert_chain_url = _get_header(headers, CERT_CHAIN_URL_HEADER)
        if not cert_chain_url:
            raise MalformedInputError(f"缺少 {CERT_CHAIN_URL_HEADER} 请求头")
        core.validate_cert_chain_url(cert_chain_url, self.cert_host, self.cert_path_prefix)

        cert_bytes = self.fetcher.fetch(cert_chain_url)
        public_key = self.chain_validator.validate(cert_bytes, self.clock())

        signature = _get_header(headers, SIGNATURE_HEADER)
        if signature is None:
            raise MalformedInputError(f"缺少 {SIGNATURE_HEADER} 请求头")
        core.verify_signature(public_key, signature, body, self.signature_hash_algorithm)

    def authenticate(
        self,
        headers: Mapping[str, str],
        body: bytes,
        expected_application_id: str,
    ) -> SkillRequest:
        """
        对一个请求执行完整鉴权。
        :param headers: 请求头。
        :param body: 原始请求体字节，签名与 JSON 解析使用同一份数据。
        :param expected_application_id: 目标技能注册的应用 ID。
        :return: 解析后的请求信封。
        :raises MalformedInputError / AuthenticationError / FetchError
        """
        self.verify_request_signature(headers, body)

        req = SkillRequest.from_json(body)
        core.check_timestamp(req.body.timestamp, self.clock(), self.max_timestamp_skew_seconds)
        core.check_application_id(req.session.application.application_id, expected_application_id)
        core.check_request_type(req.body.type, VALID_REQUEST_TYPES)

        logger.debug(f"请求鉴权通过: {req.body.type} {req.body.request_id}")
        return req
