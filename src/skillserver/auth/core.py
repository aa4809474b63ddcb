"""
技能请求鉴权的核心逻辑实现。
包括证书链 URL 校验、证书链解析与信任路径校验、请求签名校验、时间戳新鲜度校验等。
所有函数都是纯计算，不做网络访问；证书下载见 fetcher.py。
"""

import base64
import binascii
import posixpath
import re
import ssl
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError
from loguru import logger

from .errors import AuthenticationError, MalformedInputError

PEM_CERTIFICATE_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----[\s\S]*?-----END CERTIFICATE-----"
)

# RFC 3339：秒的小数部分可有 1~9 位，时区必须显式给出
RFC3339_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)

SIGNATURE_HASHES = {
    "SHA1": hashes.SHA1,
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
}


def validate_cert_chain_url(
    url: str,
    expected_host: str = "s3.amazonaws.com",
    path_prefix: str = "/echo.api/",
) -> None:
    """
    校验 SignatureCertChainUrl 的格式，必须在下载之前调用，避免服务被当作任意下载代理。
    :param url: 请求头中的 URL。
    :param expected_host: 平台证书托管域名（大小写不敏感，可显式带 443 端口）。
    :param path_prefix: 路径前缀（大小写敏感）。
    :raises MalformedInputError: URL 无法解析。
    :raises AuthenticationError: 协议、主机或路径不符合要求。
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise MalformedInputError(f"无效的 SignatureCertChainUrl ({url}): {e}") from e

    if parts.scheme.lower() != "https":
        raise AuthenticationError(f"SignatureCertChainUrl 协议无效 ({url})")

    host = (parts.hostname or "").lower()
    if host != expected_host.lower() or port not in (None, 443) or parts.username is not None:
        raise AuthenticationError(f"SignatureCertChainUrl 主机无效 ({url})")

    # 路径先做 dot-segment 规范化，防止 /echo.api/../ 之类的绕过
    path = posixpath.normpath(parts.path) if parts.path else ""
    if parts.path.endswith("/") and not path.endswith("/"):
        path += "/"
    if not path.startswith(path_prefix):
        raise AuthenticationError(f"SignatureCertChainUrl 路径无效 ({url})")


def split_pem_certificates(data: bytes) -> List[bytes]:
    """按顺序提取 PEM 数据中的所有证书块（原始字节，不做解码）。"""
    return PEM_CERTIFICATE_RE.findall(data)


def load_pem_block(block: bytes) -> x509.Certificate:
    """
    解析单个 PEM 证书块。
    :raises ValueError: 块中含有非 ASCII 字节或内容不是合法证书。
    """
    if not block.isascii():
        raise ValueError("证书块包含非 ASCII 字节")
    return x509.load_pem_x509_certificate(block)


def _read_pem_file(path: Path) -> List[x509.Certificate]:
    certs: List[x509.Certificate] = []
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.debug(f"读取信任证书文件失败 {path}: {e}")
        return certs
    for block in split_pem_certificates(data):
        try:
            certs.append(load_pem_block(block))
        except ValueError as e:
            # 系统信任库中偶尔存在 cryptography 不接受的旧证书，跳过即可
            logger.debug(f"跳过无法解析的信任证书 ({path}): {e}")
    return certs


def load_trust_roots(trust_store_path: str | None = None) -> List[x509.Certificate]:
    """
    加载受信任的根证书。
    :param trust_store_path: 自定义 PEM 文件或目录；为空时使用系统默认信任库。
    :return: 根证书列表。
    :raises RuntimeError: 一个根证书都没有加载到。
    """
    if trust_store_path:
        candidates: Iterable[str] = [trust_store_path]
    else:
        paths = ssl.get_default_verify_paths()
        candidates = [
            p
            for p in (paths.cafile, paths.openssl_cafile, paths.capath, paths.openssl_capath)
            if p
        ]

    roots: List[x509.Certificate] = []
    seen: set[bytes] = set()
    for candidate in candidates:
        path = Path(candidate)
        if path.is_dir():
            files = sorted(p for p in path.iterdir() if p.is_file())
        elif path.is_file():
            files = [path]
        else:
            continue
        for file in files:
            for cert in _read_pem_file(file):
                fingerprint = cert.fingerprint(hashes.SHA256())
                if fingerprint not in seen:
                    seen.add(fingerprint)
                    roots.append(cert)

    if not roots:
        raise RuntimeError(f"未能从信任库加载任何根证书: {list(candidates)}")
    logger.info(f"已加载 {len(roots)} 个受信任根证书")
    return roots


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class ChainValidator:
    """
    解析并校验平台的签名证书链。
    :param trust_roots: 受信任的根证书。
    :param service_identity: 叶子证书 SAN 中必须出现的 DNS 名称。
    """

    def __init__(
        self,
        trust_roots: List[x509.Certificate],
        service_identity: str = "echo-api.amazon.com",
    ) -> None:
        if not trust_roots:
            raise RuntimeError("信任库为空，无法校验证书链")
        self.service_identity = service_identity
        self._store = Store(trust_roots)

    def parse_chain(self, pem_bytes: bytes) -> List[x509.Certificate]:
        """解析证书链，第 0 个为叶子证书。少于两个证书视为无效。"""
        chain: List[x509.Certificate] = []
        for block in split_pem_certificates(pem_bytes):
            try:
                chain.append(load_pem_block(block))
            except ValueError as e:
                raise AuthenticationError(f"无法解析 x509 证书: {e}") from e
        if len(chain) < 2:
            raise AuthenticationError(f"证书链至少需要两个证书，实际为 {len(chain)} 个")
        return chain

    def validate(self, pem_bytes: bytes, now: datetime) -> rsa.RSAPublicKey:
        """
        校验证书链并返回叶子证书公钥。
        :param pem_bytes: 证书链 PEM 字节。
        :param now: 校验时刻。
        :return: 叶子证书的 RSA 公钥。
        :raises AuthenticationError: 证书过期、SAN 不匹配、无法构建到受信任根证书的路径等。
        """
        chain = self.parse_chain(pem_bytes)
        now = _utc(now)
        now_ts = int(now.timestamp())

        for cert in chain:
            not_before = int(cert.not_valid_before_utc.timestamp())
            not_after = int(cert.not_valid_after_utc.timestamp())
            if now_ts < not_before or now_ts > not_after:
                raise AuthenticationError(
                    f"证书已过期或尚未生效: {cert.subject.rfc4514_string()}"
                )

        leaf, intermediates = chain[0], chain[1:]
        try:
            san = leaf.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            raise AuthenticationError("签名证书中不包含 Subject Alternative Name")
        if self.service_identity not in san.get_values_for_type(x509.DNSName):
            raise AuthenticationError(
                f"签名证书的 Subject Alternative Name 中没有 {self.service_identity}"
            )

        verifier = (
            PolicyBuilder()
            .store(self._store)
            .time(now.replace(tzinfo=None))
            .build_server_verifier(x509.DNSName(self.service_identity))
        )
        try:
            verifier.verify(leaf, intermediates)
        except VerificationError as e:
            raise AuthenticationError(f"证书链无法验证到受信任的根证书: {e}") from e

        public_key = leaf.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise AuthenticationError("签名证书的公钥不是 RSA 公钥")
        return public_key


def signature_hash(name: str) -> hashes.HashAlgorithm:
    """
    按名称返回签名摘要算法实例。
    :raises ValueError: 不支持的算法名称。
    """
    try:
        return SIGNATURE_HASHES[name]()
    except KeyError:
        raise ValueError(f"不支持的签名摘要算法: {name}") from None


def verify_signature(
    public_key: rsa.RSAPublicKey,
    signature_b64: str,
    body: bytes,
    hash_algorithm: str = "SHA1",
) -> None:
    """
    使用叶子证书公钥校验请求签名（RSA PKCS#1 v1.5）。
    :param public_key: 叶子证书公钥。
    :param signature_b64: Signature 请求头，Base64 编码。
    :param body: 原始请求体字节，必须与交给 JSON 解析的字节完全一致。
    :param hash_algorithm: 摘要算法名称，默认 SHA1。
    :raises MalformedInputError: 签名不是合法的 Base64。
    :raises AuthenticationError: 签名不匹配。
    """
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInputError(f"无法解码 Base64 签名 ({signature_b64})") from e

    algorithm = signature_hash(hash_algorithm)
    digest = hashes.Hash(algorithm)
    digest.update(body)

    try:
        public_key.verify(
            signature,
            digest.finalize(),
            padding.PKCS1v15(),
            utils.Prehashed(algorithm),
        )
    except InvalidSignature as e:
        raise AuthenticationError("请求签名校验失败") from e


def parse_timestamp(value: str) -> datetime:
    """
    解析 RFC 3339 时间戳（允许 1~9 位小数秒）。
    :raises MalformedInputError: 格式不正确。
    """
    m = RFC3339_RE.match(value.strip() if isinstance(value, str) else "")
    if not m:
        raise MalformedInputError(f"无效的请求时间戳 {value!r}")
    fraction = (m.group("fraction") or "")[:6].ljust(6, "0")
    offset = m.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    try:
        return datetime.fromisoformat(f"{m.group('date')}T{m.group('time')}.{fraction}{offset}")
    except ValueError as e:
        raise MalformedInputError(f"无效的请求时间戳 {value!r}") from e


def check_timestamp(timestamp: str, now: datetime, max_skew_seconds: int = 30) -> None:
    """
    校验请求时间戳的新鲜度。只拒绝过旧的请求；恰好等于窗口上限时视为有效。
    未来时间戳不被拒绝。
    :raises MalformedInputError: 时间戳无法解析。
    :raises AuthenticationError: 时间戳过旧。
    """
    ts = parse_timestamp(timestamp)
    age = _utc(now) - ts
    if age > timedelta(seconds=max_skew_seconds):
        raise AuthenticationError(f"请求时间戳过旧: {timestamp}（已过去 {age.total_seconds():.3f} 秒）")


def check_application_id(actual: str | None, expected: str) -> None:
    """应用 ID 必须与技能注册时的配置完全一致。"""
    if actual != expected:
        raise AuthenticationError(f"应用 ID 不匹配：期望 {expected}，实际 {actual}")


def check_request_type(request_type: str | None, valid_types: Iterable[str]) -> None:
    """请求类型必须是已知的几种之一。"""
    if request_type not in set(valid_types):
        raise AuthenticationError(f"无效的请求类型 '{request_type}'")
