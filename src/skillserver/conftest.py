"""
测试公共夹具：构造一套 根证书 -> 中间证书 -> 叶子证书 的测试 PKI，
以及计数的假证书服务器与已签名请求的构造工具。
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from src.skillserver.auth.fetcher import CertificateFetcher
from src.skillserver.auth.services import RequestGate

SERVICE_IDENTITY = "echo-api.amazon.com"
CERT_URL = "https://s3.amazonaws.com/echo.api/echo-api-cert-4.pem"
APP_ID = "amzn1.echo-sdk-ams.app.000000-d0ed-0000-ad00-000000d00ebe"

# 固定的“当前时间”，取整到秒，证书有效期围绕它生成
NOW = datetime.now(timezone.utc).replace(microsecond=0)


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _gen_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _build_ca(
    common_name: str,
    key: rsa.RSAPrivateKey,
    issuer: x509.Certificate | None = None,
    issuer_key: rsa.RSAPrivateKey | None = None,
) -> x509.Certificate:
    issuer_name = issuer.subject if issuer is not None else _name(common_name)
    signing_key = issuer_key if issuer_key is not None else key
    return (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - timedelta(days=30))
        .not_valid_after(NOW + timedelta(days=3650))
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=None if issuer is None else 0),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=False,
                key_cert_sign=True,
                crl_sign=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signing_key.public_key()),
            critical=False,
        )
        .sign(private_key=signing_key, algorithm=hashes.SHA256())
    )


@dataclass
class TestPKI:
    root_key: rsa.RSAPrivateKey
    root: x509.Certificate
    intermediate_key: rsa.RSAPrivateKey
    intermediate: x509.Certificate
    leaf_key: rsa.RSAPrivateKey
    leaf: x509.Certificate

    __test__ = False

    def make_ca(
        self,
        common_name: str,
        issuer: x509.Certificate | None = None,
        issuer_key: rsa.RSAPrivateKey | None = None,
    ) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """生成一个额外的 CA；不指定签发者时为自签根证书。"""
        key = _gen_key()
        return key, _build_ca(common_name, key, issuer, issuer_key)

    def issue_leaf(
        self,
        san: List[str] | None = None,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
        issuer: x509.Certificate | None = None,
        issuer_key: rsa.RSAPrivateKey | None = None,
    ) -> x509.Certificate:
        """用中间证书（或指定的签发者）为 leaf_key 签发一张叶子证书。"""
        issuer = issuer or self.intermediate
        issuer_key = issuer_key or self.intermediate_key
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(SERVICE_IDENTITY))
            .issuer_name(issuer.subject)
            .public_key(self.leaf_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before or NOW - timedelta(days=1))
            .not_valid_after(not_after or NOW + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=True,
                    key_cert_sign=False,
                    crl_sign=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(self.leaf_key.public_key()),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                critical=False,
            )
        )
        names = [SERVICE_IDENTITY] if san is None else san
        if names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
                critical=False,
            )
        return builder.sign(private_key=issuer_key, algorithm=hashes.SHA256())

    def bundle(self, *certs: x509.Certificate) -> bytes:
        """拼接 PEM 证书链；不传参数时为 叶子 + 中间证书。"""
        chain = certs or (self.leaf, self.intermediate)
        return b"".join(c.public_bytes(serialization.Encoding.PEM) for c in chain)

    def sign(self, body: bytes, algorithm: hashes.HashAlgorithm | None = None) -> str:
        signature = self.leaf_key.sign(body, padding.PKCS1v15(), algorithm or hashes.SHA1())
        return base64.b64encode(signature).decode("ascii")


@pytest.fixture(scope="session")
def pki() -> TestPKI:
    root_key = _gen_key()
    root = _build_ca("Test Skill Root CA", root_key)
    intermediate_key = _gen_key()
    intermediate = _build_ca("Test Skill Intermediate CA", intermediate_key, root, root_key)
    result = TestPKI(
        root_key=root_key,
        root=root,
        intermediate_key=intermediate_key,
        intermediate=intermediate,
        leaf_key=_gen_key(),
        leaf=None,  # type: ignore[arg-type]
    )
    result.leaf = result.issue_leaf()
    return result


@dataclass
class FakeCertServer:
    """按 URL 返回证书链的 httpx MockTransport，并记录每次请求。"""

    documents: Dict[str, bytes] = field(default_factory=dict)
    calls: List[str] = field(default_factory=list)
    status_code: int = 200
    error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        if self.error is not None:
            raise self.error
        data = self.documents.get(str(request.url))
        if data is None:
            return httpx.Response(404, content=b"not found")
        return httpx.Response(self.status_code, content=data)

    def fetcher(self) -> CertificateFetcher:
        return CertificateFetcher(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def cert_server(pki) -> FakeCertServer:
    return FakeCertServer(documents={CERT_URL: pki.bundle()})


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def gate(pki, cert_server, clock) -> RequestGate:
    fetcher = cert_server.fetcher()
    yield RequestGate(fetcher=fetcher, trust_roots=[pki.root], clock=clock)
    fetcher.close()


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def make_body() -> Callable[..., bytes]:
    """构造请求 JSON 字节。"""

    def _make(
        request_type: str = "LaunchRequest",
        timestamp: str | None = None,
        application_id: str = APP_ID,
        attributes: Dict[str, Any] | None = None,
        intent: Dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> bytes:
        request: Dict[str, Any] = {
            "type": request_type,
            "requestId": "amzn1.echo-api.request.0000000-0000-0000-0000-00000000000",
            "timestamp": timestamp if timestamp is not None else _iso(NOW),
        }
        if intent is not None:
            request["intent"] = intent
        if reason is not None:
            request["reason"] = reason
        doc = {
            "version": "1.0",
            "session": {
                "new": True,
                "sessionId": "session1234",
                "application": {"applicationId": application_id},
                "attributes": attributes or {},
                "user": {"userId": "amzn1.account.AM3B00000000000000000000000"},
            },
            "request": request,
        }
        return json.dumps(doc).encode("utf-8")

    return _make


@pytest.fixture
def signed_headers(pki) -> Callable[..., Dict[str, str]]:
    """为请求体生成 SignatureCertChainUrl 与 Signature 请求头。"""

    def _headers(body: bytes, url: str = CERT_URL) -> Dict[str, str]:
        return {"SignatureCertChainUrl": url, "Signature": pki.sign(body)}

    return _headers
