"""
技能请求处理过程中的异常分类。

每个异常携带对应的 HTTP 状态码；路由层只向调用方返回通用状态短语，
具体原因只写入服务端日志。
"""

from http import HTTPStatus


class SkillRequestError(Exception):
    """技能请求失败的基类。"""

    status_code: int = HTTPStatus.BAD_REQUEST


class MalformedInputError(SkillRequestError, ValueError):
    """输入无法解析：URL、Base64、JSON、时间戳等。"""

    status_code = HTTPStatus.BAD_REQUEST


class AuthenticationError(SkillRequestError, ValueError):
    """请求无法被证明来自平台：证书、签名、时间戳、应用 ID、请求类型校验失败。"""

    status_code = HTTPStatus.BAD_REQUEST


class FetchError(SkillRequestError, RuntimeError):
    """证书链下载失败（网络或读取错误）。"""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR


class RoutingError(SkillRequestError, LookupError):
    """请求路径上没有注册任何技能。"""

    status_code = HTTPStatus.NOT_FOUND
