"""
技能 Webhook 的 FastAPI 路由定义。
"""

from http import HTTPStatus

from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse
from loguru import logger
from starlette.concurrency import run_in_threadpool

from ..auth.errors import SkillRequestError
from .services import Dispatcher

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

router = APIRouter(tags=["Skills"])


def _error_response(status_code: int, cause: Exception) -> Response:
    """记录具体原因，只向调用方返回通用状态短语。"""
    if status_code >= 500:
        logger.error(f"错误: {cause}; 返回 HTTP 状态码 {status_code}")
    else:
        logger.warning(f"错误: {cause}; 返回 HTTP 状态码 {status_code}")
    return PlainTextResponse(HTTPStatus(status_code).phrase, status_code=status_code)


@router.get("/healthz")
async def healthz(request: Request) -> dict:
    """健康检查，同时列出已注册的技能路径。"""
    dispatcher: Dispatcher = request.app.state.dispatcher
    return {"status": "ok", "skills": dispatcher.endpoints}


@router.post("/{path:path}")
async def handle_skill_request(path: str, request: Request) -> Response:
    """
    平台调用技能的入口：按路径分发，鉴权通过后返回技能响应。
    鉴权涉及阻塞的证书下载，放到线程池中执行。
    """
    dispatcher: Dispatcher = request.app.state.dispatcher
    body = await request.body()
    try:
        payload = await run_in_threadpool(
            dispatcher.dispatch, request.url.path, request.headers, body
        )
    except SkillRequestError as e:
        return _error_response(int(e.status_code), e)
    except Exception as e:
        logger.exception(f"处理技能请求时发生未预期的错误: {e}; 返回 HTTP 状态码 500")
        return PlainTextResponse(
            HTTPStatus.INTERNAL_SERVER_ERROR.phrase,
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )
    return Response(content=payload, media_type=JSON_CONTENT_TYPE)
