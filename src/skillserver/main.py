"""
FastAPI 应用入口点。
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from src.skillserver.auth.core import load_trust_roots
from src.skillserver.auth.fetcher import CertificateFetcher
from src.skillserver.auth.services import RequestGate
from src.skillserver.config import Config, config as default_config
from src.skillserver.skills.hello import build_hello_skill
from src.skillserver.skills.router import router as skills_router
from src.skillserver.skills.services import Dispatcher


def build_dispatcher(cfg: Config) -> Dispatcher:
    """按配置创建证书下载器、鉴权入口与分发器，并注册示例技能。"""
    fetcher = CertificateFetcher(timeout=cfg.cert_fetch_timeout_seconds)
    gate = RequestGate(
        fetcher=fetcher,
        trust_roots=load_trust_roots(cfg.trust_store_path),
        cert_host=cfg.cert_host,
        cert_path_prefix=cfg.cert_path_prefix,
        service_identity=cfg.service_identity,
        max_timestamp_skew_seconds=cfg.max_timestamp_skew_seconds,
        signature_hash_algorithm=cfg.signature_hash_algorithm,
    )
    dispatcher = Dispatcher(gate)

    if cfg.hello_skill_application_id:
        dispatcher.register_skill(
            build_hello_skill(cfg.hello_skill_endpoint, cfg.hello_skill_application_id)
        )
    else:
        logger.warning("未配置 ASK_APP_ID，示例技能 hello 未注册")
    return dispatcher


def create_app(dispatcher: Dispatcher | None = None, cfg: Config | None = None) -> FastAPI:
    """
    创建 FastAPI 应用。
    :param dispatcher: 已构建好的分发器；为空时按配置创建。
    :param cfg: 配置，默认使用全局配置。
    """
    cfg = cfg or default_config
    if dispatcher is None:
        dispatcher = build_dispatcher(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"已注册技能: {dispatcher.endpoints}")
        try:
            yield
        finally:
            logger.info("应用关闭，正在释放证书下载客户端...")
            dispatcher.gate.fetcher.close()

    app = FastAPI(title="Voice Assistant Skill Server", lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.include_router(skills_router)

    logger.info(f"config: {cfg.model_dump_json(indent=4)}")
    return app
