"""
技能分发的业务逻辑层。
按请求路径查找已注册的技能，鉴权通过后调用技能处理函数并序列化响应。
"""

from __future__ import annotations

from typing import Dict, List, Mapping

from loguru import logger

from ..ask.schemas import SkillResponse
from ..auth.errors import RoutingError
from ..auth.services import RequestGate
from .schemas import Skill


class Dispatcher:
    """
    路径 -> 技能 的路由表。
    :param gate: 请求鉴权入口。
    """

    def __init__(self, gate: RequestGate) -> None:
        self.gate = gate
        self._skills: Dict[str, Skill] = {}

    def register_skill(self, skill: Skill) -> Skill:
        """
        注册技能。只应在启动阶段调用。
        :raises ValueError: 路径格式不正确或已被占用。
        """
        if not skill.endpoint.startswith("/"):
            raise ValueError(f"技能路径必须以 / 开头: {skill.endpoint!r}")
        if skill.endpoint in self._skills:
            raise ValueError(f"技能路径已被注册: {skill.endpoint}")
        self._skills[skill.endpoint] = skill
        logger.info(f"已注册技能 {skill.name or skill.endpoint} -> {skill.endpoint}")
        return skill

    def get_skill(self, path: str) -> Skill | None:
        return self._skills.get(path)

    @property
    def endpoints(self) -> List[str]:
        return sorted(self._skills)

    def dispatch(self, path: str, headers: Mapping[str, str], body: bytes) -> bytes:
        """
        处理一个技能请求。
        :param path: 请求路径，精确匹配。
        :param headers: 请求头。
        :param body: 原始请求体。
        :return: 序列化后的响应 JSON 字节。
        :raises RoutingError: 路径未注册。
        :raises MalformedInputError / AuthenticationError / FetchError: 鉴权失败。
        :raises RuntimeError: 处理函数返回值不是 SkillResponse。
        """
        skill = self.get_skill(path)
        if skill is None:
            raise RoutingError(f"路径 {path} 上没有注册技能")

        req = self.gate.authenticate(headers, body, skill.application_id)

        resp = skill.handler(skill, req)
        if not isinstance(resp, SkillResponse):
            raise RuntimeError(
                f"技能 {skill.name or skill.endpoint} 的处理函数返回了 {type(resp).__name__}"
            )
        return resp.to_bytes()
