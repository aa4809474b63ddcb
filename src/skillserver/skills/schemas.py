"""
技能注册相关的数据模型定义。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..ask.schemas import SkillRequest, SkillResponse


@dataclass(frozen=True)
class Skill:
    """
    一个已注册的技能：请求路径、期望的应用 ID 与处理函数。
    处理函数签名为 handler(skill, request) -> SkillResponse。
    """

    endpoint: str
    application_id: str
    handler: Callable[["Skill", SkillRequest], SkillResponse]
    name: str = ""
