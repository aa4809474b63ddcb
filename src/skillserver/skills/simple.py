"""
最小示例技能：只响应 LaunchRequest，其余请求类型返回空响应。
"""

from ..ask.schemas import SkillRequest, SkillResponse, new_output_speech, new_response
from .schemas import Skill


def simple_handler(skill: Skill, req: SkillRequest) -> SkillResponse:
    resp = new_response(req)
    if req.is_launch_request():
        resp.body.output_speech = new_output_speech("Hello there!")
    return resp


def build_simple_skill(endpoint: str, application_id: str) -> Skill:
    return Skill(endpoint=endpoint, application_id=application_id, handler=simple_handler, name="simple")
