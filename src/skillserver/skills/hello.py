"""
示例技能 "hello"：演示如何编写并注册一个技能处理函数。
"""

from loguru import logger

from ..ask.schemas import (
    SkillRequest,
    SkillResponse,
    new_card,
    new_output_speech,
    new_response,
)
from .schemas import Skill


def hello_handler(skill: Skill, req: SkillRequest) -> SkillResponse:
    resp = new_response(req)

    if req.is_launch_request():
        logger.info("Launch request")
        resp.body.output_speech = new_output_speech(
            "Your friendly neighborhood hello service is ready for commands."
        )
    elif req.is_intent_request():
        logger.info(f"Intent request: {req.intent_name}")
        if req.intent_name == "SayHello":
            resp.body.output_speech = new_output_speech("Hi there!")
            resp.body.card = new_card("Hi there", "You asked me to say hello.")
        else:
            resp.body.output_speech = new_output_speech("Unknown command.")
    elif req.is_session_ended_request():
        logger.info(f"Session ended request, reason: {req.body.reason}")

    return resp


def build_hello_skill(endpoint: str, application_id: str) -> Skill:
    return Skill(
        endpoint=endpoint,
        application_id=application_id,
        handler=hello_handler,
        name="hello",
    )
