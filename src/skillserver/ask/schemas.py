"""
文件功能：
    定义语音助手平台（Alexa Skills Kit）请求与响应信封的数据模型（Pydantic）。
    JSON 字段名为平台约定的 camelCase，Python 侧使用 snake_case。

公开接口：
    - SkillRequest.from_json(data) -> SkillRequest
    - SkillRequest.is_launch_request() / is_intent_request() / is_session_ended_request()
    - SkillResponse.to_bytes() -> bytes
    - new_response(request) -> SkillResponse
    - new_output_speech(text) / new_card(title, content) / new_reprompt(text)

公开接口的 Pydantic 模型：
    - Session, Intent, Slot, RequestBody, SkillRequest
    - OutputSpeech, Card, Reprompt, ResponseBody, SkillResponse
"""

from __future__ import annotations

import json
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..auth.errors import MalformedInputError

LAUNCH_REQUEST = "LaunchRequest"
INTENT_REQUEST = "IntentRequest"
SESSION_ENDED_REQUEST = "SessionEndedRequest"
VALID_REQUEST_TYPES = (LAUNCH_REQUEST, INTENT_REQUEST, SESSION_ENDED_REQUEST)

# 会话结束原因
REASON_USER_INITIATED = "USER_INITIATED"
REASON_ERROR = "ERROR"
REASON_EXCEEDED_MAX_REPROMPTS = "EXCEEDED_MAX_REPROMPTS"


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Application(_Envelope):
    application_id: str = Field(default="", alias="applicationId")


class User(_Envelope):
    user_id: str = Field(default="", alias="userId")


class Session(_Envelope):
    """请求中的会话信息。"""

    new: bool = False
    session_id: str = Field(default="", alias="sessionId")
    application: Application = Field(default_factory=Application)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    user: User = Field(default_factory=User)


class Slot(_Envelope):
    name: str = ""
    value: str | None = None


class Intent(_Envelope):
    name: str = ""
    slots: Dict[str, Slot] = Field(default_factory=dict)


class RequestBody(_Envelope):
    """请求信封中的 request 块。"""

    type: str = ""
    request_id: str = Field(default="", alias="requestId")
    timestamp: str = ""
    intent: Intent | None = None
    reason: str | None = None


class SkillRequest(_Envelope):
    """平台发来的请求信封。"""

    version: str = ""
    session: Session = Field(default_factory=Session)
    body: RequestBody = Field(default_factory=RequestBody, alias="request")

    @classmethod
    def from_json(cls, data: bytes | str) -> "SkillRequest":
        """
        从 JSON 解析请求信封。
        :raises MalformedInputError: JSON 无效或字段类型不符。
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise MalformedInputError(f"无效的请求 JSON: {e}") from e

    def is_launch_request(self) -> bool:
        return self.body.type == LAUNCH_REQUEST

    def is_intent_request(self) -> bool:
        return self.body.type == INTENT_REQUEST

    def is_session_ended_request(self) -> bool:
        return self.body.type == SESSION_ENDED_REQUEST

    def session_termination_was_user_initiated(self) -> bool:
        return self.body.reason == REASON_USER_INITIATED

    def session_termination_is_due_to_error(self) -> bool:
        return self.body.reason == REASON_ERROR

    def session_termination_is_due_to_max_reprompt_limit_exceeded(self) -> bool:
        return self.body.reason == REASON_EXCEEDED_MAX_REPROMPTS

    @property
    def intent_name(self) -> str:
        return self.body.intent.name if self.body.intent else ""

    def slot_value(self, name: str) -> str | None:
        """返回指定槽位的值，不存在时返回 None。"""
        if not self.body.intent or name not in self.body.intent.slots:
            return None
        return self.body.intent.slots[name].value


class OutputSpeech(_Envelope):
    # 目前平台只支持 PlainText
    type: str = "PlainText"
    text: str = ""


class Card(_Envelope):
    # 目前平台只支持 Simple 卡片
    type: str = "Simple"
    title: str | None = None
    content: str | None = None


class Reprompt(_Envelope):
    output_speech: OutputSpeech | None = Field(default=None, alias="outputSpeech")


class ResponseBody(_Envelope):
    output_speech: OutputSpeech | None = Field(default=None, alias="outputSpeech")
    card: Card | None = None
    reprompt: Reprompt | None = None
    should_end_session: bool = Field(default=True, alias="shouldEndSession")


class SkillResponse(_Envelope):
    """技能返回给平台的响应信封。"""

    version: str = "1.0"
    session_attributes: Dict[str, Any] = Field(default_factory=dict, alias="sessionAttributes")
    body: ResponseBody = Field(default_factory=ResponseBody, alias="response")

    def to_dict(self) -> Dict[str, Any]:
        # 会话属性原样透传（包括其中的 null 值），为空时省略
        data = self.model_dump(by_alias=True, exclude_none=True, exclude={"session_attributes"})
        if self.session_attributes:
            data["sessionAttributes"] = self.session_attributes
        return data

    def to_bytes(self) -> bytes:
        """序列化为平台约定的 JSON 字节。"""
        return json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8")


def new_output_speech(text: str) -> OutputSpeech:
    return OutputSpeech(text=text)


def new_card(title: str, content: str) -> Card:
    return Card(title=title, content=content)


def new_reprompt(text: str) -> Reprompt:
    return Reprompt(output_speech=new_output_speech(text))


def new_response(request: SkillRequest) -> SkillResponse:
    """
    基于请求创建响应：沿用请求中的会话属性，默认结束会话。
    """
    return SkillResponse(
        session_attributes=dict(request.session.attributes),
        body=ResponseBody(should_end_session=True),
    )
