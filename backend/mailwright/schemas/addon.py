from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StringInputs(_EventModel):
    value: list[str] = Field(default_factory=list)


class FormInput(_EventModel):
    string_inputs: StringInputs | None = Field(default=None, alias="stringInputs")


class CommonEventObject(_EventModel):
    host_app: str = Field(default="", alias="hostApp")
    platform: str = ""
    form_inputs: dict[str, FormInput] = Field(default_factory=dict, alias="formInputs")
    parameters: dict[str, str] = Field(default_factory=dict)


class AuthorizationEventObject(_EventModel):
    user_oauth_token: str = Field(default="", alias="userOAuthToken")
    user_id_token: str = Field(default="", alias="userIdToken")
    system_id_token: str = Field(default="", alias="systemIdToken")


class GmailEventObject(_EventModel):
    message_id: str = Field(default="", alias="messageId")
    thread_id: str = Field(default="", alias="threadId")
    access_token: str = Field(default="", alias="accessToken")


class AddOnEvent(_EventModel):
    common: CommonEventObject = Field(default_factory=CommonEventObject, alias="commonEventObject")
    authorization: AuthorizationEventObject = Field(
        default_factory=AuthorizationEventObject,
        alias="authorizationEventObject",
    )
    gmail: GmailEventObject | None = None

    def form_value(self, key: str) -> str | None:
        form_input = self.common.form_inputs.get(key)
        if form_input is None or form_input.string_inputs is None or not form_input.string_inputs.value:
            return None
        return form_input.string_inputs.value[0] or None

    def parameter(self, key: str, default: str = "") -> str:
        return self.common.parameters.get(key) or default
