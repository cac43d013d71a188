"""记录模型基类

线上 JSON 使用 camelCase，Python 属性使用 snake_case。
记录不可变：镜像中的修改一律通过 model_copy(update=...) 生成新实例。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """与 REST/推送载荷互通的模型基类"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """序列化为线上 JSON（camelCase，省略 None）"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UserRef(WireModel):
    """嵌入在记录中的用户摘要"""

    id: str
    name: str = ""
    email: str = ""
