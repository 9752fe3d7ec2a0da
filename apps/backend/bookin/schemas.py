# bookin/schemas.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Python 用 snake_case，JSON / Firestore document 用 camelCase。
    兩種寫法都接受：CamelModel(book_id=...) 或 model_validate({"bookId": ...})
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_doc(self, **kwargs) -> dict:
        return self.model_dump(by_alias=True, **kwargs)
