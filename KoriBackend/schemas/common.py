from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# Base for API payloads: snake_case in Python, camelCase on the wire (both accepted on input)
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            has_next=page * limit < total,
            has_prev=page > 1,
        )
