import logging
import math
from abc import ABC
from typing import Any, Generic, Iterable, Self, TypeVar

from pydantic import BaseModel, Field, NonNegativeInt, PositiveInt, computed_field

T = TypeVar("T")

logger = logging.getLogger(__name__)


class InvalidPage(ValueError):
    """Raised when the requested page can't be turned into a page number >= 1"""

    def __init__(self, page: Any, page_number: int) -> None:
        super().__init__(
            f"{page!r} given as value, which translates to '{page_number}' as page number"
        )
        self.page = page
        self.page_number = page_number


# https://github.com/pydantic/pydantic/pull/595
class Page(BaseModel, Generic[T], ABC):
    """Represent a Page of T

    `total_entries` stays `None` until it is either given, guessed from a short
    page in `replace` or counted by the caller.
    """

    current_page: PositiveInt = 1
    per_page: PositiveInt
    total_entries: NonNegativeInt | None = None
    items: list[T] = Field(default_factory=lambda: [])

    class Config:
        arbitrary_types_allowed = True

    @classmethod
    def create(
        cls, page: Any, per_page: Any, total_entries: int | None = None
    ) -> Self:
        try:
            page_number = int(page)
        except (TypeError, ValueError):
            page_number = 0
        if page_number < 1:
            raise InvalidPage(page, page_number)

        per_page = int(per_page)
        if per_page < 1:
            raise ValueError(
                f"`per_page` setting cannot be less than 1 ({per_page} given)"
            )

        if total_entries is not None:
            total_entries = int(total_entries)
        return cls(
            current_page=page_number, per_page=per_page, total_entries=total_entries
        )

    @computed_field
    @property
    def offset(self) -> int:
        return (self.current_page - 1) * self.per_page

    @computed_field
    @property
    def total_pages(self) -> int | None:
        if self.total_entries is None:
            return None
        return math.ceil(self.total_entries / self.per_page)

    @computed_field
    @property
    def previous_page(self) -> int | None:
        return self.current_page - 1 if self.current_page > 1 else None

    @computed_field
    @property
    def next_page(self) -> int | None:
        if self.total_pages is not None and self.current_page < self.total_pages:
            return self.current_page + 1
        return None

    @computed_field
    @property
    def out_of_bounds(self) -> bool:
        return self.total_pages is not None and self.current_page > self.total_pages

    def replace(self, items: Iterable[T]) -> Self:
        """Store the fetched rows of this page.

        A page shorter than `per_page` is the last one, so the total is known
        unless we are past the end (an empty page after the first).
        """
        self.items = list(items)
        length = len(self.items)
        if (
            self.total_entries is None
            and length < self.per_page
            and (self.current_page == 1 or length > 0)
        ):
            self.total_entries = self.offset + length
            logger.debug(
                "guessed total_entries=%d from a short page %d",
                self.total_entries,
                self.current_page,
            )
        return self

    def __len__(self) -> int:
        return len(self.items)
