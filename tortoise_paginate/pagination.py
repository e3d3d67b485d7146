import asyncio
import logging
from inspect import iscoroutinefunction
from typing import Any, Awaitable, Callable, Type, TypeVar

from fastapi import HTTPException, Query, status
from pydantic import BaseModel, PositiveInt, ValidationError
from tortoise.contrib.pydantic import PydanticModel
from tortoise.queryset import QuerySet

from .collection import Page

M = TypeVar("M")
SCHEMA = TypeVar("SCHEMA", bound=BaseModel)

DEFAULT_PER_PAGE = 30

logger = logging.getLogger(__name__)


async def count_queryset_safe(queryset: QuerySet) -> int:
    logger.debug("counting %s", queryset.model.__name__)
    try:
        return max(await queryset.count(), 0)
    # for some reasons the ORM raises an error if nothing matches the offset
    # IndexError: list index out of range
    except IndexError:
        return 0


def default_per_page(queryset: QuerySet) -> int:
    return getattr(queryset.model, "per_page", DEFAULT_PER_PAGE)


async def paginate(
    queryset: QuerySet[M],
    *,
    page: Any,
    per_page: int | None = None,
    total_entries: int | None = None,
    count_queryset: QuerySet[M] | None = None,
) -> Page[M]:
    """Fetch one page of `queryset`.

    `page=None` is the first page. The count query only runs when
    `total_entries` is not given and the fetched rows don't tell the total.
    """
    if per_page is None:
        per_page = default_per_page(queryset)
    pager = Page.create(1 if page is None else page, per_page, total_entries)

    logger.debug(
        "paginating %s: limit=%d offset=%d",
        queryset.model.__name__,
        pager.per_page,
        pager.offset,
    )
    pager.replace(await queryset.limit(pager.per_page).offset(pager.offset))

    if pager.total_entries is None:
        if count_queryset is None:
            count_queryset = queryset
        pager.total_entries = await count_queryset_safe(count_queryset)
    return pager


class Pagination(BaseModel):
    """Represents a Pagination request"""

    page: PositiveInt = 1
    per_page: PositiveInt | None = None

    @classmethod
    def from_query(
        cls,
        page: int | None = Query(None),
        per_page: int | None = Query(None),
    ) -> "Pagination":
        try:
            return cls(page=1 if page is None else page, per_page=per_page)
        except ValidationError as error:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=error.errors()
            )

    def get_per_page(self, queryset: QuerySet) -> int:
        if self.per_page is None:
            return default_per_page(queryset)
        return self.per_page

    def paginate_queryset(self, queryset: QuerySet[M]) -> QuerySet[M]:
        per_page = self.get_per_page(queryset)
        return queryset.limit(per_page).offset((self.page - 1) * per_page)

    async def paginate(self, queryset: QuerySet[M]) -> Page[M]:
        return await paginate(
            queryset, page=self.page, per_page=self.get_per_page(queryset)
        )

    async def paginated_response(
        self,
        queryset: QuerySet[M],
        schema: Type[PydanticModel],
        extra_fields: dict[
            str, Callable[[M], Any] | Callable[[M], Awaitable[Any] | Any]
        ]
        | None = None,
    ) -> Page[SCHEMA]:
        """Returns a page of `schema` from the given queryset

        `extra_fields` keys are attribute names set on each instance before
        serialization, values are the (sync or async) callables computing them
        """
        if extra_fields is None:
            extra_fields = {}

        async def _get_serialized_instance(instance: M) -> SCHEMA:
            for field_name, resolver in extra_fields.items():
                if iscoroutinefunction(resolver):
                    field_value = await resolver(instance)
                else:
                    field_value = resolver(instance)
                setattr(instance, field_name, field_value)

            return await schema.from_tortoise_orm(instance)

        page = await self.paginate(queryset)
        items = await asyncio.gather(
            *[_get_serialized_instance(instance) for instance in page.items]
        )

        pagination_class = Page[schema]
        return pagination_class(
            current_page=page.current_page,
            per_page=page.per_page,
            total_entries=page.total_entries,
            items=items,
        )
