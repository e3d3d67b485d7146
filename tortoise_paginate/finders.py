import logging
import re
from typing import Any, ClassVar, Iterable, Mapping

from tortoise.expressions import Q, Subquery

from .collection import Page
from .pagination import DEFAULT_PER_PAGE, paginate

logger = logging.getLogger(__name__)

# plain columns or function calls like lower(title), never an unbalanced ")"
ORDER_BY_RE = re.compile(
    r"\bORDER\s+BY\s+(?:\w+\([^()]*\)|[\w`\".,\s])+$", re.IGNORECASE
)

# dialects without LIMIT support
FETCH_DIALECTS = ("mssql", "oracle")


def strip_order(sql: str) -> str:
    """Remove a trailing ORDER BY clause, counting doesn't need it"""
    return ORDER_BY_RE.sub("", sql, count=1)


def count_sql(sql: str, dialect: str | None = None) -> str:
    query = f"SELECT COUNT(*) FROM ({strip_order(sql)})"
    # oracle refuses AS on a table alias
    if dialect != "oracle":
        query += " AS count_table"
    return query


def add_limit(sql: str, limit: int, offset: int, dialect: str | None = None) -> str:
    if dialect in FETCH_DIALECTS:
        return f"{sql} OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"
    return f"{sql} LIMIT {limit} OFFSET {offset}"


def _as_tuple(value: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


class PaginateMixin:
    """Adds paginating finders to a tortoise `Model`

    >>> class Topic(PaginateMixin, Model):
    ...     per_page = 10
    >>> page = await Topic.paginate(page=2, title__icontains="orm")
    """

    per_page: ClassVar[int] = DEFAULT_PER_PAGE

    @classmethod
    async def paginate(
        cls,
        *args: Any,
        page: Any,
        per_page: int | None = None,
        total_entries: int | None = None,
        count: Mapping[str, Any] | None = None,
        finder: str = "filter",
        order_by: str | Iterable[str] | None = None,
        prefetch_related: str | Iterable[str] | None = None,
        distinct: bool = False,
        **options: Any,
    ) -> Page:
        """Fetch one page of what `finder` returns.

        `finder` names a classmethod returning a queryset, it gets `args` and
        `options` untouched. `order_by` and `prefetch_related` only apply to
        the fetch, `count` holds extra finder options only used for counting.
        """
        if count is not None and total_entries is not None:
            raise ValueError("`count` and `total_entries` are mutually exclusive")

        # a list of primary keys, duplicated or missing ones make len() unreliable
        if finder == "filter" and args and isinstance(args[0], (list, tuple, set, frozenset)):
            args = (Q(**{f"{cls._meta.pk_attr}__in": list(args[0])}), *args[1:])

        find = getattr(cls, finder)
        queryset = find(*args, **options)
        count_queryset = queryset
        if count is not None:
            count_queryset = find(*args, **{**options, **count})

        if distinct:
            queryset = queryset.distinct()
            count_queryset = cls.distinct_count_queryset(count_queryset)
        if order_by:
            queryset = queryset.order_by(*_as_tuple(order_by))
        if prefetch_related:
            queryset = queryset.prefetch_related(*_as_tuple(prefetch_related))

        return await paginate(
            queryset,
            page=page,
            per_page=cls.per_page if per_page is None else per_page,
            total_entries=total_entries,
            count_queryset=count_queryset,
        )

    @classmethod
    def distinct_count_queryset(cls, queryset):
        """Queryset counting each row of `queryset` once.

        `QuerySet.count()` ignores `distinct()`, joined rows would be counted
        as many times as they match.
        """
        pk_attr = cls._meta.pk_attr
        return cls.filter(
            **{f"{pk_attr}__in": Subquery(queryset.values(pk_attr))}
        )

    @classmethod
    async def paginate_by_sql(
        cls,
        sql: str,
        *,
        page: Any,
        per_page: int | None = None,
        total_entries: int | None = None,
    ) -> Page:
        pager = Page.create(
            1 if page is None else page,
            cls.per_page if per_page is None else per_page,
            total_entries,
        )
        dialect = cls._meta.db.capabilities.dialect
        pager.replace(await cls.raw(add_limit(sql, pager.per_page, pager.offset, dialect)))

        if pager.total_entries is None:
            pager.total_entries = await cls.count_by_sql(count_sql(sql, dialect))
        return pager

    @classmethod
    async def count_by_sql(cls, sql: str) -> int:
        logger.debug("counting %s: %s", cls.__name__, sql)
        rows = await cls._meta.db.execute_query_dict(sql)
        if not rows:
            return 0
        return int(next(iter(rows[0].values())))
