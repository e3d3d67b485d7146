from .collection import InvalidPage, Page
from .finders import PaginateMixin
from .pagination import DEFAULT_PER_PAGE, Pagination, count_queryset_safe, paginate

__all__ = [
    "DEFAULT_PER_PAGE",
    "InvalidPage",
    "Page",
    "PaginateMixin",
    "Pagination",
    "count_queryset_safe",
    "paginate",
]
