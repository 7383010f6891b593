from __future__ import annotations

import math
import sys
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Generic, TypeVar, overload
from urllib.parse import urlencode


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


T = TypeVar("T")


class Paginator(Sequence[T], Generic[T]):
    """One page of rows plus the counters needed to render pagination links.

    Example:
        >>> page = Paginator(["a", "b"], total=5, per_page=2, current_page=1)
        >>> page.last_page, page.has_more_pages
        (3, True)
    """

    first_page = 1

    def __init__(self, rows: Sequence[T], *, total: int, per_page: int, current_page: int) -> None:
        self.rows = list(rows)
        self.total = int(total)
        self.per_page = int(per_page)
        self.current_page = int(current_page)
        self._base_url = "/"
        self._query_string: dict[str, Any] = {}

    @property
    def last_page(self) -> int:
        return max(math.ceil(self.total / self.per_page), 1)

    @property
    def has_pages(self) -> bool:
        return self.last_page > 1

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def has_total(self) -> bool:
        return self.total > 0

    def all(self) -> list[T]:
        return list(self.rows)

    def base_url(self, url: str) -> Self:
        self._base_url = url
        return self

    def query_string(self, values: Mapping[str, Any]) -> Self:
        self._query_string = dict(values)
        return self

    def get_url(self, page: int) -> str:
        query = urlencode({**self._query_string, "page": max(page, 1)})
        return f"{self._base_url}?{query}"

    def get_next_page_url(self) -> str | None:
        if not self.has_more_pages:
            return None
        return self.get_url(self.current_page + 1)

    def get_previous_page_url(self) -> str | None:
        if self.current_page <= self.first_page:
            return None
        return self.get_url(self.current_page - 1)

    def get_url_range(self, start: int, end: int) -> list[dict[str, Any]]:
        return [
            {"url": self.get_url(page), "page": page, "is_active": page == self.current_page}
            for page in range(start, end + 1)
        ]

    def get_meta(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "first_page": self.first_page,
            "first_page_url": self.get_url(self.first_page),
            "last_page_url": self.get_url(self.last_page),
            "next_page_url": self.get_next_page_url(),
            "previous_page_url": self.get_previous_page_url(),
        }

    def serialize(self) -> dict[str, Any]:
        return {
            "meta": self.get_meta(),
            "data": [row.serialize() if hasattr(row, "serialize") else row for row in self.rows],
        }

    @overload
    def __getitem__(self, index: int) -> T: ...

    @overload
    def __getitem__(self, index: slice) -> list[T]: ...

    def __getitem__(self, index: int | slice) -> T | list[T]:
        return self.rows[index]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self.rows)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} page={self.current_page}/{self.last_page} "
            f"total={self.total} rows={len(self.rows)}>"
        )
