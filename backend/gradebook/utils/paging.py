"""Utilities for parsing pagination and sorting query parameters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from pymongo import ASCENDING, DESCENDING


class PagingParamError(ValueError):
    """Raised when pagination or sort query parameters are invalid."""


@dataclass
class PagingParams:
    page: int
    limit: int
    sort: Tuple[str, int]
    normalized_sort: str


@dataclass
class PageWindow:
    """The page actually served once the total document count is known."""

    page: int
    limit: int
    total: int
    skip: int
    has_next: bool
    has_prev: bool

    def meta(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


def _parse_int_arg(
    raw_value: str | None,
    *,
    name: str,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    if raw_value in (None, ""):
        value = default
    else:
        try:
            value = int(raw_value)
        except (TypeError, ValueError):
            raise PagingParamError(f"{name} must be an integer.") from None

    if minimum is not None and value < minimum:
        raise PagingParamError(f"{name} must be ≥ {minimum}.")
    if maximum is not None and value > maximum:
        raise PagingParamError(f"{name} must be ≤ {maximum}.")

    return value


def _parse_sort_arg(
    raw_sort: str | None,
    *,
    allowed_fields: Mapping[str, str],
    default_sort: str,
) -> Tuple[Tuple[str, int], str]:
    if not allowed_fields:
        raise PagingParamError("No sort fields configured.")

    sort_value = raw_sort or default_sort
    direction = DESCENDING if sort_value.startswith("-") else ASCENDING
    field_key = sort_value.lstrip("-")

    if field_key not in allowed_fields:
        options = [
            value
            for field in sorted(allowed_fields)
            for value in (field, f"-{field}")
        ]
        raise PagingParamError("sort must be one of: " + ", ".join(options) + ".")

    normalized = f"-{field_key}" if direction == DESCENDING else field_key
    return (allowed_fields[field_key], direction), normalized


def parse_paging_params(
    args: Mapping[str, str],
    *,
    default_page: int = 1,
    default_limit: int = 20,
    max_limit: int = 100,
    allowed_sort_fields: Mapping[str, str],
    default_sort: str,
) -> PagingParams:
    """Parse ``page``, ``limit`` and ``sort`` from a request args mapping."""

    page = _parse_int_arg(args.get("page"), name="page", default=default_page, minimum=1)
    limit = _parse_int_arg(
        args.get("limit"),
        name="limit",
        default=default_limit,
        minimum=1,
        maximum=max_limit,
    )
    sort_tuple, normalized_sort = _parse_sort_arg(
        args.get("sort"),
        allowed_fields=allowed_sort_fields,
        default_sort=default_sort,
    )

    return PagingParams(page=page, limit=limit, sort=sort_tuple, normalized_sort=normalized_sort)


def page_window(params: PagingParams, total: int) -> PageWindow:
    """Clamp the requested page into range for ``total`` documents."""

    max_page = (total + params.limit - 1) // params.limit if total else 0
    page = min(params.page, max_page) if max_page else 1
    skip = (page - 1) * params.limit if total else 0

    return PageWindow(
        page=page,
        limit=params.limit,
        total=total,
        skip=skip,
        has_next=page < max_page,
        has_prev=page > 1,
    )


__all__ = ["PagingParamError", "PagingParams", "PageWindow", "parse_paging_params", "page_window"]
