# laudo_core/common/api/pagination.py
from __future__ import annotations

from typing import Any

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DefaultPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


def paginate(
    request,
    queryset,
    serializer_class,
    *,
    paginator: PageNumberPagination | None = None,
    context: dict[str, Any] | None = None,
) -> Response:
    """
    List responses are always { count, next, previous, results }.
    """
    pager = paginator or DefaultPagination()
    ctx = {"request": request, **(context or {})}

    page = pager.paginate_queryset(queryset, request)
    rows = page if page is not None else list(queryset)
    data = serializer_class(rows, many=True, context=ctx).data

    if page is None:
        return Response({"count": len(rows), "next": None, "previous": None, "results": data})
    return pager.get_paginated_response(data)
