"""Custom pagination classes for monetization endpoints."""
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination


class BoundedPageNumberPagination(PageNumberPagination):
    """Page-number pagination with a client-selectable, capped page size."""

    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 200
