import math

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """
    `?page=&limit=` pagination wrapped in the API envelope.
    """
    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 100

    def get_paginated_response(self, data):
        total = self.page.paginator.count
        limit = self.get_page_size(self.request)
        return Response({
            "success": True,
            "data": data,
            "meta": {
                "page": self.page.number,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
        })
