from rest_framework import status as http_status
from rest_framework.response import Response


def success_response(data=None, status=http_status.HTTP_200_OK, message=None):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return Response(body, status=status)
