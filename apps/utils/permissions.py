from rest_framework.permissions import BasePermission


def is_admin(user):
    """Staff accounts carry the ADMIN role."""
    return bool(user and user.is_authenticated and user.is_staff)


class IsAdminRole(BasePermission):
    message = "Admin access required."

    def has_permission(self, request, view):
        return is_admin(request.user)
