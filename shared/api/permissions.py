"""Permission classes shared by the catalog and resource APIs."""

from __future__ import annotations

from rest_framework import permissions  # type: ignore


class IsStaffOrReadOnly(permissions.BasePermission):
    """Read access for everyone, writes for staff and superusers only."""

    def has_permission(self, request, view):  # type: ignore
        if request.method in permissions.SAFE_METHODS:
            return True
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "is_staff", False) or getattr(user, "is_superuser", False)
