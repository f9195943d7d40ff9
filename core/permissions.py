"""
Custom permission classes for the bicycle marketplace.
"""

from rest_framework import permissions


class IsStaffUser(permissions.BasePermission):
    """
    Permission class that allows only marketplace admins to access the endpoint.

    Admins are users with is_staff or is_superuser set.
    Returns 403 Forbidden for everyone else.

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsStaffUser]
    """

    message = 'You do not have permission to perform this action. Administrator privileges required.'

    def has_permission(self, request, view):
        """
        Check if user is authenticated and has admin privileges.

        Args:
            request: HTTP request object
            view: View being accessed

        Returns:
            bool: True if user is an admin, False otherwise
        """
        # User must be authenticated
        if not request.user or not request.user.is_authenticated:
            return False

        return bool(request.user.is_staff or request.user.is_superuser)


class IsOrderParticipant(permissions.BasePermission):
    """
    Object-level permission for orders.

    Allows:
    - The buyer of the order
    - The seller of the ordered bicycle
    - Admins
    """

    message = 'You do not have access to this order.'

    def has_object_permission(self, request, view, obj):
        user = request.user
        if user.is_staff or user.is_superuser:
            return True
        return obj.buyer_id == user.id or obj.bicycle.seller_id == user.id
