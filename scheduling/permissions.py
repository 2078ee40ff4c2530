from rest_framework.permissions import SAFE_METHODS, BasePermission


class IsOrganizerOrReadOnly(BasePermission):
    """
    Any authenticated user can read events. Only the organizer can change them.
    """

    def has_permission(self, request, view):
        return request.user.is_authenticated

    def has_object_permission(self, request, view, obj):
        if request.method in SAFE_METHODS:
            return True
        return obj.organizer_id == request.user.pk


class IsAttendee(BasePermission):
    """
    Registrations are only visible to and cancellable by their attendee.
    """

    def has_permission(self, request, view):
        return request.user.is_authenticated

    def has_object_permission(self, request, view, obj):
        return obj.attendee_id == request.user.pk
