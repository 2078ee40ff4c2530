from typing import TypedDict

from rest_framework.viewsets import GenericViewSet, ViewSet


class RouteDict(TypedDict):
    """
    A router registration entry: the URL prefix, the viewset served under it
    and the basename used to reverse its routes (``api:<basename>-<action>``).
    """

    regex: str
    viewset: type[GenericViewSet] | type[ViewSet]
    basename: str
