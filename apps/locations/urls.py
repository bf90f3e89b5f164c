"""URL routing for locations and boxes."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import BoxViewSet, LocationViewSet

router = DefaultRouter()
# boxes/ must come before the location detail route
router.register(r"boxes", BoxViewSet, basename="box")
router.register(r"", LocationViewSet, basename="location")

urlpatterns = [
    path("", include(router.urls)),
]
