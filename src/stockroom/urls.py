"""URL configuration for Stockroom.

The booking core is consumed as a library; only the admin is routed here.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path("admin/", admin.site.urls),
]
