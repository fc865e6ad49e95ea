# api/v1/urls.py
from django.urls import include, path

from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # --- Auth ---
    path("auth/", include(("domains.accounts.urls_auth", "accounts_auth"), namespace="accounts_auth")),
    # --- Shipments ---
    path("shipments/", include(("domains.shipments.urls", "shipments"), namespace="shipments")),
    # --- API Docs ---
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
]
