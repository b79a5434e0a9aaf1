"""
URL configuration for the escrow service.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/                       - Agreement endpoints
        agreements/                - Agreement list/create
        agreements/{id}/           - Agreement detail/update
        agreements/{id}/send/      - Send agreement to counterparty
        agreements/{id}/cancel/    - Cancel agreement
        agreements/{id}/ledger/    - Escrow ledger entries
        agreements/{id}/adjustments/ - Arbiter ledger corrections
        agreements/{id}/milestones/  - Add milestone
        agreements/{id}/milestones/{pk}/ - Milestone update/remove
        agreements/{id}/milestones/{pk}/{transition}/ - fund, submit, approve,
                                     release, dispute, refund

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Agreements and milestones
    path("", include("agreements.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]
