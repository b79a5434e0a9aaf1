"""
URL configuration for agreements API.

URL Structure:
    Agreements:
        /agreements/                    GET, POST
        /agreements/{id}/               GET, PATCH, DELETE
        /agreements/{id}/send/          POST
        /agreements/{id}/cancel/        POST
        /agreements/{id}/ledger/        GET
        /agreements/{id}/adjustments/   POST

    Milestones:
        /agreements/{id}/milestones/                 POST
        /agreements/{id}/milestones/{pk}/            PATCH, DELETE
        /agreements/{id}/milestones/{pk}/fund/       POST
        /agreements/{id}/milestones/{pk}/submit/     POST
        /agreements/{id}/milestones/{pk}/approve/    POST
        /agreements/{id}/milestones/{pk}/release/    POST
        /agreements/{id}/milestones/{pk}/dispute/    POST
        /agreements/{id}/milestones/{pk}/refund/     POST

All URLs are prefixed with /api/v1/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from agreements.views import AgreementViewSet, MilestoneViewSet

router = DefaultRouter()
router.register(r"agreements", AgreementViewSet, basename="agreement")

app_name = "agreements"

MILESTONE_TRANSITIONS = ("fund", "submit", "approve", "release", "dispute", "refund")

urlpatterns = [
    path("", include(router.urls)),
    # Nested routes for milestones
    path(
        "agreements/<uuid:agreement_pk>/milestones/",
        MilestoneViewSet.as_view({"post": "create"}),
        name="agreement-milestone-list",
    ),
    path(
        "agreements/<uuid:agreement_pk>/milestones/<uuid:pk>/",
        MilestoneViewSet.as_view({"patch": "partial_update", "delete": "destroy"}),
        name="agreement-milestone-detail",
    ),
] + [
    path(
        f"agreements/<uuid:agreement_pk>/milestones/<uuid:pk>/{transition}/",
        MilestoneViewSet.as_view({"post": transition}),
        name=f"agreement-milestone-{transition}",
    )
    for transition in MILESTONE_TRANSITIONS
]
