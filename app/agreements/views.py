"""
ViewSets for the agreements API.

Views handle HTTP concerns only: they validate the body, call
LifecycleService and render the result. Role checks, state machine
guards and ledger writes all happen in the service.

URL Structure:
    /api/v1/agreements/                                          GET, POST
    /api/v1/agreements/{id}/                                     GET, PATCH
    /api/v1/agreements/{id}/send/                                POST
    /api/v1/agreements/{id}/cancel/                              POST
    /api/v1/agreements/{id}/ledger/                              GET
    /api/v1/agreements/{id}/adjustments/                         POST
    /api/v1/agreements/{id}/milestones/                          POST
    /api/v1/agreements/{id}/milestones/{pk}/                     PATCH, DELETE
    /api/v1/agreements/{id}/milestones/{pk}/fund/                POST
    /api/v1/agreements/{id}/milestones/{pk}/submit/              POST
    /api/v1/agreements/{id}/milestones/{pk}/approve/             POST
    /api/v1/agreements/{id}/milestones/{pk}/release/             POST
    /api/v1/agreements/{id}/milestones/{pk}/dispute/             POST
    /api/v1/agreements/{id}/milestones/{pk}/refund/              POST

Responses:
    Success: {"agreement": {...snapshot...}, "events": [...]}
    Failure: {"error": "...", "error_code": "...", "errors"?: {...}, "details"?: {...}}

Error codes map to HTTP status via ERROR_STATUS; unknown codes are 400.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from agreements.serializers import (
    AdjustSerializer,
    AgreementCreateSerializer,
    AgreementSnapshotSerializer,
    AgreementUpdateSerializer,
    ErrorSerializer,
    EscrowEntrySerializer,
    FundSerializer,
    LifecycleResultSerializer,
    MilestoneCreateSerializer,
    MilestoneUpdateSerializer,
    ReasonSerializer,
    SubmitSerializer,
    VersionSerializer,
)
from agreements.services import LifecycleService

if TYPE_CHECKING:
    from core.services import ServiceResult


ERROR_STATUS = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_AGREEMENT": status.HTTP_400_BAD_REQUEST,
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "AMOUNT_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "CURRENCY_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "ALREADY_RELEASED": status.HTTP_409_CONFLICT,
    "STALE_RECORD": status.HTTP_409_CONFLICT,
    "IMMUTABLE_ENTRY": status.HTTP_409_CONFLICT,
}

ERROR_RESPONSES = {
    400: OpenApiResponse(ErrorSerializer, description="Invalid request or amount"),
    403: OpenApiResponse(ErrorSerializer, description="Caller lacks the required role"),
    404: OpenApiResponse(ErrorSerializer, description="Agreement or milestone not found"),
    409: OpenApiResponse(
        ErrorSerializer, description="Transition not allowed, already released or stale version"
    ),
}


def _responses(success_status: int = 200, serializer=LifecycleResultSerializer) -> dict:
    return {success_status: serializer, **ERROR_RESPONSES}


class LifecycleResponseMixin:
    """Render ServiceResults the same way for every endpoint."""

    def error_response(self, result: ServiceResult) -> Response:
        body = {"error": result.error, "error_code": result.error_code}
        if result.errors:
            body["errors"] = result.errors
        if result.details:
            body["details"] = result.details
        return Response(
            body,
            status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        )

    def lifecycle_response(
        self,
        result: ServiceResult,
        success_status: int = status.HTTP_200_OK,
    ) -> Response:
        if not result.success:
            return self.error_response(result)
        return Response(LifecycleResultSerializer(result.data).data, status=success_status)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_agreements",
        summary="List agreements",
        tags=["Agreements"],
        parameters=[
            OpenApiParameter(
                name="state",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description="Filter by agreement state",
                required=False,
            ),
        ],
        responses={200: AgreementSnapshotSerializer(many=True), **ERROR_RESPONSES},
    ),
    create=extend_schema(
        operation_id="create_agreement",
        summary="Create draft agreement",
        tags=["Agreements"],
        request=AgreementCreateSerializer,
        responses=_responses(201),
    ),
    retrieve=extend_schema(
        operation_id="get_agreement",
        summary="Get agreement",
        tags=["Agreements"],
        responses=_responses(),
    ),
    partial_update=extend_schema(
        operation_id="update_agreement",
        summary="Update draft agreement",
        tags=["Agreements"],
        request=AgreementUpdateSerializer,
        responses=_responses(),
    ),
    destroy=extend_schema(
        operation_id="delete_agreement",
        summary="Delete draft agreement",
        tags=["Agreements"],
        request=VersionSerializer,
        responses=_responses(),
    ),
)
class AgreementViewSet(LifecycleResponseMixin, viewsets.ViewSet):
    """
    ViewSet for agreement operations.

    list:
        Agreements where the caller is owner or counterparty, newest first.

    create:
        Create a draft agreement owned by the caller. Milestones default
        to the agreement type's template when none are given.

    retrieve:
        Agreement snapshot with derived escrow figures.

    partial_update:
        Edit a draft agreement (owner only).

    destroy:
        Delete a draft agreement and its milestones (owner only).

    send:
        Validate and activate the agreement (owner only).

    cancel:
        Cancel the agreement, refunding funded milestones (owner only).

    ledger:
        Escrow ledger entries of the agreement in order.

    adjustments:
        Record an arbiter correction of a ledger entry.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = "[0-9a-f-]{36}"

    def list(self, request):
        result = LifecycleService.list_agreements(
            request.user, state=request.query_params.get("state")
        )
        if not result.success:
            return self.error_response(result)
        return Response(AgreementSnapshotSerializer(result.data, many=True).data)

    def create(self, request):
        serializer = AgreementCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.create_agreement(request.user, serializer.to_params())
        return self.lifecycle_response(result, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        result = LifecycleService.get_agreement(request.user, pk)
        return self.lifecycle_response(result)

    def partial_update(self, request, pk=None):
        serializer = AgreementUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.update_agreement(
            request.user,
            pk,
            serializer.to_params(),
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    def destroy(self, request, pk=None):
        serializer = VersionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.delete_agreement(
            request.user,
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="send_agreement",
        summary="Send agreement",
        tags=["Agreements"],
        request=VersionSerializer,
        responses=_responses(),
    )
    @action(detail=True, methods=["post"])
    def send(self, request, pk=None):
        serializer = VersionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.send(
            request.user,
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="cancel_agreement",
        summary="Cancel agreement",
        tags=["Agreements"],
        request=ReasonSerializer,
        responses=_responses(),
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.cancel(
            request.user,
            pk,
            reason=serializer.validated_data["reason"],
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="get_agreement_ledger",
        summary="Escrow ledger",
        tags=["Agreements"],
        responses={200: EscrowEntrySerializer(many=True), **ERROR_RESPONSES},
    )
    @action(detail=True, methods=["get"])
    def ledger(self, request, pk=None):
        result = LifecycleService.ledger_for(request.user, pk)
        if not result.success:
            return self.error_response(result)
        return Response(EscrowEntrySerializer(result.data, many=True).data)

    @extend_schema(
        operation_id="adjust_ledger_entry",
        summary="Adjust ledger entry",
        description="Arbiter only. Appends a correcting entry; the original is never modified.",
        tags=["Agreements"],
        request=AdjustSerializer,
        responses=_responses(201),
    )
    @action(detail=True, methods=["post"])
    def adjustments(self, request, pk=None):
        serializer = AdjustSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = LifecycleService.adjust_entry(
            request.user,
            pk,
            data["entry_id"],
            data["amount"],
            reason=data["reason"],
            expected_version=data.get("expected_version"),
        )
        return self.lifecycle_response(result, status.HTTP_201_CREATED)


class MilestoneViewSet(LifecycleResponseMixin, viewsets.ViewSet):
    """
    ViewSet for milestone operations (nested under agreement).

    Milestones have no standalone reads; every response carries the full
    agreement snapshot so derived figures stay consistent.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="add_milestone",
        summary="Add milestone",
        tags=["Milestones"],
        request=MilestoneCreateSerializer,
        responses=_responses(201),
    )
    def create(self, request, agreement_pk=None):
        serializer = MilestoneCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.add_milestone(
            request.user,
            agreement_pk,
            serializer.to_params(),
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result, status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="update_milestone",
        summary="Update draft milestone",
        tags=["Milestones"],
        request=MilestoneUpdateSerializer,
        responses=_responses(),
    )
    def partial_update(self, request, agreement_pk=None, pk=None):
        serializer = MilestoneUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.update_milestone(
            request.user,
            agreement_pk,
            pk,
            serializer.to_params(),
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="remove_milestone",
        summary="Remove draft milestone",
        tags=["Milestones"],
        request=VersionSerializer,
        responses=_responses(),
    )
    def destroy(self, request, agreement_pk=None, pk=None):
        serializer = VersionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.remove_milestone(
            request.user,
            agreement_pk,
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="fund_milestone",
        summary="Fund milestone",
        description="Owner deposits exactly the milestone's amount due into escrow.",
        tags=["Milestones"],
        request=FundSerializer,
        responses=_responses(),
    )
    def fund(self, request, agreement_pk=None, pk=None):
        serializer = FundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = LifecycleService.fund(
            request.user,
            agreement_pk,
            pk,
            data["amount"],
            currency=data["currency"],
            expected_version=data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="submit_milestone",
        summary="Submit milestone work",
        tags=["Milestones"],
        request=SubmitSerializer,
        responses=_responses(),
    )
    def submit(self, request, agreement_pk=None, pk=None):
        serializer = SubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = LifecycleService.submit(
            request.user,
            agreement_pk,
            pk,
            note=data["note"],
            deliverables=data["deliverables"],
            expected_version=data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="approve_milestone",
        summary="Approve milestone",
        tags=["Milestones"],
        request=VersionSerializer,
        responses=_responses(),
    )
    def approve(self, request, agreement_pk=None, pk=None):
        serializer = VersionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.approve(
            request.user,
            agreement_pk,
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="release_milestone",
        summary="Release milestone funds",
        tags=["Milestones"],
        request=VersionSerializer,
        responses=_responses(),
    )
    def release(self, request, agreement_pk=None, pk=None):
        serializer = VersionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.release(
            request.user,
            agreement_pk,
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="dispute_milestone",
        summary="Dispute milestone",
        tags=["Milestones"],
        request=ReasonSerializer,
        responses=_responses(),
    )
    def dispute(self, request, agreement_pk=None, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.dispute(
            request.user,
            agreement_pk,
            pk,
            reason=serializer.validated_data["reason"],
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)

    @extend_schema(
        operation_id="refund_milestone",
        summary="Refund milestone",
        tags=["Milestones"],
        request=ReasonSerializer,
        responses=_responses(),
    )
    def refund(self, request, agreement_pk=None, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LifecycleService.refund(
            request.user,
            agreement_pk,
            pk,
            reason=serializer.validated_data["reason"],
            expected_version=serializer.validated_data.get("expected_version"),
        )
        return self.lifecycle_response(result)
