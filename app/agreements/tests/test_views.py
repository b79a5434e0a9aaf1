"""
Tests for the agreements API views.

This module tests the HTTP surface of LifecycleService:
- AgreementViewSet: create, list, retrieve, update, send, cancel, ledger, adjustments
- MilestoneViewSet: add, update, remove and the milestone transitions
- GatewayHeaderAuthentication: identity from gateway headers

Testing Philosophy:
    Tests focus on observable HTTP behavior:
    - Response status codes and error codes
    - Response body structure (snapshot plus events)
    - Authentication/permission enforcement
"""

import uuid

import pytest
from django.test import RequestFactory
from rest_framework import exceptions, status
from rest_framework.test import APIClient

from agreements.authentication import GatewayHeaderAuthentication
from agreements.ledger.models import EscrowEntry
from agreements.state_machines import EntryKind


# =============================================================================
# URL Constants
# =============================================================================


AGREEMENTS_URL = "/api/v1/agreements/"


def agreement_url(agreement_id, suffix=""):
    """Generate URL for an agreement detail or action endpoint."""
    return f"{AGREEMENTS_URL}{agreement_id}/{suffix}"


def milestone_url(agreement_id, milestone_id, transition=""):
    """Generate URL for a milestone detail or transition endpoint."""
    url = f"{AGREEMENTS_URL}{agreement_id}/milestones/{milestone_id}/"
    return f"{url}{transition}/" if transition else url


# =============================================================================
# Fixtures
# =============================================================================


def client_for(user_id, roles=""):
    client = APIClient()
    headers = {"HTTP_X_USER_ID": user_id}
    if roles:
        headers["HTTP_X_USER_ROLES"] = roles
    client.credentials(**headers)
    return client


@pytest.fixture
def anonymous_client():
    return APIClient()


@pytest.fixture
def owner_client():
    return client_for("user-owner")


@pytest.fixture
def counterparty_client():
    return client_for("user-counterparty")


@pytest.fixture
def arbiter_client():
    return client_for("user-arbiter", roles="arbiter")


@pytest.fixture
def stranger_client():
    return client_for("user-stranger")


def create_body(**overrides):
    body = {
        "agreement_type": "freelance",
        "title": "Website build",
        "counterparty_id": "user-counterparty",
        "total_value": "1000.00",
        "milestones": [
            {"title": "Design", "amount": "600.00"},
            {"title": "Build", "amount": "400.00"},
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture
def draft(db, owner_client):
    """Agreement JSON of a freshly created draft."""
    response = owner_client.post(AGREEMENTS_URL, create_body(), format="json")
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()["agreement"]


def _activate(owner_client, **overrides):
    response = owner_client.post(AGREEMENTS_URL, create_body(**overrides), format="json")
    agreement = response.json()["agreement"]
    owner_client.post(agreement_url(agreement["id"], "send/"), {}, format="json")
    for milestone in agreement["milestones"]:
        response = owner_client.post(
            milestone_url(agreement["id"], milestone["id"], "fund"),
            {"amount": milestone["amount_due"]["display"].split()[0]},
            format="json",
        )
        assert response.status_code == status.HTTP_200_OK
    return response.json()["agreement"]


@pytest.fixture
def funded(db, owner_client):
    """Agreement JSON of an active agreement with both milestones funded."""
    return _activate(owner_client)


@pytest.fixture
def manual(db, owner_client):
    """Funded agreement whose milestones release only on explicit release."""
    return _activate(owner_client, manual_release=True)


def submit_and_approve(client, agreement, sequence):
    milestone_id = agreement["milestones"][sequence - 1]["id"]
    client.post(milestone_url(agreement["id"], milestone_id, "submit"), {}, format="json")
    return client.post(milestone_url(agreement["id"], milestone_id, "approve"), {}, format="json")


# =============================================================================
# Authentication
# =============================================================================


class TestGatewayHeaderAuthentication:
    """Tests for GatewayHeaderAuthentication."""

    def test_builds_caller_from_headers(self):
        request = RequestFactory().get(
            "/",
            HTTP_X_USER_ID=" user-1 ",
            HTTP_X_USER_DISPLAY_NAME="Ada",
            HTTP_X_USER_ROLES="Arbiter, support,",
        )

        caller, auth = GatewayHeaderAuthentication().authenticate(request)

        assert caller.user_id == "user-1"
        assert caller.display_name == "Ada"
        assert caller.roles == frozenset({"arbiter", "support"})
        assert caller.is_arbiter
        assert auth is None

    def test_missing_header_is_anonymous(self):
        request = RequestFactory().get("/")

        assert GatewayHeaderAuthentication().authenticate(request) is None

    def test_overlong_user_id_is_rejected(self):
        request = RequestFactory().get("/", HTTP_X_USER_ID="x" * 129)

        with pytest.raises(exceptions.AuthenticationFailed):
            GatewayHeaderAuthentication().authenticate(request)

    def test_request_without_identity_is_401(self, db, anonymous_client):
        response = anonymous_client.get(AGREEMENTS_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# =============================================================================
# Agreements
# =============================================================================


class TestAgreementCreate:
    """Tests for POST /api/v1/agreements/."""

    def test_create_returns_snapshot_and_events(self, db, owner_client):
        response = owner_client.post(AGREEMENTS_URL, create_body(), format="json")

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        agreement = body["agreement"]
        assert agreement["state"] == "draft"
        assert agreement["owner_id"] == "user-owner"
        assert agreement["total_value"] == {
            "amount_minor": 100000,
            "currency": "USD",
            "display": "1000.00 USD",
        }
        assert agreement["progress_percent"] == "0.00"
        assert [m["amount_due"]["amount_minor"] for m in agreement["milestones"]] == [
            60000,
            40000,
        ]
        assert [e["type"] for e in body["events"]] == ["agreement.created"]

    def test_create_from_template(self, db, owner_client):
        response = owner_client.post(
            AGREEMENTS_URL, create_body(milestones=[]), format="json"
        )

        milestones = response.json()["agreement"]["milestones"]
        assert [m["title"] for m in milestones] == ["Design Phase", "Development", "Launch"]

    def test_invalid_agreement_lists_violations(self, db, owner_client):
        response = owner_client.post(
            AGREEMENTS_URL, create_body(total_value="900.00"), format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error_code"] == "INVALID_AGREEMENT"
        assert body["errors"]["violations"] == [
            "milestone amounts sum to 1000.00 USD, expected 900.00 USD"
        ]

    def test_float_amount_is_rejected(self, db, owner_client):
        response = owner_client.post(
            AGREEMENTS_URL, create_body(total_value=1000.0), format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "total_value" in response.json()

    def test_invalid_amount(self, db, owner_client):
        response = owner_client.post(
            AGREEMENTS_URL, create_body(total_value="10.001"), format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_amount_too_large_for_storage(self, db, owner_client):
        body = create_body(
            total_value="99999999999999999999",
            milestones=[{"title": "Dome", "amount": "99999999999999999999"}],
        )

        response = owner_client.post(AGREEMENTS_URL, body, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_missing_title(self, db, owner_client):
        body = create_body()
        del body["title"]

        response = owner_client.post(AGREEMENTS_URL, body, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestAgreementRead:
    """Tests for list and retrieve."""

    def test_list_for_both_parties(self, draft, owner_client, counterparty_client, stranger_client):
        owner_ids = [a["id"] for a in owner_client.get(AGREEMENTS_URL).json()]
        counterparty_ids = [a["id"] for a in counterparty_client.get(AGREEMENTS_URL).json()]

        assert owner_ids == [draft["id"]]
        assert counterparty_ids == [draft["id"]]
        assert stranger_client.get(AGREEMENTS_URL).json() == []

    def test_list_filters_by_state(self, draft, owner_client):
        response = owner_client.get(AGREEMENTS_URL, {"state": "active"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []

    def test_list_unknown_state(self, db, owner_client):
        response = owner_client.get(AGREEMENTS_URL, {"state": "archived"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_retrieve(self, draft, counterparty_client):
        response = counterparty_client.get(agreement_url(draft["id"]))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["agreement"]["id"] == draft["id"]
        assert response.json()["events"] == []

    def test_arbiter_can_retrieve(self, draft, arbiter_client):
        response = arbiter_client.get(agreement_url(draft["id"]))

        assert response.status_code == status.HTTP_200_OK

    def test_stranger_is_forbidden(self, draft, stranger_client):
        response = stranger_client.get(agreement_url(draft["id"]))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error_code"] == "FORBIDDEN"

    def test_unknown_agreement(self, db, owner_client):
        response = owner_client.get(agreement_url(uuid.uuid4()))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "NOT_FOUND"


class TestAgreementTransitions:
    """Tests for PATCH, send and cancel."""

    def test_patch_draft(self, draft, owner_client):
        response = owner_client.patch(
            agreement_url(draft["id"]), {"title": "Shop build"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["agreement"]["title"] == "Shop build"
        assert response.json()["agreement"]["version"] == 2

    def test_stale_version_is_conflict(self, draft, owner_client):
        owner_client.patch(agreement_url(draft["id"]), {"title": "v2"}, format="json")

        response = owner_client.patch(
            agreement_url(draft["id"]),
            {"title": "v3", "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "STALE_RECORD"
        assert response.json()["details"]["current_version"] == 2

    def test_send(self, draft, owner_client):
        response = owner_client.post(
            agreement_url(draft["id"], "send/"), {"expected_version": 1}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["agreement"]["state"] == "active"
        assert [e["type"] for e in response.json()["events"]] == ["agreement.sent"]

    def test_send_twice_is_conflict(self, draft, owner_client):
        owner_client.post(agreement_url(draft["id"], "send/"), {}, format="json")

        response = owner_client.post(agreement_url(draft["id"], "send/"), {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    def test_counterparty_cannot_send(self, draft, counterparty_client):
        response = counterparty_client.post(
            agreement_url(draft["id"], "send/"), {}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_cancel_refunds_funded(self, funded, owner_client):
        response = owner_client.post(
            agreement_url(funded["id"], "cancel/"), {"reason": "Plans changed"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["agreement"]["state"] == "cancelled"
        assert body["agreement"]["refunded_value"]["amount_minor"] == 100000
        assert body["events"][-1]["payload"]["reason"] == "Plans changed"

    def test_delete_draft(self, draft, owner_client):
        response = owner_client.delete(agreement_url(draft["id"]), {}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert [e["type"] for e in response.json()["events"]] == ["agreement.deleted"]
        assert (
            owner_client.get(agreement_url(draft["id"])).status_code
            == status.HTTP_404_NOT_FOUND
        )

    def test_delete_active_is_conflict(self, funded, owner_client):
        response = owner_client.delete(agreement_url(funded["id"]), {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    def test_counterparty_cannot_delete(self, draft, counterparty_client):
        response = counterparty_client.delete(agreement_url(draft["id"]), {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN


# =============================================================================
# Milestones
# =============================================================================


class TestMilestoneEditing:
    """Tests for milestone create, update and delete."""

    def test_add_milestone(self, draft, owner_client):
        response = owner_client.post(
            f"{agreement_url(draft['id'])}milestones/",
            {"title": "Hosting", "amount": "50.00", "deliverables": ["DNS"]},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        milestones = response.json()["agreement"]["milestones"]
        assert milestones[-1]["title"] == "Hosting"
        assert milestones[-1]["sequence"] == 3

    def test_update_milestone(self, draft, owner_client):
        milestone_id = draft["milestones"][1]["id"]

        response = owner_client.patch(
            milestone_url(draft["id"], milestone_id), {"title": "Build and test"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["agreement"]["milestones"][1]["title"] == "Build and test"

    def test_remove_milestone(self, draft, owner_client):
        milestone_id = draft["milestones"][0]["id"]

        response = owner_client.delete(milestone_url(draft["id"], milestone_id))

        assert response.status_code == status.HTTP_200_OK
        milestones = response.json()["agreement"]["milestones"]
        assert [m["sequence"] for m in milestones] == [1]
        assert milestones[0]["title"] == "Build"


class TestMilestoneTransitions:
    """Tests for fund, submit, approve, release, dispute and refund."""

    def test_fund_amount_mismatch(self, draft, owner_client):
        owner_client.post(agreement_url(draft["id"], "send/"), {}, format="json")
        milestone_id = draft["milestones"][0]["id"]

        response = owner_client.post(
            milestone_url(draft["id"], milestone_id, "fund"), {"amount": "599.99"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error_code"] == "AMOUNT_MISMATCH"
        assert body["details"]["expected_minor"] == 60000
        assert body["details"]["received_minor"] == 59999
        assert not EscrowEntry.objects.exists()

    def test_fund_float_is_rejected(self, draft, owner_client):
        owner_client.post(agreement_url(draft["id"], "send/"), {}, format="json")
        milestone_id = draft["milestones"][0]["id"]

        response = owner_client.post(
            milestone_url(draft["id"], milestone_id, "fund"), {"amount": 600.0}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not EscrowEntry.objects.exists()

    def test_approve_releases_and_reports_progress(self, funded, counterparty_client):
        response = submit_and_approve(counterparty_client, funded, 1)

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["agreement"]["progress_percent"] == "60.00"
        assert body["agreement"]["released_value"]["display"] == "600.00 USD"
        assert [e["type"] for e in body["events"]] == [
            "milestone.approved",
            "milestone.released",
        ]

    def test_second_release_is_conflict(self, manual, owner_client, counterparty_client):
        submit_and_approve(counterparty_client, manual, 1)
        url = milestone_url(manual["id"], manual["milestones"][0]["id"], "release")
        owner_client.post(url, {}, format="json")

        response = owner_client.post(url, {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "ALREADY_RELEASED"
        assert EscrowEntry.objects.filter(kind=EntryKind.RELEASE).count() == 1

    def test_dispute_and_arbiter_refund(self, funded, counterparty_client, arbiter_client):
        milestone_id = funded["milestones"][0]["id"]
        counterparty_client.post(
            milestone_url(funded["id"], milestone_id, "submit"), {}, format="json"
        )
        disputed = counterparty_client.post(
            milestone_url(funded["id"], milestone_id, "dispute"),
            {"reason": "Scope changed"},
            format="json",
        )

        response = arbiter_client.post(
            milestone_url(funded["id"], milestone_id, "refund"), {}, format="json"
        )

        assert disputed.status_code == status.HTTP_200_OK
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["agreement"]["milestones"][0]["state"] == "refunded"

    def test_unknown_milestone(self, funded, owner_client):
        response = owner_client.post(
            milestone_url(funded["id"], uuid.uuid4(), "fund"), {"amount": "1.00"}, format="json"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Ledger
# =============================================================================


class TestLedger:
    """Tests for the ledger and adjustments endpoints."""

    def test_ledger_lists_entries_in_order(self, funded, counterparty_client):
        response = counterparty_client.get(agreement_url(funded["id"], "ledger/"))

        assert response.status_code == status.HTTP_200_OK
        entries = response.json()
        assert [e["position"] for e in entries] == [1, 2]
        assert [e["kind"] for e in entries] == ["fund", "fund"]
        assert entries[0]["amount"]["display"] == "600.00 USD"

    def test_stranger_cannot_read_ledger(self, funded, stranger_client):
        response = stranger_client.get(agreement_url(funded["id"], "ledger/"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_arbiter_adjustment(self, funded, arbiter_client):
        entry = EscrowEntry.objects.filter(kind=EntryKind.FUND).order_by("position").first()

        response = arbiter_client.post(
            agreement_url(funded["id"], "adjustments/"),
            {"entry_id": str(entry.id), "amount": "-5.00", "reason": "Bank fee"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["agreement"]["escrowed_value"]["amount_minor"] == 99500
        assert body["events"][0]["type"] == "ledger.adjusted"

    def test_owner_cannot_adjust(self, funded, owner_client):
        entry = EscrowEntry.objects.filter(kind=EntryKind.FUND).first()

        response = owner_client.post(
            agreement_url(funded["id"], "adjustments/"),
            {"entry_id": str(entry.id), "amount": "1.00", "reason": "Mine"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


# =============================================================================
# Infrastructure
# =============================================================================


class TestHealthCheck:
    def test_health(self, db, anonymous_client):
        response = anonymous_client.get("/health/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy", "database": "connected"}
