"""
Test suite for admin settlement of paid orders.

Tests cover:
- Approving a sale completes the order and sells the bicycle in one step
- Rejecting a sale cancels the order, refunds the payment and relists the bicycle
- Typed precondition failures (already_settled, payment_not_paid, bicycle_not_reserved)
- Admin-only access
"""

import pytest
from rest_framework import status

from core.exceptions import ForbiddenError, NotFoundError, PreconditionFailedError
from core.models import Bicycle, Order, OrderPayment

from conftest import auth_header


@pytest.mark.django_db
class TestApproveSale:

    def test_approve_paid_order(self, workflow, paid_order, admin_user, metrics):
        assert paid_order.can_be_approved_by_admin()

        order = workflow.admin_approve_sale(paid_order.id, admin_user)

        assert order.status == Order.Status.COMPLETED
        assert order.completed_at is not None

        paid_order.refresh_from_db()
        assert paid_order.status == Order.Status.COMPLETED
        assert paid_order.bicycle.status == Bicycle.Status.SOLD
        assert paid_order.payment.status == OrderPayment.Status.PAID
        assert metrics.count('sales.approved') == 1

    def test_approve_twice_reports_already_settled(self, workflow, paid_order, admin_user):
        workflow.admin_approve_sale(paid_order.id, admin_user)

        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow.admin_approve_sale(paid_order.id, admin_user)

        payload = exc_info.value.payload
        assert payload['failed_precondition'] == 'already_settled'
        assert payload['order_status'] == Order.Status.COMPLETED
        assert payload['bicycle_status'] == Bicycle.Status.SOLD

    def test_unpaid_order(self, workflow, pending_order, admin_user):
        assert not pending_order.can_be_approved_by_admin()

        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow.admin_approve_sale(pending_order.id, admin_user)

        assert exc_info.value.payload['failed_precondition'] == 'payment_not_paid'
        assert exc_info.value.payload['payment_status'] == OrderPayment.Status.PENDING

        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.PENDING
        assert pending_order.bicycle.status == Bicycle.Status.RESERVED

    def test_bicycle_not_reserved(self, workflow, paid_order, admin_user):
        Bicycle.objects.filter(pk=paid_order.bicycle_id).update(status=Bicycle.Status.AVAILABLE)

        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow.admin_approve_sale(paid_order.id, admin_user)

        assert exc_info.value.payload['failed_precondition'] == 'bicycle_not_reserved'
        paid_order.refresh_from_db()
        assert paid_order.status == Order.Status.PROCESSING

    def test_non_admin(self, workflow, paid_order, seller):
        with pytest.raises(ForbiddenError):
            workflow.admin_approve_sale(paid_order.id, seller)

        paid_order.refresh_from_db()
        assert paid_order.status == Order.Status.PROCESSING

    def test_missing_order(self, workflow, admin_user):
        with pytest.raises(NotFoundError):
            workflow.admin_approve_sale(999999, admin_user)


@pytest.mark.django_db
class TestRejectSale:

    def test_reject_paid_order(self, workflow, paid_order, admin_user, metrics):
        order = workflow.admin_reject_sale(paid_order.id, admin_user, 'Frame cracked on inspection')

        assert order.status == Order.Status.CANCELLED
        assert order.cancel_reason == 'Frame cracked on inspection'

        paid_order.refresh_from_db()
        assert paid_order.status == Order.Status.CANCELLED
        assert paid_order.bicycle.status == Bicycle.Status.AVAILABLE
        assert paid_order.payment.status == OrderPayment.Status.REFUNDED
        assert paid_order.payment.refunded_at is not None
        assert metrics.count('sales.rejected') == 1

    def test_default_reason(self, workflow, paid_order, admin_user):
        order = workflow.admin_reject_sale(paid_order.id, admin_user)

        assert order.cancel_reason == 'Sale rejected by administrator'

    def test_failure_while_refunding_rolls_back(self, workflow, paid_order, admin_user, monkeypatch):
        def broken_save(self, *args, **kwargs):
            raise RuntimeError('payment storage unavailable')

        monkeypatch.setattr(OrderPayment, 'save', broken_save)

        with pytest.raises(RuntimeError):
            workflow.admin_reject_sale(paid_order.id, admin_user)

        paid_order.refresh_from_db()
        assert paid_order.status == Order.Status.PROCESSING
        assert paid_order.cancelled_at is None
        assert paid_order.bicycle.status == Bicycle.Status.RESERVED
        assert paid_order.payment.status == OrderPayment.Status.PAID

    def test_bicycle_can_be_ordered_again(self, workflow, paid_order, admin_user, other_buyer, delivery_params):
        workflow.admin_reject_sale(paid_order.id, admin_user)

        order = workflow.create_order(other_buyer, paid_order.bicycle_id, delivery_params)

        assert order.status == Order.Status.PENDING

    def test_unpaid_order(self, workflow, pending_order, admin_user):
        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow.admin_reject_sale(pending_order.id, admin_user)

        assert exc_info.value.payload['failed_precondition'] == 'payment_not_paid'

    def test_completed_order(self, workflow, paid_order, admin_user):
        workflow.admin_approve_sale(paid_order.id, admin_user)

        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow.admin_reject_sale(paid_order.id, admin_user)

        assert exc_info.value.payload['failed_precondition'] == 'already_settled'
        paid_order.refresh_from_db()
        assert paid_order.bicycle.status == Bicycle.Status.SOLD

    def test_non_admin(self, workflow, paid_order, buyer):
        with pytest.raises(ForbiddenError):
            workflow.admin_reject_sale(paid_order.id, buyer)


@pytest.mark.django_db
class TestSettlementEndpoints:

    def test_approve_endpoint(self, api_client, paid_order, admin_user):
        response = api_client.patch(
            f'/api/admin/orders/{paid_order.id}/approve-sale/', format='json', **auth_header(admin_user)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'completed'
        assert response.data['bicycle']['status'] == 'sold'

    def test_approve_endpoint_precondition(self, api_client, pending_order, admin_user):
        response = api_client.patch(
            f'/api/admin/orders/{pending_order.id}/approve-sale/', format='json', **auth_header(admin_user)
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'precondition_failed'
        assert response.data['failed_precondition'] == 'payment_not_paid'
        assert response.data['order_status'] == 'pending'
        assert response.data['payment_status'] == 'pending'
        assert response.data['bicycle_status'] == 'reserved'

    def test_approve_endpoint_requires_staff(self, api_client, paid_order, buyer):
        response = api_client.patch(
            f'/api/admin/orders/{paid_order.id}/approve-sale/', format='json', **auth_header(buyer)
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_reject_endpoint(self, api_client, paid_order, admin_user):
        response = api_client.patch(
            f'/api/admin/orders/{paid_order.id}/reject-sale/',
            {'reason': 'Seller withdrew'},
            format='json',
            **auth_header(admin_user)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'cancelled'
        assert response.data['cancel_reason'] == 'Seller withdrew'
        assert response.data['bicycle']['status'] == 'available'
        assert response.data['payment']['status'] == 'refunded'
