"""
Test suite for bank transfer proof submission and admin review.

Tests cover:
- Buyer submits proof metadata; payment moves to awaiting_confirmation
- File type, size and account digit validation
- Only the buyer, only before the deadline, only once per review cycle
- Admin approval (payment paid, order processing) and rejection (resubmit)
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework import status

from core.exceptions import ForbiddenError, InputValidationError, InvalidStateError
from core.models import Bicycle, Order, OrderPayment

from conftest import VALID_PROOF, auth_header


def proof(**overrides):
    data = dict(VALID_PROOF)
    data.update(overrides)
    return data


@pytest.mark.django_db
class TestSubmitPaymentProof:

    def test_submit_proof(self, workflow, pending_order, buyer, metrics):
        payment = workflow.submit_payment_proof(pending_order.id, buyer, proof())

        payment.refresh_from_db()
        assert payment.status == OrderPayment.Status.AWAITING_CONFIRMATION
        assert payment.proof_status == OrderPayment.ProofStatus.PENDING
        assert payment.proof_filename == 'receipt.jpg'
        assert payment.proof_content_type == 'image/jpeg'
        assert payment.proof_size == 204800
        assert payment.proof_account_last_five == '12345'
        assert payment.proof_uploaded_at is not None
        assert metrics.count('payments.proof_submitted') == 1

    def test_order_and_bicycle_unchanged(self, workflow, pending_order, buyer):
        workflow.submit_payment_proof(pending_order.id, buyer, proof())

        pending_order.refresh_from_db()
        assert pending_order.status == Order.Status.PENDING
        assert pending_order.bicycle.status == Bicycle.Status.RESERVED

    def test_account_digits_optional(self, workflow, pending_order, buyer):
        payment = workflow.submit_payment_proof(pending_order.id, buyer, proof(account_last_five=''))

        assert payment.status == OrderPayment.Status.AWAITING_CONFIRMATION

    @pytest.mark.parametrize('content_type', ['text/plain', 'application/zip', None])
    def test_rejects_unsupported_file_types(self, workflow, pending_order, buyer, content_type):
        with pytest.raises(InputValidationError) as exc_info:
            workflow.submit_payment_proof(pending_order.id, buyer, proof(content_type=content_type))

        assert exc_info.value.get_codes() == 'invalid_proof_content_type'
        assert exc_info.value.payload['field'] == 'proof'

    def test_rejects_large_files(self, workflow, pending_order, buyer):
        with pytest.raises(InputValidationError) as exc_info:
            workflow.submit_payment_proof(pending_order.id, buyer, proof(size=6 * 1024 * 1024))

        assert exc_info.value.get_codes() == 'proof_too_large'

    @pytest.mark.parametrize('digits', ['1234', '123456', 'abcde'])
    def test_rejects_malformed_account_digits(self, workflow, pending_order, buyer, digits):
        with pytest.raises(InputValidationError) as exc_info:
            workflow.submit_payment_proof(pending_order.id, buyer, proof(account_last_five=digits))

        assert exc_info.value.payload['field'] == 'account_last_five'

    def test_only_buyer_can_submit(self, workflow, pending_order, seller):
        with pytest.raises(ForbiddenError):
            workflow.submit_payment_proof(pending_order.id, seller, proof())

    def test_cannot_submit_twice(self, workflow, pending_order, buyer):
        workflow.submit_payment_proof(pending_order.id, buyer, proof())

        with pytest.raises(InvalidStateError):
            workflow.submit_payment_proof(pending_order.id, buyer, proof())

    def test_deadline_passed(self, workflow, pending_order, buyer):
        past = timezone.now() - timedelta(hours=1)
        OrderPayment.objects.filter(order=pending_order).update(deadline=past, expires_at=past)

        with pytest.raises(InvalidStateError) as exc_info:
            workflow.submit_payment_proof(pending_order.id, buyer, proof())

        assert exc_info.value.get_codes() == 'payment_deadline_passed'
        payment = OrderPayment.objects.get(order=pending_order)
        assert payment.status == OrderPayment.Status.PENDING

    def test_cancelled_order(self, workflow, pending_order, buyer):
        workflow.cancel_order(pending_order.id, buyer)

        with pytest.raises(InvalidStateError):
            workflow.submit_payment_proof(pending_order.id, buyer, proof())


@pytest.mark.django_db
class TestReviewPaymentProof:

    @pytest.fixture
    def submitted_order(self, workflow, pending_order, buyer):
        workflow.submit_payment_proof(pending_order.id, buyer, proof())
        return pending_order

    def test_approve(self, workflow, submitted_order, admin_user):
        payment = workflow.review_payment_proof(submitted_order.id, admin_user, approve=True, notes='Matched')

        payment.refresh_from_db()
        assert payment.status == OrderPayment.Status.PAID
        assert payment.paid_at is not None
        assert payment.proof_status == OrderPayment.ProofStatus.APPROVED
        assert payment.proof_reviewed_by == admin_user
        assert payment.proof_review_notes == 'Matched'

        submitted_order.refresh_from_db()
        assert submitted_order.status == Order.Status.PROCESSING
        assert submitted_order.bicycle.status == Bicycle.Status.RESERVED

    def test_reject_allows_resubmission(self, workflow, submitted_order, buyer, admin_user):
        payment = workflow.review_payment_proof(submitted_order.id, admin_user, approve=False, notes='Blurry')

        assert payment.status == OrderPayment.Status.PENDING
        assert payment.proof_status == OrderPayment.ProofStatus.REJECTED
        submitted_order.refresh_from_db()
        assert submitted_order.status == Order.Status.PENDING

        resubmitted = workflow.submit_payment_proof(submitted_order.id, buyer, proof(filename='clear.png',
                                                                                    content_type='image/png'))
        assert resubmitted.status == OrderPayment.Status.AWAITING_CONFIRMATION
        assert resubmitted.proof_reviewed_by is None

    def test_non_admin_cannot_review(self, workflow, submitted_order, seller):
        with pytest.raises(ForbiddenError):
            workflow.review_payment_proof(submitted_order.id, seller, approve=True)

    def test_nothing_to_review(self, workflow, pending_order, admin_user):
        with pytest.raises(InvalidStateError):
            workflow.review_payment_proof(pending_order.id, admin_user, approve=True)


@pytest.mark.django_db
class TestPaymentProofEndpoints:

    def test_submit_endpoint(self, api_client, pending_order, buyer):
        response = api_client.post(
            f'/api/orders/{pending_order.id}/payment-proof/', proof(), format='json', **auth_header(buyer)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['payment']['status'] == 'awaiting_confirmation'
        assert response.data['payment']['proof_status'] == 'pending'

    def test_submit_endpoint_bad_type(self, api_client, pending_order, buyer):
        response = api_client.post(
            f'/api/orders/{pending_order.id}/payment-proof/',
            proof(content_type='text/html'),
            format='json',
            **auth_header(buyer)
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'invalid_proof_content_type'

    def test_submit_endpoint_missing_metadata(self, api_client, pending_order, buyer):
        response = api_client.post(
            f'/api/orders/{pending_order.id}/payment-proof/', {}, format='json', **auth_header(buyer)
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'content_type' in response.data
        assert 'size' in response.data

    def test_confirm_endpoint(self, api_client, pending_order, buyer, admin_user):
        api_client.post(
            f'/api/orders/{pending_order.id}/payment-proof/', proof(), format='json', **auth_header(buyer)
        )

        response = api_client.patch(
            f'/api/admin/orders/{pending_order.id}/confirm-payment/',
            {'approve': True},
            format='json',
            **auth_header(admin_user)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'processing'
        assert response.data['payment']['status'] == 'paid'
        assert response.data['payment']['remaining_payment_hours'] == 0

    def test_confirm_endpoint_requires_staff(self, api_client, pending_order, buyer):
        response = api_client.patch(
            f'/api/admin/orders/{pending_order.id}/confirm-payment/',
            {'approve': True},
            format='json',
            **auth_header(buyer)
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
