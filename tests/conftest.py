"""
Shared fixtures for the marketplace test suite.
"""

from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from core.metrics import WorkflowMetrics
from core.models import Bicycle
from core.orders import OrderWorkflow

User = get_user_model()


class RecordingMetrics(WorkflowMetrics):
    """Metrics backend that keeps every call for assertions."""

    def __init__(self):
        self.counters = []
        self.timings = []

    def increment(self, name, value=1, **tags):
        self.counters.append((name, value, tags))

    def timing(self, name, seconds, **tags):
        self.timings.append((name, seconds, tags))

    def count(self, name):
        return sum(value for counter, value, _ in self.counters if counter == name)


def make_user(username, **extra):
    return User.objects.create_user(
        username=username,
        email=f'{username}@test.com',
        password='TestPass123!',
        **extra
    )


def make_bicycle(seller, price='25000', status=Bicycle.Status.AVAILABLE, title='Giant TCR Advanced'):
    """Create a bicycle directly in the given status."""
    bicycle = Bicycle.objects.create(seller=seller, title=title, price=Decimal(price))
    if status != bicycle.status:
        # Bypass the workflow guard to set up fixtures in any state
        Bicycle.objects.filter(pk=bicycle.pk).update(status=status)
        bicycle.refresh_from_db()
    return bicycle


def auth_header(user):
    """Bearer authorization header for user."""
    refresh = RefreshToken.for_user(user)
    return {'HTTP_AUTHORIZATION': f'Bearer {refresh.access_token}'}


@pytest.fixture
def api_client():
    """Return API client for testing."""
    return APIClient()


@pytest.fixture
def metrics():
    return RecordingMetrics()


@pytest.fixture
def seller(db):
    return make_user('seller')


@pytest.fixture
def buyer(db):
    return make_user('buyer')


@pytest.fixture
def other_buyer(db):
    return make_user('buyer2')


@pytest.fixture
def admin_user(db):
    return make_user('admin', is_staff=True)


@pytest.fixture
def bicycle(seller):
    """Available bicycle listed at NT$25,000."""
    return make_bicycle(seller)


@pytest.fixture
def delivery_params():
    return {
        'shipping_method': 'assisted_delivery',
        'shipping_address': {
            'full_name': 'Lin Mei',
            'phone_number': '0912-345-678',
            'county': 'Taipei',
            'address_line1': 'No. 1, Sec. 1, Zhongxiao E. Rd.',
        },
        'payment_method': 'bank_transfer',
    }


VALID_PROOF = {
    'filename': 'receipt.jpg',
    'content_type': 'image/jpeg',
    'size': 204800,
    'note': 'Transferred this morning',
    'account_last_five': '12345',
}


@pytest.fixture
def workflow(metrics):
    return OrderWorkflow(metrics=metrics)


@pytest.fixture
def pending_order(workflow, buyer, bicycle, delivery_params):
    """Order awaiting bank transfer; bicycle reserved."""
    return workflow.create_order(buyer, bicycle.id, delivery_params)


@pytest.fixture
def paid_order(workflow, pending_order, buyer, admin_user):
    """Order whose transfer was confirmed by an admin (order processing)."""
    workflow.submit_payment_proof(pending_order.id, buyer, dict(VALID_PROOF))
    workflow.review_payment_proof(pending_order.id, admin_user, approve=True)
    pending_order.refresh_from_db()
    return pending_order
