"""
Test suite for accepting and rejecting offers.

Tests cover:
- Accepting one offer rejects every competing pending offer on the bicycle
- The accepted offer reserves the bicycle and creates an order at the offered price
- Direct-sale acceptance mode
- Authorization and state checks
- Rollback when a write fails after the bulk reject, and accept racing a direct order
- PATCH /api/offers/<id>/accept/ and /reject/
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.db import connection
from django.test import override_settings
from rest_framework import status
from rest_framework.test import APIRequestFactory, force_authenticate

from core.exceptions import ForbiddenError, InvalidStateError, NotFoundError
from core.models import Bicycle, Message, Order, OrderPayment
from core.negotiation import NegotiationService
from core.views import OfferAcceptView, OrderCreateView

from conftest import auth_header, make_bicycle, make_user


@pytest.fixture
def service(metrics):
    return NegotiationService(metrics=metrics)


@pytest.fixture
def third_buyer(db):
    return make_user('buyer3')


@pytest.fixture
def competing_offers(service, seller, buyer, other_buyer, third_buyer, bicycle):
    """Offers A (20000), B (24000) and C (25000) on a NT$25,000 bicycle."""
    offer_a = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))
    offer_b = service.create_offer(other_buyer, seller, bicycle.id, Decimal('24000'))
    offer_c = service.create_offer(third_buyer, seller, bicycle.id, Decimal('25000'))
    return offer_a, offer_b, offer_c


@pytest.mark.django_db
class TestAcceptOffer:

    def test_accepting_one_offer_rejects_the_others(self, service, seller, bicycle, competing_offers):
        offer_a, offer_b, offer_c = competing_offers

        decision = service.accept_offer(offer_c.id, seller)

        for offer in competing_offers:
            offer.refresh_from_db()
        assert offer_c.offer_status == Message.OfferStatus.ACCEPTED
        assert offer_a.offer_status == Message.OfferStatus.REJECTED
        assert offer_b.offer_status == Message.OfferStatus.REJECTED
        assert sorted(decision.rejected_offer_ids) == sorted([offer_a.id, offer_b.id])

        bicycle.refresh_from_db()
        assert bicycle.status == Bicycle.Status.RESERVED

        order = decision.order
        assert order.status == Order.Status.PENDING
        assert order.buyer_id == offer_c.sender_id
        assert order.offer_id == offer_c.id
        assert order.subtotal == Decimal('25000')
        assert order.total_price >= Decimal('25000')
        assert Order.objects.filter(bicycle=bicycle).count() == 1

    def test_order_priced_at_offer_amount(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))

        order = service.accept_offer(offer.id, seller).order

        assert order.subtotal == Decimal('20000')
        assert order.shipping_method == Order.ShippingMethod.ASSISTED_DELIVERY
        assert order.total_price == order.subtotal + order.shipping_cost + order.tax
        assert order.payment.status == OrderPayment.Status.PENDING
        assert order.payment.amount == order.total_price

    def test_response_message_references_order(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))

        decision = service.accept_offer(offer.id, seller)

        response = decision.response_message
        assert response.sender == seller
        assert response.recipient == buyer
        assert not response.is_offer
        assert 'NT$20,000' in response.content
        assert decision.order.order_number in response.content

    def test_only_recipient_can_accept(self, service, seller, buyer, other_buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))

        with pytest.raises(ForbiddenError):
            service.accept_offer(offer.id, other_buyer)

        with pytest.raises(ForbiddenError):
            service.accept_offer(offer.id, buyer)

        offer.refresh_from_db()
        assert offer.offer_status == Message.OfferStatus.PENDING

    def test_accept_twice(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))
        service.accept_offer(offer.id, seller)

        with pytest.raises(InvalidStateError) as exc_info:
            service.accept_offer(offer.id, seller)

        assert exc_info.value.get_codes() == 'offer_not_pending'
        assert Order.objects.count() == 1

    def test_rejected_competitor_cannot_be_accepted(self, service, seller, competing_offers):
        offer_a, _, offer_c = competing_offers
        service.accept_offer(offer_c.id, seller)

        with pytest.raises(InvalidStateError):
            service.accept_offer(offer_a.id, seller)

    def test_bicycle_no_longer_available(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))
        Bicycle.objects.filter(pk=bicycle.pk).update(status=Bicycle.Status.SOLD)

        with pytest.raises(InvalidStateError) as exc_info:
            service.accept_offer(offer.id, seller)

        assert exc_info.value.get_codes() == 'bicycle_unavailable'
        offer.refresh_from_db()
        assert offer.offer_status == Message.OfferStatus.PENDING
        assert Order.objects.count() == 0

    def test_failure_after_bulk_reject_rolls_back(self, service, seller, bicycle, competing_offers, monkeypatch):
        original_save = Message.save

        def failing_save(self, *args, **kwargs):
            if not self.is_offer:
                raise RuntimeError('message storage unavailable')
            return original_save(self, *args, **kwargs)

        monkeypatch.setattr(Message, 'save', failing_save)

        with pytest.raises(RuntimeError):
            service.accept_offer(competing_offers[2].id, seller)

        for offer in competing_offers:
            offer.refresh_from_db()
            assert offer.offer_status == Message.OfferStatus.PENDING
        bicycle.refresh_from_db()
        assert bicycle.status == Bicycle.Status.AVAILABLE
        assert Order.objects.count() == 0
        assert OrderPayment.objects.count() == 0
        assert Message.objects.filter(is_offer=False).count() == 0

    def test_missing_offer(self, service, seller):
        with pytest.raises(NotFoundError):
            service.accept_offer(999999, seller)

    def test_plain_message_is_not_an_offer(self, service, seller, buyer, bicycle):
        message = Message.objects.create(sender=buyer, recipient=seller, bicycle=bicycle, content='Hi')

        with pytest.raises(NotFoundError):
            service.accept_offer(message.id, seller)

    def test_offers_on_other_bicycles_untouched(self, service, seller, buyer, other_buyer, bicycle):
        other_bicycle = make_bicycle(seller, title='Merida Reacto')
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))
        elsewhere = service.create_offer(other_buyer, seller, other_bicycle.id, Decimal('15000'))

        service.accept_offer(offer.id, seller)

        elsewhere.refresh_from_db()
        assert elsewhere.offer_status == Message.OfferStatus.PENDING

    def test_metrics(self, service, seller, competing_offers, metrics):
        service.accept_offer(competing_offers[2].id, seller)

        assert metrics.count('offers.accepted') == 1
        assert metrics.count('offers.rejected') == 2
        assert metrics.count('orders.created') == 1

    @override_settings(MARKETPLACE={'OFFER_ACCEPTANCE_MODE': 'direct_sale'})
    def test_direct_sale_mode(self, service, seller, buyer, bicycle, competing_offers):
        offer_c = competing_offers[2]

        decision = service.accept_offer(offer_c.id, seller)

        assert decision.order is None
        assert len(decision.rejected_offer_ids) == 2
        bicycle.refresh_from_db()
        assert bicycle.status == Bicycle.Status.SOLD
        assert Order.objects.count() == 0
        assert 'contact me' in decision.response_message.content

    @override_settings(MARKETPLACE={'OFFER_ACCEPTANCE_MODE': 'auction'})
    def test_unknown_mode(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))

        with pytest.raises(ImproperlyConfigured):
            service.accept_offer(offer.id, seller)


@pytest.mark.django_db
class TestRejectOffer:

    def test_reject(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))

        decision = service.reject_offer(offer.id, seller)

        offer.refresh_from_db()
        assert offer.offer_status == Message.OfferStatus.REJECTED
        assert decision.order is None
        assert decision.response_message.content == 'Sorry, I declined your offer of NT$20,000.'

        bicycle.refresh_from_db()
        assert bicycle.status == Bicycle.Status.AVAILABLE

    def test_reject_leaves_other_offers_pending(self, service, seller, competing_offers):
        offer_a, offer_b, offer_c = competing_offers

        service.reject_offer(offer_a.id, seller)

        offer_b.refresh_from_db()
        offer_c.refresh_from_db()
        assert offer_b.offer_status == Message.OfferStatus.PENDING
        assert offer_c.offer_status == Message.OfferStatus.PENDING

    def test_only_recipient_can_reject(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))

        with pytest.raises(ForbiddenError):
            service.reject_offer(offer.id, buyer)

    def test_cannot_reject_accepted_offer(self, service, seller, buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('20000'))
        service.accept_offer(offer.id, seller)

        with pytest.raises(InvalidStateError):
            service.reject_offer(offer.id, seller)


@pytest.mark.django_db
class TestOfferDecisionEndpoints:

    def test_accept_endpoint(self, api_client, seller, bicycle, competing_offers):
        offer_c = competing_offers[2]

        response = api_client.patch(
            f'/api/offers/{offer_c.id}/accept/', format='json', **auth_header(seller)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['offer']['offer_status'] == 'accepted'
        assert response.data['order']['status'] == 'pending'
        assert response.data['order']['bicycle']['status'] == 'reserved'
        assert response.data['order']['payment']['status'] == 'pending'
        assert response.data['order']['payment']['instructions']['reference'] == (
            response.data['order']['order_number']
        )
        assert len(response.data['rejected_offer_ids']) == 2

    def test_accept_endpoint_highest_offer_amount(self, api_client, service, seller, buyer):
        bicycle = make_bicycle(seller, price='99999999.99', title='Pinarello Dogma F')
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('99999999'))

        response = api_client.patch(
            f'/api/offers/{offer.id}/accept/', format='json', **auth_header(seller)
        )

        assert response.status_code == status.HTTP_200_OK
        order = response.data['order']
        assert Decimal(order['subtotal']) == Decimal('99999999')
        assert Decimal(order['tax']) == Decimal('5000000')
        assert Decimal(order['total_price']) == (
            Decimal(order['subtotal']) + Decimal(order['shipping_cost']) + Decimal(order['tax'])
        )

    def test_accept_endpoint_forbidden(self, api_client, buyer, competing_offers):
        response = api_client.patch(
            f'/api/offers/{competing_offers[0].id}/accept/', format='json', **auth_header(buyer)
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['code'] == 'forbidden'

    def test_accept_endpoint_conflict(self, api_client, seller, competing_offers):
        url = f'/api/offers/{competing_offers[0].id}/accept/'
        api_client.patch(url, format='json', **auth_header(seller))

        response = api_client.patch(url, format='json', **auth_header(seller))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'offer_not_pending'

    def test_accept_endpoint_not_found(self, api_client, seller):
        response = api_client.patch('/api/offers/999999/accept/', format='json', **auth_header(seller))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'offer_not_found'

    def test_reject_endpoint(self, api_client, seller, competing_offers):
        response = api_client.patch(
            f'/api/offers/{competing_offers[1].id}/reject/', format='json', **auth_header(seller)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['offer']['offer_status'] == 'rejected'
        assert response.data['order'] is None
        assert response.data['rejected_offer_ids'] == []


@pytest.mark.django_db(transaction=True)
class TestAcceptRacesDirectOrder:
    """The seller accepts an offer while another buyer orders at list price."""

    def test_exactly_one_reservation(self, service, seller, buyer, other_buyer, bicycle):
        offer = service.create_offer(buyer, seller, bicycle.id, Decimal('22000'))

        def accept():
            request = APIRequestFactory().patch(f'/api/offers/{offer.id}/accept/', format='json')
            force_authenticate(request, user=seller)
            return OfferAcceptView.as_view()(request, pk=offer.id)

        def order():
            data = {'bicycle_id': bicycle.id, 'shipping_method': 'self_pickup'}
            request = APIRequestFactory().post('/api/orders/', data, format='json')
            force_authenticate(request, user=other_buyer)
            return OrderCreateView.as_view()(request)

        def run(call):
            try:
                return call()
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=2) as executor:
            accept_future = executor.submit(run, accept)
            order_future = executor.submit(run, order)
            accept_response = accept_future.result()
            order_response = order_future.result()

        codes = sorted([accept_response.status_code, order_response.status_code])
        assert codes in (
            [status.HTTP_200_OK, status.HTTP_409_CONFLICT],
            [status.HTTP_201_CREATED, status.HTTP_409_CONFLICT],
        ), codes

        loser = accept_response if accept_response.status_code == status.HTTP_409_CONFLICT else order_response
        assert loser.data['code'] == 'bicycle_unavailable'

        bicycle.refresh_from_db()
        assert bicycle.status == Bicycle.Status.RESERVED
        active = Order.objects.filter(bicycle=bicycle, status=Order.Status.PENDING)
        assert active.count() == 1

        offer.refresh_from_db()
        if accept_response.status_code == status.HTTP_200_OK:
            assert offer.offer_status == Message.OfferStatus.ACCEPTED
            assert active.get().buyer == buyer
        else:
            assert offer.offer_status == Message.OfferStatus.PENDING
            assert active.get().buyer == other_buyer
