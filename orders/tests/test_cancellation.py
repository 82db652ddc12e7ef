"""
Tests for the cancellation workflow.

Test Cases:
1. Eligibility: status allow-list, pending requests and the window for paid orders
2. Customers create one pending request per order, with a real reason
3. Approval cancels the order, restores stock and records the refund owed
4. A request is reviewed once; rejection needs a note
5. Refund completion moves the order to Refunded
6. Unpaid orders are cancelled without a request
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from core.exceptions import (
    AlreadyReviewed,
    CancellationNotAllowed,
    Forbidden,
    OrderValidationError,
)
from orders.cancellation import CancellationService
from orders.config import OrderConfig
from orders.models import ActivityLog, Order, OrderCancellationRequest, Payment
from orders.services import advance_order_status
from orders.state import OrderPaymentStatus, OrderStatus, PaymentStatus
from .helpers import make_gateway, make_service, make_variant, notify, place_order

User = get_user_model()

REASON = 'We postponed the wedding to next year'


class CancellationTestBase(TestCase):

    def setUp(self):
        self.customer = User.objects.create_user('ayu', 'ayu@example.com', 'secret')
        self.stranger = User.objects.create_user('dimas', 'dimas@example.com', 'secret')
        self.admin = User.objects.create_user('admin', 'admin@example.com', 'secret', is_staff=True)
        self.card = make_variant('CLS-HC-A5', price='10000', stock=500)
        self.gateway = make_gateway()
        self.checkout = make_service(self.gateway)
        self.service = CancellationService(OrderConfig())

    def unpaid_order(self, quantity=100, **options):
        result = place_order(self.customer, [(self.card, quantity)], service=self.checkout, **options)
        return Order.objects.get(pk=result.order.pk)

    def paid_order(self, quantity=100, **options):
        result = place_order(self.customer, [(self.card, quantity)], service=self.checkout, **options)
        notify(self.gateway, result.payment, 'settlement')
        return Order.objects.get(pk=result.order.pk)


class CancellationEligibilityTestCase(CancellationTestBase):

    def test_unpaid_order_is_eligible(self):
        order = self.unpaid_order()
        self.assertTrue(self.service.can_request_cancellation(order))

    def test_paid_order_within_window(self):
        order = self.paid_order()
        self.assertTrue(self.service.can_request_cancellation(order, now=order.created_at + timedelta(hours=23)))

    def test_paid_order_outside_window(self):
        """
        Given: A paid order placed 25 hours ago
        When: Checking eligibility
        Then: Not eligible, with a reason naming the 24 hour window
        """
        order = self.paid_order()
        later = order.created_at + timedelta(hours=25)

        self.assertFalse(self.service.can_request_cancellation(order, now=later))
        self.assertIn('24', self.service.get_ineligibility_reason(order, now=later))

    def test_window_ignores_unpaid_orders(self):
        order = self.unpaid_order()
        self.assertTrue(self.service.can_request_cancellation(order, now=order.created_at + timedelta(days=3)))

    def test_production_is_not_cancellable(self):
        order = self.paid_order()
        for status in (OrderStatus.PROCESSING, OrderStatus.IN_PRODUCTION):
            order = advance_order_status(order, status, self.admin)

        self.assertFalse(self.service.can_request_cancellation(order))

    def test_design_approval_is_cancellable(self):
        order = self.paid_order()
        for status in (OrderStatus.PROCESSING, OrderStatus.DESIGN_APPROVAL):
            order = advance_order_status(order, status, self.admin)

        self.assertTrue(self.service.can_request_cancellation(order))

    def test_allow_list_comes_from_config(self):
        order = self.paid_order()
        service = CancellationService(OrderConfig(cancellable_statuses=frozenset({OrderStatus.PENDING_PAYMENT})))

        self.assertFalse(service.can_request_cancellation(order))

    @override_settings(ORDERS={'CANCELLATION_WINDOW_HOURS': None})
    def test_window_can_be_disabled(self):
        order = self.paid_order()
        service = CancellationService()

        self.assertTrue(service.can_request_cancellation(order, now=order.created_at + timedelta(days=10)))

    def test_cancelled_order_is_not_eligible(self):
        order = self.unpaid_order()
        self.service.cancel_unpaid_order(order)
        order.refresh_from_db()

        self.assertFalse(self.service.can_request_cancellation(order))
        self.assertIn('cancelled', self.service.get_ineligibility_reason(order))

    def test_failed_order_has_its_own_reason(self):
        """
        Given: A dp_50 order whose down payment was paid and whose final payment expired
        When: Checking cancellation eligibility
        Then: Not eligible, and the reason says the order failed rather than was cancelled
        """
        order = self.paid_order(payment_option='dp_50')
        notify(self.gateway, Payment.objects.get(order=order, payment_type='final'), 'expire')
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.FAILED)

        self.assertFalse(self.service.can_request_cancellation(order))
        reason = str(self.service.get_ineligibility_reason(order))
        self.assertIn('failed', reason)
        self.assertNotIn('cancelled or refunded', reason)


class CancellationRequestTestCase(CancellationTestBase):

    def test_create_request(self):
        order = self.paid_order()

        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        self.assertTrue(cancellation.is_pending)
        self.assertEqual(cancellation.order_status_before, OrderStatus.PAID)
        self.assertEqual(cancellation.refund_amount, Decimal('1000000'))
        self.assertEqual(cancellation.requested_by, self.customer)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)

        entry = ActivityLog.objects.get(log_type='order_cancellation', action='created')
        self.assertEqual(entry.subject_id, cancellation.id)
        self.assertEqual(entry.properties['order_number'], order.order_number)

    def test_unpaid_order_owes_no_refund(self):
        order = self.unpaid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)
        self.assertIsNone(cancellation.refund_amount)

    def test_only_owner_can_request(self):
        order = self.unpaid_order()
        with self.assertRaises(Forbidden):
            self.service.create_cancellation_request(order, self.stranger, REASON)

    def test_reason_must_be_meaningful(self):
        order = self.unpaid_order()
        with self.assertRaises(OrderValidationError):
            self.service.create_cancellation_request(order, self.customer, '  too short ')

    def test_second_pending_request_refused(self):
        order = self.unpaid_order()
        self.service.create_cancellation_request(order, self.customer, REASON)

        with self.assertRaises(CancellationNotAllowed):
            self.service.create_cancellation_request(order, self.customer, REASON)
        self.assertEqual(OrderCancellationRequest.objects.filter(order=order).count(), 1)

    def test_new_request_after_rejection(self):
        order = self.unpaid_order()
        first = self.service.create_cancellation_request(order, self.customer, REASON)
        self.service.reject(first, self.admin, 'Printing already scheduled')

        second = self.service.create_cancellation_request(order, self.customer, REASON)
        self.assertTrue(second.is_pending)


class CancellationReviewTestCase(CancellationTestBase):

    def test_approve_paid_order(self):
        """
        Given: A paid order of 100 cards with a pending cancellation request
        When: Staff approve it
        Then: Order is Cancelled, the 100 cards are back in stock and 1,000,000 is owed
        """
        order = self.paid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)
        self.card.refresh_from_db()
        self.assertEqual(self.card.stock, 400)

        cancellation = self.service.approve(cancellation, self.admin, notes='OK')

        order.refresh_from_db()
        self.card.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.payment_status, OrderPaymentStatus.PAID)
        self.assertEqual(self.card.stock, 500)
        self.assertEqual(cancellation.status, OrderCancellationRequest.Status.APPROVED)
        self.assertEqual(cancellation.reviewed_by, self.admin)
        self.assertIsNotNone(cancellation.reviewed_at)
        self.assertEqual(cancellation.refund_amount, Decimal('1000000'))
        self.assertTrue(cancellation.refund_initiated)
        self.assertEqual(cancellation.refund_status, OrderCancellationRequest.RefundStatus.PENDING)
        self.assertTrue(cancellation.stock_restored)
        self.assertTrue(
            ActivityLog.objects.filter(log_type='order_cancellation', action='approved').exists()
        )

    def test_approve_unpaid_order_closes_payments(self):
        order = self.unpaid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        cancellation = self.service.approve(cancellation, self.admin)

        order.refresh_from_db()
        self.assertEqual(order.payment_status, OrderPaymentStatus.CANCELLED)
        self.assertEqual(cancellation.refund_amount, Decimal('0'))
        self.assertFalse(cancellation.refund_initiated)
        self.assertIsNone(cancellation.refund_status)
        self.assertFalse(order.payments.exclude(status=PaymentStatus.CANCELLED).exists())

    def test_partial_refund(self):
        order = self.paid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        cancellation = self.service.approve(cancellation, self.admin, refund_amount='750000')

        self.assertEqual(cancellation.refund_amount, Decimal('750000'))

    def test_refund_cannot_exceed_paid(self):
        order = self.paid_order(payment_option='dp_50')
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        with self.assertRaises(OrderValidationError):
            self.service.approve(cancellation, self.admin, refund_amount='500001')

        cancellation.refresh_from_db()
        order.refresh_from_db()
        self.assertTrue(cancellation.is_pending)
        self.assertEqual(order.status, OrderStatus.PARTIALLY_PAID)

    def test_partially_paid_cancellation_closes_final_payment(self):
        order = self.paid_order(payment_option='dp_50')
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        cancellation = self.service.approve(cancellation, self.admin)

        self.assertEqual(cancellation.refund_amount, Decimal('500000'))
        statuses = dict(Payment.objects.filter(order=order).values_list('payment_type', 'status'))
        self.assertEqual(statuses, {'dp': PaymentStatus.PAID, 'final': PaymentStatus.CANCELLED})

    def test_request_is_reviewed_once(self):
        order = self.unpaid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)
        self.service.approve(cancellation, self.admin)

        with self.assertRaises(AlreadyReviewed):
            self.service.approve(cancellation, self.admin)
        with self.assertRaises(AlreadyReviewed):
            self.service.reject(cancellation, self.admin, 'Too late')

        self.card.refresh_from_db()
        self.assertEqual(self.card.stock, 500)

    def test_only_staff_review(self):
        order = self.unpaid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        with self.assertRaises(Forbidden):
            self.service.approve(cancellation, self.customer)
        with self.assertRaises(Forbidden):
            self.service.reject(cancellation, self.customer, 'No')

    def test_reject_requires_notes(self):
        order = self.unpaid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)

        with self.assertRaises(OrderValidationError):
            self.service.reject(cancellation, self.admin, '   ')

        cancellation = self.service.reject(cancellation, self.admin, 'Printing already started')
        order.refresh_from_db()
        self.assertEqual(cancellation.status, OrderCancellationRequest.Status.REJECTED)
        self.assertEqual(cancellation.admin_notes, 'Printing already started')
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)


class RefundCompletionTestCase(CancellationTestBase):

    def test_complete_refund(self):
        order = self.paid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)
        self.service.approve(cancellation, self.admin)

        cancellation = self.service.complete_refund(cancellation, 'RF-001', actor=self.admin)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.REFUNDED)
        self.assertEqual(order.payment_status, OrderPaymentStatus.REFUNDED)
        self.assertEqual(cancellation.refund_status, OrderCancellationRequest.RefundStatus.COMPLETED)
        self.assertEqual(cancellation.refund_transaction_id, 'RF-001')
        self.assertTrue(ActivityLog.objects.filter(action='refund_completed', subject_id=cancellation.id).exists())

    def test_nothing_to_refund(self):
        order = self.unpaid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)
        self.service.approve(cancellation, self.admin)

        with self.assertRaises(OrderValidationError):
            self.service.complete_refund(cancellation, 'RF-002', actor=self.admin)

    def test_refund_completed_once(self):
        order = self.paid_order()
        cancellation = self.service.create_cancellation_request(order, self.customer, REASON)
        self.service.approve(cancellation, self.admin)
        self.service.complete_refund(cancellation, 'RF-003', actor=self.admin)

        with self.assertRaises(OrderValidationError):
            self.service.complete_refund(cancellation, 'RF-004', actor=self.admin)


class UnpaidOrderCancellationTestCase(CancellationTestBase):

    def test_cancel_unpaid_order(self):
        order = self.unpaid_order()

        self.assertTrue(self.service.cancel_unpaid_order(order))

        order.refresh_from_db()
        self.card.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.payment_status, OrderPaymentStatus.CANCELLED)
        self.assertEqual(self.card.stock, 500)
        self.assertEqual(order.payments.get().status, PaymentStatus.CANCELLED)

    def test_paid_order_is_left_alone(self):
        order = self.paid_order()

        self.assertFalse(self.service.cancel_unpaid_order(order))

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)

    def test_failed_order_with_down_payment_is_left_alone(self):
        order = self.paid_order(payment_option='dp_50')
        final = order.payments.get(payment_type='final')
        notify(self.gateway, final, 'expire')
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.FAILED)

        self.assertFalse(self.service.cancel_unpaid_order(order))
