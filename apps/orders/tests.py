import threading
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import connection, connections
from django.test import TestCase, TransactionTestCase, override_settings

from apps.catalog.models import Product
from apps.inventory.models import StockMovementLog
from apps.inventory.services import InventoryService
from apps.orders.models import Cart, CartItem, Order, OrderDetail, OrderTimeline
from apps.orders.services import CartService, OrderService
from apps.orders.signals import order_created, order_refund_requested
from apps.orders.state_machine import OrderStateMachine
from apps.payments.models import Transaction
from apps.utils.exceptions import (
    AuthorizationError,
    CartEmptyError,
    ConflictError,
    IllegalTransitionError,
    InsufficientStockError,
    NotFoundError,
    ProductUnavailableError,
    StockVersionConflict,
    ValidationError,
)

User = get_user_model()

ADDRESS = "12 Nguyen Hue, District 1, Ho Chi Minh City"
PHONE = "0909123456"


def make_product(name, price, stock, status=Product.Status.PUBLISHED):
    return Product.objects.create(
        name=name, price=Decimal(price), stock_quantity=stock, status=status
    )


def fill_cart(user, *lines):
    cart, _ = Cart.objects.get_or_create(user=user)
    for product, quantity in lines:
        CartItem.objects.create(cart=cart, product=product, quantity=quantity)
    return cart


def checkout(user, method=Order.PaymentMethod.COD, **kwargs):
    return OrderService.create_order(
        user,
        shipping_address=ADDRESS,
        shipping_phone=PHONE,
        payment_method=method,
        **kwargs,
    )


class CheckoutTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.tea = make_product("Jasmine Tea", "45000.00", 10)
        self.cake = make_product("Mooncake", "120000.00", 3)

    def test_checkout_creates_order_and_debits_stock(self):
        cart = fill_cart(self.user, (self.tea, 2), (self.cake, 1))

        with self.captureOnCommitCallbacks(execute=True):
            order = checkout(self.user)

        self.assertEqual(order.subtotal, Decimal("210000.00"))
        self.assertEqual(order.shipping_fee, Decimal("30000"))
        self.assertEqual(order.discount_amount, Decimal("0.00"))
        self.assertEqual(order.total_money, Decimal("240000.00"))
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.payment_status, Order.PaymentStatus.UNPAID)
        self.assertRegex(order.code, r"^DH[A-Z0-9]{8}$")
        self.assertEqual(order.details.count(), 2)

        self.tea.refresh_from_db()
        self.cake.refresh_from_db()
        self.assertEqual(self.tea.stock_quantity, 8)
        self.assertEqual(self.cake.stock_quantity, 2)
        self.assertEqual(self.tea.version, 2)

        self.assertFalse(cart.items.exists())
        self.assertTrue(Cart.objects.filter(pk=cart.pk).exists())

        cod = Transaction.objects.get(order=order)
        self.assertEqual(cod.status, Transaction.Status.PENDING)
        self.assertEqual(cod.amount, order.total_money)
        self.assertEqual(OrderTimeline.objects.filter(order=order).count(), 1)
        self.assertEqual(StockMovementLog.objects.filter(reference=order.code).count(), 2)

    def test_order_created_signal_fires_after_commit(self):
        fill_cart(self.user, (self.tea, 1))
        received = []

        def listener(sender, order, **kwargs):
            received.append(order.pk)

        order_created.connect(listener)
        self.addCleanup(order_created.disconnect, listener)

        with self.captureOnCommitCallbacks(execute=True):
            order = checkout(self.user)

        self.assertEqual(received, [order.pk])

    def test_detail_price_is_frozen(self):
        fill_cart(self.user, (self.tea, 1))
        order = checkout(self.user)

        self.tea.price = Decimal("99000.00")
        self.tea.save()

        detail = OrderDetail.objects.get(order=order)
        self.assertEqual(detail.price, Decimal("45000.00"))
        self.assertEqual(detail.product_name, "Jasmine Tea")
        self.assertEqual(detail.subtotal, Decimal("45000.00"))

    def test_total_with_discount_and_custom_shipping(self):
        fill_cart(self.user, (self.tea, 2))
        order = checkout(self.user, shipping_fee=Decimal("15000"), discount_amount=Decimal("5000"))
        self.assertEqual(order.total_money, Decimal("100000.00"))
        self.assertEqual(order.total_money, order.subtotal + order.shipping_fee - order.discount_amount)

    def test_discount_above_order_value_is_rejected(self):
        fill_cart(self.user, (self.tea, 1))
        with self.assertRaises(ValidationError):
            checkout(self.user, discount_amount=Decimal("1000000"))
        self.assertFalse(Order.objects.exists())

    def test_empty_cart(self):
        with self.assertRaises(CartEmptyError):
            checkout(self.user)
        Cart.objects.create(user=self.user)
        with self.assertRaises(CartEmptyError):
            checkout(self.user)

    def test_insufficient_stock_changes_nothing(self):
        fill_cart(self.user, (self.tea, 2), (self.cake, 5))

        with self.assertRaises(InsufficientStockError) as ctx:
            checkout(self.user)

        self.assertIn("Mooncake", ctx.exception.message)
        self.assertIn("Requested: 5, Available: 3", ctx.exception.message)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderDetail.objects.exists())
        self.tea.refresh_from_db()
        self.assertEqual(self.tea.stock_quantity, 10)
        self.assertEqual(self.tea.version, 1)
        self.assertEqual(CartItem.objects.filter(cart__user=self.user).count(), 2)

    def test_unpublished_product_is_unavailable(self):
        hidden = make_product("Old Tea", "10000.00", 5, status=Product.Status.HIDDEN)
        fill_cart(self.user, (self.tea, 1), (hidden, 1))

        with self.assertRaises(ProductUnavailableError):
            checkout(self.user)
        self.assertFalse(Order.objects.exists())

    def test_gateway_order_has_no_placeholder_transaction(self):
        fill_cart(self.user, (self.tea, 1))
        order = checkout(self.user, method=Order.PaymentMethod.GATEWAY)
        self.assertFalse(Transaction.objects.filter(order=order).exists())

    def test_stock_conflict_is_retried(self):
        fill_cart(self.user, (self.tea, 2))
        real_debit = InventoryService.debit
        calls = []

        def flaky_debit(product, quantity, *, reference):
            calls.append(reference)
            if len(calls) == 1:
                raise StockVersionConflict("changed")
            return real_debit(product, quantity, reference=reference)

        with patch("apps.inventory.services.InventoryService.debit", side_effect=flaky_debit):
            order = checkout(self.user)

        self.assertEqual(len(calls), 2)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(order.details.count(), 1)
        self.tea.refresh_from_db()
        self.assertEqual(self.tea.stock_quantity, 8)

    @override_settings(CHECKOUT_MAX_RETRIES=2)
    def test_stock_conflict_gives_up_after_retries(self):
        fill_cart(self.user, (self.tea, 1))

        with patch("apps.inventory.services.InventoryService.debit",
                   side_effect=StockVersionConflict("changed")) as debit:
            with self.assertRaises(StockVersionConflict):
                checkout(self.user)

        self.assertEqual(debit.call_count, 2)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(CartItem.objects.filter(cart__user=self.user).count(), 1)

    def test_competing_checkout_for_whole_stock(self):
        limited = make_product("Limited Tea", "50000.00", 3)
        rival = User.objects.create_user(username="minh", password="pass")
        fill_cart(self.user, (limited, 3))
        fill_cart(rival, (limited, 3))

        # Snapshot as read before the rival's checkout commits
        stale = {str(limited.pk): Product.objects.get(pk=limited.pk)}
        checkout(rival)

        real_lock = InventoryService.lock_products
        calls = []

        def racing_lock(product_ids):
            calls.append(1)
            locked = real_lock(product_ids)
            return stale if len(calls) == 1 else locked

        with patch("apps.inventory.services.InventoryService.lock_products", side_effect=racing_lock):
            with self.assertRaises(InsufficientStockError) as ctx:
                checkout(self.user)

        self.assertEqual(len(calls), 2)
        self.assertEqual(ctx.exception.requested, 3)
        self.assertEqual(ctx.exception.available, 0)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(Order.objects.get().user, rival)
        limited.refresh_from_db()
        self.assertEqual(limited.stock_quantity, 0)
        self.assertEqual(limited.version, 2)
        self.assertEqual(CartItem.objects.filter(cart__user=self.user).count(), 1)

    def test_order_code_collision_is_regenerated(self):
        fill_cart(self.user, (self.tea, 1))
        taken = checkout(self.user).code

        with patch("apps.orders.models.order.generate_code", side_effect=[taken, "DHFRESH001"]):
            order = Order.objects.create(
                user=self.user, subtotal=Decimal("10000"), total_money=Decimal("10000"),
                shipping_address=ADDRESS, shipping_phone=PHONE,
            )

        self.assertEqual(order.code, "DHFRESH001")
        self.assertEqual(Order.objects.filter(code=taken).count(), 1)

    def test_get_order_for_checks_ownership(self):
        fill_cart(self.user, (self.tea, 1))
        order = checkout(self.user)
        stranger = User.objects.create_user(username="minh", password="pass")
        admin = User.objects.create_user(username="boss", password="pass", is_staff=True)

        self.assertEqual(OrderService.get_order_for(self.user, order.pk).pk, order.pk)
        self.assertEqual(OrderService.get_order_for(admin, order.pk).pk, order.pk)
        with self.assertRaises(AuthorizationError):
            OrderService.get_order_for(stranger, order.pk)
        with self.assertRaises(NotFoundError):
            OrderService.get_order_for(self.user, "00000000-0000-0000-0000-000000000000")

    def test_orders_cannot_be_deleted(self):
        fill_cart(self.user, (self.tea, 1))
        order = checkout(self.user)
        with self.assertRaises(ConflictError):
            order.delete()


class StateMachineTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.admin = User.objects.create_user(username="boss", password="pass", is_staff=True)
        self.tea = make_product("Jasmine Tea", "45000.00", 10)
        fill_cart(self.user, (self.tea, 3))
        self.order = checkout(self.user)

    def test_happy_path_transitions(self):
        for new_status in (Order.Status.CONFIRMED, Order.Status.SHIPPING, Order.Status.COMPLETED):
            OrderStateMachine.update_status(self.order, new_status, actor=self.admin)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.COMPLETED)
        # created + 3 transitions
        self.assertEqual(self.order.timeline.count(), 4)

    def test_illegal_transition_leaves_order_unchanged(self):
        with self.assertRaises(IllegalTransitionError):
            OrderStateMachine.update_status(self.order, Order.Status.COMPLETED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            OrderStateMachine.update_status(self.order, "LOST")

    def test_cancel_restores_stock_once(self):
        with self.captureOnCommitCallbacks(execute=True):
            OrderStateMachine.cancel(self.order, self.user, reason="Changed my mind")

        self.order.refresh_from_db()
        self.tea.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertIn("Cancel reason: Changed my mind", self.order.note)
        self.assertEqual(self.tea.stock_quantity, 10)
        self.assertEqual(
            Transaction.objects.get(order=self.order).status, Transaction.Status.FAILED
        )
        self.assertEqual(
            StockMovementLog.objects.filter(reference=f"CANCEL-{self.order.code}").count(), 1
        )

        with self.assertRaises(IllegalTransitionError):
            OrderStateMachine.cancel(self.order, self.user)

        self.tea.refresh_from_db()
        self.assertEqual(self.tea.stock_quantity, 10)

    def test_cancel_confirmed_order_by_admin(self):
        OrderStateMachine.update_status(self.order, Order.Status.CONFIRMED)
        self.order.refresh_from_db()
        OrderStateMachine.cancel(self.order, self.admin)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)

    def test_cancel_shipping_order_is_rejected(self):
        OrderStateMachine.update_status(self.order, Order.Status.CONFIRMED)
        OrderStateMachine.update_status(self.order, Order.Status.SHIPPING)
        self.order.refresh_from_db()

        with self.assertRaises(IllegalTransitionError):
            OrderStateMachine.cancel(self.order, self.user)

        self.tea.refresh_from_db()
        self.assertEqual(self.tea.stock_quantity, 7)

    def test_cancel_by_stranger_is_forbidden(self):
        stranger = User.objects.create_user(username="minh", password="pass")
        with self.assertRaises(AuthorizationError):
            OrderStateMachine.cancel(self.order, stranger)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_mark_paid_settles_cod_transaction(self):
        OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.PAID, actor=self.admin)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)
        cod = Transaction.objects.get(order=self.order)
        self.assertEqual(cod.status, Transaction.Status.SUCCESS)
        self.assertIsNotNone(cod.paid_at)

    def test_payment_status_is_strict(self):
        with self.assertRaises(IllegalTransitionError):
            OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.REFUNDED)

        OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.PAID)
        with self.assertRaises(IllegalTransitionError):
            OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.PAID)
        with self.assertRaises(IllegalTransitionError):
            OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.UNPAID)

    def test_cancelling_paid_order_requests_refund(self):
        OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.PAID)
        self.order.refresh_from_db()
        refunds = []

        def listener(sender, order_id, amount, reason, **kwargs):
            refunds.append((order_id, amount))

        order_refund_requested.connect(listener)
        self.addCleanup(order_refund_requested.disconnect, listener)

        with self.captureOnCommitCallbacks(execute=True):
            OrderStateMachine.cancel(self.order, self.admin, reason="Out of delivery area")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.REFUNDED)
        self.assertEqual(refunds, [(self.order.pk, self.order.total_money)])


class CartServiceTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.tea = make_product("Jasmine Tea", "45000.00", 5)
        self.hidden = make_product("Old Tea", "10000.00", 5, status=Product.Status.HIDDEN)

    def test_add_merges_quantities(self):
        CartService.add_item(self.user, self.tea.pk, 2)
        cart = CartService.add_item(self.user, self.tea.pk, 1)

        self.assertEqual(cart.items.get().quantity, 3)
        self.assertEqual(cart.total_items, 3)
        self.assertEqual(cart.total_amount, Decimal("135000.00"))

    def test_add_beyond_stock_is_rejected(self):
        CartService.add_item(self.user, self.tea.pk, 4)
        with self.assertRaises(InsufficientStockError):
            CartService.add_item(self.user, self.tea.pk, 2)

    def test_add_unpublished_product(self):
        with self.assertRaises(ProductUnavailableError):
            CartService.add_item(self.user, self.hidden.pk, 1)
        with self.assertRaises(NotFoundError):
            CartService.add_item(self.user, "00000000-0000-0000-0000-000000000000", 1)

    def test_update_to_zero_removes_item(self):
        cart = CartService.add_item(self.user, self.tea.pk, 2)
        item = cart.items.get()

        cart = CartService.update_item(self.user, item.pk, 0)
        self.assertFalse(cart.items.exists())

    def test_items_of_other_users_are_not_found(self):
        cart = CartService.add_item(self.user, self.tea.pk, 1)
        stranger = User.objects.create_user(username="minh", password="pass")
        with self.assertRaises(NotFoundError):
            CartService.remove_item(stranger, cart.items.get().pk)

    def test_sync_clamps_and_skips(self):
        CartService.add_item(self.user, self.tea.pk, 3)
        cart = CartService.sync(self.user, [
            {"product_id": self.tea.pk, "quantity": 4},
            {"product_id": self.hidden.pk, "quantity": 1},
        ])

        self.assertEqual(cart.items.count(), 1)
        self.assertEqual(cart.items.get().quantity, 5)


@skipUnless(connection.features.has_select_for_update, "needs row-level locking")
class ConcurrentCheckoutTests(TransactionTestCase):
    """Two shoppers race for the last unit; exactly one wins."""

    def test_last_unit_is_sold_once(self):
        product = make_product("Limited Tea", "50000.00", 1)
        users = [User.objects.create_user(username=f"shopper{i}", password="pass") for i in range(2)]
        for user in users:
            fill_cart(user, (product, 1))

        barrier = threading.Barrier(len(users))
        outcomes = []

        def attempt(user):
            try:
                barrier.wait()
                checkout(user)
                outcomes.append("ok")
            except InsufficientStockError:
                outcomes.append("insufficient")
            finally:
                connections.close_all()

        threads = [threading.Thread(target=attempt, args=(u,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(outcomes), ["insufficient", "ok"])
        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 0)
        self.assertEqual(Order.objects.count(), 1)
