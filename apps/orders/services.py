import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from apps.catalog.models import Product
from apps.inventory.services import InventoryService
from apps.utils.exceptions import (
    AuthorizationError,
    CartEmptyError,
    InsufficientStockError,
    NotFoundError,
    ProductUnavailableError,
    StockVersionConflict,
    ValidationError,
)
from apps.utils.permissions import is_admin

from .models import Cart, CartItem, Order, OrderDetail, OrderTimeline
from .signals import order_created

logger = logging.getLogger(__name__)


class CartService:
    """
    Cart Store: pending line items (product + quantity) per user.
    Prices are never stored on the cart.
    """

    @staticmethod
    def get_or_create_cart(user) -> Cart:
        cart, _ = Cart.objects.get_or_create(user=user)
        return Cart.objects.prefetch_related('items__product').get(pk=cart.pk)

    @staticmethod
    def _get_product(product_id) -> Product:
        try:
            return Product.objects.get(pk=product_id)
        except (Product.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Product not found.")

    @staticmethod
    def _get_item(user, item_id) -> CartItem:
        try:
            return CartItem.objects.select_related('product').get(pk=item_id, cart__user=user)
        except CartItem.DoesNotExist:
            raise NotFoundError("Cart item not found.")

    @staticmethod
    @transaction.atomic
    def add_item(user, product_id, quantity: int) -> Cart:
        product = CartService._get_product(product_id)
        if not product.is_purchasable:
            raise ProductUnavailableError(f"Product \"{product.name}\" is not available.")

        cart, _ = Cart.objects.get_or_create(user=user)
        item = CartItem.objects.select_for_update().filter(cart=cart, product=product).first()
        new_quantity = quantity + (item.quantity if item else 0)

        if new_quantity > product.stock_quantity:
            raise InsufficientStockError(product, new_quantity, product.stock_quantity)

        if item:
            item.quantity = new_quantity
            item.save(update_fields=['quantity'])
        else:
            CartItem.objects.create(cart=cart, product=product, quantity=quantity)

        return CartService.get_or_create_cart(user)

    @staticmethod
    @transaction.atomic
    def update_item(user, item_id, quantity: int) -> Cart:
        item = CartService._get_item(user, item_id)

        if quantity == 0:
            item.delete()
            return CartService.get_or_create_cart(user)

        if quantity > item.product.stock_quantity:
            raise InsufficientStockError(item.product, quantity, item.product.stock_quantity)

        item.quantity = quantity
        item.save(update_fields=['quantity'])
        return CartService.get_or_create_cart(user)

    @staticmethod
    def remove_item(user, item_id) -> Cart:
        CartService._get_item(user, item_id).delete()
        return CartService.get_or_create_cart(user)

    @staticmethod
    def clear(user) -> Cart:
        CartItem.objects.filter(cart__user=user).delete()
        return CartService.get_or_create_cart(user)

    @staticmethod
    @transaction.atomic
    def sync(user, items: list) -> Cart:
        """
        Merges a client-side (guest) cart into the user's cart.
        Unpurchasable products are skipped and quantities are clamped to stock.
        """
        cart, _ = Cart.objects.get_or_create(user=user)
        product_ids = [item['product_id'] for item in items]
        products = Product.objects.in_bulk(product_ids)

        for entry in items:
            product = products.get(entry['product_id'])
            if product is None or not product.is_purchasable:
                continue

            item = CartItem.objects.select_for_update().filter(cart=cart, product=product).first()
            if item:
                item.quantity = min(item.quantity + entry['quantity'], product.stock_quantity)
                if item.quantity > 0:
                    item.save(update_fields=['quantity'])
                else:
                    item.delete()
            else:
                quantity = min(entry['quantity'], product.stock_quantity)
                if quantity > 0:
                    CartItem.objects.create(cart=cart, product=product, quantity=quantity)

        return CartService.get_or_create_cart(user)


class OrderService:

    @staticmethod
    def create_order(
        user,
        *,
        shipping_address: str,
        shipping_phone: str,
        payment_method: str,
        note: str = None,
        shipping_fee: Decimal = None,
        discount_amount: Decimal = None,
    ) -> Order:
        """
        Checkout: turns the user's cart into an order, all-or-nothing.
        A stock version conflict rolls the attempt back and retries it.
        """
        max_attempts = max(1, settings.CHECKOUT_MAX_RETRIES)
        for attempt in range(1, max_attempts + 1):
            try:
                order = OrderService._checkout(
                    user,
                    shipping_address=shipping_address,
                    shipping_phone=shipping_phone,
                    payment_method=payment_method,
                    note=note,
                    shipping_fee=shipping_fee,
                    discount_amount=discount_amount,
                )
            except StockVersionConflict:
                if attempt == max_attempts:
                    logger.error(f"Checkout gave up after {attempt} attempts", extra={"user_id": user.pk})
                    raise
                logger.warning(f"Checkout attempt {attempt} hit a stock conflict, retrying",
                               extra={"user_id": user.pk})
                continue

            transaction.on_commit(lambda: order_created.send(sender=Order, order=order))
            return order

    @staticmethod
    def _resolve_charges(subtotal: Decimal, shipping_fee, discount_amount):
        shipping_fee = settings.SHIPPING_FEE if shipping_fee is None else Decimal(shipping_fee)
        discount_amount = Decimal("0.00") if discount_amount is None else Decimal(discount_amount)

        if shipping_fee < 0 or discount_amount < 0:
            raise ValidationError("Shipping fee and discount cannot be negative.")
        if discount_amount > subtotal + shipping_fee:
            raise ValidationError("Discount cannot exceed the order value.")

        return shipping_fee, discount_amount

    @staticmethod
    def _checkout(user, *, shipping_address, shipping_phone, payment_method, note,
                  shipping_fee, discount_amount) -> Order:
        if payment_method not in Order.PaymentMethod.values:
            raise ValidationError(f"Unsupported payment method: {payment_method}")

        with transaction.atomic():
            # 1. Cart (locked so a double-submit cannot check out twice)
            cart = Cart.objects.select_for_update().filter(user=user).first()
            cart_items = list(cart.items.order_by('product_id')) if cart else []
            if not cart_items:
                raise CartEmptyError("Cart is empty. Add products before placing an order.")

            # 2. Authoritative product rows, locked; all checks before any write
            products = InventoryService.lock_products(i.product_id for i in cart_items)

            lines = []
            subtotal = Decimal("0.00")
            for item in cart_items:
                product = products.get(str(item.product_id))
                if product is None or not product.is_purchasable:
                    name = product.name if product else str(item.product_id)
                    raise ProductUnavailableError(f"Product \"{name}\" is no longer available.")
                if item.quantity > product.stock_quantity:
                    raise InsufficientStockError(product, item.quantity, product.stock_quantity)

                # TRUSTED PRICE CALCULATION
                subtotal += product.price * item.quantity
                lines.append((product, item.quantity))

            # 3. Totals
            shipping_fee, discount_amount = OrderService._resolve_charges(
                subtotal, shipping_fee, discount_amount
            )
            total_money = Order.compute_total(subtotal, shipping_fee, discount_amount)

            # 4. Order + frozen details
            order = Order.objects.create(
                user=user,
                subtotal=subtotal,
                shipping_fee=shipping_fee,
                discount_amount=discount_amount,
                total_money=total_money,
                status=Order.Status.PENDING,
                payment_status=Order.PaymentStatus.UNPAID,
                payment_method=payment_method,
                shipping_address=shipping_address,
                shipping_phone=shipping_phone,
                note=note or None,
            )
            OrderDetail.objects.bulk_create([
                OrderDetail(
                    order=order,
                    product=product,
                    product_name=product.name,
                    price=product.price,
                    quantity=quantity,
                ) for product, quantity in lines
            ])

            if payment_method == Order.PaymentMethod.COD:
                from apps.payments.services import PaymentService
                PaymentService.open_cod_transaction(order)

            # 5. Stock debit
            for product, quantity in lines:
                InventoryService.debit(product, quantity, reference=order.code)

            # 6. Clear cart
            CartItem.objects.filter(cart=cart).delete()

            OrderTimeline.objects.create(
                order=order,
                status=Order.Status.PENDING,
                payment_status=Order.PaymentStatus.UNPAID,
                note="Order created, waiting for confirmation.",
                created_by=user,
            )

        logger.info(
            f"Order {order.code} created: {len(lines)} lines, total {total_money}",
            extra={"order_id": order.pk, "user_id": user.pk},
        )
        return OrderService.get_order(order.pk)

    @staticmethod
    def get_order(order_id) -> Order:
        try:
            return (
                Order.objects
                .select_related('user')
                .prefetch_related('details')
                .get(pk=order_id)
            )
        except (Order.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise NotFoundError("Order not found.")

    @staticmethod
    def get_order_for(user, order_id) -> Order:
        """Only the owner or an admin may see an order."""
        order = OrderService.get_order(order_id)
        if not (is_admin(user) or order.is_owned_by(user)):
            raise AuthorizationError("You are not allowed to view this order.")
        return order

    @staticmethod
    def orders_for(user):
        qs = Order.objects.select_related('user').prefetch_related('details')
        if is_admin(user):
            return qs
        return qs.filter(user=user)
