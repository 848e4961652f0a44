import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"  # Default status - set at reservation time
    PAID = "PAID", "Paid"  # Payment completed
    SHIPPED = "SHIPPED", "Shipped"  # Tracking number recorded
    DELIVERED = "DELIVERED", "Delivered"  # Unlocks the seller review
    CANCELLED = "CANCELLED", "Cancelled"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="orders")
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="sales")

    # Order Details
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING)

    # Pricing
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="EUR")

    # Payment sub-record
    payment_method = models.CharField(max_length=50, blank=True)
    transaction_id = models.CharField(max_length=255, blank=True)
    payment_status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Shipping sub-record
    recipient_name = models.CharField(max_length=200, blank=True)
    address = models.CharField(max_length=300, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    zip_code = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=100, blank=True)
    tracking_number = models.CharField(max_length=100, blank=True)
    carrier = models.CharField(max_length=100, blank=True)
    estimated_delivery = models.DateTimeField(null=True, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "marketplace"
        indexes = [
            models.Index(fields=["buyer", "status"], name="order_buyer_status_idx"),
            models.Index(fields=["seller", "status"], name="order_seller_status_idx"),
        ]

    @property
    def payment_details(self):
        return {
            "method": self.payment_method,
            "transaction_id": self.transaction_id,
            "status": self.payment_status,
            "paid_at": self.paid_at,
        }

    @property
    def shipping_details(self):
        return {
            "recipient_name": self.recipient_name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "country": self.country,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "estimated_delivery": self.estimated_delivery,
        }

    def __str__(self):
        return f"Order {str(self.id)[:8]} ({self.status})"


class OrderItem(models.Model):
    """Snapshot of a listing at purchase time. Never rewritten after creation."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveIntegerField()

    # Live reference is nulled if the listing row disappears; listing_ref keeps history
    listing = models.ForeignKey(
        "marketplace.Listing", on_delete=models.SET_NULL, null=True, blank=True, related_name="order_items"
    )
    listing_ref = models.UUIDField(db_index=True)

    # Snapshot
    title = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    price_per_unit = models.DecimalField(max_digits=10, decimal_places=2)
    image_url = models.CharField(max_length=2000, null=True, blank=True)

    class Meta:
        ordering = ["position"]
        app_label = "marketplace"
        constraints = [
            models.UniqueConstraint(fields=["order", "position"], name="unique_order_item_position"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Order item snapshots cannot be modified after creation")
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.quantity}x {self.title} in order {str(self.order_id)[:8]}"
