import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class ListingStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    ACTIVE = "ACTIVE", "Active"
    SOLD = "SOLD", "Sold"
    INACTIVE = "INACTIVE", "Inactive"
    DELETED = "DELETED", "Deleted"


class Listing(models.Model):
    CONDITION_CHOICES = [
        ("NEW", "New"),
        ("LIKE_NEW", "Like New"),
        ("VERY_GOOD", "Very Good"),
        ("GOOD", "Good"),
        ("FAIR", "Fair"),
        ("POOR", "Poor"),
    ]

    # Basic Information
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=100, blank=True, db_index=True)
    condition = models.CharField(max_length=20, choices=CONDITION_CHOICES, default="NEW")

    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="listings")

    # Pricing and Inventory
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    currency = models.CharField(max_length=3, default="EUR")
    quantity = models.PositiveIntegerField(default=1)
    status = models.CharField(max_length=10, choices=ListingStatus.choices, default=ListingStatus.ACTIVE)

    # Ordered image URLs; the first one is the listing's primary image
    image_urls = models.JSONField(default=list, blank=True)
    attributes = models.JSONField(default=dict, blank=True)

    view_count = models.PositiveIntegerField(default=0)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "marketplace"
        indexes = [
            models.Index(fields=["seller", "status"], name="listing_seller_status_idx"),
            models.Index(fields=["status", "-created_at"], name="listing_status_created_idx"),
            models.Index(fields=["category", "status"], name="listing_category_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gte=0), name="listing_quantity_non_negative"),
        ]

    @property
    def primary_image_url(self):
        return self.image_urls[0] if self.image_urls else None

    def __str__(self):
        return self.title
