import uuid

from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class CustomUser(AbstractUser):
    ROLE_CHOICES = [
        ("user", "User"),
        ("seller", "Seller"),
        ("admin", "Admin"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=30, blank=True)
    last_name = models.CharField(max_length=30, blank=True)
    phone_number = models.CharField(max_length=30, blank=True)

    # Role system - simple field
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="user")

    # Seller reputation. Derived from SellerReview rows by the rating
    # aggregator; never edited directly.
    average_rating = models.FloatField(
        null=True, blank=True, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    total_reviews = models.PositiveIntegerField(default=0)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["username"]

    class Meta:
        app_label = "authentication"

    @property
    def display_name(self):
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.username

    def __str__(self):
        return self.email
