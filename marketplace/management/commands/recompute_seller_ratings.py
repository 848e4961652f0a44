"""
Django management command to rebuild seller rating aggregates from the review set.

Usage:
    python manage.py recompute_seller_ratings
    python manage.py recompute_seller_ratings --seller-id <uuid>
    python manage.py recompute_seller_ratings --dry-run
"""

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.management.base import BaseCommand, CommandError
from django.db.models import Q

from marketplace.infra.repositories import ReviewRepository
from marketplace.reviews.domain.services import SellerRatingService


class Command(BaseCommand):
    help = "Recompute average_rating and total_reviews for sellers"

    def add_arguments(self, parser):
        parser.add_argument(
            "--seller-id",
            help="Only recompute this seller",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show aggregates that are out of date without writing anything",
        )

    def handle(self, *args, **options):
        seller_id = options["seller_id"]
        dry_run = options["dry_run"]

        self.stdout.write(self.style.SUCCESS("=== RECOMPUTING SELLER RATINGS ==="))

        User = get_user_model()
        if seller_id:
            try:
                sellers = User.objects.filter(pk=seller_id)
                found = sellers.exists()
            except (DjangoValidationError, ValueError):
                found = False
            if not found:
                raise CommandError(f"Seller {seller_id} not found")
        else:
            # Anyone with reviews, plus anyone whose stored aggregate may be stale
            sellers = User.objects.filter(
                Q(role="seller")
                | Q(reviews_received__isnull=False)
                | Q(total_reviews__gt=0)
                | Q(average_rating__isnull=False)
            ).distinct()

        self.stdout.write(f"Found {sellers.count()} sellers to check")

        reviews = ReviewRepository()
        rating_service = SellerRatingService(review_repository=reviews)
        stale_count = 0
        failed_count = 0

        for seller in sellers.iterator():
            average, count = reviews.rating_summary(seller.pk)
            average = float(average) if count else None
            if average == seller.average_rating and count == seller.total_reviews:
                continue

            stale_count += 1
            self.stdout.write(
                f"  - {seller.email}: {seller.average_rating} ({seller.total_reviews}) -> {average} ({count})"
            )
            if dry_run:
                continue

            result = rating_service.recompute_seller_rating(seller.pk)
            if not result.ok:
                failed_count += 1
                self.stdout.write(self.style.ERROR(f"    Failed: {result.error_detail}"))

        if dry_run:
            self.stdout.write(self.style.WARNING(f"DRY RUN: Would update {stale_count} sellers"))
            return

        if failed_count:
            raise CommandError(f"{failed_count} of {stale_count} seller ratings could not be recomputed")

        self.stdout.write(self.style.SUCCESS(f"Updated {stale_count} seller ratings"))
