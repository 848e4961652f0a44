import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class MarketplaceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "marketplace"

    def ready(self):
        from django.conf import settings

        from marketplace.infra.observability.tracing import setup_tracing

        try:
            setup_tracing(
                service_name=getattr(settings, "TRACING_SERVICE_NAME", "marketplace-core"),
                enable=getattr(settings, "TRACING_ENABLED", False),
            )
        except Exception as e:
            logger.warning(f"Failed to initialize OpenTelemetry tracing: {e}")
