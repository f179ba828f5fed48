import logging
from typing import Dict, List

from django.apps import AppConfig
from django.db.models.signals import post_migrate

logger = logging.getLogger(__name__)

DEFAULT_GIFT_CATALOG = (
    {"name": "Rose", "emoji": "\U0001F339", "coin_cost": 10},
    {"name": "Heart", "emoji": "❤️", "coin_cost": 25},
    {"name": "Fire", "emoji": "\U0001F525", "coin_cost": 50},
    {"name": "Diamond", "emoji": "\U0001F48E", "coin_cost": 100},
    {"name": "Crown", "emoji": "\U0001F451", "coin_cost": 500},
    {"name": "Rocket", "emoji": "\U0001F680", "coin_cost": 1000},
)


def ensure_default_gift_catalog() -> Dict[str, List[str]]:
    """Create any missing default gifts; existing rows are left as the admin configured them."""

    from django.db import OperationalError, ProgrammingError
    from .models import VirtualGift

    created = []
    try:
        for position, entry in enumerate(DEFAULT_GIFT_CATALOG):
            _gift, was_created = VirtualGift.objects.get_or_create(
                name=entry["name"],
                defaults={
                    "emoji": entry["emoji"],
                    "coin_cost": entry["coin_cost"],
                    "display_order": position,
                },
            )
            if was_created:
                created.append(entry["name"])
    except (OperationalError, ProgrammingError):
        logger.debug("Database not ready for gift catalog initialisation.")
        return {"created": []}

    if created:
        logger.info("Gift catalog initialisation created %s.", created)
    return {"created": created}


def init_gifts_after_migrate(sender, **kwargs):
    """Called automatically after migrations to seed the gift catalog."""
    ensure_default_gift_catalog()


class MonetizationConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'monetization'
    verbose_name = 'Monetization'

    def ready(self):
        post_migrate.connect(init_gifts_after_migrate, sender=self)
