from django.db.models.signals import post_save
from django.dispatch import receiver

from monetization.services.ledger import ensure_wallet
from .models import User
import logging

logger = logging.getLogger(__name__)


@receiver(post_save, sender=User)
def open_wallet_for_new_user(sender, instance, created, **kwargs):
    """
    Every account starts with an empty wallet so debits never hit a missing row
    """
    if created:
        ensure_wallet(instance)
        logger.info("New user created: %s (%s); wallet opened.", instance.username, instance.email)
