from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    User model
    """
    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    # Public profile
    display_name = models.CharField(max_length=100, blank=True, default="", verbose_name="Display Name")
    avatar = models.URLField(blank=True, null=True, verbose_name="Avatar URL")
    is_creator = models.BooleanField(
        default=False,
        help_text="Creators can host sessions, sell subscriptions and request payouts",
    )
    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.username

    @property
    def public_name(self) -> str:
        return self.display_name or self.username
