from django.contrib.auth.models import AbstractUser
from django.db import models


class UserRole(models.TextChoices):
    ADMIN = "ADMIN", "Admin"
    CASHIER = "CASHIER", "Cashier"


class User(AbstractUser):
    role = models.CharField(max_length=20, choices=UserRole.choices, default=UserRole.CASHIER)

    @classmethod
    def owner_recipients(cls):
        """Active admins with an email address; they receive late payment alerts."""
        return cls.objects.filter(role=UserRole.ADMIN, is_active=True).exclude(email="").order_by("username")
