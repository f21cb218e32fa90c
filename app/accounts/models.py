"""
Account models.

- User: email-identified login account shared by clients, psychologists
  and operators
- Profile: display data and marketplace role (OneToOne with User)

Related files:
    - managers.py: UserManager
    - signals.py: Profile auto-creation
    - billing/services/account_deletion.py: ordered teardown of a user
"""

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from accounts.managers import UserManager
from core.models import BaseModel


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the login identifier.

    Fields:
        email: Unique login identifier
        is_active: Whether the account can log in
        is_staff: Whether the user can access the admin site
        date_joined: When the account was created
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (login identifier)",
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        try:
            return self.profile.full_name or self.email
        except Profile.DoesNotExist:
            return self.email

    def get_short_name(self):
        try:
            return self.profile.first_name or self.email.split("@")[0]
        except Profile.DoesNotExist:
            return self.email.split("@")[0]


class ProfileRole(models.TextChoices):
    """Marketplace role of an account."""

    CLIENT = "client", "Client"
    PSYCHOLOGIST = "psychologist", "Psychologist"
    ADMIN = "admin", "Admin"


class Profile(BaseModel):
    """
    Display data and marketplace role for a user.

    Fields:
        user: OneToOne link to User (also the primary key)
        first_name / last_name: Display name
        role: client, psychologist or admin
        timezone: Preferred timezone for session times

    Note:
        Created automatically by a post_save signal on User.
        Deleted last during account deletion, after every ledger-adjacent
        row that references the user.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile",
        primary_key=True,
        help_text="User this profile belongs to",
    )
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    role = models.CharField(
        max_length=20,
        choices=ProfileRole.choices,
        default=ProfileRole.CLIENT,
        db_index=True,
        help_text="Marketplace role",
    )
    timezone = models.CharField(
        max_length=50,
        default="America/Mexico_City",
        help_text="Preferred timezone (e.g., 'America/Mexico_City')",
    )

    class Meta:
        verbose_name = "profile"
        verbose_name_plural = "profiles"

    def __str__(self):
        return f"Profile({self.user.email}, {self.role})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_psychologist(self) -> bool:
        return self.role == ProfileRole.PSYCHOLOGIST
