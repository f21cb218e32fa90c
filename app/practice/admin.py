"""
Django admin configuration for practice models.
"""

from django.contrib import admin

from practice.models import (
    Appointment,
    Psychologist,
    PsychologistAvailability,
    PsychologistPricing,
)


class PsychologistPricingInline(admin.StackedInline):
    model = PsychologistPricing
    can_delete = False


class PsychologistAvailabilityInline(admin.TabularInline):
    model = PsychologistAvailability
    extra = 0


@admin.register(Psychologist)
class PsychologistAdmin(admin.ModelAdmin):
    list_display = ("display_name", "user", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("display_name", "user__email")
    inlines = [PsychologistPricingInline, PsychologistAvailabilityInline]


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Appointment.

    Outcomes are recorded through the session outcome endpoint so that
    revenue is recognized; status is read-only here.
    """

    list_display = ("id", "patient", "psychologist", "start_time", "status", "subscription")
    list_filter = ("status", "modality")
    search_fields = ("id", "patient__email", "psychologist__display_name")
    readonly_fields = ("status", "package_session_consumed", "created_at", "updated_at")
    date_hierarchy = "start_time"
