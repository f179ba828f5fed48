from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    User admin configuration
    """
    list_display = (
        'username', 'email', 'display_name', 'is_creator',
        'is_active', 'created_at'
    )
    list_filter = (
        'is_active', 'is_staff', 'is_superuser', 'is_creator',
        'created_at'
    )
    search_fields = (
        'username', 'email', 'display_name'
    )
    ordering = ('-created_at',)
    readonly_fields = ('created_at', 'updated_at')

    # Extend the default fieldsets to include new fields
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Creator Profile', {
            'fields': ('display_name', 'avatar', 'is_creator')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    # Add new fields to the add user form
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Creator Profile', {
            'fields': ('email', 'display_name', 'is_creator')
        }),
    )
