from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "can_rent", "can_list", "loyalty_tier", "is_staff")
    list_filter = BaseUserAdmin.list_filter + ("loyalty_tier",)
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Capabilities", {"fields": ("can_rent", "can_list", "email_verified")}),
        ("Payments", {"fields": ("stripe_customer_id", "loyalty_tier")}),
    )
