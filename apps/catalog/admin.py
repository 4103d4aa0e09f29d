# apps/catalog/admin.py
from django.contrib import admin
from .models import Medicine


@admin.register(Medicine)
class MedicineAdmin(admin.ModelAdmin):
    list_display = ("product_name", "manufacturer", "price", "stock_quantity", "updated_at")
    search_fields = ("product_name", "manufacturer")
    list_editable = ("price",)
    readonly_fields = ("stock_quantity", "created_at", "updated_at")
    ordering = ("product_name",)
