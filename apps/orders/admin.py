from django.contrib import admin

from .models import Order, OrderItem, Cart, CartItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('medicine', 'medicine_name', 'price', 'quantity')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'user',
        'status',
        'payment_status',
        'total_amount',
        'created_at'
    )
    list_filter = ('status', 'payment_status', 'created_at')
    search_fields = ('id', 'user__username', 'contact')

    inlines = [OrderItemInline]

    # Orders are immutable apart from status, which goes through the API
    readonly_fields = (
        'id',
        'user',
        'total_amount',
        'status',
        'payment_status',
        'address',
        'contact',
        'stock_released',
        'created_at',
        'updated_at',
    )

    def has_add_permission(self, request):
        return False


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    readonly_fields = ('medicine', 'quantity', 'added_at')
    can_delete = False


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'total_price', 'updated_at')
    search_fields = ('user__username', 'user__email')
    readonly_fields = ('user', 'created_at', 'updated_at')
    inlines = [CartItemInline]

    def has_add_permission(self, request):
        return False
