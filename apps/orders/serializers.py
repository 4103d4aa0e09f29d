from rest_framework import serializers
from .models import Order, OrderItem
from apps.catalog.serializers import MedicineSerializer


class OrderItemSerializer(serializers.ModelSerializer):
    medicineId = serializers.UUIDField(source="medicine_id", read_only=True)
    medicine = MedicineSerializer(read_only=True)
    medicineName = serializers.CharField(source="medicine_name", read_only=True)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ['medicineId', 'medicine', 'medicineName', 'quantity', 'price', 'subtotal']


class OrderSerializer(serializers.ModelSerializer):
    userId = serializers.ReadOnlyField(source='user_id')
    items = OrderItemSerializer(many=True, read_only=True)
    totalAmount = serializers.DecimalField(source='total_amount', max_digits=10, decimal_places=2, read_only=True)
    paymentStatus = serializers.CharField(source='payment_status', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'userId', 'items', 'totalAmount', 'status',
            'paymentStatus', 'address', 'contact', 'createdAt'
        ]


# --- Request payloads ---

class OrderContactSerializer(serializers.Serializer):
    address = serializers.CharField()
    contact = serializers.CharField(max_length=100)


class CartLineSerializer(serializers.Serializer):
    medicineId = serializers.UUIDField(source='medicine_id')
    quantity = serializers.IntegerField(min_value=1)


class PlaceOrderByUserSerializer(OrderContactSerializer):
    userId = serializers.IntegerField(source='user_id')
    cartItems = CartLineSerializer(many=True, allow_empty=False, source='cart_items')


class PlaceOrderByCartSerializer(OrderContactSerializer):
    cartId = serializers.UUIDField(source='cart_id')


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
