# apps/catalog/serializers.py
from rest_framework import serializers
from .models import Medicine


class MedicineSerializer(serializers.ModelSerializer):
    productName = serializers.CharField(source="product_name")
    stockQuantity = serializers.IntegerField(source="stock_quantity")

    class Meta:
        model = Medicine
        fields = [
            "id",
            "productName",
            "manufacturer",
            "price",
            "stockQuantity",
        ]
        read_only_fields = fields
