from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated, IsAdminUser
from django_filters.rest_framework import DjangoFilterBackend

from apps.utils.idempotency import IdempotencyGuard
from .serializers import (
    OrderSerializer,
    OrderContactSerializer,
    PlaceOrderByUserSerializer,
    PlaceOrderByCartSerializer,
    OrderStatusSerializer,
)
from .services import OrderService


class BasePlaceOrderView(APIView):
    """
    Shared response shape for the three placement endpoints.

    SEQUENCE:
    1. Payload validation
    2. Idempotency lock (optional `Idempotency-Key` header)
    3. Atomic placement (delegated to OrderService)
    """
    permission_classes = [IsAuthenticated]
    input_serializer_class = None
    idempotency_scope = None

    def place(self, request, data):
        raise NotImplementedError

    def post(self, request):
        serializer = self.input_serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)

        guard = IdempotencyGuard(request, self.idempotency_scope)
        guard.acquire()
        try:
            order = self.place(request, serializer.validated_data)
        except Exception:
            guard.release()  # Let the client retry with the same key
            raise

        order = OrderService.orders_for_user(order.user).get(pk=order.pk)
        return Response(
            {"message": "Order placed successfully", "order": OrderSerializer(order).data},
            status=status.HTTP_201_CREATED
        )


class PlaceOrderView(BasePlaceOrderView):
    """
    POST /api/v1/orders/place/
    Checkout of the authenticated user's cart.
    """
    input_serializer_class = OrderContactSerializer
    idempotency_scope = "place"

    def place(self, request, data):
        return OrderService.place_order_from_cart(
            user=request.user,
            address=data['address'],
            contact=data['contact'],
        )


class PlaceOrderByUserView(BasePlaceOrderView):
    """
    POST /api/v1/orders/place-by-user/
    Expects: { "userId": 1, "address": "...", "contact": "...",
               "cartItems": [{"medicineId": "...", "quantity": 2}] }
    """
    input_serializer_class = PlaceOrderByUserSerializer
    idempotency_scope = "place-by-user"

    def place(self, request, data):
        if not request.user.is_staff and data['user_id'] != request.user.pk:
            raise PermissionDenied("You can only place orders for yourself.")

        return OrderService.place_order_by_user_id(
            user_id=data['user_id'],
            address=data['address'],
            contact=data['contact'],
            cart_items=data['cart_items'],
        )


class PlaceOrderByCartView(BasePlaceOrderView):
    """
    POST /api/v1/orders/place-by-cart/
    Expects: { "cartId": "...", "address": "...", "contact": "..." }
    """
    input_serializer_class = PlaceOrderByCartSerializer
    idempotency_scope = "place-by-cart"

    def place(self, request, data):
        return OrderService.place_order_using_cart_id(
            cart_id=data['cart_id'],
            address=data['address'],
            contact=data['contact'],
            requested_by=request.user,
        )


class OrderListView(generics.ListAPIView):
    """
    GET /api/v1/orders/
    All orders of the caller, oldest first. Not paginated.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'payment_status']
    pagination_class = None

    def get_queryset(self):
        return OrderService.orders_for_user(self.request.user)


class PatientOrderListView(OrderListView):
    """
    GET /api/v1/orders/patient/<patient_id>/
    """
    permission_classes = [IsAdminUser]

    def get_queryset(self):
        return OrderService.orders_for_patient(self.kwargs['patient_id'])


class OrderStatusView(APIView):
    """
    PATCH /api/v1/orders/<order_id>/status/
    """
    permission_classes = [IsAdminUser]

    def patch(self, request, order_id):
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        OrderService.update_status(order_id, serializer.validated_data['status'])
        return Response({"message": "Order status updated"}, status=status.HTTP_200_OK)


class CancelOrderView(APIView):
    """
    POST /api/v1/orders/<order_id>/cancel/
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, order_id):
        order = OrderService.cancel_order(order_id, requested_by=request.user)
        order = OrderService.orders_for_user(order.user).get(pk=order.pk)
        return Response(
            {"message": "Order cancelled successfully", "order": OrderSerializer(order).data},
            status=status.HTTP_200_OK
        )

