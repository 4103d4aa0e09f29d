from django.urls import path
from .views import (
    PlaceOrderView,
    PlaceOrderByUserView,
    PlaceOrderByCartView,
    OrderListView,
    PatientOrderListView,
    OrderStatusView,
    CancelOrderView,
)

urlpatterns = [
    path('', OrderListView.as_view(), name='order-list'),
    path('place/', PlaceOrderView.as_view(), name='order-place'),
    path('place-by-user/', PlaceOrderByUserView.as_view(), name='order-place-by-user'),
    path('place-by-cart/', PlaceOrderByCartView.as_view(), name='order-place-by-cart'),
    path('patient/<str:patient_id>/', PatientOrderListView.as_view(), name='order-patient-list'),
    path('<str:order_id>/status/', OrderStatusView.as_view(), name='order-status'),
    path('<str:order_id>/cancel/', CancelOrderView.as_view(), name='order-cancel'),
]
