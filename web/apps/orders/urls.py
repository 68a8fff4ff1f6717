from django.urls import path
from .views import (
    BuyerOrdersView,
    DeliverOrderView,
    OrdersCollectionView,
    OrdersPingView,
    PayOrderView,
    RetrieveOrderView,
    ReturnDecisionView,
    ReturnRequestView,
    ShipOrderView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("buyers/<str:buyer_id>/", BuyerOrdersView.as_view(), name="orders-by-buyer"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/pay/", PayOrderView.as_view(), name="orders-pay"),
    path("<uuid:oid>/ship/", ShipOrderView.as_view(), name="orders-ship"),
    path("<uuid:oid>/deliver/", DeliverOrderView.as_view(), name="orders-deliver"),
    path("<uuid:oid>/return/", ReturnRequestView.as_view(), name="orders-return"),
    path("<uuid:oid>/return/status/", ReturnDecisionView.as_view(), name="orders-return-status"),
]
