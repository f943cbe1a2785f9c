"""
API v1 路由
"""
from fastapi import APIRouter
from orderflow.api.v1 import checkout, orders, receipts, settings

api_router = APIRouter()

# 注册子路由
api_router.include_router(checkout.router, prefix="/checkout", tags=["结算"])
api_router.include_router(orders.router, prefix="/orders", tags=["订单"])
api_router.include_router(receipts.router, prefix="/receipts", tags=["付款凭证"])
api_router.include_router(settings.router, prefix="/settings", tags=["运行时设置"])
