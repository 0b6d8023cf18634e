"""
Axis Sync API package
FastAPI routers for sync control and the Google push-notification webhook
"""
