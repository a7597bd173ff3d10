"""
api — thin FastAPI routers over the engines and views.
"""
