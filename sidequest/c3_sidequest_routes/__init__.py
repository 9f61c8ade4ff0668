from sidequest.c3_sidequest_routes.sidequest_routes import create_sidequest_router

__all__ = ["create_sidequest_router"]
