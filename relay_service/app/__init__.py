"""FastAPI application package.

Import the factory rather than ``relay_service.app.main.app`` when building
an application with overridden settings or dependencies.
"""
