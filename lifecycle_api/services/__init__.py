"""
Domain services.

Every service derived from SecureService is registered in
``lifecycle_api.services.secure.SERVICE_REGISTRY`` when its module is imported.
"""
