"""
Feature modules. Each one owns its models, routes and services and reuses the
platform pieces under app.registry (config, audit, DB session).
"""
