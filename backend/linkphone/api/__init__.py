"""
The Link Phone - API Package

- routes: Phone widget and call control endpoints
- health: System health and readiness probes
- schemas: Request/response models
"""
