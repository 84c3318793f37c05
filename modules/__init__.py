"""
Application Modules.

- eventcore/: Event delivery core: outbox store, delivery pipeline, periodic tasks, monitoring API
"""
