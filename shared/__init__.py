"""
Shared Kernel

Value objects, the error taxonomy, the unit of work and the event bus
used by the resource, catalog and booking apps.
"""
