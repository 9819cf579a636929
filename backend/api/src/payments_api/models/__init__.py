"""API-specific request/response models.

Modules:
- common: camelCase base model and validation error detail
- payments: payment, webhook and order endpoint bodies
"""

__all__: list[str] = []
