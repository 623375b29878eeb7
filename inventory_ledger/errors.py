from __future__ import annotations


class LedgerError(ValueError):
    """Base for every error an engine operation raises on purpose."""

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: int | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.field = field

    def context(self) -> dict:
        payload = {'entity': self.entity, 'entity_id': self.entity_id, 'field': self.field}
        return {key: value for key, value in payload.items() if value is not None}


class ValidationError(LedgerError):
    pass


class NotFound(LedgerError):
    pass


class InsufficientStock(LedgerError):
    def __init__(self, *, product_id: int, requested: int, available: int, product_name: str | None = None) -> None:
        label = product_name or f'product {product_id}'
        super().__init__(
            f'Insufficient stock for {label}: requested {requested}, available {available}',
            entity='product',
            entity_id=product_id,
            field='quantity_in_stock',
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available

    def context(self) -> dict:
        payload = super().context()
        payload.update({'requested': self.requested, 'available': self.available})
        return payload


class InvalidStateTransition(LedgerError):
    def __init__(self, *, entity: str, entity_id: int, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f'Cannot move {entity} {entity_id} from {current} to {target}',
            entity=entity,
            entity_id=entity_id,
            field='status',
        )
        self.current = current
        self.target = target

    def context(self) -> dict:
        payload = super().context()
        payload.update({'current': self.current, 'target': self.target})
        return payload


class LockTimeout(LedgerError):
    def __init__(self, *, entity: str, entity_id: int | None = None) -> None:
        label = f'{entity} {entity_id}' if entity_id is not None else entity
        super().__init__(f'Another writer is holding {label}; try again', entity=entity, entity_id=entity_id)
