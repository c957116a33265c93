# Overview: Named real-time events emitted by the core; queued until the transaction commits.

from __future__ import annotations

from ..extensions import db
from ..money import as_number
from .event_service import queue_event


ORDER_UPDATE = "order:update"
STOCK_CHANGE = "stock:change"
SALE_COMPLETE = "sale:complete"
TABLE_STATUS_CHANGE = "table:status_change"
MOVEMENT_CREATE = "movement:create"
SHIFT_CHANGE = "shift:change"
SALES_HANDOVER = "sales:handover"
SALES_TRANSFER = "sales:transfer"
SALES_LINKED = "sales:linked"
KITCHEN_UPDATE = "kitchen:update"
CREDIT_PAYMENT = "credit:payment"
CREDIT_CUSTOMER_UPDATE = "credit:customer_update"


def emit(event_name: str, payload: dict) -> None:
    queue_event(db.session, event_name, payload)


def emit_order_update(sale, items=None) -> None:
    items = sale.items if items is None else items
    emit(ORDER_UPDATE, {
        "saleId": sale.id,
        "tableId": sale.table_id,
        "status": sale.status,
        "total": as_number(sale.total),
        "items": [item.to_dict() for item in items],
    })


def emit_stock_change(product, previous_stock, new_stock, reason: str) -> None:
    emit(STOCK_CHANGE, {
        "productId": product.id,
        "productName": product.name,
        "previousStock": as_number(previous_stock),
        "newStock": as_number(new_stock),
        "reason": reason,
    })


def emit_sale_complete(sale) -> None:
    emit(SALE_COMPLETE, {
        "saleId": sale.id,
        "tableId": sale.table_id,
        "shiftId": sale.shift_id,
        "total": as_number(sale.total),
        "paymentMethod": sale.payment_method,
        "status": sale.status,
    })


def emit_table_status(table_id: int, status: str, sale_id: str | None = None) -> None:
    emit(TABLE_STATUS_CHANGE, {"tableId": table_id, "status": status, "saleId": sale_id})


def emit_movement_create(movement) -> None:
    emit(MOVEMENT_CREATE, {"movement": movement.to_dict()})


def emit_shift_change(shift, action: str) -> None:
    emit(SHIFT_CHANGE, {"action": action, "shift": shift.to_dict()})


def emit_sales_handover(from_shift_id, to_shift_id, sale_ids) -> None:
    emit(SALES_HANDOVER, {
        "fromShiftId": from_shift_id,
        "toShiftId": to_shift_id,
        "saleIds": list(sale_ids),
    })


def emit_sales_transfer(sale_ids, receiver_user_id: int, from_shift_id=None) -> None:
    emit(SALES_TRANSFER, {
        "saleIds": list(sale_ids),
        "receiverUserId": receiver_user_id,
        "fromShiftId": from_shift_id,
    })


def emit_sales_linked(shift_id: str, user_id: int, sale_ids) -> None:
    emit(SALES_LINKED, {"shiftId": shift_id, "userId": user_id, "saleIds": list(sale_ids)})


def emit_kitchen_update(sale, item) -> None:
    emit(KITCHEN_UPDATE, {
        "saleId": sale.id,
        "tableId": sale.table_id,
        "itemId": item.id,
        "preparationStatus": item.preparation_status,
    })


def emit_credit_payment(customer, amount, movement_id: str, allocations) -> None:
    emit(CREDIT_PAYMENT, {
        "customerId": customer.id,
        "amount": as_number(amount),
        "movementId": movement_id,
        "allocations": allocations,
    })


def emit_credit_customer_update(customer) -> None:
    emit(CREDIT_CUSTOMER_UPDATE, {
        "customerId": customer.id,
        "currentDebt": as_number(customer.current_debt),
    })
