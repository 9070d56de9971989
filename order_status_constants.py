"""
Order Status Constants for the shoe-cleaning order lifecycle.

The current status of an order is never stored on the order itself; it is
the latest row of its status history (see services_status_projection).
"""

WAITING_DEPOSIT = 'waiting_deposit'
PICKUP_SCHEDULED = 'pickup_scheduled'
PICKUP_PROGRESS = 'pickup_progress'
INSPECTION = 'inspection'
WAITING_PAYMENT = 'waiting_payment'
IN_PROCESS = 'in_process'
PROCESS_COMPLETED = 'process_completed'
DELIVERY = 'delivery'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

ORDER_STATUSES = {
    WAITING_DEPOSIT: {
        'value': WAITING_DEPOSIT,
        'label': 'Menunggu Deposit',
        'description': 'Order created, waiting for the down payment',
        'color': 'warning',
        'icon': 'fas fa-wallet',
        'sort_order': 1
    },
    PICKUP_SCHEDULED: {
        'value': PICKUP_SCHEDULED,
        'label': 'Penjemputan Dijadwalkan',
        'description': 'Deposit paid, waiting for a courier to claim the pickup',
        'color': 'info',
        'icon': 'fas fa-calendar-check',
        'sort_order': 2
    },
    PICKUP_PROGRESS: {
        'value': PICKUP_PROGRESS,
        'label': 'Proses Penjemputan',
        'description': 'A courier is on the way to collect the shoes',
        'color': 'primary',
        'icon': 'fas fa-motorcycle',
        'sort_order': 3
    },
    INSPECTION: {
        'value': INSPECTION,
        'label': 'Inspeksi',
        'description': 'Shoes are at the store waiting for inspection',
        'color': 'purple',
        'icon': 'fas fa-search',
        'sort_order': 4
    },
    WAITING_PAYMENT: {
        'value': WAITING_PAYMENT,
        'label': 'Menunggu Pembayaran',
        'description': 'Inspection done, waiting for the full payment',
        'color': 'warning',
        'icon': 'fas fa-file-invoice-dollar',
        'sort_order': 5
    },
    IN_PROCESS: {
        'value': IN_PROCESS,
        'label': 'Dalam Proses',
        'description': 'Paid in full, shoes are being cleaned',
        'color': 'primary',
        'icon': 'fas fa-soap',
        'sort_order': 6
    },
    PROCESS_COMPLETED: {
        'value': PROCESS_COMPLETED,
        'label': 'Proses Selesai',
        'description': 'Cleaning finished, waiting for delivery',
        'color': 'success',
        'icon': 'fas fa-check',
        'sort_order': 7
    },
    DELIVERY: {
        'value': DELIVERY,
        'label': 'Pengiriman',
        'description': 'Shoes are on the way back to the customer',
        'color': 'info',
        'icon': 'fas fa-truck',
        'sort_order': 8
    },
    COMPLETED: {
        'value': COMPLETED,
        'label': 'Selesai',
        'description': 'Shoes handed back to the customer',
        'color': 'success',
        'icon': 'fas fa-check-double',
        'sort_order': 9
    },
    CANCELLED: {
        'value': CANCELLED,
        'label': 'Dibatalkan',
        'description': 'Order cancelled',
        'color': 'danger',
        'icon': 'fas fa-ban',
        'sort_order': 10
    },
}

TERMINAL_STATUSES = (COMPLETED, CANCELLED)

# Staff dashboard buckets: bucket name -> statuses the latest row must be in.
# 'all' is handled separately as "not terminal".
TASK_BUCKETS = {
    'pickup': (PICKUP_SCHEDULED,),
    'inspection': (INSPECTION,),
    'ready': (PROCESS_COMPLETED,),
    'delivery': (DELIVERY,),
}


def get_status_info(status_value):
    """Get status information by value"""
    return ORDER_STATUSES.get(status_value)


def get_status_label(status_value):
    info = get_status_info(status_value)
    return info['label'] if info else status_value


def get_status_badge_class(status_value):
    """Get Bootstrap badge class for status"""
    status_info = get_status_info(status_value)
    if status_info:
        return f"bg-{status_info['color']}"
    return "bg-secondary"


def get_status_icon(status_value):
    """Get icon class for status"""
    status_info = get_status_info(status_value)
    if status_info:
        return status_info['icon']
    return "fas fa-question"


def statuses_matching_search(search):
    """
    Map free text typed by a user back to status values.

    Matches both the internal value ("in_process") and the displayed label
    ("Dalam Proses"), case-insensitively and by substring, so a search for
    "proses" finds pickup_progress, in_process and process_completed.
    """
    if not search:
        return []
    needle = search.strip().lower()
    if not needle:
        return []
    matches = []
    for value, info in ORDER_STATUSES.items():
        if needle in info['label'].lower() or needle in value:
            matches.append(value)
    return matches
