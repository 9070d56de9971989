"""
Staff-claimable stages of an order and the log values each one writes.

Every stage runs through the same claim / complete / release machine; a
StageDescriptor carries everything that differs between them.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from order_status_constants import (
    PICKUP_SCHEDULED, PICKUP_PROGRESS, INSPECTION, WAITING_PAYMENT,
    PROCESS_COMPLETED, DELIVERY, COMPLETED,
)

# Action log values
ATTEMPT_PICKUP = 'ATTEMPT_PICKUP'
PICKUP = 'PICKUP'
RELEASE_PICKUP = 'RELEASE_PICKUP'
ATTEMPT_CHECK = 'ATTEMPT_CHECK'
CHECK = 'CHECK'
RELEASE_CHECK = 'RELEASE_CHECK'
ATTEMPT_DELIVERY = 'ATTEMPT_DELIVERY'
DELIVERY_ACTION = 'DELIVERY'
RELEASE_DELIVERY = 'RELEASE_DELIVERY'

# Photo stage values
PHOTO_PICKUP = 'pickup'
PHOTO_CHECK = 'check'
PHOTO_DELIVERY = 'delivery'

ORDER_TYPE_ONLINE = 'online'
ORDER_TYPE_OFFLINE = 'offline'


@dataclass(frozen=True)
class StageDescriptor:
    slug: str                   # URL segment: /staff/<slug>/<number>
    label: str
    attempt_action: str
    complete_action: str
    release_action: str
    photo_stage: str
    photo_folder: str
    progress_status: str        # inserted on claim when missing
    next_status: str            # inserted on completion
    order_types: Tuple[str, ...]
    claimable_statuses: Tuple[str, ...]  # current status must be one of these

    @property
    def actions(self):
        return (self.attempt_action, self.complete_action, self.release_action)

    @property
    def closing_actions(self):
        return (self.complete_action, self.release_action)

    def applies_to(self, order_type):
        return order_type in self.order_types

    def accepts_status(self, status):
        return status in self.claimable_statuses

    def photo_path(self, order_number, extension):
        return f"{self.photo_folder}/{order_number}.{extension}"

    def staging_path(self, order_number, token, extension):
        return f"{self.photo_folder}/.staging/{order_number}-{token}.{extension}"


PICKUP_STAGE = StageDescriptor(
    slug='pickup',
    label='Penjemputan',
    attempt_action=ATTEMPT_PICKUP,
    complete_action=PICKUP,
    release_action=RELEASE_PICKUP,
    photo_stage=PHOTO_PICKUP,
    photo_folder='pickups',
    progress_status=PICKUP_PROGRESS,
    next_status=INSPECTION,
    order_types=(ORDER_TYPE_ONLINE,),
    claimable_statuses=(PICKUP_SCHEDULED, PICKUP_PROGRESS),
)

INSPECTION_STAGE = StageDescriptor(
    slug='inspection',
    label='Inspeksi',
    attempt_action=ATTEMPT_CHECK,
    complete_action=CHECK,
    release_action=RELEASE_CHECK,
    photo_stage=PHOTO_CHECK,
    photo_folder='inspections',
    progress_status=INSPECTION,
    next_status=WAITING_PAYMENT,
    order_types=(ORDER_TYPE_ONLINE, ORDER_TYPE_OFFLINE),
    claimable_statuses=(INSPECTION,),
)

DELIVERY_STAGE = StageDescriptor(
    slug='delivery',
    label='Pengiriman',
    attempt_action=ATTEMPT_DELIVERY,
    complete_action=DELIVERY_ACTION,
    release_action=RELEASE_DELIVERY,
    photo_stage=PHOTO_DELIVERY,
    photo_folder='deliveries',
    progress_status=DELIVERY,
    next_status=COMPLETED,
    order_types=(ORDER_TYPE_ONLINE, ORDER_TYPE_OFFLINE),
    claimable_statuses=(PROCESS_COMPLETED, DELIVERY),
)

STAGES = {s.slug: s for s in (PICKUP_STAGE, INSPECTION_STAGE, DELIVERY_STAGE)}

ATTEMPT_ACTIONS = tuple(s.attempt_action for s in STAGES.values())


def get_stage(slug) -> Optional[StageDescriptor]:
    return STAGES.get(slug)


def stage_for_action(action) -> Optional[StageDescriptor]:
    """Stage whose action triple contains ``action``."""
    for stage in STAGES.values():
        if action in stage.actions:
            return stage
    return None
