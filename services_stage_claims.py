"""
Stage claim engine.

A staff member claims a stage of an order (ATTEMPT_* action), then either
completes it (photo + completion action + next status) or releases it
(RELEASE_* action, the status the claim inserted is removed). Ownership of a
claim is read from the action log on every call; there is no lock table.

Concurrency: every mutating call first takes a row lock on the order
(SELECT ... FOR UPDATE), so two staff claiming the same order serialize and
the second one sees the first one's ATTEMPT. SQLite ignores FOR UPDATE but
only allows one writer at a time, which gives the same result.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, aliased, scoped_session

from domain_errors import (
    OrderNotFound, StageAlreadyCompleted, StageError, StageLockedByOther,
    StageNotApplicable, StageNotClaimed, StageNotReady, ValidationFailed,
)
from models import (
    Order, OrderAction, OrderPhoto, Service, Shoe, Transaction, TransactionItem,
)
from order_stages import ATTEMPT_ACTIONS, INSPECTION_STAGE, STAGES, StageDescriptor
from order_status_constants import get_status_label
from services_status_projection import append_status, get_current_status, remove_claim_statuses

logger = logging.getLogger(__name__)

SHOE_FIELDS = ('brand', 'size', 'type', 'material', 'category', 'condition')


def open_attempts_query(session: Union[Session, scoped_session]):
    """
    ATTEMPT actions that are still open: no completion or release of the same
    stage, on the same order, by the same staff member, was logged after them.
    Newest first.
    """
    later = aliased(OrderAction)
    closes_attempt = or_(*[
        and_(OrderAction.action == stage.attempt_action, later.action.in_(stage.closing_actions))
        for stage in STAGES.values()
    ])
    closed = (
        select(later.id)
        .where(
            later.order_id == OrderAction.order_id,
            later.admin_id == OrderAction.admin_id,
            later.id > OrderAction.id,
            closes_attempt,
        )
        .exists()
    )
    return (
        session.query(OrderAction)
        .filter(OrderAction.action.in_(ATTEMPT_ACTIONS))
        .filter(~closed)
        .order_by(OrderAction.id.desc())
    )


def find_open_claim(session, order_id: int, stage: StageDescriptor) -> Optional[OrderAction]:
    """The open ATTEMPT for (order, stage), whoever holds it."""
    return (
        open_attempts_query(session)
        .filter(OrderAction.order_id == order_id, OrderAction.action == stage.attempt_action)
        .first()
    )


def stage_photo_exists(session, order_id: int, stage: StageDescriptor) -> bool:
    return session.query(
        session.query(OrderPhoto)
        .filter(OrderPhoto.order_id == order_id, OrderPhoto.stage == stage.photo_stage)
        .exists()
    ).scalar()


@dataclass(frozen=True)
class ClaimOutcome:
    order_number: str
    action_id: int
    created: bool  # False when the staff member already held the claim


@dataclass(frozen=True)
class CompletionOutcome:
    order_number: str
    action_id: int
    photo_path: str
    transaction_id: Optional[int] = None


@dataclass
class ShoeInput:
    brand: str
    size: str
    type: str
    material: str
    category: str
    condition: str
    services: List[int]
    additional_services: List[int]
    note: Optional[str] = None

    @property
    def service_ids(self):
        return list(self.services) + list(self.additional_services)


class StageClaimService:
    """Claim / complete / release for every stage, driven by a StageDescriptor."""

    def __init__(self, session, storage=None):
        self.session = session
        self.storage = storage

    # -- helpers -----------------------------------------------------------

    def _lock_order(self, order_number) -> Order:
        order = (
            self.session.query(Order)
            .filter(Order.number == order_number)
            .with_for_update()
            .first()
        )
        if order is None:
            raise OrderNotFound()
        return order

    def _find_order(self, order_number) -> Order:
        order = self.session.query(Order).filter(Order.number == order_number).first()
        if order is None:
            raise OrderNotFound()
        return order

    def _require_status(self, order, stage):
        status = get_current_status(self.session, order.id)
        if not stage.accepts_status(status):
            raise StageNotReady(stage.label, order.number, get_status_label(status))

    def _require_own_claim(self, order, stage, staff) -> OrderAction:
        holder = find_open_claim(self.session, order.id, stage)
        if holder is None or holder.admin_id != staff.id:
            raise StageNotClaimed(stage.label, order.number)
        return holder

    def _validate_shoes(self, shoes):
        if not shoes:
            raise ValidationFailed({'shoes': 'Minimal satu sepatu harus diisi'})
        errors = {}
        wanted = set()
        for index, shoe in enumerate(shoes):
            for field in SHOE_FIELDS:
                if not str(getattr(shoe, field) or '').strip():
                    errors[f'shoes.{index}.{field}'] = f'{field} harus diisi'
            if not shoe.services:
                errors[f'shoes.{index}.services'] = 'Layanan harus dipilih'
            wanted.update(shoe.service_ids)
        if errors:
            raise ValidationFailed(errors)

        services = {
            s.id: s for s in self.session.query(Service).filter(Service.id.in_(wanted)).all()
        }
        missing = sorted(wanted - set(services))
        if missing:
            raise ValidationFailed({'services': f'Layanan tidak ditemukan: {missing}'})
        return services

    def _materialize_inspection(self, order, shoes, services) -> Transaction:
        bill = Transaction(order_id=order.id, type='full_payment', amount=0, status='pending')
        self.session.add(bill)
        self.session.flush()

        total = 0
        for shoe_input in shoes:
            shoe = Shoe(
                order_id=order.id,
                brand=shoe_input.brand.strip(),
                size=str(shoe_input.size).strip(),
                type=shoe_input.type.strip(),
                material=shoe_input.material.strip(),
                category=shoe_input.category.strip(),
                condition=shoe_input.condition.strip(),
                note=shoe_input.note or None,
            )
            self.session.add(shoe)
            self.session.flush()
            for service_id in shoe_input.service_ids:
                service = services[service_id]
                # Quantity is always 1 per shoe and service
                subtotal = service.price * 1
                self.session.add(TransactionItem(
                    transaction_id=bill.id,
                    shoe_id=shoe.id,
                    service_id=service.id,
                    item_price=service.price,
                    subtotal=subtotal,
                ))
                total += subtotal

        bill.amount = total
        return bill

    # -- operations --------------------------------------------------------

    def claim(self, stage: StageDescriptor, order_number, staff) -> ClaimOutcome:
        """
        Claim ``stage`` of an order for ``staff``.

        Raises StageAlreadyCompleted when the stage photo exists,
        StageLockedByOther when someone else holds the open claim and
        StageNotReady when the order is not at this stage. Claiming a stage
        you already hold changes nothing.
        """
        try:
            order = self._lock_order(order_number)
            if not stage.applies_to(order.type):
                raise StageNotApplicable(stage.label, order.number)
            if stage_photo_exists(self.session, order.id, stage):
                raise StageAlreadyCompleted(stage.label, order.number)

            holder = find_open_claim(self.session, order.id, stage)
            if holder is not None:
                if holder.admin_id != staff.id:
                    raise StageLockedByOther(stage.label, order.number, holder.staff.display_name)
                holder_id = holder.id
                self.session.rollback()
                logger.debug(f"{staff.username} already holds {stage.slug} on {order_number}")
                return ClaimOutcome(order_number, holder_id, created=False)

            self._require_status(order, stage)

            attempt = OrderAction(order_id=order.id, admin_id=staff.id, action=stage.attempt_action)
            self.session.add(attempt)
            self.session.flush()
            attempt_id = attempt.id
            append_status(self.session, order.id, stage.progress_status, order_action_id=attempt_id)
            self.session.commit()
        except StageError as e:
            self.session.rollback()
            logger.warning(f"Claim {stage.slug} on {order_number} by {staff.username} rejected: {e.message}")
            raise
        except OrderNotFound:
            self.session.rollback()
            raise
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error claiming {stage.slug} on {order_number} for {staff.username}: {str(e)}")
            raise

        logger.info(f"{staff.username} claimed {stage.slug} on order {order_number}")
        return ClaimOutcome(order_number, attempt_id, created=True)

    def complete(self, stage: StageDescriptor, order_number, staff, photo,
                 note=None, shoes=None) -> CompletionOutcome:
        """
        Finish a claimed stage with its evidence photo.

        The photo is written to a staging name before the database
        transaction starts, so a storage failure leaves no rows behind. It is
        moved to its final path only after the locked checks pass, and a
        rejected or failed completion removes only its own file. Inspection
        also records the shoes, their services and the full-payment bill in
        the same transaction. On failure the claim stays open for a retry.
        """
        if self.storage is None:
            raise RuntimeError("StageClaimService.complete needs a photo storage")

        # Checks that need no lock; repeated under the lock below
        try:
            order = self._find_order(order_number)
            self._require_own_claim(order, stage, staff)
            if stage_photo_exists(self.session, order.id, stage):
                raise StageAlreadyCompleted(stage.label, order.number)
            self._require_status(order, stage)
            services = {}
            if stage is INSPECTION_STAGE:
                services = self._validate_shoes(shoes or [])
            data, extension = self.storage.validate(photo)
        except StageError as e:
            logger.warning(f"Complete {stage.slug} on {order_number} by {staff.username} rejected: {e.message}")
            raise
        finally:
            self.session.rollback()

        staged = self.storage.save(data, stage.staging_path(order_number, uuid.uuid4().hex[:12], extension))
        path = None

        try:
            order = self._lock_order(order_number)
            self._require_own_claim(order, stage, staff)
            if stage_photo_exists(self.session, order.id, stage):
                raise StageAlreadyCompleted(stage.label, order.number)
            self._require_status(order, stage)
            path = self.storage.move(staged, stage.photo_path(order_number, extension))

            photo_row = OrderPhoto(
                order_id=order.id, admin_id=staff.id, stage=stage.photo_stage, path=path, note=note,
            )
            self.session.add(photo_row)
            self.session.flush()

            action = OrderAction(
                order_id=order.id, admin_id=staff.id, action=stage.complete_action,
                order_photo_id=photo_row.id, note=note,
            )
            self.session.add(action)
            self.session.flush()

            bill = None
            if stage is INSPECTION_STAGE:
                bill = self._materialize_inspection(order, shoes, services)

            append_status(self.session, order.id, stage.next_status)
            outcome = CompletionOutcome(order_number, action.id, path, bill.id if bill else None)
            self.session.commit()
        except (StageError, OrderNotFound) as e:
            self.session.rollback()
            self.storage.delete(path or staged)
            if isinstance(e, StageError):
                logger.warning(f"Complete {stage.slug} on {order_number} by {staff.username} rejected: {e.message}")
            raise
        except Exception as e:
            self.session.rollback()
            self.storage.delete(path or staged)
            logger.error(f"Error completing {stage.slug} on {order_number} for {staff.username}: {str(e)}")
            raise

        logger.info(f"{staff.username} completed {stage.slug} on order {order_number}")
        return outcome

    def release(self, stage: StageDescriptor, order_number, staff, note=None) -> OrderAction:
        """Give a claimed stage back; the status the claim inserted is removed."""
        try:
            order = self._lock_order(order_number)
            holder = self._require_own_claim(order, stage, staff)

            release = OrderAction(
                order_id=order.id, admin_id=staff.id, action=stage.release_action, note=note,
            )
            self.session.add(release)
            self.session.flush()
            removed = remove_claim_statuses(self.session, [holder.id])
            self.session.commit()
        except StageError as e:
            self.session.rollback()
            logger.warning(f"Release {stage.slug} on {order_number} by {staff.username} rejected: {e.message}")
            raise
        except OrderNotFound:
            self.session.rollback()
            raise
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error releasing {stage.slug} on {order_number} for {staff.username}: {str(e)}")
            raise

        logger.info(
            f"{staff.username} released {stage.slug} on order {order_number} "
            f"({removed} status row(s) removed)"
        )
        return release

    def claim_holder(self, stage: StageDescriptor, order_id):
        """User holding the open claim on (order, stage), or None."""
        holder = find_open_claim(self.session, order_id, stage)
        return holder.staff if holder else None
