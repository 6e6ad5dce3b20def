"""
Consent Service - the business -> model consent request lifecycle

PENDING -> APPROVED | REJECTED | EXPIRED, all terminal. Transitions are
conditional UPDATEs on (id, status = PENDING, not past expiry) so that two
concurrent decisions cannot both succeed.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Tuple, Iterable
from uuid import UUID

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import (
    DuplicateRequest, InvalidTransition, NotAuthorized, NotFound, ValidationError
)
from modelsnapper.database.models import ConsentRequest, ModelProfile, utcnow
from modelsnapper.models.consent import ConsentStatus
from modelsnapper.models.auth import ModelProfileStatus

logger = logging.getLogger(__name__)


def is_expired(request: ConsentRequest, now: Optional[datetime] = None) -> bool:
    """A PENDING request whose expiry has passed; terminal states never expire"""
    if request.status != ConsentStatus.PENDING.value or request.expires_at is None:
        return False
    now = now or utcnow()
    expires_at = request.expires_at
    if expires_at.tzinfo is not None:
        expires_at = expires_at.replace(tzinfo=None) - (expires_at.utcoffset() or timedelta(0))
    return expires_at <= now


def _not_expired(now: datetime):
    return or_(ConsentRequest.expires_at.is_(None), ConsentRequest.expires_at > now)


class ConsentService:

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_request(self, db: AsyncSession, request_id: UUID) -> ConsentRequest:
        request = await db.get(ConsentRequest, request_id)
        if not request:
            raise NotFound(f"Consent request {request_id} not found", code="REQUEST_NOT_FOUND")
        return request

    async def find_request(self, db: AsyncSession, business_id: UUID, model_id: UUID) -> Optional[ConsentRequest]:
        result = await db.execute(
            select(ConsentRequest).where(
                ConsentRequest.business_id == business_id,
                ConsentRequest.model_id == model_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_for_viewer(
        self,
        db: AsyncSession,
        request_id: UUID,
        business_id: Optional[UUID] = None,
        model_id: Optional[UUID] = None,
        is_admin: bool = False,
    ) -> ConsentRequest:
        """Only the two parties and admins may view a request"""
        await self._expire_due(db, ConsentRequest.id == request_id)
        request = await self.get_request(db, request_id)
        if not is_admin and request.business_id != business_id and request.model_id != model_id:
            raise NotAuthorized("You cannot view this consent request")
        return request

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_request(
        self,
        db: AsyncSession,
        business_id: UUID,
        model_id: UUID,
        message: Optional[str] = None,
    ) -> ConsentRequest:
        """
        Open a PENDING request from a business to a model.

        Raises:
            NotFound: unknown model
            ValidationError: model is not active
            DuplicateRequest: a request for this pair already exists, in any state
        """
        model = await db.get(ModelProfile, model_id)
        if not model:
            raise NotFound(f"Model {model_id} not found", code="MODEL_NOT_FOUND")
        if model.status != ModelProfileStatus.ACTIVE.value:
            raise ValidationError("Model is not currently accepting requests", code="MODEL_INACTIVE")

        existing = await self.find_request(db, business_id, model_id)
        if existing:
            raise self._duplicate(existing)

        now = utcnow()
        expires_at = None
        if settings.CONSENT_REQUEST_TTL_DAYS > 0:
            expires_at = now + timedelta(days=settings.CONSENT_REQUEST_TTL_DAYS)

        request = ConsentRequest(
            business_id=business_id,
            model_id=model_id,
            status=ConsentStatus.PENDING.value,
            message=message,
            requested_at=now,
            expires_at=expires_at,
        )
        db.add(request)
        try:
            await db.flush()
            await db.execute(
                update(ModelProfile)
                .where(ModelProfile.id == model_id)
                .values(consent_requests_received=ModelProfile.consent_requests_received + 1)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            existing = await self.find_request(db, business_id, model_id)
            if existing is None:
                raise
            logger.info(f"Concurrent consent request for business {business_id} / model {model_id}")
            raise self._duplicate(existing)

        await db.refresh(request)
        logger.info(f"Consent request {request.id} created: business {business_id} -> model {model_id}")
        return request

    @staticmethod
    def _duplicate(existing: ConsentRequest) -> DuplicateRequest:
        return DuplicateRequest(
            "A consent request for this model already exists",
            data={"request_id": str(existing.id), "status": existing.status},
        )

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def approve(self, db: AsyncSession, request_id: UUID, acting_model_id: UUID) -> ConsentRequest:
        return await self._decide(db, request_id, acting_model_id, ConsentStatus.APPROVED)

    async def reject(self, db: AsyncSession, request_id: UUID, acting_model_id: UUID) -> ConsentRequest:
        return await self._decide(db, request_id, acting_model_id, ConsentStatus.REJECTED)

    async def _decide(
        self,
        db: AsyncSession,
        request_id: UUID,
        acting_model_id: UUID,
        decision: ConsentStatus,
    ) -> ConsentRequest:
        """
        Move a PENDING request to APPROVED or REJECTED.

        Raises:
            NotFound: unknown request
            NotAuthorized: acting model is not the request's model
            InvalidTransition: request is not PENDING, or has expired
        """
        request = await self.get_request(db, request_id)
        if request.model_id != acting_model_id:
            logger.warning(f"Model {acting_model_id} tried to decide consent request {request_id}")
            raise NotAuthorized("Only the requested model can decide this request")

        now = utcnow()
        values = {"status": decision.value, "updated_at": now}
        if decision == ConsentStatus.APPROVED:
            values["granted_at"] = now
        else:
            values["rejected_at"] = now

        result = await db.execute(
            update(ConsentRequest)
            .where(
                ConsentRequest.id == request_id,
                ConsentRequest.status == ConsentStatus.PENDING.value,
                _not_expired(now),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await self._expire_due(db, ConsentRequest.id == request_id, now=now)
            await db.refresh(request)
            logger.info(
                f"Consent request {request_id} cannot become {decision.value}: currently {request.status}"
            )
            raise InvalidTransition(
                f"Request already processed ({request.status})",
                current_status=request.status,
            )

        if decision == ConsentStatus.APPROVED:
            await db.execute(
                update(ModelProfile)
                .where(ModelProfile.id == request.model_id)
                .values(consent_requests_approved=ModelProfile.consent_requests_approved + 1)
                .execution_options(synchronize_session=False)
            )
        await db.commit()
        await db.refresh(request)

        logger.info(f"Consent request {request_id} {decision.value} by model {acting_model_id}")
        return request

    async def _expire_due(self, db: AsyncSession, *criteria, now: Optional[datetime] = None) -> int:
        """Persist EXPIRED for PENDING rows past their expiry"""
        now = now or utcnow()
        result = await db.execute(
            update(ConsentRequest)
            .where(
                ConsentRequest.status == ConsentStatus.PENDING.value,
                ConsentRequest.expires_at.is_not(None),
                ConsentRequest.expires_at <= now,
                *criteria,
            )
            .values(status=ConsentStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} consent requests")
        return result.rowcount or 0

    async def expire_due(self, db: AsyncSession) -> int:
        """Sweep every due PENDING request into EXPIRED"""
        return await self._expire_due(db)

    # =========================================================================
    # LISTING AND STATUS
    # =========================================================================

    async def list_requests(
        self,
        db: AsyncSession,
        business_id: Optional[UUID] = None,
        model_id: Optional[UUID] = None,
        status: Optional[ConsentStatus] = None,
        limit: int = 20,
        skip: int = 0,
    ) -> Tuple[List[ConsentRequest], int]:
        """Requests for one party (or all, for admins), newest first"""
        scope = []
        if business_id is not None:
            scope.append(ConsentRequest.business_id == business_id)
        if model_id is not None:
            scope.append(ConsentRequest.model_id == model_id)

        await self._expire_due(db, *scope)

        filters = list(scope)
        if status is not None:
            filters.append(ConsentRequest.status == status.value)

        total = (await db.execute(
            select(func.count()).select_from(ConsentRequest).where(*filters)
        )).scalar_one()
        result = await db.execute(
            select(ConsentRequest)
            .where(*filters)
            .order_by(ConsentRequest.requested_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars()), total

    async def consent_status(
        self, db: AsyncSession, business_id: UUID, model_id: UUID
    ) -> Tuple[Optional[ConsentStatus], Optional[ConsentRequest]]:
        request = await self.find_request(db, business_id, model_id)
        if request is None:
            return None, None
        if is_expired(request):
            await self._expire_due(db, ConsentRequest.id == request.id)
            await db.refresh(request)
        return ConsentStatus(request.status), request

    async def has_consent(self, db: AsyncSession, business_id: UUID, model_id: UUID) -> bool:
        status, _ = await self.consent_status(db, business_id, model_id)
        return status == ConsentStatus.APPROVED

    async def consent_statuses(
        self, db: AsyncSession, business_id: UUID, model_ids: Iterable[UUID]
    ) -> Dict[UUID, Optional[ConsentStatus]]:
        """Status per model for one business; None where no request exists"""
        model_ids = list(model_ids)
        if not model_ids:
            return {}
        await self._expire_due(
            db,
            ConsentRequest.business_id == business_id,
            ConsentRequest.model_id.in_(model_ids),
        )
        result = await db.execute(
            select(ConsentRequest.model_id, ConsentRequest.status).where(
                and_(ConsentRequest.business_id == business_id, ConsentRequest.model_id.in_(model_ids))
            )
        )
        found = {row.model_id: ConsentStatus(row.status) for row in result}
        return {model_id: found.get(model_id) for model_id in model_ids}


consent_service = ConsentService()
