"""
Render Service - garment try-on jobs

Credits are debited before the provider is called and refunded if the
provider rejects the job, the submission never completes, or the provider
later reports failure. Terminal status changes are conditional UPDATEs so a
render is completed or refunded at most once.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, List, Tuple, Dict, Any
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import (
    InsufficientCredits, NotAuthorized, NotFound, UpstreamProviderError, ValidationError
)
from modelsnapper.database.models import Avatar, BusinessProfile, ModelProfile, Render, User, utcnow
from modelsnapper.models.auth import ModelProfileStatus
from modelsnapper.models.billing import CreditTransactionType
from modelsnapper.models.render import RenderRequest, RenderStatus, RenderModelType
from modelsnapper.services.consent_service import consent_service
from modelsnapper.services.credit_service import credit_service
from modelsnapper.services.fashn_client import (
    FashnAPIError, FashnClient, SUCCESS_STATUSES, FAILURE_STATUSES
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (RenderStatus.PENDING.value, RenderStatus.PROCESSING.value)


class RenderService:

    async def _resolve_subject(
        self,
        db: AsyncSession,
        business_id: Optional[UUID],
        avatar_id: Optional[UUID] = None,
        model_id: Optional[UUID] = None,
    ) -> Tuple[RenderModelType, str]:
        """Return the subject type and the image the garment goes onto"""
        if avatar_id is not None:
            avatar = await db.get(Avatar, avatar_id)
            if not avatar or not avatar.visible:
                raise NotFound(f"Avatar {avatar_id} not found", code="AVATAR_NOT_FOUND")
            return RenderModelType.AI_AVATAR, avatar.image_url

        model = await db.get(ModelProfile, model_id)
        if not model:
            raise NotFound(f"Model {model_id} not found", code="MODEL_NOT_FOUND")
        if model.status != ModelProfileStatus.ACTIVE.value:
            raise ValidationError("Model is not available for renders", code="MODEL_INACTIVE")
        if model.requires_consent:
            if business_id is None or not await consent_service.has_consent(db, business_id, model.id):
                raise NotAuthorized("Approved consent is required to render this model", code="CONSENT_REQUIRED")
        if not model.primary_photo:
            raise ValidationError("Model has no photo to render with", code="MODEL_PHOTO_MISSING")
        return RenderModelType.HUMAN_MODEL, model.primary_photo

    async def _debit(self, db: AsyncSession, user_id: UUID, render_id: UUID, cost: int, reason: str) -> None:
        """Debit inside the caller's transaction; rolls it back on a refused debit"""
        try:
            await credit_service.adjust_credits(
                db,
                user_id,
                -cost,
                reason=reason,
                transaction_type=CreditTransactionType.GENERATION,
                reference_id=str(render_id),
                commit=False,
            )
        except InsufficientCredits:
            await db.rollback()
            raise

    async def submit_render(
        self,
        db: AsyncSession,
        user: User,
        request: RenderRequest,
        client: FashnClient,
        business_id: Optional[UUID] = None,
    ) -> Render:
        """
        Debit credits, record the job and submit it to the generation provider.

        Raises:
            InsufficientCredits: balance below the render cost, nothing recorded
            NotAuthorized: human model without approved consent
            UpstreamProviderError: provider refused the job; credits refunded
        """
        model_type, model_image = await self._resolve_subject(
            db, business_id, avatar_id=request.avatar_id, model_id=request.model_id
        )
        cost = settings.RENDER_CREDIT_COST

        render = Render(
            user_id=user.id,
            garment_image_url=str(request.garment_image_url),
            model_type=model_type.value,
            avatar_id=request.avatar_id,
            model_id=request.model_id,
            category=request.category,
            status=RenderStatus.PENDING.value,
            credits_used=cost,
            max_retries=settings.RENDER_MAX_RETRIES,
        )
        db.add(render)
        await db.flush()

        await self._debit(db, user.id, render.id, cost, reason="Render")

        render.status = RenderStatus.PROCESSING.value
        await db.commit()

        await self._send_to_provider(db, render, model_image, client)
        logger.info(f"Render {render.id} submitted as prediction {render.provider_request_id}")
        return render

    async def _send_to_provider(self, db: AsyncSession, render: Render, model_image: str, client: FashnClient) -> None:
        """
        Submit a committed, debited render. Any failure before a prediction id is
        stored fails the render and refunds it before raising.
        """
        try:
            async with client:
                prediction_id = await client.submit_tryon(
                    garment_image=render.garment_image_url,
                    model_image=model_image,
                    category=render.category or "auto",
                )
        except FashnAPIError as e:
            logger.error(f"Render {render.id} rejected by provider: {e}")
            await self._mark_failed(db, render.id, str(e))
            await db.refresh(render)
            raise UpstreamProviderError("FASHN", str(e))
        except Exception as e:
            logger.error(f"Render {render.id} submission failed: {e}", exc_info=True)
            await self._mark_failed(db, render.id, f"Submission failed: {e.__class__.__name__}")
            await db.refresh(render)
            raise UpstreamProviderError("FASHN", "Generation request failed") from e

        render.provider_request_id = prediction_id
        await db.commit()
        await db.refresh(render)

    async def retry_render(
        self,
        db: AsyncSession,
        render_id: UUID,
        user: User,
        client: FashnClient,
        business_id: Optional[UUID] = None,
    ) -> Render:
        """
        Resubmit a failed render owned by the caller, charging for it again.

        Raises:
            NotFound: unknown render or owned by someone else
            ValidationError: not failed (INVALID_STATE) or out of retries (MAX_RETRIES_EXCEEDED)
            InsufficientCredits: balance below the render cost; render stays failed
            UpstreamProviderError: provider refused the job; credits refunded
        """
        render = await self.get_render(db, render_id, user)
        self._check_retryable(render)

        # Consent and subject availability may have changed since the first attempt
        _, model_image = await self._resolve_subject(
            db, business_id, avatar_id=render.avatar_id, model_id=render.model_id
        )
        cost = settings.RENDER_CREDIT_COST
        now = utcnow()

        result = await db.execute(
            update(Render)
            .where(
                Render.id == render_id,
                Render.status == RenderStatus.FAILED.value,
                Render.retry_count < Render.max_retries,
            )
            .values(
                status=RenderStatus.PROCESSING.value,
                retry_count=Render.retry_count + 1,
                last_retry_at=now,
                credits_used=cost,
                provider_request_id=None,
                output_url=None,
                error_message=None,
                royalty_paid=0,
                completed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            await db.refresh(render)
            self._check_retryable(render)
            raise ValidationError("Render is not in failed state", code="INVALID_STATE")

        await self._debit(db, user.id, render_id, cost, reason="Render retry")
        await db.commit()
        await db.refresh(render)
        logger.info(f"Retrying render {render_id} (attempt {render.retry_count} of {render.max_retries})")

        await self._send_to_provider(db, render, model_image, client)
        return render

    @staticmethod
    def _check_retryable(render: Render) -> None:
        if render.status != RenderStatus.FAILED.value:
            raise ValidationError("Render is not in failed state", code="INVALID_STATE")
        if (render.retry_count or 0) >= (render.max_retries or 0):
            raise ValidationError("Maximum retry attempts reached", code="MAX_RETRIES_EXCEEDED")

    async def _mark_failed(self, db: AsyncSession, render_id: UUID, error_message: str) -> bool:
        """Fail an open render and refund its credits; False if it was already terminal"""
        now = utcnow()
        result = await db.execute(
            update(Render)
            .where(Render.id == render_id, Render.status.in_(OPEN_STATUSES))
            .values(status=RenderStatus.FAILED.value, error_message=error_message[:1000],
                    completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.commit()
            return False

        row = (await db.execute(select(Render.user_id, Render.credits_used).where(Render.id == render_id))).one()
        if row.credits_used:
            await credit_service.adjust_credits(
                db,
                row.user_id,
                row.credits_used,
                reason="Render failed",
                transaction_type=CreditTransactionType.REFUND,
                reference_id=str(render_id),
                commit=False,
            )
        await db.commit()
        logger.info(f"Render {render_id} failed, refunded {row.credits_used} credits")
        return True

    async def _mark_completed(self, db: AsyncSession, render: Render, output_url: Optional[str]) -> bool:
        """Complete an open render; human model renders credit the model's royalty once"""
        now = utcnow()
        royalty = Decimal(str(settings.MODEL_ROYALTY_PER_RENDER)) if render.model_id is not None else Decimal("0")
        result = await db.execute(
            update(Render)
            .where(Render.id == render.id, Render.status.in_(OPEN_STATUSES))
            .values(status=RenderStatus.COMPLETED.value, output_url=output_url, royalty_paid=royalty,
                    completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1 and render.model_id is not None:
            await db.execute(
                update(ModelProfile)
                .where(ModelProfile.id == render.model_id)
                .values(
                    total_generations=ModelProfile.total_generations + 1,
                    royalty_balance=ModelProfile.royalty_balance + royalty,
                )
                .execution_options(synchronize_session=False)
            )
        await db.commit()
        return result.rowcount == 1

    def _submission_stale(self, render: Render, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        started = render.updated_at or render.created_at
        return started <= now - timedelta(seconds=settings.RENDER_SUBMIT_TIMEOUT_SECONDS)

    async def get_render(self, db: AsyncSession, render_id: UUID, user: User, is_admin: bool = False) -> Render:
        render = await db.get(Render, render_id)
        if not render or (render.user_id != user.id and not is_admin):
            raise NotFound(f"Render {render_id} not found", code="RENDER_NOT_FOUND")
        return render

    async def refresh_status(
        self,
        db: AsyncSession,
        render_id: UUID,
        user: User,
        client: FashnClient,
        is_admin: bool = False,
    ) -> Render:
        """Poll the provider once and persist a terminal outcome if there is one"""
        render = await self.get_render(db, render_id, user, is_admin=is_admin)
        if render.status not in OPEN_STATUSES:
            return render

        if not render.provider_request_id:
            # Submission never recorded a prediction; nothing to poll
            if self._submission_stale(render):
                await self._mark_failed(db, render.id, "Submission did not complete")
                await db.refresh(render)
            return render

        try:
            async with client:
                status = await client.get_status(render.provider_request_id)
        except FashnAPIError as e:
            logger.error(f"Status poll failed for render {render_id}: {e}")
            raise UpstreamProviderError("FASHN", str(e))

        provider_status = status.get("status")
        if provider_status in SUCCESS_STATUSES:
            output = status.get("output") or []
            if await self._mark_completed(db, render, output[0] if output else None):
                logger.info(f"Render {render_id} completed")
        elif provider_status in FAILURE_STATUSES:
            error = status.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            await self._mark_failed(db, render.id, message or f"Prediction {provider_status}")

        await db.refresh(render)
        return render

    async def fail_stale_submissions(self, db: AsyncSession) -> int:
        """Fail and refund open renders whose submission never stored a prediction id"""
        cutoff = utcnow() - timedelta(seconds=settings.RENDER_SUBMIT_TIMEOUT_SECONDS)
        result = await db.execute(
            select(Render.id).where(
                Render.status.in_(OPEN_STATUSES),
                Render.provider_request_id.is_(None),
                Render.updated_at <= cutoff,
            )
        )
        failed = 0
        for render_id in result.scalars().all():
            if await self._mark_failed(db, render_id, "Submission did not complete"):
                failed += 1
        if failed:
            logger.info(f"Failed {failed} stale render submissions")
        return failed

    async def history(
        self, db: AsyncSession, user_id: UUID, limit: int = 20, skip: int = 0
    ) -> Tuple[List[Render], int]:
        total = (await db.execute(
            select(func.count()).select_from(Render).where(Render.user_id == user_id)
        )).scalar_one()
        result = await db.execute(
            select(Render)
            .where(Render.user_id == user_id)
            .order_by(Render.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars()), total

    # =========================================================================
    # MODEL DASHBOARD
    # =========================================================================

    async def model_stats(self, db: AsyncSession, model: ModelProfile) -> Dict[str, Any]:
        """Earnings and generation counts over the model's completed renders"""
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        completed = (Render.model_id == model.id, Render.status == RenderStatus.COMPLETED.value)

        totals = (await db.execute(
            select(func.count(), func.coalesce(func.sum(Render.royalty_paid), 0)).where(*completed)
        )).one()
        month_earnings = (await db.execute(
            select(func.coalesce(func.sum(Render.royalty_paid), 0))
            .where(*completed, Render.completed_at >= month_start)
        )).scalar_one()

        return {
            "total_earnings": Decimal(str(totals[1])),
            "this_month_earnings": Decimal(str(month_earnings)),
            "total_generations": totals[0],
            "pending_earnings": Decimal(str(model.royalty_balance or 0)),
        }

    async def model_generations(
        self, db: AsyncSession, model: ModelProfile, limit: int = 20, skip: int = 0
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Renders of this model, newest first, with the requesting business's name"""
        total = (await db.execute(
            select(func.count()).select_from(Render).where(Render.model_id == model.id)
        )).scalar_one()
        result = await db.execute(
            select(Render, BusinessProfile.business_name, User.first_name, User.last_name)
            .join(User, User.id == Render.user_id)
            .outerjoin(BusinessProfile, BusinessProfile.user_id == Render.user_id)
            .where(Render.model_id == model.id)
            .order_by(Render.created_at.desc())
            .offset(skip)
            .limit(limit)
        )

        generations = []
        for render, business_name, first_name, last_name in result.all():
            requester = business_name or " ".join(p for p in (first_name, last_name) if p) or None
            generations.append({
                "id": render.id,
                "status": render.status,
                "garment_image_url": render.garment_image_url,
                "output_url": render.output_url,
                "royalty_paid": render.royalty_paid or Decimal("0"),
                "requested_by": requester,
                "created_at": render.created_at,
                "completed_at": render.completed_at,
            })
        return generations, total


render_service = RenderService()
