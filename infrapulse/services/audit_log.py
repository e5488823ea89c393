import logging
from typing import Optional, Dict, Any
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.models.audit_log import AuditLog, AuditAction, AuditResourceType, AuditStatus
from infrapulse.schemas.auth import Actor

logger = logging.getLogger(__name__)

class AuditLogService:
    """Audit trail of user-initiated writes"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_log(
        self,
        action: AuditAction,
        operator_id: Optional[int] = None,
        operator_username: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[int] = None,
        resource_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
    ) -> AuditLog:
        """
        Persist one audit entry.

        :param action: audited operation
        :param operator_id: acting user, None for system actions
        :param resource_type: user, server, alert...
        :param details: JSON-serialisable parameters of the operation
        :param status: success or failed
        :return: the stored entry
        """
        audit_log = AuditLog(
            action=action,
            status=status,
            operator_id=operator_id,
            operator_username=operator_username,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            details=details,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:255] or None,
        )

        try:
            self.db.add(audit_log)
            await self.db.commit()
            await self.db.refresh(audit_log)
            logger.info(
                f"Audit log recorded: action={action.value}, operator={operator_username}, "
                f"resource={resource_type}:{resource_id}, status={status.value}"
            )
            return audit_log
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to write audit log: {str(e)}", exc_info=True)
            raise

    async def log_action(
        self,
        actor: Actor,
        action: AuditAction,
        resource_type: AuditResourceType,
        resource_id: Optional[int] = None,
        resource_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Record a successful action. A failing audit write never fails the request."""
        try:
            return await self.create_log(
                action=action,
                operator_id=actor.id,
                operator_username=actor.username,
                resource_type=resource_type.value,
                resource_id=resource_id,
                resource_name=resource_name,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except Exception as e:
            logger.warning(f"Audit log for {action.value} not recorded: {e}")
            return None

    async def log_login(
        self,
        username: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[int] = None,
        success: bool = True,
    ) -> AuditLog:
        return await self.create_log(
            action=AuditAction.LOGIN if success else AuditAction.LOGIN_FAILED,
            operator_id=user_id,
            operator_username=username,
            resource_type=AuditResourceType.USER.value,
            resource_id=user_id,
            resource_name=username,
            ip_address=ip_address,
            user_agent=user_agent,
            status=AuditStatus.SUCCESS if success else AuditStatus.FAILED,
        )

    async def get_logs(
        self,
        skip: int = 0,
        limit: int = 100,
        action: Optional[AuditAction] = None,
        operator_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> tuple[list[AuditLog], int]:
        """Filtered audit entries newest first, plus the total match count"""
        conditions = []
        if action:
            conditions.append(AuditLog.action == action)
        if operator_id:
            conditions.append(AuditLog.operator_id == operator_id)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)
        if start_date:
            conditions.append(AuditLog.created_at >= start_date)
        if end_date:
            conditions.append(AuditLog.created_at <= end_date)

        total_result = await self.db.execute(select(func.count(AuditLog.id)).where(*conditions))
        total = int(total_result.scalar_one())

        stmt = (
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total
