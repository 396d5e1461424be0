"""Repository for registered Web Push endpoints."""

import logging
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session

from focusgrid.models.push import PushEndpoint
from focusgrid.models.timestamps import utcnow
from focusgrid.database.models import PushSubscriptionDB

logger = logging.getLogger(__name__)


class PushSubscriptionRepository:
    """Repository for push endpoints, keyed by (user_id, endpoint)."""

    def __init__(self, db: Session):
        self.db = db

    def upsert(
        self,
        user_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        *,
        user_agent: Optional[str] = None,
    ) -> PushEndpoint:
        """Register an endpoint, replacing keys if (user_id, endpoint) already exists."""
        row = (
            self.db.query(PushSubscriptionDB)
            .filter(PushSubscriptionDB.user_id == user_id, PushSubscriptionDB.endpoint == endpoint)
            .first()
        )
        now = utcnow()
        try:
            if row is None:
                row = PushSubscriptionDB(
                    user_id=user_id,
                    endpoint=endpoint,
                    p256dh=p256dh,
                    auth=auth,
                    user_agent=user_agent,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(row)
            else:
                row.p256dh = p256dh
                row.auth = auth
                row.user_agent = user_agent
                row.updated_at = now
            self.db.commit()
            self.db.refresh(row)
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to upsert push subscription for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def list_for_users(self, user_ids: Iterable[str]) -> Dict[str, List[PushEndpoint]]:
        """Endpoints grouped by owner, for every owner in `user_ids`."""
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = (
            self.db.query(PushSubscriptionDB)
            .filter(PushSubscriptionDB.user_id.in_(ids))
            .order_by(PushSubscriptionDB.created_at, PushSubscriptionDB.id)
            .all()
        )
        grouped: Dict[str, List[PushEndpoint]] = {}
        for row in rows:
            grouped.setdefault(row.user_id, []).append(row.to_pydantic())
        return grouped

    def _delete_where(self, description: str, *criteria) -> int:
        try:
            affected = self.db.query(PushSubscriptionDB).filter(*criteria).delete(synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete push subscription {description}: {type(e).__name__}: {str(e)}")
            raise
        return int(affected)

    def delete(self, subscription_id: str) -> int:
        """Delete one endpoint by row ID. Returns number of rows deleted (0 or 1)."""
        return self._delete_where(subscription_id, PushSubscriptionDB.id == subscription_id)

    def delete_for_user(self, user_id: str, endpoint: str) -> int:
        """Explicit unsubscribe of one endpoint for a user."""
        return self._delete_where(
            f"for user {user_id}",
            PushSubscriptionDB.user_id == user_id,
            PushSubscriptionDB.endpoint == endpoint,
        )
