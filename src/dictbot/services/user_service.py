"""User service for managing users, their uploads and activity log."""
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from dictbot.models.models import UploadedUnit, User, UserLog

# Configure logging
logger = logging.getLogger(__name__)


class UserService:
    """Service for managing user data."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get user by telegram ID."""
        return self.db.query(User).filter(User.telegram_id == telegram_id).first()

    def get_or_create_user(self, telegram_id: int, username: Optional[str] = None) -> User:
        """Get existing user or create a new one."""
        user = self.get_user_by_telegram_id(telegram_id)

        if not user:
            user = User(telegram_id=telegram_id, username=username)
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)

            self.log_user_activity(
                user.id,
                "User created",
                "INFO",
                "user_created",
            )

        return user

    def set_current_unit(self, user: User, unit_id: str) -> None:
        """Remember the unit the user studies."""
        if user.current_unit_id == unit_id:
            return
        user.current_unit_id = unit_id
        self.db.commit()

    def get_uploaded_units(self, user_id: int) -> List[UploadedUnit]:
        return (
            self.db.query(UploadedUnit)
            .filter(UploadedUnit.user_id == user_id)
            .order_by(UploadedUnit.id)
            .all()
        )

    def get_upload_payloads(self, user_id: int) -> List[Dict[str, Any]]:
        """Stored lesson documents of a user; unreadable rows are skipped."""
        payloads = []
        for upload in self.get_uploaded_units(user_id):
            try:
                payloads.append(json.loads(upload.payload))
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupt upload {upload.unit_id} of user {user_id}: {e}")
        return payloads

    def save_uploaded_unit(self, user_id: int, payload: Dict[str, Any]) -> UploadedUnit:
        """Store an uploaded lesson document, replacing one with the same unit id."""
        unit_id = str(payload["unit_id"])
        upload = (
            self.db.query(UploadedUnit)
            .filter(UploadedUnit.user_id == user_id, UploadedUnit.unit_id == unit_id)
            .first()
        )
        if not upload:
            upload = UploadedUnit(user_id=user_id, unit_id=unit_id)
            self.db.add(upload)
        upload.title = str(payload["unit_title"])
        upload.description = payload.get("unit_description")
        upload.payload = json.dumps(payload, ensure_ascii=False)
        self.db.commit()
        return upload

    def log_user_activity(
        self,
        user_id: int,
        message: str,
        level: str,
        category: str,
    ) -> None:
        """Log user activity."""
        logger.log(logging.getLevelName(level), f"Logging user activity: {message}")
        log = UserLog(
            user_id=user_id,
            message=message,
            level=level,
            category=category,
        )
        self.db.add(log)
        self.db.commit()
