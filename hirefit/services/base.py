import logging
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class BaseService:
    """
    Base class for services bound to one SQLAlchemy session.
    Services own their transactions; callers never commit on their behalf.
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
