"""
Candidate resume library: files attached directly to a candidate rather than
uploaded against a job. They are stored as `pending` and wait for a later
scoring run. Each candidate has at most one primary resume; the first upload
takes the role.
"""
import logging
from typing import List, Tuple

from sqlalchemy import exists, update
from sqlalchemy.orm import Session, aliased, selectinload

from hirefit.core.exceptions import NotFoundError
from hirefit.models.candidate import Candidate
from hirefit.models.resume import ProcessingStatus, Resume
from hirefit.schemas.resume import UploadedFile
from hirefit.services.base import BaseService
from hirefit.services.document_parser import get_extension, validate_file
from hirefit.services.storage import LocalBlobStore, build_candidate_storage_path

logger = logging.getLogger(__name__)


class ResumeService(BaseService):
    def __init__(self, db: Session, blob_store: LocalBlobStore):
        super().__init__(db)
        self.blob_store = blob_store

    def _get_candidate(self, tenant_id: int, candidate_id: int) -> Candidate:
        candidate = (
            self.db.query(Candidate)
            .filter(Candidate.id == candidate_id, Candidate.tenant_id == tenant_id)
            .first()
        )
        if not candidate:
            raise NotFoundError("Candidate not found")
        return candidate

    def upload(self, tenant_id: int, user_id: int, candidate_id: int, file: UploadedFile) -> Resume:
        validate_file(file.file_type, file.size)
        self._get_candidate(tenant_id, candidate_id)

        storage_path = build_candidate_storage_path(tenant_id, candidate_id, get_extension(file.file_type))
        self.blob_store.write(storage_path, file.content)

        resume = Resume(
            tenant_id=tenant_id,
            candidate_id=candidate_id,
            uploaded_by_id=user_id,
            original_file_name=file.original_file_name,
            storage_path=storage_path,
            file_type=file.file_type,
            file_size_bytes=file.size,
            processing_status=ProcessingStatus.pending,
            is_primary=False,
        )
        self.db.add(resume)
        self.db.flush()

        # Primary only if the candidate has none yet
        other = aliased(Resume)
        self.db.execute(
            update(Resume)
            .where(
                Resume.id == resume.id,
                ~exists().where(
                    other.candidate_id == candidate_id,
                    other.is_primary.is_(True),
                    other.id != resume.id,
                ),
            )
            .values(is_primary=True)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        self.db.refresh(resume)

        logger.info(f"Uploaded resume {resume.id} for candidate {candidate_id} (primary={resume.is_primary})")
        return resume

    def list_for_candidate(self, tenant_id: int, candidate_id: int) -> List[Resume]:
        self._get_candidate(tenant_id, candidate_id)
        return (
            self.db.query(Resume)
            .options(selectinload(Resume.scores))
            .filter(Resume.tenant_id == tenant_id, Resume.candidate_id == candidate_id)
            .order_by(Resume.uploaded_at.desc(), Resume.id.desc())
            .all()
        )

    def get(self, tenant_id: int, candidate_id: int, resume_id: int) -> Resume:
        resume = (
            self.db.query(Resume)
            .filter(
                Resume.id == resume_id,
                Resume.tenant_id == tenant_id,
                Resume.candidate_id == candidate_id,
            )
            .first()
        )
        if not resume:
            raise NotFoundError("Resume not found")
        return resume

    def read_file(self, tenant_id: int, candidate_id: int, resume_id: int) -> Tuple[Resume, bytes]:
        resume = self.get(tenant_id, candidate_id, resume_id)
        return resume, self.blob_store.read(resume.storage_path)

    def set_primary(self, tenant_id: int, candidate_id: int, resume_id: int) -> Resume:
        resume = self.get(tenant_id, candidate_id, resume_id)

        self.db.execute(
            update(Resume)
            .where(
                Resume.candidate_id == candidate_id,
                Resume.is_primary.is_(True),
                Resume.id != resume_id,
            )
            .values(is_primary=False)
            .execution_options(synchronize_session=False)
        )
        resume.is_primary = True
        self._commit()
        self.db.refresh(resume)

        logger.info(f"Resume {resume_id} is now primary for candidate {candidate_id}")
        return resume

    def delete(self, tenant_id: int, candidate_id: int, resume_id: int) -> None:
        """Delete the row, its scores and its file. The newest remaining resume inherits primary."""
        resume = self.get(tenant_id, candidate_id, resume_id)
        was_primary = resume.is_primary
        storage_path = resume.storage_path

        self.db.delete(resume)
        self.db.flush()

        if was_primary:
            successor = (
                self.db.query(Resume)
                .filter(Resume.tenant_id == tenant_id, Resume.candidate_id == candidate_id)
                .order_by(Resume.uploaded_at.desc(), Resume.id.desc())
                .first()
            )
            if successor:
                successor.is_primary = True
        self._commit()

        if not self.blob_store.delete(storage_path):
            logger.warning(f"Resume {resume_id} had no stored file at {storage_path}")
        logger.info(f"Deleted resume {resume_id} for candidate {candidate_id}")
