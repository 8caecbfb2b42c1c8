"""
Project Service - Content project store consumed by the worker.

The worker only reads project existence and writes the vendor task/folder
ids, the clips folder and the clips task progress. Everything else about a
project belongs to the UI handlers.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from clipworker.database import ProjectRecord

logger = logging.getLogger(__name__)

DEFAULT_FOLDERS = ("clips", "images", "social", "blog")

# Columns the worker is allowed to write
UPDATABLE_FIELDS = {"title", "klap_task_id", "klap_folder_id", "folders", "tasks"}


class ProjectNotFoundError(Exception):
    """Raised when a project no longer exists."""

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


def _to_dict(record: ProjectRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "title": record.title,
        "klap_task_id": record.klap_task_id,
        "klap_folder_id": record.klap_folder_id,
        "folders": copy.deepcopy(record.folders) or {name: [] for name in DEFAULT_FOLDERS},
        "tasks": copy.deepcopy(record.tasks) or [],
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


class ProjectService:
    """SQL-backed project collaborator."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_project(self, project_id: str, title: Optional[str] = None) -> dict[str, Any]:
        """Create a project with empty folders and a pending clips task."""
        with self._session_factory.begin() as session:
            record = ProjectRecord(
                id=project_id,
                title=title,
                folders={name: [] for name in DEFAULT_FOLDERS},
                tasks=[{"type": "clips", "status": "pending", "progress": 0}],
            )
            session.add(record)
            session.flush()
            return _to_dict(record)

    def get_project(self, project_id: str) -> Optional[dict[str, Any]]:
        with self._session_factory() as session:
            record = session.get(ProjectRecord, project_id)
            return _to_dict(record) if record else None

    def project_exists(self, project_id: str) -> bool:
        return self.get_project(project_id) is not None

    def delete_project(self, project_id: str) -> bool:
        with self._session_factory.begin() as session:
            record = session.get(ProjectRecord, project_id)
            if record is None:
                return False
            session.delete(record)
        return True

    def update_project(self, project_id: str, **fields: Any) -> dict[str, Any]:
        """
        Overwrite the given fields of a project.

        Raises:
            ProjectNotFoundError: If the project no longer exists
            ValueError: If a field is not writable
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown project fields: {sorted(unknown)}")

        with self._session_factory.begin() as session:
            record = session.get(ProjectRecord, project_id)
            if record is None:
                raise ProjectNotFoundError(project_id)
            for key, value in fields.items():
                setattr(record, key, value)
            record.updated_at = datetime.utcnow()
            return _to_dict(record)

    def update_task_progress(
        self,
        project_id: str,
        task_type: str,
        progress: int,
        status: Optional[str] = None,
    ) -> None:
        """
        Update one processing task of a project.

        Missing projects are ignored; a missing task entry is created.
        """
        with self._session_factory.begin() as session:
            record = session.get(ProjectRecord, project_id)
            if record is None:
                logger.debug(f"Project {project_id} gone, skipping {task_type} task progress")
                return

            tasks = copy.deepcopy(record.tasks) or []
            task = next((t for t in tasks if t.get("type") == task_type), None)
            if task is None:
                task = {"type": task_type, "status": "pending", "progress": 0}
                tasks.append(task)

            now = datetime.utcnow().isoformat()
            task["progress"] = progress
            if status:
                task["status"] = status
            if status == "processing" and not task.get("started_at"):
                task["started_at"] = now
            if status == "completed":
                task["completed_at"] = now

            # Reassign so the JSON column is flagged dirty
            record.tasks = tasks
            record.updated_at = datetime.utcnow()
