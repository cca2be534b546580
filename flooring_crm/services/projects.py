import logging
import uuid
from typing import Any, Dict, List, Optional

from flooring_crm.models import Project, ProjectTask, ProjectStatus, TaskStatus

logger = logging.getLogger(__name__)


class ProjectNotFoundError(LookupError):
    pass


def compute_progress(tasks: List[ProjectTask]) -> int:
    if not tasks:
        return 0
    completed = sum(1 for task in tasks if task.status == 'completed')
    return round(100 * completed / len(tasks))


def filter_projects(projects: List[Project], status: Optional[str] = None,
                    search: Optional[str] = None) -> List[Project]:
    """Filter by status ('all' or None keeps everything) and title/client search term"""
    term = (search or '').strip().lower()
    matches = []
    for project in projects:
        if status and status != 'all' and project.status != status:
            continue
        if term and term not in project.title.lower() and term not in project.clientName.lower():
            continue
        matches.append(project)
    return matches


class ProjectService:
    """Project and task management on top of the CRM store"""

    def __init__(self, store):
        self.store = store

    async def get_project(self, project_id: str) -> Project:
        record = await self.store.get_project(project_id)
        if not record:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return Project(**record)

    async def list_projects(self, status: Optional[str] = None, search: Optional[str] = None) -> List[Project]:
        records = await self.store.list_projects()
        return filter_projects([Project(**r) for r in records], status=status, search=search)

    async def _save(self, project: Project) -> Project:
        project.progress = compute_progress(project.tasks)
        result = await self.store.save_project(project.model_dump())
        if not result.get('success'):
            raise RuntimeError(result.get('error') or 'Failed to save project')
        return project

    async def create_project(self, data: Dict[str, Any]) -> Project:
        project = Project(**{'id': str(uuid.uuid4()), 'tasks': [], **data})
        project = await self._save(project)
        logger.info(f"📁 Project created: {project.id} ({project.title})")
        return project

    async def add_task(self, project_id: str, title: str, assigned_to: str = "", due_date: str = "") -> ProjectTask:
        if not title or not title.strip():
            raise ValueError("Task title is required")

        project = await self.get_project(project_id)
        existing_ids = [int(t.id) for t in project.tasks if t.id.isdigit()]
        task = ProjectTask(
            id=str(max(existing_ids, default=0) + 1),
            title=title.strip(),
            status='pending',
            assignedTo=assigned_to,
            dueDate=due_date,
        )
        project.tasks.append(task)
        await self._save(project)
        logger.info(f"📝 Task {task.id} added to project {project_id}")
        return task

    async def update_task_status(self, project_id: str, task_id: str, status: TaskStatus) -> Project:
        project = await self.get_project(project_id)
        for task in project.tasks:
            if task.id == task_id:
                task.status = status
                break
        else:
            raise ProjectNotFoundError(f"Task {task_id} not found in project {project_id}")

        if project.tasks and all(t.status == 'completed' for t in project.tasks):
            project.status = 'completed'
        elif status != 'pending' and project.status == 'scheduled':
            project.status = 'in_progress'

        return await self._save(project)

    async def set_status(self, project_id: str, status: ProjectStatus) -> Project:
        project = await self.get_project(project_id)
        project.status = status
        return await self._save(project)

    async def delete_task(self, project_id: str, task_id: str) -> Project:
        project = await self.get_project(project_id)
        remaining = [t for t in project.tasks if t.id != task_id]
        if len(remaining) == len(project.tasks):
            raise ProjectNotFoundError(f"Task {task_id} not found in project {project_id}")
        project.tasks = remaining
        return await self._save(project)
