import pytest
from unittest.mock import Mock, AsyncMock

from flooring_crm.models import Project, ProjectTask
from flooring_crm.services.projects import (
    ProjectNotFoundError,
    ProjectService,
    compute_progress,
    filter_projects,
)


def _task(task_id, status='pending'):
    return ProjectTask(id=task_id, title=f"Task {task_id}", status=status)


class TestProjectHelpers:
    """Unit tests for progress and filtering"""

    def test_compute_progress(self):
        assert compute_progress([]) == 0
        assert compute_progress([_task('1', 'completed'), _task('2')]) == 50
        assert compute_progress([_task('1', 'completed'), _task('2'), _task('3')]) == 33
        assert compute_progress([_task('1', 'completed'), _task('2', 'completed')]) == 100

    def test_filter_projects(self):
        projects = [
            Project(id='p1', title='Smith kitchen', clientId='c1', clientName='John Smith', status='scheduled'),
            Project(id='p2', title='Lobby refinish', clientId='c2', clientName='ABC Corp', status='in_progress'),
        ]

        assert filter_projects(projects) == projects
        assert filter_projects(projects, status='all') == projects
        assert [p.id for p in filter_projects(projects, status='in_progress')] == ['p2']
        assert [p.id for p in filter_projects(projects, search='smith')] == ['p1']
        assert [p.id for p in filter_projects(projects, search='abc')] == ['p2']
        assert filter_projects(projects, status='completed', search='smith') == []

    def test_progress_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            Project(id='p1', title='x', clientId='c1', progress=120)


class TestProjectService:
    """Unit tests for ProjectService"""

    @pytest.fixture
    def records(self):
        return {
            'p1': {
                'id': 'p1', 'title': 'Smith kitchen', 'clientId': 'c1', 'clientName': 'John Smith',
                'status': 'scheduled', 'tasks': [],
            },
        }

    @pytest.fixture
    def store(self, records):
        mock = Mock()

        async def get_project(project_id):
            return records.get(project_id)

        async def save_project(project):
            records[project['id']] = project
            return {'success': True, 'data': project}

        mock.get_project = AsyncMock(side_effect=get_project)
        mock.save_project = AsyncMock(side_effect=save_project)
        mock.list_projects = AsyncMock(side_effect=lambda: list(records.values()))
        return mock

    @pytest.fixture
    def service(self, store):
        return ProjectService(store)

    @pytest.mark.asyncio
    async def test_get_project_missing(self, service):
        with pytest.raises(ProjectNotFoundError):
            await service.get_project('missing')

    @pytest.mark.asyncio
    async def test_create_project(self, service, records):
        project = await service.create_project({'title': 'Lobby', 'clientId': 'c2'})

        assert project.id in records
        assert project.status == 'scheduled'
        assert project.progress == 0

    @pytest.mark.asyncio
    async def test_create_project_save_failure(self, service, store):
        store.save_project.side_effect = None
        store.save_project.return_value = {'success': False, 'error': 'db down'}

        with pytest.raises(RuntimeError):
            await service.create_project({'title': 'Lobby', 'clientId': 'c2'})

    @pytest.mark.asyncio
    async def test_add_task_sequential_ids(self, service):
        first = await service.add_task('p1', 'Remove carpet')
        second = await service.add_task('p1', 'Lay underlayment', assigned_to='Mike')

        assert first.id == '1'
        assert second.id == '2'
        assert second.assignedTo == 'Mike'
        assert second.status == 'pending'

    @pytest.mark.asyncio
    async def test_add_task_requires_title(self, service):
        with pytest.raises(ValueError):
            await service.add_task('p1', '   ')

    @pytest.mark.asyncio
    async def test_update_task_status_progress(self, service):
        await service.add_task('p1', 'Remove carpet')
        await service.add_task('p1', 'Install')

        project = await service.update_task_status('p1', '1', 'completed')

        assert project.progress == 50
        assert project.status == 'in_progress'

    @pytest.mark.asyncio
    async def test_all_tasks_completed_completes_project(self, service):
        await service.add_task('p1', 'Remove carpet')
        await service.add_task('p1', 'Install')
        await service.update_task_status('p1', '1', 'completed')

        project = await service.update_task_status('p1', '2', 'completed')

        assert project.progress == 100
        assert project.status == 'completed'

    @pytest.mark.asyncio
    async def test_update_unknown_task(self, service):
        with pytest.raises(ProjectNotFoundError):
            await service.update_task_status('p1', '99', 'completed')

    @pytest.mark.asyncio
    async def test_delete_task(self, service):
        await service.add_task('p1', 'Remove carpet')
        await service.add_task('p1', 'Install')
        await service.update_task_status('p1', '2', 'completed')

        project = await service.delete_task('p1', '1')

        assert [t.id for t in project.tasks] == ['2']
        assert project.progress == 100

        with pytest.raises(ProjectNotFoundError):
            await service.delete_task('p1', '1')

    @pytest.mark.asyncio
    async def test_set_status_and_list(self, service):
        await service.set_status('p1', 'on_hold')

        on_hold = await service.list_projects(status='on_hold')
        assert [p.id for p in on_hold] == ['p1']
        assert await service.list_projects(status='completed') == []
