"""Projects of an organization."""

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BackendError, ValidationError, error_message
from shared.models.project import PROJECT_PRIORITIES, PROJECT_STATUSES, Project, ProjectInput
from shared.models.session import AppSession

PROJECTS_TABLE = "projects"


class ProjectService:
    """
    CRUD over the ``projects`` table, scoped to the session's organization.

    ``do_fetch`` reports failures through ``error``; writes raise so the caller
    can keep its form open.
    """

    def __init__(self, helper_config: HelperConfig, backend_client: BackendClientInterface, session: AppSession) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session
        self.projects: list[Project] = []
        self.error: str | None = None

    def _validate(self, payload: ProjectInput) -> None:
        if payload.status is not None and payload.status not in PROJECT_STATUSES:
            raise ValidationError(f"Invalid project status '{payload.status}'")
        if payload.priority is not None and payload.priority not in PROJECT_PRIORITIES:
            raise ValidationError(f"Invalid project priority '{payload.priority}'")

    async def do_fetch(self) -> list[Project]:
        """Load all projects of the organization, newest first."""
        self.error = None
        query = TableQuery(table=PROJECTS_TABLE).eq("org_id", self._session.org_id).order_by("created_at", ascending=False)
        try:
            rows = await self._backend.do_select(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error loading projects: %s", e.message)
            self.error = error_message(e, "Failed to load projects")
            return self.projects
        self.projects = [Project.model_validate(row) for row in rows]
        return self.projects

    async def do_create(self, payload: ProjectInput) -> Project:
        """
        Create a project. Status defaults to "open", priority to "normal".

        Raises:
            ValidationError: If the name is empty or status/priority is unknown.
            BackendError: If the insert fails.
        """
        if not payload.name or not payload.name.strip():
            raise ValidationError("Project name is required")
        self._validate(payload)
        row = {
            "org_id": self._session.org_id,
            "created_by_user_id": self._session.user_id,
            "name": payload.name.strip(),
            "description": payload.description,
            "customer_name": payload.customer_name,
            "external_ref": payload.external_ref,
            "status": payload.status or "open",
            "priority": payload.priority or "normal",
            "due_date": payload.due_date.isoformat() if payload.due_date else None,
        }
        created = await self._backend.do_insert(PROJECTS_TABLE, row, access_token=self._session.access_token)
        project = Project.model_validate(created[0])
        self.projects.insert(0, project)
        self.logging.info("Created project '%s' (%s)", project.name, project.id)
        return project

    async def do_update(self, project_id: str, payload: ProjectInput) -> Project:
        """
        Apply the fields set on ``payload`` to one project.

        Raises:
            ValidationError: If status/priority is unknown.
            BackendError: If the update fails or the project does not exist in the organization.
        """
        self._validate(payload)
        patch = payload.model_dump(exclude_unset=True, mode="json")
        query = TableQuery(table=PROJECTS_TABLE).eq("id", project_id).eq("org_id", self._session.org_id)
        rows = await self._backend.do_update(query, patch, access_token=self._session.access_token)
        if not rows:
            raise BackendError(f"Project {project_id} not found", status_code=404)
        project = Project.model_validate(rows[0])
        self.projects = [project if p.id == project_id else p for p in self.projects]
        return project

    async def do_delete(self, project_id: str) -> None:
        query = TableQuery(table=PROJECTS_TABLE).eq("id", project_id).eq("org_id", self._session.org_id)
        await self._backend.do_delete(query, access_token=self._session.access_token)
        self.projects = [p for p in self.projects if p.id != project_id]
        self.logging.info("Deleted project %s", project_id)
