#!/usr/bin/env python3
"""
Google Cloud Tasks MCP Server

An MCP server that lets LLMs inspect and manage Google Cloud Tasks queues
and tasks across several projects and locations.

Each configured project is served by its own service-account credential,
loaded from ``<keys dir>/<project-id>.json``. Projects and their default
locations come from the GOOGLE_CLOUD_LOCATION_PROJECTS environment variable,
e.g. "us-east1:google-project-id1,us-central1:google-project-id2".
"""

import os
import sys
import json
import asyncio
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Optional, List, Dict, Any, Tuple, Union, Callable, Awaitable, NamedTuple, Type
from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError
from fastmcp import FastMCP
from fastmcp.tools.tool import Tool, ToolResult

# Google API imports
import httplib2
from google.auth.credentials import Credentials
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build

__version__ = "1.0.0"

# ==========================================
# CONFIGURATION
# ==========================================

# OAuth 2.0 scope for the Cloud Tasks API
SCOPES = ['https://www.googleapis.com/auth/cloud-platform']

LOCATION_PROJECTS_ENV = 'GOOGLE_CLOUD_LOCATION_PROJECTS'
KEYS_DIR_ENV = 'CLOUD_TASKS_KEYS_DIR'
LOG_LEVEL_ENV = 'CLOUD_TASKS_MCP_LOG_LEVEL'

DEFAULT_LOCATION = 'us-east1'

# Service account keys live next to the server unless overridden
DEFAULT_KEYS_DIR = Path(__file__).resolve().parent / 'keys'

PROJECT_REQUIRED_MESSAGE = (
    "Project ID is required. Provide it in the request or set "
    f"{LOCATION_PROJECTS_ENV} environment variable."
)

# Logging configuration (stderr only, stdout carries the MCP stream)
logging.basicConfig(
    level=getattr(logging, os.environ.get(LOG_LEVEL_ENV, 'INFO').upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def get_keys_dir() -> Path:
    """Directory holding one service account key per project"""
    override = os.environ.get(KEYS_DIR_ENV)
    return Path(override).expanduser() if override else DEFAULT_KEYS_DIR


class LocationProject(BaseModel):
    """A configured location:project pair"""
    model_config = ConfigDict(frozen=True)

    location: str
    project: str


def parse_location_projects(value: Optional[str]) -> List[LocationProject]:
    """Parse comma-separated location:project pairs.

    Tokens missing either half are dropped; order is preserved so the first
    pair names the default project.
    """
    if not value:
        return []

    pairs = []
    for token in value.split(','):
        parts = token.strip().split(':')
        location = parts[0].strip()
        project = parts[1].strip() if len(parts) > 1 else ''
        if location and project:
            pairs.append(LocationProject(location=location, project=project))
    return pairs


class RouterConfig(BaseModel):
    """Immutable routing table built once at startup"""
    model_config = ConfigDict(frozen=True)

    location_projects: Tuple[LocationProject, ...] = ()
    raw_value: Optional[str] = None

    @classmethod
    def from_value(cls, value: Optional[str]) -> "RouterConfig":
        return cls(location_projects=tuple(parse_location_projects(value)), raw_value=value)

    @classmethod
    def from_env(cls) -> "RouterConfig":
        return cls.from_value(os.environ.get(LOCATION_PROJECTS_ENV))

    @property
    def default_project(self) -> str:
        return self.location_projects[0].project if self.location_projects else ''

    def location_for(self, project: str) -> str:
        """Configured location of a project; the first matching pair wins"""
        for pair in self.location_projects:
            if pair.project == project:
                return pair.location
        return DEFAULT_LOCATION

    def unique_projects(self) -> List[str]:
        projects = []
        for pair in self.location_projects:
            if pair.project not in projects:
                projects.append(pair.project)
        return projects

# ==========================================
# PYDANTIC MODELS
# ==========================================

def _router(info: ValidationInfo) -> RouterConfig:
    context = info.context or {}
    return context.get('config') or RouterConfig()


class ProjectScope(BaseModel):
    """Input model for tools scoped to a project and location"""
    project: Optional[str] = Field(default=None, min_length=1, validate_default=True,
                                   description="Google Cloud project ID")
    location: Optional[str] = Field(default=None, min_length=1, validate_default=True,
                                    description="Google Cloud location")

    @field_validator('project')
    @classmethod
    def default_project(cls, v: Optional[str], info: ValidationInfo) -> str:
        if v is None:
            v = _router(info).default_project
        if not v:
            raise PydanticCustomError('project_required', PROJECT_REQUIRED_MESSAGE)
        return v

    @field_validator('location')
    @classmethod
    def default_location(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        project = info.data.get('project')
        if v is None and project:
            v = _router(info).location_for(project)
        return v


class QueueScope(ProjectScope):
    """Input model for tools acting on a single queue"""
    queue: str = Field(..., min_length=1, description="Name of the queue")


class TaskScope(QueueScope):
    """Input model for tools acting on a single task"""
    task: str = Field(..., min_length=1, description="Name or ID of the task")

# ==========================================
# RESOURCE PATHS
# ==========================================

def queue_parent(project: str, location: str) -> str:
    return f"projects/{project}/locations/{location}"


def queue_path(project: str, location: str, queue: str) -> str:
    return f"{queue_parent(project, location)}/queues/{queue}"


def task_parent(project: str, location: str, queue: str) -> str:
    return queue_path(project, location, queue)


def task_path(project: str, location: str, queue: str, task: str) -> str:
    return f"{task_parent(project, location, queue)}/tasks/{task}"

# ==========================================
# CLOUD TASKS CLIENT
# ==========================================

class CloudTasksClient:
    """Client for interacting with the Cloud Tasks v2 API for one project"""

    def __init__(self, project: str, service: Any, credentials: Optional[Credentials] = None):
        self.project = project
        self.service = service
        self.credentials = credentials

    def _queues(self):
        return self.service.projects().locations().queues()

    async def _execute(self, request: Any) -> Dict[str, Any]:
        """Run a request in a worker thread so the event loop keeps serving other calls"""
        if self.credentials is None:
            return await asyncio.to_thread(request.execute)
        # httplib2.Http is not thread-safe, so every threaded call gets its own
        http = AuthorizedHttp(self.credentials, http=httplib2.Http())
        return await asyncio.to_thread(request.execute, http=http)

    # --- Queue Operations ---

    async def list_queues(self, parent: str) -> List[Dict[str, Any]]:
        """List every queue under a location, following pagination"""
        try:
            queues_api = self._queues()
            request = queues_api.list(parent=parent)
            queues = []
            while request is not None:
                response = await self._execute(request)
                queues.extend(response.get('queues', []))
                request = queues_api.list_next(request, response)
            return queues
        except Exception as e:
            logger.error(f"Error listing queues under {parent}: {e}")
            raise

    async def get_queue(self, name: str) -> Dict[str, Any]:
        try:
            return await self._execute(self._queues().get(name=name))
        except Exception as e:
            logger.error(f"Error getting queue {name}: {e}")
            raise

    async def pause_queue(self, name: str) -> Dict[str, Any]:
        try:
            return await self._execute(self._queues().pause(name=name, body={}))
        except Exception as e:
            logger.error(f"Error pausing queue {name}: {e}")
            raise

    async def resume_queue(self, name: str) -> Dict[str, Any]:
        try:
            return await self._execute(self._queues().resume(name=name, body={}))
        except Exception as e:
            logger.error(f"Error resuming queue {name}: {e}")
            raise

    # --- Task Operations ---

    async def list_tasks(self, parent: str) -> List[Dict[str, Any]]:
        """List every task in a queue, following pagination"""
        try:
            tasks_api = self._queues().tasks()
            request = tasks_api.list(parent=parent)
            tasks = []
            while request is not None:
                response = await self._execute(request)
                tasks.extend(response.get('tasks', []))
                request = tasks_api.list_next(request, response)
            return tasks
        except Exception as e:
            logger.error(f"Error listing tasks in {parent}: {e}")
            raise

    async def get_task(self, name: str) -> Dict[str, Any]:
        try:
            return await self._execute(self._queues().tasks().get(name=name))
        except Exception as e:
            logger.error(f"Error getting task {name}: {e}")
            raise

    async def delete_task(self, name: str) -> bool:
        try:
            await self._execute(self._queues().tasks().delete(name=name))
            return True
        except Exception as e:
            logger.error(f"Error deleting task {name}: {e}")
            raise


def build_client(project: str, credentials_info: Dict[str, Any]) -> CloudTasksClient:
    """Build an authenticated Cloud Tasks client from a service account key"""
    credentials = service_account.Credentials.from_service_account_info(credentials_info, scopes=SCOPES)
    service = build('cloudtasks', 'v2', credentials=credentials, cache_discovery=False)
    return CloudTasksClient(project, service, credentials)

# ==========================================
# CLIENT REGISTRY
# ==========================================

class ClientNotFoundError(LookupError):
    """Raised when no client was initialized for a project"""


class CloudTasksRegistry:
    """Read-only map of project id to its authenticated client"""

    def __init__(self, clients: Dict[str, CloudTasksClient]):
        self._clients = MappingProxyType(dict(clients))

    @classmethod
    def from_config(
        cls,
        config: RouterConfig,
        keys_dir: Path,
        client_factory: Optional[Callable[[str, Dict[str, Any]], CloudTasksClient]] = None
    ) -> "CloudTasksRegistry":
        """Initialize one client per configured project with a key file.

        Projects without a usable key are logged and skipped.
        """
        client_factory = client_factory or build_client
        clients = {}
        seen = set()
        for pair in config.location_projects:
            project = pair.project
            if project in seen:
                logger.debug(f"Project {project} listed more than once, keeping the first entry")
                continue
            seen.add(project)

            key_path = Path(keys_dir) / f"{project}.json"
            if not key_path.exists():
                logger.warning(f"No credentials file found for project {project} at {key_path}")
                continue

            try:
                with open(key_path, 'r') as f:
                    credentials_info = json.load(f)
                clients[project] = client_factory(project, credentials_info)
                logger.info(f"Google Cloud Tasks client initialized successfully for project: {project}")
            except Exception as e:
                logger.error(f"Error initializing Google Cloud Tasks client for project {project}: {e}")

        return cls(clients)

    @property
    def initialized_projects(self) -> List[str]:
        return list(self._clients)

    def get_client(self, project: str) -> CloudTasksClient:
        try:
            return self._clients[project]
        except KeyError:
            raise ClientNotFoundError(f"No Cloud Tasks client initialized for project: {project}") from None

# ==========================================
# RESULTS & RESPONSE FORMATTING
# ==========================================

class Ok(NamedTuple):
    """Successful tool result"""
    value: Any


class Err(NamedTuple):
    """Failed tool result, reported to the caller as payload content"""
    error: str
    message: Optional[str] = None
    details: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {'error': self.error}
        if self.message is not None:
            payload['message'] = self.message
        if self.details is not None:
            payload['details'] = self.details
        return payload


Result = Union[Ok, Err]


def format_result(result: Result) -> str:
    """Serialize a result the same way for every tool"""
    payload = result.to_payload() if isinstance(result, Err) else result.value
    return json.dumps(payload, indent=2)


def validate_arguments(schema: Type[BaseModel], arguments: Optional[Dict[str, Any]], config: RouterConfig) -> Result:
    """Validate raw tool arguments, returning the normalized model or field errors"""
    try:
        return Ok(schema.model_validate(arguments or {}, context={'config': config}))
    except ValidationError as e:
        details = ", ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        return Err("Invalid arguments", details=details)

# ==========================================
# TOOL DISPATCHER
# ==========================================

Handler = Callable[[Any], Awaitable[Result]]


class Dispatcher:
    """Routes tool calls by name to validated handlers"""

    def __init__(self, config: RouterConfig, registry: CloudTasksRegistry):
        self.config = config
        self.registry = registry
        self._routes: Dict[str, Tuple[Optional[Type[BaseModel]], Handler]] = {
            "listQueues": (ProjectScope, self.list_queues),
            "getQueue": (QueueScope, self.get_queue),
            "pauseQueue": (QueueScope, self.pause_queue),
            "resumeQueue": (QueueScope, self.resume_queue),
            "listTasks": (QueueScope, self.list_tasks),
            "getTask": (TaskScope, self.get_task),
            "deleteTask": (TaskScope, self.delete_task),
            "listLocationProjects": (None, self.list_location_projects),
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._routes)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Run a tool and return its JSON text; never raises"""
        route = self._routes.get(name)
        if route is None:
            return format_result(Err("Unknown tool", f"Unknown tool: {name}"))

        schema, handler = route
        try:
            if schema is None:
                result = await handler(arguments)
            else:
                result = validate_arguments(schema, arguments, self.config)
                if isinstance(result, Ok):
                    result = await handler(result.value)
        except Exception as e:
            logger.exception(f"Unexpected error in tool {name}")
            result = Err("Internal server error", str(e))
        return format_result(result)

    async def _remote(
        self,
        label: str,
        project: str,
        operation: Callable[[CloudTasksClient], Awaitable[Any]]
    ) -> Result:
        try:
            client = self.registry.get_client(project)
            return Ok(await operation(client))
        except Exception as e:
            return Err(label, str(e))

    # --- Queue Handlers ---

    async def list_queues(self, args: ProjectScope) -> Result:
        parent = queue_parent(args.project, args.location)
        return await self._remote(
            "Failed to list queues", args.project,
            lambda client: client.list_queues(parent)
        )

    async def get_queue(self, args: QueueScope) -> Result:
        name = queue_path(args.project, args.location, args.queue)
        return await self._remote(
            "Queue not found or access denied", args.project,
            lambda client: client.get_queue(name)
        )

    async def pause_queue(self, args: QueueScope) -> Result:
        name = queue_path(args.project, args.location, args.queue)

        async def pause(client: CloudTasksClient) -> Dict[str, Any]:
            # Confirm the queue exists before mutating it
            await client.get_queue(name)
            paused = await client.pause_queue(name)
            return {"message": f"Queue {args.queue} paused successfully", "state": paused.get('state')}

        return await self._remote("Failed to pause queue", args.project, pause)

    async def resume_queue(self, args: QueueScope) -> Result:
        name = queue_path(args.project, args.location, args.queue)

        async def resume(client: CloudTasksClient) -> Dict[str, Any]:
            await client.get_queue(name)
            resumed = await client.resume_queue(name)
            return {"message": f"Queue {args.queue} resumed successfully", "state": resumed.get('state')}

        return await self._remote("Failed to resume queue", args.project, resume)

    # --- Task Handlers ---

    async def list_tasks(self, args: QueueScope) -> Result:
        parent = task_parent(args.project, args.location, args.queue)
        return await self._remote(
            "Failed to list tasks", args.project,
            lambda client: client.list_tasks(parent)
        )

    async def get_task(self, args: TaskScope) -> Result:
        name = task_path(args.project, args.location, args.queue, args.task)
        return await self._remote(
            "Task not found or access denied", args.project,
            lambda client: client.get_task(name)
        )

    async def delete_task(self, args: TaskScope) -> Result:
        name = task_path(args.project, args.location, args.queue, args.task)

        async def delete(client: CloudTasksClient) -> Dict[str, Any]:
            await client.delete_task(name)
            return {"success": True, "message": f"Task {args.task} deleted successfully from queue {args.queue}"}

        return await self._remote("Failed to delete task", args.project, delete)

    # --- Introspection ---

    async def list_location_projects(self, _arguments: Any) -> Result:
        return Ok({
            "locationProjects": [pair.model_dump() for pair in self.config.location_projects],
            "defaultProject": self.config.default_project,
            "defaultLocation": DEFAULT_LOCATION,
            "initializedProjects": self.registry.initialized_projects,
            "currentEnv": self.config.raw_value or "Not set",
        })

# ==========================================
# MCP SERVER IMPLEMENTATION
# ==========================================

PROJECT_PROPERTY = {
    "type": "string",
    "description": f"Google Cloud project ID (defaults to first project from {LOCATION_PROJECTS_ENV} env var)"
}
LOCATION_PROPERTY = {
    "type": "string",
    "description": f"Google Cloud location (defaults to location from {LOCATION_PROJECTS_ENV} or '{DEFAULT_LOCATION}')"
}


def _input_schema(required: Tuple[str, ...] = (), **properties: Dict[str, Any]) -> Dict[str, Any]:
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


def _scoped_schema(required: Tuple[str, ...] = (), **properties: str) -> Dict[str, Any]:
    """Schema for a Cloud Tasks tool: project/location plus the given string fields"""
    fields = {name: {"type": "string", "description": description} for name, description in properties.items()}
    return _input_schema(required, project=dict(PROJECT_PROPERTY), location=dict(LOCATION_PROPERTY), **fields)


# Discovery only: arguments are enforced by the request validators
TOOL_CATALOG: Dict[str, Tuple[str, Dict[str, Any]]] = {
    "listQueues": (
        "List all Cloud Tasks queues in a specified location",
        _scoped_schema(),
    ),
    "getQueue": (
        "Get details of a specific Cloud Tasks queue",
        _scoped_schema(("queue",), queue="Name of the queue"),
    ),
    "pauseQueue": (
        "Pause a Cloud Tasks queue",
        _scoped_schema(("queue",), queue="Name of the queue to pause"),
    ),
    "resumeQueue": (
        "Resume a paused Cloud Tasks queue",
        _scoped_schema(("queue",), queue="Name of the queue to resume"),
    ),
    "listTasks": (
        "List tasks in a Cloud Tasks queue",
        _scoped_schema(("queue",), queue="Name of the queue"),
    ),
    "getTask": (
        "Get details of a specific task in a Cloud Tasks queue",
        _scoped_schema(("queue", "task"), queue="Name of the queue", task="Name or ID of the task"),
    ),
    "deleteTask": (
        "Delete a task from a Cloud Tasks queue",
        _scoped_schema(("queue", "task"), queue="Name of the queue", task="Name or ID of the task to delete"),
    ),
    "listLocationProjects": (
        "List all available location:project pairs that have been configured",
        _input_schema(),
    ),
}


class DispatchedTool(Tool):
    """MCP tool that hands its raw arguments to the dispatcher"""

    dispatch: Callable[[str, Optional[Dict[str, Any]]], Awaitable[str]] = Field(exclude=True)

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        return ToolResult(content=await self.dispatch(self.name, arguments))


def create_server(config: RouterConfig, registry: CloudTasksRegistry) -> FastMCP:
    """Build the MCP server with every Cloud Tasks tool bound to the registry"""
    mcp = FastMCP(
        "cloudtasks",
        instructions="Inspect and manage Google Cloud Tasks queues and tasks across configured projects",
        version=__version__
    )
    dispatcher = Dispatcher(config, registry)

    for name, (description, parameters) in TOOL_CATALOG.items():
        mcp.add_tool(DispatchedTool(
            name=name,
            description=description,
            parameters=parameters,
            dispatch=dispatcher.call_tool
        ))

    return mcp


# ==========================================
# MAIN ENTRY POINT
# ==========================================

def main() -> None:
    config = RouterConfig.from_env()
    if not config.location_projects:
        logger.warning(f"{LOCATION_PROJECTS_ENV} environment variable is not set")

    registry = CloudTasksRegistry.from_config(config, get_keys_dir())
    if not registry.initialized_projects:
        logger.error("Failed to initialize any Google Cloud Tasks clients. Exiting.")
        sys.exit(1)

    mcp = create_server(config, registry)
    logger.info("Cloud Tasks MCP Server running on stdio")
    try:
        mcp.run()
    except Exception as e:
        logger.error(f"Error during startup: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
