"""
Web server for the folder hierarchy.

Provides a REST API for browsing folder contents on behalf of a principal.
The caller is identified by the ``X-Principal-Id`` header; authentication
itself happens in front of this service.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, TypeVar

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import FolderServerConfig
from .exceptions import FolderServerError, HierarchyError, RepositoryError, ValidationError
from .models import NodeListResponse, Principal
from .paging import link_header
from .store import FolderStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Pydantic models for API
class NodeModel(BaseModel):
    id: str
    node_type: str
    name: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    parent_id: Optional[str] = None
    created_on: str
    modified_on: str


class FolderModel(NodeModel):
    path: str
    is_root: bool


class ListRequestModel(BaseModel):
    node_types: List[str]
    sort: List[str]
    limit: int
    offset: int


class PagingModel(BaseModel):
    first: Optional[str] = None
    prev: Optional[str] = None
    next: Optional[str] = None
    last: Optional[str] = None


class FolderContentsResponse(BaseModel):
    request: ListRequestModel
    total_count: int
    current_offset: int
    resources: List[NodeModel]
    path_info: List[FolderModel]
    paging: PagingModel


class IndexResponse(BaseModel):
    server_name: str
    server_description: str
    version: str


class UserModel(BaseModel):
    id: str
    display_name: str
    email: Optional[str] = None
    is_admin: bool


class UsersResponse(BaseModel):
    users: List[UserModel]


class AccessibleNodesResponse(BaseModel):
    accessible_nodes: Dict[str, str]


# Global store instance
_store: Optional[FolderStore] = None
_index: Optional[IndexResponse] = None


def get_store() -> FolderStore:
    """Get the current store instance."""
    if _store is None:
        raise HTTPException(status_code=500, detail="Folder store not initialized")
    return _store


def init_store(store_path: Path, config: Optional[FolderServerConfig] = None):
    """Open the store the app serves."""
    set_store(FolderStore.open(store_path, config))


def set_store(store: FolderStore):
    """Set the store instance directly (for testing)."""
    global _store, _index
    _store = store
    _index = None


def create_app(store_path: Path, config: Optional[FolderServerConfig] = None) -> FastAPI:
    """Create FastAPI application with initialized store."""
    init_store(store_path, config)
    return app


def get_principal(x_principal_id: Optional[str] = Header(None, alias="X-Principal-Id")) -> Principal:
    """Resolve the calling principal from the request header."""
    principal_id = (x_principal_id or "").strip()
    if not principal_id:
        raise HTTPException(status_code=401, detail="Missing X-Principal-Id header")
    principal = get_store().principal(principal_id)
    if principal is None:
        raise HTTPException(status_code=401, detail=f"Unknown principal: {principal_id}")
    return principal


def _call(operation: Callable[[], T]) -> T:
    """Run a store operation, mapping engine errors to HTTP errors."""
    try:
        return operation()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HierarchyError as e:
        logger.error(f"Folder hierarchy error: {e}")
        raise HTTPException(status_code=500, detail=f"Folder hierarchy error: {e}")
    except RepositoryError as e:
        raise HTTPException(status_code=500, detail=f"Storage error: {e}")
    except FolderServerError as e:
        raise HTTPException(status_code=500, detail=str(e))


def _contents_response(result: Optional[NodeListResponse], response: Response) -> dict:
    if result is None:
        raise HTTPException(status_code=404, detail="Folder not found")
    header = link_header(result.paging)
    if header:
        response.headers["Link"] = header
    return result.to_dict()


# Create FastAPI app
app = FastAPI(
    title="Folder Server",
    description="Folder hierarchy and content resolution",
    version=__version__,
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    """Malformed query parameters are client errors like any other."""
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.get("/", response_model=IndexResponse)
async def index():
    """Static description of this server."""
    global _index
    if _index is None:
        server = get_store().config.server
        _index = IndexResponse(
            server_name=server.server_name,
            server_description=server.server_description,
            version=__version__,
        )
    return _index


@app.get("/folders/contents", response_model=FolderContentsResponse)
def folder_contents_by_path(
    request: Request,
    response: Response,
    path: Optional[str] = None,
    resource_types: Optional[str] = None,
    sort: Optional[str] = None,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
):
    """List the contents of the folder at ``path``."""
    store = get_store()
    result = _call(lambda: store.service.contents_by_path(
        principal, path, resource_types, sort, limit, offset, base_url=str(request.url)))
    return _contents_response(result, response)


@app.get("/folders/{folder_id}/contents", response_model=FolderContentsResponse)
def folder_contents_by_id(
    folder_id: str,
    request: Request,
    response: Response,
    resource_types: Optional[str] = None,
    sort: Optional[str] = None,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
):
    """List the contents of the folder with id ``folder_id``."""
    store = get_store()
    result = _call(lambda: store.service.contents_by_id(
        principal, folder_id, resource_types, sort, limit, offset, base_url=str(request.url)))
    return _contents_response(result, response)


@app.get("/permissions/accessible-node-ids", response_model=AccessibleNodesResponse)
def accessible_node_ids(principal: Principal = Depends(get_principal)):
    """Every node the caller may access, with its access level."""
    store = get_store()
    accessible = _call(lambda: store.service.accessible_node_ids(principal))
    return AccessibleNodesResponse(
        accessible_nodes={node_id: level.value for node_id, level in accessible.items()}
    )


@app.get("/users", response_model=UsersResponse)
def list_users(principal: Principal = Depends(get_principal)):
    """Users directory."""
    with get_store().users() as users:
        return UsersResponse(users=[UserModel(**user.to_dict()) for user in users.list_users()])
