"""
Stored audio file endpoint.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from app.config import FILES_ROUTE_PREFIX
from app.routers.errors import not_found
from app.services.storage import BlobStorage, StorageError, get_blob_storage


router = APIRouter(prefix=FILES_ROUTE_PREFIX, tags=['files'])

MEDIA_TYPES = {
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
}


@router.get('/{key:path}')
async def get_file(
    key: str,
    storage: BlobStorage = Depends(get_blob_storage),
):
    """
    Stream a stored audio file.

    Raises:
        404: No file under this key
    """
    try:
        path = storage.path_for(key)
    except StorageError:
        raise not_found(f'File not found: {key}')

    if not await storage.exists(key):
        raise not_found(f'File not found: {key}')

    return FileResponse(
        path=str(path),
        media_type=MEDIA_TYPES.get(path.suffix, 'application/octet-stream'),
        filename=path.name,
    )
