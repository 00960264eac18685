import logging
from io import BytesIO
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse

from securefms.blob_store import EncryptedBlobStore
from securefms.deps import get_blob_store, get_current_user
from securefms.errors import ValidationError
from securefms.models import User
from securefms.schemas import FileOut

router = APIRouter(prefix="/files", tags=["files"])
logger = logging.getLogger(__name__)


@router.post("/upload", response_model=FileOut, status_code=201)
def upload_file(
    file: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    store: EncryptedBlobStore = Depends(get_blob_store),
):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    raw_bytes = file.file.read()
    record = store.store(current_user.id, file.filename, file.content_type, raw_bytes)
    return record


@router.get("", response_model=List[FileOut])
def list_files(
    all_files: bool = Query(False, alias="all"),
    current_user: User = Depends(get_current_user),
    store: EncryptedBlobStore = Depends(get_blob_store),
):
    return store.list_for(current_user, all_files=all_files)


@router.get("/storage-usage")
def storage_usage(
    current_user: User = Depends(get_current_user),
    store: EncryptedBlobStore = Depends(get_blob_store),
):
    return {"used_bytes": store.usage(current_user.id)}


@router.get("/download/{file_id}")
def download_file(
    file_id: int,
    inline: bool = Query(False),
    current_user: User = Depends(get_current_user),
    store: EncryptedBlobStore = Depends(get_blob_store),
):
    record, data = store.retrieve(file_id, current_user)
    disposition = "inline" if inline else "attachment"
    return StreamingResponse(
        BytesIO(data),
        media_type=record.mime_type or "application/octet-stream",
        headers={
            "Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(record.original_name)}",
            "Content-Length": str(len(data)),
        },
    )


@router.delete("/{file_id}")
def delete_file(
    file_id: int,
    current_user: User = Depends(get_current_user),
    store: EncryptedBlobStore = Depends(get_blob_store),
):
    store.delete(file_id, current_user)
    return {"message": "File deleted successfully"}
