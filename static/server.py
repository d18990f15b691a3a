import os
from pathlib import Path

import aiofiles
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

app = FastAPI(title="EchoPages Storage", version="1.0.0")

STATIC_DIR = Path(os.getenv("STATIC_DIR", "files")).resolve()
STATIC_DIR.mkdir(parents=True, exist_ok=True)

MEDIA_TYPES = {".mp3": "audio/mpeg", ".txt": "text/plain", ".json": "application/json"}


def resolve_path(path: str) -> Path:
    file_path = (STATIC_DIR / path).resolve()
    if file_path != STATIC_DIR and STATIC_DIR not in file_path.parents:
        raise HTTPException(status_code=400, detail="Path escapes storage root")
    return file_path


def list_directory(directory: Path) -> list[dict]:
    entries = []
    for item in sorted(directory.iterdir()):
        if item.is_file():
            entries.append({"name": item.name, "size": item.stat().st_size, "type": "file"})
        elif item.is_dir():
            entries.append({"name": item.name, "type": "directory"})
    return entries


@app.get("/{path:path}")
async def get_file(path: str):
    """
    Get a stored object, or list a directory.
    """
    file_path = resolve_path(path)
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    if file_path.is_dir():
        return {"path": path, "files": list_directory(file_path)}

    return FileResponse(
        path=file_path,
        filename=file_path.name,
        media_type=MEDIA_TYPES.get(file_path.suffix, "application/octet-stream"),
    )


@app.post("/{path:path}")
async def upload_file(path: str, file: UploadFile = File(...)):
    """
    Store an object, replacing any existing one at the same path.
    Creates necessary subdirectories if they don't exist.
    """
    if not path:
        raise HTTPException(status_code=400, detail="Path cannot be empty")
    file_path = resolve_path(path)
    if file_path.is_dir():
        raise HTTPException(status_code=409, detail="Path is a directory")

    file_path.parent.mkdir(parents=True, exist_ok=True)
    replaced = file_path.exists()

    content = await file.read()
    async with aiofiles.open(file_path, "wb") as f:
        await f.write(content)

    return {
        "message": "File replaced successfully" if replaced else "File uploaded successfully",
        "path": path,
        "size": len(content),
        "replaced": replaced,
    }


@app.delete("/{path:path}")
async def delete_file(path: str):
    """
    Delete an object, or an empty directory.
    """
    if not path:
        raise HTTPException(status_code=400, detail="Path cannot be empty")

    file_path = resolve_path(path)
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File or directory not found")

    if file_path.is_file():
        file_path.unlink()
        return {"message": "File deleted successfully", "path": path}

    try:
        file_path.rmdir()
    except OSError:
        raise HTTPException(status_code=400, detail="Directory is not empty")
    return {"message": "Directory deleted successfully", "path": path}
