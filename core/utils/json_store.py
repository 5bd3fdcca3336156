# Blocking JSON document helpers for the file-backed repositories
import os
from pathlib import Path
from typing import Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.utils.exceptions import PersistenceError

ModelT = TypeVar("ModelT", bound=BaseModel)


def read_document(path: Path, model: Type[ModelT], store: str) -> ModelT:
    """Parse ``path`` into ``model``; unreadable or invalid files raise PersistenceError."""
    try:
        return model.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except (OSError, PydanticValidationError) as e:
        raise PersistenceError(f"Unreadable {store} store: {path}", operation="load", path=str(path)) from e


def write_document(path: Path, document: BaseModel, store: str) -> None:
    """Replace ``path`` atomically so a crash mid-write keeps the previous version."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise PersistenceError(f"Failed to write {store} store: {e}", operation="persist", path=str(path)) from e
