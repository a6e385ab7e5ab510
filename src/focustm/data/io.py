import tempfile, yaml, json, os
from typing import Union, Dict, Any, Type, Optional
from pathlib import Path

from pydantic import ValidationError

from focustm.recovery import CorruptionError, FileOperationError, FatalError
from focustm.logs import get_logger
from focustm.models import BaseYAMLModel

log = get_logger("io")

DATA_YAML = 0
DATA_JSON = 1

def _cleanup(temp_path: Optional[str]):
    if temp_path is None or not os.path.exists(temp_path):
        return
    try:
        os.unlink(temp_path)
        log.debug(f"Cleaned up temporary file: {temp_path}")
    except OSError as cleanup_error:
        log.warning(f"Could not clean up temp file {temp_path}: {cleanup_error}")

def _create_dirs(file_path: Path):
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
    except (OSError, PermissionError) as e:
        error_msg = f"Cannot create directory {file_path.parent}: {e}"
        log.error(error_msg)
        raise FileOperationError(error_msg) from e

def atomic_write(data_type: int, file_path: Union[Path, str], data: Dict[str, Any], create_dirs: bool = False) -> bool:
    """
    Serialize ``data`` and replace ``file_path`` with it atomically.

    The document is written to a temporary file in the target directory,
    fsynced and then moved over the target, so readers see either the old or
    the new file and never a partial one.

    Raises:
        FatalError: The data cannot be serialized.
        FileOperationError: The file cannot be written.
    """
    file_path = Path(file_path)
    temp_path = None

    try:
        if create_dirs:
            _create_dirs(file_path)

        with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', dir=file_path.parent, prefix=f".{file_path.name}.", suffix='.tmp', delete=False) as temp_file:
            temp_path = temp_file.name
            if data_type == DATA_YAML:
                yaml.safe_dump(data, temp_file, default_flow_style=False, sort_keys=False, indent=2, allow_unicode=True)
            elif data_type == DATA_JSON:
                json.dump(data, temp_file, indent=2, ensure_ascii=False)
            else:
                raise FatalError("Unsupported Data Format")
            temp_file.flush()
            os.fsync(temp_file.fileno())

        os.replace(temp_path, file_path)
        log.debug(f"Saved {file_path}")
        return True

    except FileOperationError:
        raise

    except (yaml.YAMLError, TypeError, ValueError) as e:
        _cleanup(temp_path)
        error_msg = (f"Data serialization failed for {file_path}. "
                    f"In-memory data may be corrupt or contain non-serializable types: {e}")
        log.critical(error_msg)
        raise FatalError(error_msg) from e

    except (IOError, OSError, PermissionError) as e:
        _cleanup(temp_path)
        error_msg = f"I/O error saving file {file_path}: {e}"
        log.error(error_msg)
        raise FileOperationError(error_msg) from e

    except FatalError:
        _cleanup(temp_path)
        raise

def load_yaml_file(file_path: Union[Path, str]) -> Union[None, Dict]:
    """
    Load and parse a YAML document.

    Returns:
        Parsed data as dict, or None if the file doesn't exist.

    Raises:
        CorruptionError: The file is not valid YAML or not a mapping.
        FileOperationError: The file cannot be read.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        return None

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise CorruptionError(f"YAML syntax error in {file_path}: {e}") from e
    except (IOError, OSError, PermissionError) as e:
        raise FileOperationError(f"Failed to read file {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise CorruptionError(f"File {file_path} contains invalid data structure")

    return data

def load_model(model_type: Type[BaseYAMLModel], file_path: Union[Path, str]) -> Union[None, BaseYAMLModel]:
    """
    Load a YAML document into ``model_type``.

    Returns:
        The parsed model, or None if the file doesn't exist.
    """
    data = load_yaml_file(file_path)
    if data is None:
        return None

    try:
        return model_type.model_validate(data)
    except ValidationError as e:
        raise CorruptionError(f"{file_path} does not match {model_type.__name__}: {e}") from e
