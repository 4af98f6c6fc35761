from .shared import ensure_root_logging, load_env_file

__all__ = ["ensure_root_logging", "load_env_file"]
