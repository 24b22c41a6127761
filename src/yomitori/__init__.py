from .core import BookOutput, ProcessingContext, extract_book, prepare, produce_text
from .errors import (
    ClassificationError,
    ContainerError,
    FormattingError,
    MarkupError,
    SchemaError,
    SideFileError,
    YomitoriError,
)
from .roles import DEFAULT_ROLE_MODEL, Role, RoleModel, infer_roles, is_skip

__all__ = [
    "BookOutput",
    "ProcessingContext",
    "extract_book",
    "prepare",
    "produce_text",
    "Role",
    "RoleModel",
    "DEFAULT_ROLE_MODEL",
    "infer_roles",
    "is_skip",
    "YomitoriError",
    "ContainerError",
    "SchemaError",
    "MarkupError",
    "FormattingError",
    "ClassificationError",
    "SideFileError",
]
