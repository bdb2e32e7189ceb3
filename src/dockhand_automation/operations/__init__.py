from ..types import ActionKind
from .apt_key import AptKeyOperation
from .apt_repository import AptRepositoryOperation
from .authorized_key import AuthorizedKeyOperation
from .base import Operation
from .exec import ExecOperation
from .facts import FactsOperation
from .file import FileOperation
from .package import PackageOperation
from .service import ServiceOperation
from .user import UserOperation

OPERATION_REGISTRY: dict[ActionKind, type[Operation]] = {
    ActionKind.USER: UserOperation,
    ActionKind.AUTHORIZED_KEY: AuthorizedKeyOperation,
    ActionKind.PACKAGE: PackageOperation,
    ActionKind.APT_KEY: AptKeyOperation,
    ActionKind.APT_REPOSITORY: AptRepositoryOperation,
    ActionKind.FILE: FileOperation,
    ActionKind.SERVICE: ServiceOperation,
    ActionKind.EXEC: ExecOperation,
    ActionKind.FACTS: FactsOperation,
}

__all__ = [
    "Operation",
    "AptKeyOperation",
    "AptRepositoryOperation",
    "AuthorizedKeyOperation",
    "ExecOperation",
    "FactsOperation",
    "FileOperation",
    "PackageOperation",
    "ServiceOperation",
    "UserOperation",
    "OPERATION_REGISTRY",
]
