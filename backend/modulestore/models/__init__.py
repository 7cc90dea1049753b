from .schema import Module, Block, Field, FieldOption
from .records import ModuleRecord
from .relationships import ModuleRelationship

__all__ = [
    'Module', 'Block', 'Field', 'FieldOption',
    'ModuleRecord',
    'ModuleRelationship',
]
