from .helpers import apply_mutations, wrap_db_errors
from .models import ExtraMutationsGroup, Mutation, MutationOp
from .session import DbSession
from .statement import Statement

__all__ = [
    "DbSession",
    "Statement",
    "Mutation",
    "MutationOp",
    "ExtraMutationsGroup",
    "apply_mutations",
    "wrap_db_errors",
]
