from .batch import WorkerError, run_concurrent_batch
from .creator import EntityCreator
from .lister import EntityLister
from .mapper import BaseMapper
from .mutator import EntityMutator
from .reader import AllEntityReader, EntityReader
from .remover import EntityRemover
from .synchronizer import EntitySynchronizer, SyncResult
from .writer import EntityUniqueWriter, EntityWriter, EntityWriterWithIDRetrieval

__all__ = [
    "BaseMapper",
    "EntityReader",
    "AllEntityReader",
    "EntityWriter",
    "EntityWriterWithIDRetrieval",
    "EntityUniqueWriter",
    "EntityRemover",
    "EntityCreator",
    "EntityLister",
    "EntityMutator",
    "EntitySynchronizer",
    "SyncResult",
    "WorkerError",
    "run_concurrent_batch",
]
