"""
Reactive form-state engine.

Holds the values of a set of named fields, validates them (sync, cross-field
and debounced async), propagates revalidation through declared dependencies,
and publishes one immutable snapshot per change.

Key Features:
- Batched updates: many writes, one validation pass, one snapshot
- Incremental error/dirty/pending counters
- Transitive dependency revalidation, cycle-safe
- Cancellable async validators, one task per field
- Bounded undo/redo over snapshots, exportable to JSON
- Field binding across engines with loop prevention

Quick Start:
    >>> from formstate import FormEngine, FieldDefinition, Validators
    >>>
    >>> engine = FormEngine(fields=[
    ...     FieldDefinition('email', initial_value='',
    ...                     validator=Validators.string().required().email().build()),
    ... ])
    >>> _ = engine.set_value('email', 'not-an-email')
    >>> engine.snapshot.errors
    {'email': 'Invalid email address'}

Modules:
    - engine: FormEngine facade
    - batch: BatchUpdateCoordinator, BatchResult, FormBatch
    - validation: ValidationEngine (sync + async)
    - dependency_graph: DependencyGraph
    - registry: FieldRegistry
    - state_store: StateStore
    - history: HistoryManager
    - binding: BindingManager
    - snapshot_model: FormSnapshot
    - persistence: FormPersistence adapters
    - messages / validators: message tokens and fluent validator chains
"""

# Engine
from formstate.engine import FormEngine

# Field declarations
from formstate.field_definition import (
    FieldDefinition,
    FieldArray,
    RegisteredField,
)

# State
from formstate.snapshot_model import FormSnapshot, SnapshotReader
from formstate.validation_result import ValidationResult, ValidationStatus
from formstate.batch import BatchResult, FormBatch

# Components
from formstate.batch import BatchUpdateCoordinator, BatchView
from formstate.dependency_graph import DependencyGraph
from formstate.history import HistoryManager
from formstate.registry import FieldRegistry
from formstate.state_store import StateStore
from formstate.validation import ValidationEngine
from formstate.binding import BindingManager

# Configuration
from formstate.config import (
    FormEngineConfig,
    config_context,
    get_default_config,
    set_default_config,
)
from formstate.enums import InitialValueStrategy, ResetStrategy, ValidationMode

# Errors
from formstate.errors import (
    EngineDisposedError,
    FormStateError,
    RequiredValueError,
    TypeMismatchError,
)

# Messages and validators
from formstate.messages import DefaultFormMessages, FormMessages, ValidationKeys
from formstate.validators import NumberValidator, StringValidator, ValidatorChain, Validators

# Persistence
from formstate.persistence import FormPersistence, InMemoryFormPersistence, JsonFilePersistence

__version__ = "0.1.0"

__all__ = [
    # Engine
    'FormEngine',
    # Field declarations
    'FieldDefinition',
    'FieldArray',
    'RegisteredField',
    # State
    'FormSnapshot',
    'SnapshotReader',
    'ValidationResult',
    'ValidationStatus',
    'BatchResult',
    'FormBatch',
    # Components
    'BatchUpdateCoordinator',
    'BatchView',
    'DependencyGraph',
    'HistoryManager',
    'FieldRegistry',
    'StateStore',
    'ValidationEngine',
    'BindingManager',
    # Configuration
    'FormEngineConfig',
    'config_context',
    'get_default_config',
    'set_default_config',
    'InitialValueStrategy',
    'ResetStrategy',
    'ValidationMode',
    # Errors
    'EngineDisposedError',
    'FormStateError',
    'RequiredValueError',
    'TypeMismatchError',
    # Messages and validators
    'DefaultFormMessages',
    'FormMessages',
    'ValidationKeys',
    'NumberValidator',
    'StringValidator',
    'ValidatorChain',
    'Validators',
    # Persistence
    'FormPersistence',
    'InMemoryFormPersistence',
    'JsonFilePersistence',
]
