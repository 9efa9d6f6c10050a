"""
Recordflow - Multi-Entity Request Orchestration

Runs batches of create/read/update/delete operations against a record
store in dependency order, resolving references to records created
earlier in the same run.

  - recordflow.types: Operation, EntityKind, Verb, Target, ExecutionResult
  - recordflow.ordering: order, EXECUTION_ORDER
  - recordflow.references: resolve
  - recordflow.executor: execute_batch, summarize
  - recordflow.validate: validate, dry_run
  - recordflow.collaborator: RecordStore, TableAPIClient
"""

from recordflow.types import (
    EntityKind, Verb, Target, Operation, OperationStatus,
    ExecutionResult, RecordStoreResponse, TABLE_NAMES,
    RecordflowError, IllegalStatusTransition,
)
from recordflow.ordering import order, EXECUTION_ORDER
from recordflow.references import resolve
from recordflow.executor import execute_batch, summarize, BatchReport
from recordflow.validate import validate, dry_run, REQUIRED_FIELDS
from recordflow.collaborator import RecordStore, TableAPIClient, extract_identifier
