"""
Domain errors for the assignment services. Routes translate them into
HTTPException responses; the job processor turns them into FAILED status.
"""


class AssignmentError(Exception):
    """Base class for assignment domain errors."""


class SnippetNotFoundError(AssignmentError):
    def __init__(self, snippet_id: str):
        self.snippet_id = snippet_id
        super().__init__(f"Snippet with ID {snippet_id} not found")


class AssignmentNotFoundError(AssignmentError):
    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Assignment with ID {assignment_id} not found")


class DuplicateAssignmentError(AssignmentError):
    """Raised by the synchronous path when (snippet, catType, slug) already exists."""


class BatchExecutionError(AssignmentError):
    def __init__(self, batch_number: int, total_batches: int, reason: str):
        self.batch_number = batch_number
        self.total_batches = total_batches
        super().__init__(f"Assignment failed at batch {batch_number}/{total_batches}: {reason}")


class ExecutionServiceError(AssignmentError):
    """The external execution service rejected or failed a request."""
