"""
Workbench Service
=================

Editing sessions over a loaded card: work groups, backfilled results, undo
history, and export back to the source format.
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from card_workbench.config.models import SystemConfig
from card_workbench.services.character_cards import (
    CharacterCard,
    CharacterCardExporter,
    ExportedCard,
    ParsedCard,
    WorkGroup,
    WorkUnit,
    apply_backfill,
    build_external_prompt,
    count_card_words,
    generate_work_groups,
    should_segment,
)

logger = logging.getLogger(__name__)


class TaskNotFoundError(KeyError):
    """No work unit with the given id in the session."""

    def __init__(self, task_id: str):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task '{self.task_id}' not found"


class SessionNotFoundError(KeyError):
    """No session with the given id."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session '{self.session_id}' not found"


class WorkbenchSession:
    """
    One card being edited.

    Holds the parsed source, the current card, its work groups and a history of
    earlier (card, groups) states for undo. Backfills replace the current card
    with a new value; the source card is never modified.
    """

    def __init__(self, parsed: ParsedCard, config: Optional[SystemConfig] = None, session_id: Optional[str] = None):
        self.id = session_id or str(uuid.uuid4())
        self.config = config or SystemConfig()
        self.source = parsed
        self.card: CharacterCard = parsed.card
        self.history: List[Tuple[CharacterCard, List[WorkGroup]]] = []
        self.created_at = datetime.now()
        self.groups: List[WorkGroup] = generate_work_groups(self.card, self.config.segmentation)
        logger.info(
            f"Session {self.id}: '{self.card.data.name or 'unnamed'}' "
            f"with {len(self.groups)} group(s), {len(self.tasks)} task(s)"
        )

    @property
    def tasks(self) -> List[WorkUnit]:
        return [task for group in self.groups for task in group.tasks]

    @property
    def word_count(self) -> int:
        return count_card_words(self.card)

    @property
    def is_segmented(self) -> bool:
        return should_segment(self.card, self.config.segmentation)

    @property
    def can_undo(self) -> bool:
        return bool(self.history)

    def get_task(self, task_id: str) -> WorkUnit:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def complete_task(self, task_id: str, result: str) -> CharacterCard:
        """
        Record an edited result for a unit and merge it into the card.

        Raises:
            TaskNotFoundError: If the unit does not exist
        """
        task = self.get_task(task_id)
        updated = apply_backfill(self.card, task, result)

        self.history.append((self.card, self.groups))
        self.card = updated
        self.groups = [
            group.model_copy(update={
                "tasks": [
                    t.model_copy(update={"completed": True, "result": result}) if t.id == task_id else t
                    for t in group.tasks
                ]
            })
            for group in self.groups
        ]
        logger.info(f"Session {self.id}: backfilled {task_id} ({', '.join(f.value for f in task.fields)})")
        return updated

    def undo(self) -> bool:
        """
        Restore the card and task state from before the last backfill.

        Returns:
            False if there is nothing to undo
        """
        if not self.history:
            return False
        self.card, self.groups = self.history.pop()
        logger.info(f"Session {self.id}: undo, {len(self.history)} step(s) left")
        return True

    def regenerate_groups(self) -> List[WorkGroup]:
        """Re-split the current card; completion state starts over."""
        self.groups = generate_work_groups(self.card, self.config.segmentation)
        logger.info(f"Session {self.id}: regenerated {len(self.groups)} group(s)")
        return self.groups

    def prompt_for(self, task_id: str, target: Optional[str] = None) -> str:
        """
        Prompt text for handing a unit to an external editor.

        Raises:
            TaskNotFoundError: If the unit does not exist
            ValueError: If the target has no configured instruction
        """
        task = self.get_task(task_id)
        prompts = self.config.prompts
        return build_external_prompt(target or prompts.default_target, task.content, prompts.instructions)

    def export(self, preserve_text_chunks: Optional[bool] = None) -> ExportedCard:
        """Serialize the current card in the source format."""
        exporter = CharacterCardExporter(self.config.export)
        return exporter.export(
            self.card,
            self.source.source_format,
            source_bytes=self.source.source_bytes,
            source_name=self.source.source_name,
            preserve_text_chunks=preserve_text_chunks,
        )

    def summary(self) -> Dict:
        """JSON-ready overview of the session."""
        return {
            "id": self.id,
            "name": self.card.data.name,
            "source_name": self.source.source_name,
            "source_format": self.source.source_format.value,
            "shape": self.source.shape,
            "warnings": list(self.source.warnings),
            "word_count": self.word_count,
            "is_segmented": self.is_segmented,
            "group_count": len(self.groups),
            "task_count": len(self.tasks),
            "completed_tasks": sum(1 for t in self.tasks if t.completed),
            "can_undo": self.can_undo,
            "created_at": self.created_at.isoformat(),
        }


class SessionStore:
    """In-memory sessions keyed by id."""

    def __init__(self, config: Optional[SystemConfig] = None):
        self.config = config or SystemConfig()
        self._sessions: Dict[str, WorkbenchSession] = {}
        self._lock = threading.Lock()

    def create(self, parsed: ParsedCard) -> WorkbenchSession:
        session = WorkbenchSession(parsed, self.config)
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> WorkbenchSession:
        """
        Raises:
            SessionNotFoundError: If no such session exists
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)
        logger.info(f"Session {session_id} closed")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
