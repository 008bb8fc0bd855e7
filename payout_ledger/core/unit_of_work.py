"""
Atomic unit of work over one AsyncSession.

A UnitOfWork is an ordered list of labelled async steps. run() executes the
steps in the order they were added and commits once at the end, so either
every step's writes are committed or none are.

    uow = UnitOfWork(db, "create_payout_run")
    uow.add("mark payable items", mark_payable)
    uow.add("insert payouts", insert_payouts)
    results = await uow.run()
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)

Step = Callable[[AsyncSession], Awaitable[Any]]


class PersistenceFailure(Exception):
    """The atomic write did not commit; nothing from the unit of work persisted."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class UnitOfWork:
    def __init__(self, db: AsyncSession, name: str):
        self.db = db
        self.name = name
        self._steps: List[Tuple[str, Step]] = []

    def add(self, label: str, step: Step) -> "UnitOfWork":
        self._steps.append((label, step))
        return self

    @property
    def labels(self) -> List[str]:
        return [label for label, _ in self._steps]

    async def run(self) -> List[Any]:
        """Execute all steps in order inside the session's transaction and commit."""
        results: List[Any] = []
        current: Optional[str] = None
        try:
            for label, step in self._steps:
                current = label
                results.append(await step(self.db))
                await self.db.flush()
            current = "commit"
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{self.name}: rolled back at step '{current}': {e}")
            raise PersistenceFailure(
                f"{self.name} failed at step '{current}'",
                details={"step": current, "error": str(e)},
            ) from e
        except Exception:
            await self.db.rollback()
            logger.warning(f"{self.name}: rolled back at step '{current}'")
            raise

        logger.info(f"{self.name}: committed {len(self._steps)} steps")
        return results
