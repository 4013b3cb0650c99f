"""Mutation commands shared by the HTTP routes and the assistant.

Both callers build one of the command models below and hand it to
``CommandDispatcher.dispatch``; there is no other write path for these five
operations.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from models import ActivityAction, CommandSource
from periods import ReferenceMonth
from schemas import GoalIn, SubscriptionIn, TransactionIn
from services import ActivityService, GoalService, SubscriptionService, TransactionService

logger = logging.getLogger(__name__)


class AddTransaction(BaseModel):
    kind: Literal["add_transaction"] = "add_transaction"
    data: TransactionIn


class DeleteTransaction(BaseModel):
    kind: Literal["delete_transaction"] = "delete_transaction"
    id: str = Field(..., min_length=1)


class AddGoal(BaseModel):
    kind: Literal["add_goal"] = "add_goal"
    data: GoalIn


class DeleteGoal(BaseModel):
    kind: Literal["delete_goal"] = "delete_goal"
    id: str = Field(..., min_length=1)


class AddSubscription(BaseModel):
    kind: Literal["add_subscription"] = "add_subscription"
    data: SubscriptionIn


MutationCommand = Annotated[
    Union[AddTransaction, DeleteTransaction, AddGoal, DeleteGoal, AddSubscription],
    Field(discriminator="kind"),
]


@dataclass(frozen=True)
class CommandResult:
    kind: str
    record_id: str
    message: str


class CommandDispatcher:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.activity = ActivityService(session, user_id)

    def dispatch(
        self,
        command: MutationCommand,
        *,
        source: CommandSource = CommandSource.user,
        reference: Optional[ReferenceMonth] = None,
    ) -> CommandResult:
        if isinstance(command, AddTransaction):
            txn = TransactionService(self.session, self.user_id).create(command.data)
            result = CommandResult(
                command.kind, txn.id, f"Transaction created: {txn.description}"
            )
            self._log(ActivityAction.create, "Transaction", result, source)
        elif isinstance(command, DeleteTransaction):
            txn = TransactionService(self.session, self.user_id).delete(command.id)
            result = CommandResult(
                command.kind, txn.id, f"Transaction removed: {txn.description}"
            )
            self._log(ActivityAction.delete, "Transaction", result, source)
        elif isinstance(command, AddGoal):
            goal = GoalService(self.session, self.user_id).create(
                command.data, reference=reference
            )
            result = CommandResult(command.kind, goal.id, f"Goal created: {goal.name}")
            self._log(ActivityAction.create, "Goal", result, source)
        elif isinstance(command, DeleteGoal):
            goal = GoalService(self.session, self.user_id).delete(command.id)
            result = CommandResult(command.kind, goal.id, f"Goal removed: {goal.name}")
            self._log(ActivityAction.delete, "Goal", result, source)
        elif isinstance(command, AddSubscription):
            sub = SubscriptionService(self.session, self.user_id).create(
                command.data, reference=reference
            )
            result = CommandResult(
                command.kind, sub.id, f"Subscription created: {sub.name}"
            )
            self._log(ActivityAction.create, "Subscription", result, source)
        else:
            raise ValueError(f"Unsupported command: {command!r}")
        return result

    def _log(
        self,
        action: ActivityAction,
        entity: str,
        result: CommandResult,
        source: CommandSource,
    ) -> None:
        self.activity.record(action, entity, result.message, source=source)
        logger.info(
            f"command_applied: kind={result.kind} source={source.value} "
            f"user={self.user_id} record={result.record_id}"
        )
