from datetime import date

import pytest
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import create_engine

from commands import (
    AddGoal,
    AddSubscription,
    AddTransaction,
    CommandDispatcher,
    DeleteGoal,
    DeleteTransaction,
    MutationCommand,
)
from database import Base, make_session_factory
from models import ActivityAction, CommandSource, TransactionType
from periods import ReferenceMonth
from schemas import GoalIn, SubscriptionIn, TransactionIn
from services import ActivityService, GoalService, NotFoundError, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)
    return SessionLocal()


def test_commands_parse_from_tagged_payloads():
    adapter = TypeAdapter(MutationCommand)

    command = adapter.validate_python(
        {"kind": "add_goal", "data": {"name": "Trip", "target_cents": 90_000}}
    )
    assert isinstance(command, AddGoal)
    assert isinstance(
        adapter.validate_python({"kind": "delete_transaction", "id": "abc"}),
        DeleteTransaction,
    )
    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "drop_everything", "id": "abc"})
    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "delete_goal", "id": ""})


def test_add_and_delete_transaction_record_activity():
    session = make_session()
    dispatcher = CommandDispatcher(session, "u1")

    created = dispatcher.dispatch(
        AddTransaction(
            data=TransactionIn(
                type=TransactionType.expense,
                amount_cents=1_250,
                category="Coffee",
                description="Espresso",
                date=date(2024, 3, 4),
            )
        )
    )
    assert created.message == "Transaction created: Espresso"
    assert TransactionService(session, "u1").get(created.record_id).amount_cents == 1_250

    removed = dispatcher.dispatch(DeleteTransaction(id=created.record_id))
    assert removed.record_id == created.record_id
    assert TransactionService(session, "u1").list_all() == []

    entries = ActivityService(session, "u1").recent()
    assert len(entries) == 2
    assert {e.action for e in entries} == {ActivityAction.create, ActivityAction.delete}
    assert all(e.source == CommandSource.user for e in entries)


def test_goal_commands_use_reference_month():
    session = make_session()
    dispatcher = CommandDispatcher(session, "u1")

    result = dispatcher.dispatch(
        AddGoal(data=GoalIn(name="Bike", target_cents=250_000)),
        source=CommandSource.assistant,
        reference=ReferenceMonth(2024, 5),
    )
    goal = GoalService(session, "u1").get(result.record_id)
    assert goal.start_date == date(2024, 5, 1)
    (entry,) = ActivityService(session, "u1").recent()
    assert entry.source == CommandSource.assistant
    assert entry.description == "Goal created: Bike"

    dispatcher.dispatch(DeleteGoal(id=goal.id))
    assert GoalService(session, "u1").list_all() == []


def test_add_subscription_command():
    session = make_session()
    result = CommandDispatcher(session, "u1").dispatch(
        AddSubscription(
            data=SubscriptionIn(name="Cloud", amount_cents=990, start_date=date(2024, 1, 1))
        )
    )
    assert result.kind == "add_subscription"
    assert result.message == "Subscription created: Cloud"


def test_deleting_missing_records_fails_without_activity():
    session = make_session()
    dispatcher = CommandDispatcher(session, "u1")

    with pytest.raises(NotFoundError):
        dispatcher.dispatch(DeleteGoal(id="nope"))
    with pytest.raises(NotFoundError):
        dispatcher.dispatch(DeleteTransaction(id="nope"))
    assert ActivityService(session, "u1").recent() == []


def test_activity_log_is_capped():
    session = make_session()
    dispatcher = CommandDispatcher(session, "u1")
    for i in range(12):
        dispatcher.dispatch(
            AddGoal(
                data=GoalIn(
                    name=f"Goal {i}", target_cents=1_000, start_date=date(2024, 1, 1)
                )
            )
        )
    assert len(ActivityService(session, "u1").recent()) == 10
    assert len(ActivityService(session, "u1").recent(limit=3)) == 3
