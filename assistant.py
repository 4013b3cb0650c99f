from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from sqlalchemy.orm import Session

from aggregation import filter_period, period_totals
from commands import (
    AddGoal,
    AddSubscription,
    AddTransaction,
    CommandDispatcher,
    DeleteGoal,
    DeleteTransaction,
    MutationCommand,
)
from config import Settings, get_settings
from models import CommandSource
from money import to_cents
from periods import ReferenceMonth, local_today, parse_local_date
from schemas import GoalIn, SubscriptionIn, TransactionIn
from services import SnapshotService

logger = logging.getLogger(__name__)

API_ROOT = "https://generativelanguage.googleapis.com/v1beta/models"
ACTION_CONFIRMATION = "Done! Your dashboard is already updated."

SYSTEM_INSTRUCTION = """You are the finance assistant of a personal budgeting app.
CURRENT CONTEXT (amounts in currency units): {context}
You may CREATE and DELETE goals and transactions, and CREATE subscriptions, using
the provided functions. Whenever the user asks to create, record, note down or
delete something, call the matching function. Always confirm what you did."""

TOOL_DECLARATIONS: list[dict[str, Any]] = [
    {
        "name": "addGoal",
        "description": "Create a new savings goal for the user.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "name": {"type": "STRING", "description": "Goal name"},
                "targetAmount": {"type": "NUMBER", "description": "Amount to save"},
                "currentAmount": {"type": "NUMBER", "description": "Amount already saved"},
                "deadline": {"type": "STRING", "description": "Deadline as YYYY-MM-DD"},
            },
            "required": ["name", "targetAmount"],
        },
    },
    {
        "name": "addTransaction",
        "description": "Record a new expense or income.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "description": {"type": "STRING", "description": "What it was"},
                "amount": {"type": "NUMBER", "description": "Monetary value"},
                "type": {
                    "type": "STRING",
                    "description": '"income" for earnings or "expense" for spending',
                },
                "category": {"type": "STRING", "description": "Category, e.g. Food"},
                "date": {"type": "STRING", "description": "Date as YYYY-MM-DD"},
                "paymentMethod": {"type": "STRING", "description": "e.g. Pix, Card"},
            },
            "required": ["description", "amount", "type"],
        },
    },
    {
        "name": "addSubscription",
        "description": "Register a recurring monthly subscription.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "name": {"type": "STRING", "description": "Service name"},
                "amount": {"type": "NUMBER", "description": "Monthly price"},
                "billingDay": {"type": "NUMBER", "description": "Day of month billed"},
                "category": {"type": "STRING", "description": "Category"},
                "paymentMethod": {"type": "STRING", "description": "Payment method"},
            },
            "required": ["name", "amount"],
        },
    },
    {
        "name": "deleteEntity",
        "description": "Remove an existing goal or transaction by its id.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "id": {"type": "STRING", "description": "Unique id of the item"},
                "type": {"type": "STRING", "description": '"goal" or "transaction"'},
            },
            "required": ["id", "type"],
        },
    },
]


class AssistantError(RuntimeError):
    pass


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Completion:
    text: str
    calls: list[FunctionCall] = field(default_factory=list)


@dataclass(frozen=True)
class AssistantReply:
    text: str
    actions: list[str] = field(default_factory=list)


def parse_completion(payload: dict[str, Any]) -> Completion:
    try:
        parts = payload["candidates"][0]["content"].get("parts", [])
    except (KeyError, IndexError, TypeError, AttributeError) as exc:
        raise AssistantError("Unexpected assistant response") from exc
    texts: list[str] = []
    calls: list[FunctionCall] = []
    for part in parts:
        if "functionCall" in part:
            call = part["functionCall"]
            calls.append(FunctionCall(name=call.get("name", ""), args=call.get("args") or {}))
        elif part.get("text"):
            texts.append(part["text"])
    return Completion(text="".join(texts).strip(), calls=calls)


class AssistantClient:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def complete(
        self,
        message: str,
        *,
        system_instruction: str,
        tools: list[dict[str, Any]],
    ) -> Completion:
        if not self.settings.assistant_enabled:
            raise AssistantError("Assistant is not configured")
        body = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": [{"text": message}]}],
            "tools": [{"functionDeclarations": tools}],
            "generationConfig": {"temperature": 0.5},
        }
        url = f"{API_ROOT}/{self.settings.ai_model}:generateContent"
        req = Request(
            url,
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "x-goog-api-key": self.settings.ai_api_key,
            },
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.settings.ai_timeout_secs) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise AssistantError("Failed to reach the assistant API") from exc
        return parse_completion(payload)


def _optional_date(value: Any):
    return parse_local_date(str(value)) if value else None


def command_from_call(call: FunctionCall, *, reference: ReferenceMonth) -> MutationCommand:
    args = call.args
    try:
        if call.name == "addTransaction":
            return AddTransaction(
                data=TransactionIn(
                    type=str(args["type"]).lower(),
                    amount_cents=to_cents(args["amount"]),
                    category=args.get("category") or "",
                    description=args["description"],
                    date=_optional_date(args.get("date")) or local_today(),
                    payment_method=args.get("paymentMethod") or "",
                )
            )
        if call.name == "addGoal":
            return AddGoal(
                data=GoalIn(
                    name=args["name"],
                    target_cents=to_cents(args["targetAmount"]),
                    current_cents=to_cents(args.get("currentAmount") or 0),
                    start_date=reference.start,
                    deadline=_optional_date(args.get("deadline")),
                )
            )
        if call.name == "addSubscription":
            return AddSubscription(
                data=SubscriptionIn(
                    name=args["name"],
                    amount_cents=to_cents(args["amount"]),
                    billing_day=int(args.get("billingDay") or 1),
                    category=args.get("category") or "",
                    start_date=reference.start,
                    payment_method=args.get("paymentMethod") or "",
                )
            )
        if call.name == "deleteEntity":
            kind = str(args["type"]).lower()
            if kind == "goal":
                return DeleteGoal(id=str(args["id"]))
            if kind == "transaction":
                return DeleteTransaction(id=str(args["id"]))
            raise ValueError(f"Cannot delete entities of type {kind!r}")
    except (KeyError, TypeError, ValueError) as exc:
        raise AssistantError(f"Invalid arguments for {call.name}: {exc}") from exc
    raise AssistantError(f"Unknown function: {call.name}")


class AssistantService:
    def __init__(
        self,
        session: Session,
        user_id: str,
        client: Optional[AssistantClient] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.client = client or AssistantClient()

    def context(self, ref: ReferenceMonth) -> dict[str, Any]:
        view = filter_period(SnapshotService(self.session, self.user_id).load(), ref)
        totals = period_totals(view)
        return {
            "month": ref.slug,
            "summary": {
                "income": round(totals.income_cents / 100, 2),
                "expense": round(totals.total_expense_cents / 100, 2),
                "balance": round(totals.balance_cents / 100, 2),
            },
            "goals": [
                {
                    "id": g.id,
                    "name": g.name,
                    "target": g.target_cents / 100,
                    "current": g.current_cents / 100,
                }
                for g in view.goals
            ],
            "transactions": [
                {
                    "id": t.id,
                    "description": t.description,
                    "type": t.type.value,
                    "amount": t.amount_cents / 100,
                    "date": t.date.isoformat(),
                }
                for t in view.transactions
            ],
        }

    def chat(self, message: str, ref: ReferenceMonth) -> AssistantReply:
        instruction = SYSTEM_INSTRUCTION.format(
            context=json.dumps(self.context(ref), ensure_ascii=False)
        )
        completion = self.client.complete(
            message, system_instruction=instruction, tools=TOOL_DECLARATIONS
        )
        logger.info(
            f"assistant_completion: user={self.user_id} calls={len(completion.calls)}"
        )

        dispatcher = CommandDispatcher(self.session, self.user_id)
        actions: list[str] = []
        for call in completion.calls:
            try:
                command = command_from_call(call, reference=ref)
                result = dispatcher.dispatch(
                    command, source=CommandSource.assistant, reference=ref
                )
            except (AssistantError, ValueError) as exc:
                logger.warning(f"assistant_call_failed: name={call.name} error={exc}")
                actions.append(f"Could not run {call.name}: {exc}")
                continue
            actions.append(result.message)

        text = completion.text
        if not text and completion.calls:
            text = ACTION_CONFIRMATION
        return AssistantReply(text=text, actions=actions)
