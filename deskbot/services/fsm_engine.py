"""Conversation flow engine.

``FSMEngine.transition`` decides, for one inbound event, the next state, the
replies to send and the side effects to request. It mutates ``session.data``
but never ``session.state``: the caller applies ``Transition.new_state`` while
it still holds the conversation lock.

Cross-cutting guards run before the per-state handler, in order; the first
guard that applies handles the event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Iterable, Optional

from deskbot.logging_config import get_logger, mask_phone
from deskbot.services.client_directory import ClientDirectory
from deskbot.services.content import build_menu, get_staff_text, get_text, menu_options, option_title
from deskbot.services.cuit import clean_cuit, format_ars, format_cuit, validate_cuit
from deskbot.services.fsm_states import (
    HANDOFF_STATES,
    INITIAL_STATE,
    MEDIA_STATES,
    MENU_STATES,
    PAYMENT_STATES,
    TERMINAL_STATES,
    EffectKind,
    EffectRequest,
    FSMState,
    InboundEvent,
    Reply,
    Transition,
)
from deskbot.services.invoice_parser import (
    FIELD_LABELS,
    INVOICE_FIELDS,
    format_invoice_summary,
    parse_invoice_fields,
    validate_field_value,
)
from deskbot.services.session_store import Session
from deskbot.services.text_matching import (
    detect_payment_type,
    is_affirmative,
    is_back_command,
    is_done_command,
    is_handoff_request,
    is_menu_command,
    is_negative,
    is_payment_intent,
    is_reset_command,
    match_option,
    normalize_for_matching,
)

logger = get_logger("fsm_engine")

# Transport bookkeeping that survives an operator reset.
PRESERVED_KEYS = ("contact_name", "last_correlation_id")
COLLECTION_KEYS = ("collected_text", "collected_messages", "collected_media", "invoice_fragments")
INVOICE_KEYS = ("invoice_fields", "invoice_edit_field", "invoice_media_count")

MENU_KEYS = {
    FSMState.ROOT: "root",
    FSMState.CLIENT_MENU: "client",
    FSMState.PROSPECT_MENU: "prospect",
    FSMState.SIGNUP_MENU: "signup",
    FSMState.PLAN_MENU: "plan",
}

Handler = Callable[[Session, InboundEvent], Transition]


class UnknownStateError(ValueError):
    pass


@dataclass(frozen=True)
class Guard:
    name: str
    applies: Callable[[Session, InboundEvent], bool]
    handle: Handler


@dataclass(frozen=True)
class CollectFlow:
    state: FSMState
    prompt_key: str
    empty_key: str
    sent_key: str
    staff_role: str
    title: str


COLLECT_FLOWS = {
    FSMState.INVOICE_COLLECT: CollectFlow(
        FSMState.INVOICE_COLLECT, "invoice_prompt", "invoice_empty", "invoice_sent", "invoices", "Pedido de factura"
    ),
    FSMState.SALES_COLLECT: CollectFlow(
        FSMState.SALES_COLLECT, "sales_prompt", "sales_empty", "sales_sent", "sales", "Ventas del mes"
    ),
    FSMState.SIGNUP_COLLECT: CollectFlow(
        FSMState.SIGNUP_COLLECT, "signup_requirements", "signup_empty", "signup_sent", "signup", "Alta Monotributo"
    ),
    FSMState.PLAN_COLLECT: CollectFlow(
        FSMState.PLAN_COLLECT, "plan_requirements", "plan_empty", "plan_sent", "signup", "Plan mensual"
    ),
}


def _summarize_collection(text_count: int, media: list[str]) -> str:
    audio = sum(1 for kind in media if kind == "audio")
    others = len(media) - audio
    return f"{text_count} mensaje(s) de texto, {audio} audio(s), {others} adjunto(s)"


class FSMEngine:
    def __init__(
        self,
        directory: ClientDirectory,
        ack_cooldown_seconds: float = 12.0,
        operator_allowlist: Iterable[str] = (),
    ):
        self.directory = directory
        self.ack_cooldown = timedelta(seconds=ack_cooldown_seconds)
        self.operator_allowlist = frozenset(operator_allowlist)

        self.guards: list[Guard] = [
            Guard("operator_reset", self._applies_reset, self._handle_reset),
            Guard("payment_intent", self._applies_payment, self._handle_payment),
            Guard("handoff_request", self._applies_handoff, self._handle_handoff_request),
            Guard("menu_command", self._applies_menu_command, self._handle_menu_command),
            Guard("attachment", lambda session, event: event.is_attachment, self._handle_attachment),
        ]
        self.handlers: dict[FSMState, Handler] = {
            FSMState.ROOT: self._handle_root,
            FSMState.IDENTIFY: self._handle_identify,
            FSMState.CLIENT_MENU: self._handle_client_menu,
            FSMState.INVOICE_COLLECT: partial(self._handle_collect, COLLECT_FLOWS[FSMState.INVOICE_COLLECT]),
            FSMState.INVOICE_CONFIRM: self._handle_invoice_confirm,
            FSMState.INVOICE_EDIT_FIELD: self._handle_invoice_edit,
            FSMState.SALES_COLLECT: partial(self._handle_collect, COLLECT_FLOWS[FSMState.SALES_COLLECT]),
            FSMState.PROSPECT_MENU: self._handle_prospect_menu,
            FSMState.SIGNUP_MENU: self._handle_signup_menu,
            FSMState.SIGNUP_COLLECT: partial(self._handle_collect, COLLECT_FLOWS[FSMState.SIGNUP_COLLECT]),
            FSMState.PLAN_MENU: self._handle_plan_menu,
            FSMState.PLAN_COLLECT: partial(self._handle_collect, COLLECT_FLOWS[FSMState.PLAN_COLLECT]),
            FSMState.INQUIRY_STATUS: self._handle_inquiry,
            FSMState.HANDOFF: self._handle_handoff,
        }
        self.handlers.update({state: self._handle_terminal for state in TERMINAL_STATES})

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def transition(self, session: Session, event: InboundEvent) -> Transition:
        previous = session.state
        try:
            result, route = self._run(session, event)
        except Exception as e:
            logger.error(
                "FSM transition failed, recovering to root",
                extra={
                    "context": {
                        "conversation": mask_phone(session.id),
                        "state": str(previous),
                        "error": str(e),
                    }
                },
                exc_info=not isinstance(e, UnknownStateError),
            )
            result, route = self._recover(session, event), "recovery"

        if result.new_state in MENU_STATES:
            session.data["last_menu_state"] = result.new_state.value

        if previous == FSMState.HANDOFF and result.new_state != FSMState.HANDOFF:
            session.data.pop("return_to", None)
            result.effects.append(EffectRequest(EffectKind.END_HANDOFF, {"reason": route}))

        logger.info(
            "FSM transition",
            extra={
                "context": {
                    "conversation": mask_phone(session.id),
                    "from": str(getattr(previous, "value", previous)),
                    "to": result.new_state.value,
                    "route": route,
                    "replies": len(result.replies),
                    "effects": [effect.kind.value for effect in result.effects],
                }
            },
        )
        return result

    def _run(self, session: Session, event: InboundEvent) -> tuple[Transition, str]:
        state = self._coerce_state(session.state)
        session.state = state
        for guard in self.guards:
            if guard.applies(session, event):
                return guard.handle(session, event), guard.name
        handler = self.handlers.get(state)
        if handler is None:
            raise UnknownStateError(f"no handler for state {state}")
        return handler(session, event), state.value

    def _recover(self, session: Session, event: InboundEvent) -> Transition:
        session.state = INITIAL_STATE
        try:
            return self.handlers[INITIAL_STATE](session, event)
        except Exception:
            logger.exception("Root handler failed during recovery")
            return Transition(INITIAL_STATE, [Reply.of(get_text("generic_error"))])

    @staticmethod
    def _coerce_state(state) -> FSMState:
        if isinstance(state, FSMState):
            return state
        try:
            return FSMState(state)
        except ValueError:
            raise UnknownStateError(f"unknown state {state!r}") from None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_identified(session: Session) -> bool:
        return bool(session.data.get("cuit"))

    def _home_state(self, session: Session) -> FSMState:
        return FSMState.CLIENT_MENU if self._is_identified(session) else FSMState.ROOT

    def _contextual_menu_state(self, session: Session) -> FSMState:
        """Client menu if identified, else the last menu shown, else root."""
        if self._is_identified(session):
            return FSMState.CLIENT_MENU
        last = session.data.get("last_menu_state")
        try:
            last_state = FSMState(last) if last else None
        except ValueError:
            last_state = None
        if last_state in MENU_STATES:
            return last_state
        return FSMState.ROOT

    def _menu_reply(self, session: Session, state: FSMState) -> Reply:
        if state == FSMState.CLIENT_MENU:
            name = session.data.get("client_name")
            greeting = get_text("client_greeting", name=name) if name else get_text("client_greeting_anonymous")
            return Reply.menu(build_menu("client", greeting=greeting))
        if state == FSMState.SIGNUP_MENU:
            return Reply.menu(build_menu("signup", body=get_text("signup_plan")))
        if state == FSMState.PLAN_MENU:
            return Reply.menu(build_menu("plan", body=get_text("plan_text")))
        return Reply.menu(build_menu(MENU_KEYS[state]))

    def _show_menu(
        self,
        session: Session,
        state: FSMState,
        before: Iterable[Reply] = (),
        effects: Optional[list[EffectRequest]] = None,
    ) -> Transition:
        return Transition(state, [*before, self._menu_reply(session, state)], effects or [])

    def _should_ack(self, session: Session, state: FSMState, now: datetime) -> bool:
        last = session.last_ack_at.get(state)
        if last is not None and now - last < self.ack_cooldown:
            return False
        session.last_ack_at[state] = now
        return True

    @staticmethod
    def _clear(session: Session, keys: Iterable[str]) -> None:
        for key in keys:
            session.data.pop(key, None)

    @staticmethod
    def _contact(session: Session, event: InboundEvent) -> dict[str, str]:
        cuit = session.data.get("cuit")
        return {
            "contact": session.data.get("contact_name") or event.contact_name or "Sin nombre",
            "phone": session.id,
            "cuit": format_cuit(cuit) if cuit else "sin identificar",
        }

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _applies_reset(self, session: Session, event: InboundEvent) -> bool:
        return (
            not event.is_attachment
            and event.conversation_id in self.operator_allowlist
            and is_reset_command(event.text)
        )

    def _handle_reset(self, session: Session, event: InboundEvent) -> Transition:
        preserved = {key: session.data[key] for key in PRESERVED_KEYS if key in session.data}
        session.data.clear()
        session.data.update(preserved)
        session.last_ack_at.clear()
        return self._show_menu(session, INITIAL_STATE, before=[Reply.of(get_text("reset_done"))])

    def _applies_payment(self, session: Session, event: InboundEvent) -> bool:
        return session.state in PAYMENT_STATES and not event.is_attachment and is_payment_intent(event.text)

    def _handle_payment(self, session: Session, event: InboundEvent) -> Transition:
        payment_type = detect_payment_type(event.text)
        if self._is_identified(session):
            return self._payment_transition(session, payment_type)

        session.data["pending_resume"] = "payment"
        session.data["payment_type"] = payment_type
        return Transition(FSMState.IDENTIFY, [Reply.of(get_text("identify_prompt"))])

    def _payment_transition(self, session: Session, payment_type: str) -> Transition:
        record = self.directory.get_client(session.data["cuit"])
        name = (record.name if record else None) or session.data.get("client_name")

        if payment_type == "honorarios":
            greeting = f"Hola {name} 👋\n\n" if name else ""
            first = get_text("payment_honorarios", greeting=greeting)
        else:
            amount = record.amount_for(payment_type) if record else 0
            if amount > 0:
                first = get_text("payment_amount", name=name or "cliente", amount=format_ars(amount))
            else:
                first = get_text("payment_no_amount", name=name or "cliente")

        return Transition(FSMState.FINALIZE, [Reply.of(first), Reply.of(get_text("closing_pool"))])

    def _applies_handoff(self, session: Session, event: InboundEvent) -> bool:
        return session.state in HANDOFF_STATES and not event.is_attachment and is_handoff_request(event.text)

    def _handle_handoff_request(self, session: Session, event: InboundEvent) -> Transition:
        return self._start_handoff(session, event, reason="user_request")

    def _start_handoff(self, session: Session, event: InboundEvent, reason: str) -> Transition:
        session.data["return_to"] = session.state.value
        session.last_ack_at[FSMState.HANDOFF] = event.received_at
        effect = EffectRequest(
            EffectKind.START_HANDOFF,
            {
                "reason": reason,
                "staff": "handoff",
                "text": get_staff_text("handoff", reason=reason, text=event.text or "-", **self._contact(session, event)),
            },
        )
        return Transition(FSMState.HANDOFF, [Reply.of(get_text("handoff_started"))], [effect])

    def _applies_menu_command(self, session: Session, event: InboundEvent) -> bool:
        return not event.is_attachment and is_menu_command(event.text)

    def _handle_menu_command(self, session: Session, event: InboundEvent) -> Transition:
        return_to = session.data.pop("return_to", None)
        if session.state == FSMState.HANDOFF and normalize_for_matching(event.text) == "volver" and return_to:
            try:
                target = FSMState(return_to)
            except ValueError:
                target = None
            if target in MENU_STATES:
                return self._show_menu(session, target)
            if target in COLLECT_FLOWS:
                return Transition(target, [Reply.of(get_text(COLLECT_FLOWS[target].prompt_key))])
            if target == FSMState.IDENTIFY:
                return Transition(target, [Reply.of(get_text("identify_prompt"))])

        self._clear(session, COLLECTION_KEYS + INVOICE_KEYS + ("pending_resume", "payment_type"))
        return self._show_menu(session, self._home_state(session))

    def _handle_attachment(self, session: Session, event: InboundEvent) -> Transition:
        state = session.state
        if state == FSMState.HANDOFF:
            return self._handle_handoff(session, event)
        if state in MEDIA_STATES:
            return self._collect_attachment(COLLECT_FLOWS[state], session, event)

        menu_state = self._contextual_menu_state(session)
        return self._show_menu(session, menu_state, before=[Reply.of(get_text("attachment_apology"))])

    # ------------------------------------------------------------------
    # Menus
    # ------------------------------------------------------------------

    def _handle_root(self, session: Session, event: InboundEvent) -> Transition:
        option = match_option(event.text, menu_options("root"))
        if option == "root_cliente":
            if self._is_identified(session):
                return self._show_menu(session, FSMState.CLIENT_MENU)
            return Transition(FSMState.IDENTIFY, [Reply.of(get_text("identify_prompt"))])
        if option == "root_nocliente":
            return self._show_menu(session, FSMState.PROSPECT_MENU)
        if validate_cuit(event.text):
            return self._handle_identify(session, event)
        return self._show_menu(session, FSMState.ROOT)

    def _handle_client_menu(self, session: Session, event: InboundEvent) -> Transition:
        if not self._is_identified(session):
            return Transition(FSMState.IDENTIFY, [Reply.of(get_text("identify_prompt"))])

        option = match_option(event.text, menu_options("client"))
        if option == "cli_estado":
            return Transition(FSMState.CLIENT_STATUS, [Reply.of(get_text("client_status"))])
        if option == "cli_factura":
            return self._start_collect(session, COLLECT_FLOWS[FSMState.INVOICE_COLLECT])
        if option == "cli_ventas":
            return self._start_collect(session, COLLECT_FLOWS[FSMState.SALES_COLLECT])
        if option == "cli_reunion":
            return Transition(FSMState.MEETING, [Reply.of(get_text("meeting"))])
        if option == "cli_persona":
            return self._start_handoff(session, event, reason="client_menu")
        return self._show_menu(session, FSMState.CLIENT_MENU)

    def _handle_prospect_menu(self, session: Session, event: InboundEvent) -> Transition:
        option = match_option(event.text, menu_options("prospect"))
        if option == "nc_alta":
            return self._show_menu(session, FSMState.SIGNUP_MENU)
        if option == "nc_plan":
            return self._show_menu(session, FSMState.PLAN_MENU)
        if option == "nc_estado":
            return Transition(FSMState.INQUIRY_STATUS, [Reply.of(get_text("inquiry_prompt"))])
        if option in ("nc_ri", "nc_persona"):
            return self._start_handoff(session, event, reason=option_title("prospect", option))
        return self._show_menu(session, FSMState.PROSPECT_MENU)

    def _handle_signup_menu(self, session: Session, event: InboundEvent) -> Transition:
        option = match_option(event.text, menu_options("signup"))
        if option == "nc_alta_si":
            return self._start_collect(session, COLLECT_FLOWS[FSMState.SIGNUP_COLLECT])
        if option == "nc_alta_dudas":
            return self._start_handoff(session, event, reason="signup_questions")
        return self._show_menu(session, FSMState.SIGNUP_MENU)

    def _handle_plan_menu(self, session: Session, event: InboundEvent) -> Transition:
        option = match_option(event.text, menu_options("plan"))
        if option == "nc_plan_si":
            return self._start_collect(session, COLLECT_FLOWS[FSMState.PLAN_COLLECT])
        if option == "nc_plan_dudas":
            return self._start_handoff(session, event, reason="plan_questions")
        return self._show_menu(session, FSMState.PLAN_MENU)

    def _handle_terminal(self, session: Session, event: InboundEvent) -> Transition:
        """Terminal states fall back to a menu, serving the event if it already picks an option."""
        menu_state = self._contextual_menu_state(session)
        if match_option(event.text, menu_options(MENU_KEYS[menu_state])):
            return self.handlers[menu_state](session, event)
        return self._show_menu(session, menu_state)

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    def _handle_identify(self, session: Session, event: InboundEvent) -> Transition:
        if not validate_cuit(event.text):
            return Transition(FSMState.IDENTIFY, [Reply.of(get_text("cuit_invalid"))])

        cuit = clean_cuit(event.text)
        record = self.directory.get_client(cuit)
        if record is None:
            return Transition(FSMState.IDENTIFY, [Reply.of(get_text("cuit_not_found"))])

        session.data["cuit"] = cuit
        session.data["client_name"] = record.name
        session.data["is_client"] = True
        effects = [
            EffectRequest.persist("cuit", cuit),
            EffectRequest.persist("client_name", record.name),
            EffectRequest.persist("is_client", True),
        ]

        if session.data.pop("pending_resume", None) == "payment":
            payment_type = session.data.pop("payment_type", "deuda_generica")
            resumed = self._payment_transition(session, payment_type)
            resumed.effects[:0] = effects
            return resumed

        return self._show_menu(session, FSMState.CLIENT_MENU, effects=effects)

    # ------------------------------------------------------------------
    # Collection sub-flows
    # ------------------------------------------------------------------

    def _start_collect(self, session: Session, flow: CollectFlow) -> Transition:
        self._clear(session, COLLECTION_KEYS + INVOICE_KEYS)
        return Transition(flow.state, [Reply.of(get_text(flow.prompt_key))])

    def _handle_collect(self, flow: CollectFlow, session: Session, event: InboundEvent) -> Transition:
        text = (event.text or "").strip()
        if is_done_command(text):
            return self._finish_collect(flow, session, event)
        if not text:
            return Transition(flow.state)
        if flow.state == FSMState.SALES_COLLECT and normalize_for_matching(text) == "planilla":
            return Transition(flow.state, [Reply.of(get_text("planilla"))])

        previous = session.data.get("collected_text") or ""
        session.data["collected_text"] = f"{previous}\n\n{text}" if previous else text
        session.data["collected_messages"] = session.data.get("collected_messages", 0) + 1
        if flow.state == FSMState.INVOICE_COLLECT:
            session.data.setdefault("invoice_fragments", []).append(text)

        replies = []
        if self._should_ack(session, flow.state, event.received_at):
            replies.append(Reply.of(get_text("collect_ack")))
        return Transition(flow.state, replies)

    def _collect_attachment(self, flow: CollectFlow, session: Session, event: InboundEvent) -> Transition:
        session.data.setdefault("collected_media", []).append(event.content_kind.value)
        replies = []
        if self._should_ack(session, flow.state, event.received_at):
            replies.append(Reply.of(get_text("collect_ack")))
        return Transition(flow.state, replies)

    def _finish_collect(self, flow: CollectFlow, session: Session, event: InboundEvent) -> Transition:
        collected = session.data.get("collected_text") or ""
        media = list(session.data.get("collected_media") or [])
        if not collected.strip() and not media:
            return Transition(flow.state, [Reply.of(get_text(flow.empty_key))])

        if flow.state == FSMState.INVOICE_COLLECT:
            fields = parse_invoice_fields(
                session.data.get("invoice_fragments") or [], known_cuit=session.data.get("cuit")
            )
            self._clear(session, COLLECTION_KEYS)
            session.data["invoice_fields"] = fields
            session.data["invoice_media_count"] = len(media)
            return self._confirm_invoice(fields)

        summary = _summarize_collection(session.data.get("collected_messages", 0), media)
        staff_text = get_staff_text(
            "collection",
            title=flow.title,
            summary=summary,
            body=collected or "(sin texto)",
            **self._contact(session, event),
        )
        self._clear(session, COLLECTION_KEYS)
        effect = EffectRequest.notify(flow.staff_role, staff_text, reason=flow.state.value.lower())
        return self._show_menu(
            session,
            self._contextual_menu_state(session),
            before=[Reply.of(get_text(flow.sent_key))],
            effects=[effect],
        )

    # ------------------------------------------------------------------
    # Invoice confirm / edit loop
    # ------------------------------------------------------------------

    @staticmethod
    def _confirm_invoice(fields: dict[str, str]) -> Transition:
        body = get_text("invoice_confirm", summary=format_invoice_summary(fields))
        return Transition(FSMState.INVOICE_CONFIRM, [Reply.menu(build_menu("invoice_confirm", body=body))])

    @staticmethod
    def _field_list() -> Reply:
        return Reply.menu(build_menu("invoice_fields", body=get_text("invoice_fields")))

    def _handle_invoice_confirm(self, session: Session, event: InboundEvent) -> Transition:
        fields = session.data.get("invoice_fields")
        if not fields:
            return self._show_menu(session, self._contextual_menu_state(session))

        option = match_option(event.text, menu_options("invoice_confirm"))
        if option is None:
            if is_affirmative(event.text):
                option = "inv_ok"
            elif is_negative(event.text):
                option = "inv_edit"

        if option == "inv_ok":
            summary = format_invoice_summary(fields)
            media_count = session.data.get("invoice_media_count") or 0
            if media_count:
                summary += f"\n• Adjuntos: {media_count}"
            staff_text = get_staff_text("invoice", summary=summary, **self._contact(session, event))
            self._clear(session, INVOICE_KEYS)
            return self._show_menu(
                session,
                self._contextual_menu_state(session),
                before=[Reply.of(get_text("invoice_sent"))],
                effects=[EffectRequest.notify("invoices", staff_text, reason="invoice_request")],
            )
        if option == "inv_edit":
            session.data["invoice_edit_field"] = None
            return Transition(FSMState.INVOICE_EDIT_FIELD, [self._field_list()])
        return self._confirm_invoice(fields)

    def _handle_invoice_edit(self, session: Session, event: InboundEvent) -> Transition:
        fields = session.data.get("invoice_fields")
        if not fields:
            return self._show_menu(session, self._contextual_menu_state(session))

        field = session.data.get("invoice_edit_field")
        if is_back_command(event.text):
            session.data["invoice_edit_field"] = None
            return self._confirm_invoice(fields)

        if field not in INVOICE_FIELDS:
            selected = match_option(event.text, menu_options("invoice_fields"))
            if selected is None:
                return Transition(FSMState.INVOICE_EDIT_FIELD, [self._field_list()])
            session.data["invoice_edit_field"] = selected
            return Transition(
                FSMState.INVOICE_EDIT_FIELD,
                [Reply.of(get_text("invoice_edit_value", label=FIELD_LABELS[selected]))],
            )

        value = validate_field_value(field, event.text)
        if value is None:
            return Transition(
                FSMState.INVOICE_EDIT_FIELD,
                [Reply.of(get_text("invoice_edit_invalid", label=FIELD_LABELS[field]))],
            )
        fields[field] = value
        session.data["invoice_edit_field"] = None
        return self._confirm_invoice(fields)

    # ------------------------------------------------------------------
    # Inquiry and handoff
    # ------------------------------------------------------------------

    def _handle_inquiry(self, session: Session, event: InboundEvent) -> Transition:
        name = (event.text or "").strip()
        if not name:
            return Transition(FSMState.INQUIRY_STATUS, [Reply.of(get_text("inquiry_prompt"))])
        staff_text = get_staff_text("inquiry", name=name, **self._contact(session, event))
        return Transition(
            FSMState.FINALIZE,
            [Reply.of(get_text("inquiry_sent", name=name))],
            [EffectRequest.notify("inquiries", staff_text, reason="inquiry_status")],
        )

    def _handle_handoff(self, session: Session, event: InboundEvent) -> Transition:
        text = (event.text or "").strip()
        if event.is_attachment:
            text = f"[adjunto: {event.content_kind.value}] {text}".strip()
        effects = []
        if text:
            staff_text = get_staff_text("forward", text=text, **self._contact(session, event))
            effects.append(EffectRequest.notify("handoff", staff_text, reason="handoff_message"))

        replies = []
        if self._should_ack(session, FSMState.HANDOFF, event.received_at):
            replies.append(Reply.of(get_text("handoff_notice")))
        return Transition(FSMState.HANDOFF, replies, effects)
