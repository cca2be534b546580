"""
HTTP surface for the flooring CRM

Voice commands, projects, estimates and their client links, payments,
damage photos and third-party connectors.
Components are built lazily from Settings; tests replace them through
``app.dependency_overrides[get_components]``.
"""

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError

from flooring_crm.adapters.command_parser import VoiceCommandProcessor
from flooring_crm.adapters.conversation_manager import ConversationManager
from flooring_crm.adapters.integrations import IntegrationError, IntegrationNotConnectedError
from flooring_crm.adapters.integrations.calendar import CalendarAdapter
from flooring_crm.adapters.integrations.crm import CRMAdapter
from flooring_crm.adapters.integrations.quickbooks import QuickBooksAdapter
from flooring_crm.adapters.integrations.registry import IntegrationRegistry
from flooring_crm.adapters.integrations.sms import SMSAdapter
from flooring_crm.adapters.speech_recognizer import SpeechRecognizer
from flooring_crm.adapters.tts_manager import TTSManager
from flooring_crm.adapters.voice_learning import VoiceLearningService
from flooring_crm.config import Settings, get_settings
from flooring_crm.logging_conf import configure_logging
from flooring_crm.models import Client, Invoice, PaymentFormData, TaskStatus, VoiceTurn
from flooring_crm.payments import PaymentProcessor, PaymentValidationError, PaymentError, validate_payment
from flooring_crm.payments.validation import parse_amount
from flooring_crm.payments.gateway import GatewayConfig, PaymentGateway
from flooring_crm.services.actions import ActionDispatcher
from flooring_crm.services.crm_store import CRMStore
from flooring_crm.services.damage_analysis import DamageAnalysisError, DamageAnalyzer
from flooring_crm.services.estimate_sharing import (
    EstimateSharingError,
    EstimateSharingService,
    SharedEstimateNotFoundError,
)
from flooring_crm.services.estimates import (
    PRICING_TIERS,
    PricingConfig,
    calculate_estimate_items,
    validate_estimate,
)
from flooring_crm.services.projects import ProjectNotFoundError, ProjectService
from flooring_crm.services.voice_assistant import VoiceAssistant

logger = logging.getLogger(__name__)


@dataclass
class Components:
    store: Any
    projects: ProjectService
    assistant: VoiceAssistant
    payments: PaymentProcessor
    registry: IntegrationRegistry
    quickbooks: Optional[QuickBooksAdapter] = None
    crm: Optional[CRMAdapter] = None
    sms: Optional[SMSAdapter] = None
    gateway: Optional[PaymentGateway] = None
    sharing: Optional[EstimateSharingService] = None
    damage: Optional[DamageAnalyzer] = None
    tax_rate: float = 0.08


def build_components(settings: Settings) -> Components:
    store = CRMStore(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)

    calendar = CalendarAdapter(settings.GOOGLE_CALENDAR_ID, settings.GOOGLE_TOKEN_PATH)
    sms = SMSAdapter(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, settings.TWILIO_FROM_NUMBER)
    quickbooks = QuickBooksAdapter(
        settings.QUICKBOOKS_CLIENT_ID,
        settings.QUICKBOOKS_CLIENT_SECRET,
        settings.QUICKBOOKS_REDIRECT_URI,
        environment=settings.QUICKBOOKS_ENVIRONMENT,
        store=store,
    )
    crm = CRMAdapter(store=store, api_base=settings.GHL_API_BASE, api_version=settings.GHL_API_VERSION)

    gateway = None
    if settings.SQUARE_ACCESS_TOKEN:
        gateway = PaymentGateway(GatewayConfig.from_settings(settings))
    else:
        logger.warning("Square not configured - card charges disabled")

    assistant = VoiceAssistant(
        processor=VoiceCommandProcessor(settings.OPENAI_API_KEY, model=settings.OPENAI_MODEL),
        dispatcher=ActionDispatcher(store, calendar=calendar, tax_rate=settings.DEFAULT_TAX_RATE),
        conversation=ConversationManager(),
        learning=VoiceLearningService(settings.VOICE_LEARNING_PATH),
        tts=TTSManager(
            elevenlabs_api_key=settings.ELEVENLABS_API_KEY,
            voice_id=settings.ELEVENLABS_VOICE_ID,
            model_id=settings.ELEVENLABS_MODEL_ID,
            openai_api_key=settings.OPENAI_API_KEY,
        ),
        recognizer=SpeechRecognizer(settings.OPENAI_API_KEY, model=settings.OPENAI_TRANSCRIBE_MODEL),
    )

    return Components(
        store=store,
        projects=ProjectService(store),
        assistant=assistant,
        payments=PaymentProcessor(store),
        registry=IntegrationRegistry(store=store, quickbooks=quickbooks, crm=crm, calendar=calendar,
                                     sms=sms, payments=gateway),
        quickbooks=quickbooks,
        crm=crm,
        sms=sms,
        gateway=gateway,
        sharing=EstimateSharingService(store, settings.PUBLIC_BASE_URL),
        damage=DamageAnalyzer(settings.OPENAI_API_KEY, store=store, model=settings.OPENAI_VISION_MODEL),
        tax_rate=settings.DEFAULT_TAX_RATE,
    )


_components: Optional[Components] = None


def get_components() -> Components:
    global _components
    if _components is None:
        _components = build_components(get_settings())
    return _components


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)
    logger.info("🚀 Flooring CRM API starting")
    yield
    if _components is not None:
        if _components.assistant.tts is not None:
            await _components.assistant.tts.close()
        if _components.crm is not None:
            await _components.crm.close()
    logger.info("Flooring CRM API stopped")


app = FastAPI(title="Flooring CRM", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected request to {request.url.path}: validation error")
    return JSONResponse(status_code=422, content={"status": "error", "reason": "validation error"})


# ===== Request bodies =====

class VoiceCommandIn(BaseModel):
    transcript: str
    session_id: str = "default"
    location: Optional[str] = None


class VoiceCancelIn(BaseModel):
    session_id: str = "default"


class ProjectIn(BaseModel):
    title: str
    clientId: str
    clientName: str = ""
    startDate: str = ""
    endDate: str = ""
    budget: float = 0.0
    estimateId: str = ""


class TaskIn(BaseModel):
    title: str
    assignedTo: str = ""
    dueDate: str = ""


class TaskStatusIn(BaseModel):
    status: TaskStatus


class EstimateIn(BaseModel):
    rooms: List[str] = Field(default_factory=list)
    dimensions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    tier: str = "basic"
    species: str = "White Oak"
    tax_rate: Optional[float] = None


class PaymentIn(BaseModel):
    client_id: str
    payment: PaymentFormData
    source_id: Optional[str] = None


class CRMConnectIn(BaseModel):
    access_token: str
    location_id: str


class SMSIn(BaseModel):
    to: str
    message: str


class EstimateResponseIn(BaseModel):
    response: Literal["approved", "rejected"]
    feedback: Optional[str] = None


class ConversationUpdateIn(BaseModel):
    unreadCount: Optional[int] = None
    starred: Optional[bool] = None


class CRMMessageIn(BaseModel):
    contactId: str
    message: str
    type: str = "SMS"
    subject: Optional[str] = None


def _turn_response(turn: VoiceTurn) -> Dict[str, Any]:
    body = turn.model_dump()
    audio = turn.speech.audio if turn.speech is not None else None
    body['audio_base64'] = base64.b64encode(audio).decode('ascii') if audio else None
    return body


# ===== Routes =====

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok", "service": "flooring-crm"}


@app.post("/voice/command")
async def voice_command(body: VoiceCommandIn, components: Components = Depends(get_components)):
    turn = await components.assistant.handle_transcript(body.session_id, body.transcript, location=body.location)
    return _turn_response(turn)


@app.post("/voice/audio")
async def voice_audio(audio: UploadFile = File(...), session_id: str = Form("default"),
                      location: Optional[str] = Form(None),
                      components: Components = Depends(get_components)):
    data = await audio.read()
    turn = await components.assistant.handle_audio(session_id, data, audio.filename or "command.webm",
                                                   location=location)
    return _turn_response(turn)


@app.post("/voice/cancel")
async def voice_cancel(body: VoiceCancelIn, components: Components = Depends(get_components)):
    return {"cancelled": components.assistant.cancel(body.session_id)}


@app.get("/voice/suggestions")
async def voice_suggestions(limit: int = 5, components: Components = Depends(get_components)):
    return {"suggestions": components.assistant.suggestions(limit)}


@app.get("/projects")
async def list_projects(status: Optional[str] = None, search: Optional[str] = None,
                        components: Components = Depends(get_components)):
    projects = await components.projects.list_projects(status=status, search=search)
    return [p.model_dump() for p in projects]


@app.post("/projects", status_code=201)
async def create_project(body: ProjectIn, components: Components = Depends(get_components)):
    try:
        project = await components.projects.create_project(body.model_dump())
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return project.model_dump()


@app.get("/projects/{project_id}")
async def get_project(project_id: str, components: Components = Depends(get_components)):
    try:
        project = await components.projects.get_project(project_id)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return project.model_dump()


@app.post("/projects/{project_id}/tasks", status_code=201)
async def add_task(project_id: str, body: TaskIn, components: Components = Depends(get_components)):
    try:
        task = await components.projects.add_task(project_id, body.title, body.assignedTo, body.dueDate)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return task.model_dump()


@app.patch("/projects/{project_id}/tasks/{task_id}")
async def update_task(project_id: str, task_id: str, body: TaskStatusIn,
                      components: Components = Depends(get_components)):
    try:
        project = await components.projects.update_task_status(project_id, task_id, body.status)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return project.model_dump()


@app.post("/estimates/calculate")
async def calculate_estimate(body: EstimateIn, components: Components = Depends(get_components)):
    error = validate_estimate(body.rooms, body.dimensions)
    if error:
        raise HTTPException(status_code=400, detail=error)

    tax_rate = body.tax_rate if body.tax_rate is not None else components.tax_rate
    try:
        config = PricingConfig.for_tier(body.tier, body.species, tax_rate)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    grade = PRICING_TIERS[body.tier]["materialGrade"]
    totals = calculate_estimate_items(body.rooms, body.dimensions, config, body.species, grade)
    return {
        "items": [item.model_dump(exclude_none=True) for item in totals.items],
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
    }


def _sharing(components: Components) -> EstimateSharingService:
    if components.sharing is None:
        raise HTTPException(status_code=503, detail="Estimate sharing is not configured")
    return components.sharing


@app.post("/estimates/{estimate_id}/share", status_code=201)
async def share_estimate(estimate_id: str, components: Components = Depends(get_components)):
    try:
        share = await _sharing(components).generate_share(estimate_id)
    except EstimateSharingError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return share.model_dump()


@app.get("/estimates/share/{token}")
async def get_shared_estimate(token: str, components: Components = Depends(get_components)):
    sharing = _sharing(components)
    try:
        estimate = await sharing.get_estimate_by_token(token)
    except SharedEstimateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        await sharing.record_view(token)
    except EstimateSharingError as e:
        logger.warning(f"Could not record estimate view: {e}")
    return estimate.model_dump()


@app.post("/estimates/share/{token}/response")
async def respond_to_estimate(token: str, body: EstimateResponseIn,
                              components: Components = Depends(get_components)):
    try:
        await _sharing(components).submit_response(token, body.response, body.feedback)
    except EstimateSharingError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": body.response}


async def _refund_charge(gateway: PaymentGateway, charge: Dict[str, Any], amount: float) -> bool:
    """Give back a card charge whose payment record could not be written"""
    payment_id = charge.get('id')
    try:
        await asyncio.to_thread(gateway.refund_payment, payment_id, amount, "Payment could not be recorded")
    except PaymentError as e:
        logger.error(f"❌ Refund failed for charged payment {payment_id}: {e}")
        return False
    logger.warning(f"↩️ Refunded card payment {payment_id} after recording failed")
    return True


@app.post("/payments", status_code=201)
async def create_payment(body: PaymentIn, components: Components = Depends(get_components)):
    validation = validate_payment(body.payment)
    if not validation.is_valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})

    amount = parse_amount(body.payment.amount)
    charge = None
    try:
        if body.payment.method == 'credit_card' and body.source_id:
            if components.gateway is None:
                raise HTTPException(status_code=503, detail="Card payments are not configured")
            charge = await asyncio.to_thread(
                components.gateway.charge_card,
                body.source_id,
                amount,
                body.client_id,
                body.payment.reference,
                body.payment.notes,
            )
        payment = await components.payments.process_payment(body.payment, body.client_id)
    except PaymentValidationError as e:
        if charge is not None:
            refunded = await _refund_charge(components.gateway, charge, amount)
            raise HTTPException(status_code=400, detail={
                "errors": e.errors, "gateway_payment_id": charge.get('id'), "refunded": refunded,
            })
        raise HTTPException(status_code=400, detail={"errors": e.errors})
    except PaymentError as e:
        if charge is not None:
            refunded = await _refund_charge(components.gateway, charge, amount)
            raise HTTPException(status_code=502, detail={
                "error": str(e), "gateway_payment_id": charge.get('id'), "refunded": refunded,
            })
        raise HTTPException(status_code=502, detail=str(e))

    result = payment.model_dump()
    if charge is not None:
        result['gateway_payment_id'] = charge.get('id')
    return result


@app.get("/integrations")
async def list_integrations(components: Components = Depends(get_components)):
    return {"integrations": await components.registry.list_integrations()}


@app.get("/integrations/quickbooks/connect")
async def quickbooks_connect(components: Components = Depends(get_components)):
    if components.quickbooks is None:
        raise HTTPException(status_code=503, detail="QuickBooks is not configured")
    try:
        return components.quickbooks.get_authorization_url()
    except IntegrationError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/integrations/quickbooks/callback")
async def quickbooks_callback(request: Request, realmId: str, state: Optional[str] = None,
                              components: Components = Depends(get_components)):
    if components.quickbooks is None:
        raise HTTPException(status_code=503, detail="QuickBooks is not configured")
    try:
        await asyncio.to_thread(components.quickbooks.handle_callback, str(request.url), realmId, state)
    except IntegrationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not await components.quickbooks.save_connection():
        logger.warning(f"QuickBooks token for realm {realmId} was not saved")
    return {"connected": True, "realm_id": realmId}


def _valid_records(model, rows: List[Dict[str, Any]], kind: str) -> List[Dict[str, Any]]:
    records = []
    for row in rows:
        try:
            records.append(model.model_validate(row).model_dump())
        except ValidationError as e:
            logger.warning(f"Skipping {kind} {row.get('id')} in QuickBooks sync: {e.error_count()} invalid fields")
    return records


@app.post("/integrations/quickbooks/sync")
async def quickbooks_sync(components: Components = Depends(get_components)):
    if components.quickbooks is None:
        raise HTTPException(status_code=503, detail="QuickBooks is not configured")

    customers = _valid_records(Client, await components.store.list_clients(), "client")
    invoices = _valid_records(Invoice, await components.store.list_invoices(), "invoice")
    try:
        counts = await components.quickbooks.sync_records(customers, invoices)
    except IntegrationNotConnectedError:
        raise
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"synced": counts}


@app.post("/integrations/ghl/connect")
async def ghl_connect(body: CRMConnectIn, components: Components = Depends(get_components)):
    if components.crm is None:
        raise HTTPException(status_code=503, detail="CRM connector is not configured")
    try:
        await components.crm.connect(body.access_token, body.location_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"connected": True, "location_id": body.location_id}


def _crm(components: Components) -> CRMAdapter:
    if components.crm is None:
        raise HTTPException(status_code=503, detail="CRM connector is not configured")
    return components.crm


@app.get("/crm/conversations")
async def search_conversations(query: Optional[str] = None, limit: int = 20, status: Optional[str] = None,
                               contact_id: Optional[str] = None,
                               components: Components = Depends(get_components)):
    try:
        conversations = await _crm(components).search_conversations(
            query=query, limit=limit, status=status, contact_id=contact_id,
        )
    except IntegrationNotConnectedError:
        raise
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"conversations": [c.model_dump() for c in conversations]}


@app.patch("/crm/conversations/{conversation_id}")
async def update_conversation(conversation_id: str, body: ConversationUpdateIn,
                              components: Components = Depends(get_components)):
    try:
        conversation = await _crm(components).update_conversation(
            conversation_id, unread_count=body.unreadCount, starred=body.starred,
        )
    except IntegrationNotConnectedError:
        raise
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return conversation.model_dump()


@app.get("/crm/conversations/{conversation_id}/messages")
async def conversation_messages(conversation_id: str, limit: Optional[int] = None,
                                last_message_id: Optional[str] = None,
                                components: Components = Depends(get_components)):
    try:
        messages = await _crm(components).get_messages(conversation_id, last_message_id=last_message_id,
                                                       limit=limit)
    except IntegrationNotConnectedError:
        raise
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"messages": [m.model_dump() for m in messages]}


@app.post("/crm/messages", status_code=201)
async def send_crm_message(body: CRMMessageIn, components: Components = Depends(get_components)):
    extra = {"subject": body.subject} if body.subject else {}
    try:
        return await _crm(components).send_message(body.contactId, body.message, body.type, **extra)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrationNotConnectedError:
        raise
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.delete("/integrations/{name}")
async def disconnect_integration(name: str, components: Components = Depends(get_components)):
    try:
        removed = await components.registry.disconnect(name)
    except IntegrationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not removed:
        raise HTTPException(status_code=404, detail=f"No connected integration named {name}")
    return {"disconnected": name}


@app.post("/messages/sms")
async def send_sms(body: SMSIn, components: Components = Depends(get_components)):
    if components.sms is None:
        raise HTTPException(status_code=503, detail="SMS is not configured")
    result = await asyncio.to_thread(components.sms.send_sms, body.to, body.message)
    if not result.get('success'):
        raise HTTPException(status_code=400, detail=result.get('error'))
    return result


@app.post("/damage/analyze")
async def analyze_damage(image: UploadFile = File(...), client_id: Optional[str] = Form(None),
                         components: Components = Depends(get_components)):
    if components.damage is None:
        raise HTTPException(status_code=503, detail="Damage assessment is not configured")
    data = await image.read()
    try:
        analysis = await components.damage.analyze_image(data, client_id=client_id)
    except DamageAnalysisError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return analysis.model_dump()


@app.get("/damage/reports")
async def damage_reports(client_id: Optional[str] = None, components: Components = Depends(get_components)):
    if components.damage is None:
        return {"reports": []}
    reports = await components.damage.history(client_id)
    return {"reports": [r.model_dump() for r in reports]}


@app.exception_handler(IntegrationNotConnectedError)
async def not_connected_handler(request: Request, exc: IntegrationNotConnectedError):
    return JSONResponse(status_code=409, content={"status": "error", "reason": str(exc)})


if __name__ == "__main__":
    uvicorn.run("flooring_crm.server:app", host="0.0.0.0", port=8000)
