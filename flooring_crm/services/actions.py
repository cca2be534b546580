import asyncio
import logging
from typing import Any, Dict, Optional

from flooring_crm.models import ActionOutcome, Client, CommandResult, Estimate
from .estimates import totals_from_items

logger = logging.getLogger(__name__)

HELP_TOPICS = {
    'clients': "Say something like 'Add a new client John Smith from ABC Corp, email john at abc dot com'.",
    'estimates': "Say 'Create an estimate for' followed by the client and the rooms or materials.",
    'installations': "Say 'Schedule an installation on' followed by the date, time and address.",
    'materials': "Say 'Order' followed by the quantity, the material and optionally the supplier.",
    'navigation': "Say 'Go to' followed by projects, clients, estimates, invoices or payments.",
}

GENERAL_HELP = (
    "I can add clients, create estimates, schedule installations, order materials, "
    "search your records, and take you to any page. What would you like to do?"
)

ACTION_FAILURE_MESSAGE = "Sorry, I couldn't finish that. Please try again or make the change on screen."

NAVIGATION_PATHS = {
    'dashboard': '/',
    'home': '/',
    'clients': '/clients',
    'projects': '/projects',
    'estimates': '/estimates',
    'invoices': '/invoices',
    'payments': '/payments',
    'inventory': '/inventory',
    'settings': '/settings',
}


def normalize_path(path: str) -> Optional[str]:
    cleaned = (path or '').strip().lower()
    if not cleaned:
        return None
    if cleaned.startswith('/'):
        return cleaned
    return NAVIGATION_PATHS.get(cleaned.rstrip('s') + 's', NAVIGATION_PATHS.get(cleaned))


class ActionDispatcher:
    """Executes parsed voice commands against CRM state"""

    def __init__(self, store, calendar=None, tax_rate: float = 0.08):
        self.store = store
        self.calendar = calendar
        self.tax_rate = tax_rate
        self.handlers = {
            'create_client': self.create_client,
            'create_estimate': self.create_estimate,
            'schedule_installation': self.schedule_installation,
            'order_materials': self.order_materials,
            'navigate': self.navigate,
            'search': self.search,
            'help': self.help,
        }

    async def dispatch(self, result: CommandResult) -> ActionOutcome:
        handler = self.handlers.get(result.action)
        if handler is None:
            return ActionOutcome(action=result.action, success=False, message=f"Unsupported action: {result.action}")

        try:
            outcome = await handler(result.parameters or {})
        except Exception as e:
            # Spoken back to the user; no exception text
            logger.error(f"Action {result.action} failed: {e}", exc_info=True)
            return ActionOutcome(action=result.action, success=False, message=ACTION_FAILURE_MESSAGE,
                                 data={'error': str(e)})

        logger.info(f"⚙️ Action {result.action} -> {'ok' if outcome.success else 'failed'}")
        return outcome

    @staticmethod
    def _store_failure(action: str, result: Dict[str, Any]) -> ActionOutcome:
        logger.error(f"Store rejected {action}: {result.get('error')}")
        return ActionOutcome(action=action, success=False, message=ACTION_FAILURE_MESSAGE,
                             data={'error': result.get('error', '')})

    async def create_client(self, params: Dict[str, Any]) -> ActionOutcome:
        name = (params.get('name') or '').strip()
        if not name:
            return ActionOutcome(action='create_client', success=False, message="I need the client's name first.")

        client = Client(
            name=name,
            company=str(params.get('company') or ''),
            email=str(params.get('email') or ''),
            phone=str(params.get('phone') or ''),
            address=str(params.get('address') or ''),
        )
        result = await self.store.create_client(client.model_dump(exclude={'id'}, exclude_none=True))
        if not result.get('success'):
            return self._store_failure('create_client', result)
        return ActionOutcome(action='create_client', success=True, message=f"Client {name} added.",
                             data={'client': result['data']})

    async def create_estimate(self, params: Dict[str, Any]) -> ActionOutcome:
        client_id = params.get('clientId')
        if not client_id:
            return ActionOutcome(action='create_estimate', success=False,
                                 message="Which client is this estimate for?")

        totals = totals_from_items(params.get('items') or [], self.tax_rate)
        if params.get('items') and not totals.items:
            return ActionOutcome(action='create_estimate', success=False,
                                 message="I couldn't work out the line items. Could you list them again?")

        estimate = Estimate(
            clientId=str(client_id),
            clientName=str(params.get('clientName') or ''),
            status='draft',
            items=totals.items,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            notes=str(params.get('notes') or ''),
        )
        result = await self.store.create_estimate(estimate.model_dump(exclude={'id'}, exclude_none=True))
        if not result.get('success'):
            return self._store_failure('create_estimate', result)
        return ActionOutcome(action='create_estimate', success=True,
                             message=f"Draft estimate created for ${totals.total:,.2f}.",
                             data={'estimate': result['data']})

    async def schedule_installation(self, params: Dict[str, Any]) -> ActionOutcome:
        date = params.get('date')
        if not date:
            return ActionOutcome(action='schedule_installation', success=False,
                                 message="What date should the installation be?")

        event: Dict[str, Any] = {}
        if self.calendar is not None and self.calendar.enabled:
            try:
                event = await asyncio.to_thread(
                    self.calendar.schedule_installation,
                    date,
                    params.get('time'),
                    params.get('location') or '',
                    params.get('notes') or '',
                    params.get('clientName') or '',
                )
            except ValueError as e:
                return ActionOutcome(action='schedule_installation', success=False, message=str(e))

        record = {
            'date': date,
            'time': params.get('time') or '',
            'location': params.get('location') or '',
            'notes': params.get('notes') or '',
            'projectId': params.get('projectId'),
            'calendar_event_id': event.get('id'),
        }
        result = await self.store.create_installation(record)
        if not result.get('success'):
            return self._store_failure('schedule_installation', result)

        project_id = params.get('projectId')
        if project_id:
            project = await self.store.get_project(project_id)
            if project:
                await self.store.save_project({**project, 'status': 'scheduled', 'startDate': date})

        when = f"{date} at {params['time']}" if params.get('time') else date
        return ActionOutcome(action='schedule_installation', success=True,
                             message=f"Installation scheduled for {when}.",
                             data={'installation': result['data'], 'event': event})

    async def order_materials(self, params: Dict[str, Any]) -> ActionOutcome:
        material = (params.get('type') or '').strip()
        if not material:
            return ActionOutcome(action='order_materials', success=False, message="Which material should I order?")

        try:
            quantity = float(params.get('quantity') or 0)
        except (TypeError, ValueError):
            quantity = 0
        if quantity <= 0:
            return ActionOutcome(action='order_materials', success=False, message="How much should I order?")

        order = {'type': material, 'quantity': quantity, 'supplier': params.get('supplier') or ''}
        result = await self.store.create_material_order(order)
        if not result.get('success'):
            return self._store_failure('order_materials', result)
        return ActionOutcome(action='order_materials', success=True,
                             message=f"Order placed for {quantity:g} of {material}.",
                             data={'order': result['data']})

    async def navigate(self, params: Dict[str, Any]) -> ActionOutcome:
        path = normalize_path(params.get('path', ''))
        if not path:
            return ActionOutcome(action='navigate', success=False, message="Where would you like to go?")
        return ActionOutcome(action='navigate', success=True, message=f"Opening {path}.", data={'path': path})

    async def search(self, params: Dict[str, Any]) -> ActionOutcome:
        query = (params.get('query') or '').strip()
        if not query:
            return ActionOutcome(action='search', success=False, message="What should I search for?")

        search_type = (params.get('type') or 'all').lower()
        data: Dict[str, Any] = {}
        if search_type in ('all', 'client', 'clients'):
            data['clients'] = await self.store.search_clients(query)
        if search_type in ('all', 'project', 'projects'):
            lowered = query.lower()
            projects = await self.store.list_projects()
            data['projects'] = [
                p for p in projects
                if lowered in str(p.get('title', '')).lower() or lowered in str(p.get('clientName', '')).lower()
            ]

        count = sum(len(v) for v in data.values())
        return ActionOutcome(action='search', success=True,
                             message=f"Found {count} result{'s' if count != 1 else ''} for {query}.", data=data)

    async def help(self, params: Dict[str, Any]) -> ActionOutcome:
        topic = (params.get('topic') or '').lower()
        for key, text in HELP_TOPICS.items():
            if topic and (topic in key or key.rstrip('s') in topic):
                return ActionOutcome(action='help', success=True, message=text, data={'topic': key})
        return ActionOutcome(action='help', success=True, message=GENERAL_HELP)
